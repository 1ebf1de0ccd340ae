"""
Settings Access

Versioned snapshots of the watermark settings and the narrow
read/subscribe interface to the site-settings store.
"""

from .snapshot import (
    DEFAULTS,
    RENDER_KEYS,
    WATCHED_GROUPS,
    WATERMARK_KEYS,
    SettingChange,
    SettingsSnapshot,
    coerce_bool,
)
from .store import ConfigStore, InMemoryConfigStore

__all__ = [
    "DEFAULTS",
    "RENDER_KEYS",
    "WATCHED_GROUPS",
    "WATERMARK_KEYS",
    "SettingChange",
    "SettingsSnapshot",
    "coerce_bool",
    "ConfigStore",
    "InMemoryConfigStore",
]
