"""
Settings Snapshots

Read-only, versioned view of the watermark/protection settings held by
the external site-settings store.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional


# Settings that change how an artifact looks. Order matters: it is the
# canonical order used when deriving cache keys. Append new keys, never
# reorder.
RENDER_KEYS = (
    "watermark_enabled",
    "watermark_text",
    "watermark_opacity",
    "watermark_position",
    "watermark_size",
    "watermark_text_size",
    "watermark_text_color",
    "watermark_logo_path",
    "watermark_logo_size",
    "watermark_responsive_enabled",
)

# Allow-list for invalidation: a write to any of these purges the cache.
WATERMARK_KEYS = frozenset(RENDER_KEYS) | {"image_protection_enabled"}

# Deleting any setting in these groups also purges the cache.
WATCHED_GROUPS = frozenset({"watermark", "image_protection"})

DEFAULTS: Dict[str, Any] = {
    "watermark_enabled": False,
    "watermark_text": "",
    "watermark_opacity": 50,
    "watermark_position": "bottom-right",
    "watermark_size": 24,
    "watermark_text_size": "",
    "watermark_text_color": "#FFFFFF",
    "watermark_logo_path": "",
    "watermark_logo_size": "medium",
    "watermark_responsive_enabled": True,
    "image_protection_enabled": True,
}


def coerce_bool(value: Any) -> bool:
    """Interpret settings-store values ("1", "true", "on", 1, True) as booleans."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class SettingChange:
    """A single write (or delete) fanned out by the settings store."""
    key: str
    group: Optional[str] = None
    old_value: Any = None
    new_value: Any = None
    deleted: bool = False


@dataclass(frozen=True)
class SettingsSnapshot:
    """
    Immutable settings at one version.

    A new write to the store produces a new snapshot with a higher
    version; existing snapshots never change.
    """
    version: int
    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # Freeze a private copy so callers cannot mutate it later
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, key: str, default: Any = None) -> Any:
        if key in self.values:
            return self.values[key]
        if default is None:
            return DEFAULTS.get(key)
        return default

    def render_values(self) -> Dict[str, Any]:
        """Every rendering-relevant setting, with defaults filled in."""
        return {key: self.get(key) for key in RENDER_KEYS}

    @property
    def watermark_enabled(self) -> bool:
        return coerce_bool(self.get("watermark_enabled"))

    @property
    def protection_enabled(self) -> bool:
        return coerce_bool(self.get("image_protection_enabled"))

    @property
    def responsive_enabled(self) -> bool:
        return coerce_bool(self.get("watermark_responsive_enabled"))

    @property
    def has_content(self) -> bool:
        """Whether there is anything to draw (text or logo)."""
        return bool(str(self.get("watermark_text") or "").strip()
                    or str(self.get("watermark_logo_path") or "").strip())

    def with_values(self, **overrides: Any) -> "SettingsSnapshot":
        """Derived snapshot for one-off renders (previews, bulk jobs)."""
        values = dict(self.values)
        values.update(overrides)
        return SettingsSnapshot(version=self.version, values=values)
