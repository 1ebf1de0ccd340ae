"""
Cache Key Derivation

Turns (source path, rendering settings, device context) into a short,
stable, content-addressed key.

Only the settings listed in RENDER_KEYS take part, in that order, so
unrelated site settings never change a key and adding a new rendering
setting (appended to RENDER_KEYS) changes every key.
"""

import hashlib
import json
from typing import Any, List, Optional, Sequence

from imageguard.settings import RENDER_KEYS, SettingsSnapshot, coerce_bool
from imageguard.watermark.device import DeviceContext


KEY_LENGTH = 16

BOOLEAN_KEYS = frozenset({"watermark_enabled", "watermark_responsive_enabled"})


def normalize_value(key: str, value: Any) -> Any:
    """
    Canonical form of a settings value.

    Settings arrive as strings from forms and as native types from code;
    "50" and 50 must hash the same.
    """
    if key in BOOLEAN_KEYS:
        return coerce_bool(value)
    if value is None:
        return ""
    if isinstance(value, bool):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, (int, float)):
        return value

    text = str(value).strip()
    try:
        number = float(text)
    except ValueError:
        return text
    if number != number or number in (float("inf"), float("-inf")):
        return text
    return int(number) if number.is_integer() else number


class CacheKeyDeriver:
    """
    Derives cache keys.

    Usage:
        deriver = CacheKeyDeriver()
        key = deriver.derive("products/a.jpg", snapshot, device=ctx)
    """

    def __init__(self, render_keys: Sequence[str] = RENDER_KEYS):
        self.render_keys = tuple(render_keys)

    def canonical(
        self,
        source_path: str,
        snapshot: SettingsSnapshot,
        device: Optional[DeviceContext] = None,
    ) -> str:
        pairs: List[list] = [["source", source_path]]
        for key in self.render_keys:
            pairs.append([key, normalize_value(key, snapshot.get(key))])

        # Device context only matters when responsive rendering is on
        if device is not None and snapshot.responsive_enabled:
            pairs.append(["device", device.to_dict()])

        return json.dumps(pairs, separators=(",", ":"), sort_keys=True, ensure_ascii=False)

    def derive(
        self,
        source_path: str,
        snapshot: SettingsSnapshot,
        device: Optional[DeviceContext] = None,
    ) -> str:
        canonical = self.canonical(source_path, snapshot, device)
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:KEY_LENGTH]


def derive_cache_key(
    source_path: str,
    snapshot: SettingsSnapshot,
    device: Optional[DeviceContext] = None,
) -> str:
    """Convenience wrapper around a default CacheKeyDeriver."""
    return CacheKeyDeriver().derive(source_path, snapshot, device)
