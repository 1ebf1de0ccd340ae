"""
Watermark Rendering

Key components:
- params: settings snapshot -> WatermarkParams
- device: pure device-context classification and parameter overrides
- keys: deterministic cache key derivation
- renderer: Pillow compositing with structured failures
- fallback: CSS overlay descriptors for formats without a codec

The read-through WatermarkService lives in imageguard.watermark.service
and is imported from there directly.
"""

from .params import (
    LOGO_TIERS,
    POSITIONS,
    TEXT_SIZE_TIERS,
    WatermarkParams,
    resolve_params,
)
from .device import (
    DeviceCategory,
    DeviceContext,
    apply_device_overrides,
    classify,
)
from .keys import CacheKeyDeriver, derive_cache_key
from .renderer import RenderResult, WatermarkRenderer, codec_capabilities
from .fallback import CssFallbackDescriptor, build_descriptor, fallback_url

__all__ = [
    # Parameters
    "LOGO_TIERS",
    "POSITIONS",
    "TEXT_SIZE_TIERS",
    "WatermarkParams",
    "resolve_params",
    # Device
    "DeviceCategory",
    "DeviceContext",
    "apply_device_overrides",
    "classify",
    # Keys
    "CacheKeyDeriver",
    "derive_cache_key",
    # Rendering
    "RenderResult",
    "WatermarkRenderer",
    "codec_capabilities",
    # Fallback
    "CssFallbackDescriptor",
    "build_descriptor",
    "fallback_url",
]
