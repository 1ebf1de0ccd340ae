"""
Watermark Parameters

Resolves a SettingsSnapshot into the concrete parameters the renderer
draws with.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict

from imageguard.settings import SettingsSnapshot


POSITIONS = (
    "top-left", "top-center", "top-right",
    "center-left", "center", "center-right",
    "bottom-left", "bottom-center", "bottom-right",
)

# Smallest first; index order is the downgrade order
LOGO_TIERS = ("small", "medium", "large")

# Fixed pixel sizes, independent of the image size
TEXT_SIZE_TIERS: Dict[str, int] = {
    "small": 16,
    "medium": 24,
    "large": 32,
}

LOGO_WIDTHS: Dict[str, int] = {
    "small": 80,
    "medium": 120,
    "large": 160,
}

DEFAULT_POSITION = "bottom-right"
DEFAULT_COLOR = "#FFFFFF"


@dataclass(frozen=True)
class WatermarkParams:
    """Resolved drawing parameters for one render."""
    text: str = ""
    opacity: int = 50
    position: str = DEFAULT_POSITION
    text_size: int = TEXT_SIZE_TIERS["medium"]
    color: str = DEFAULT_COLOR
    logo_path: str = ""
    logo_size: str = "medium"

    @property
    def has_text(self) -> bool:
        return bool(self.text.strip())

    @property
    def has_logo(self) -> bool:
        return bool(self.logo_path.strip())

    @property
    def is_empty(self) -> bool:
        return not self.has_text and not self.has_logo

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def clamp_opacity(value: Any) -> int:
    try:
        opacity = int(float(value))
    except (TypeError, ValueError):
        opacity = 50
    return max(0, min(100, opacity))


def resolve_text_size(text_size: Any, size: Any) -> int:
    """
    Pick one of the fixed font sizes.

    The tier setting wins; otherwise the legacy numeric size is snapped
    to the nearest tier.
    """
    if isinstance(text_size, str) and text_size in TEXT_SIZE_TIERS:
        return TEXT_SIZE_TIERS[text_size]

    if isinstance(size, str) and size in TEXT_SIZE_TIERS:
        return TEXT_SIZE_TIERS[size]

    try:
        numeric = int(float(size))
    except (TypeError, ValueError):
        return TEXT_SIZE_TIERS["medium"]

    if numeric <= 18:
        return TEXT_SIZE_TIERS["small"]
    if numeric <= 28:
        return TEXT_SIZE_TIERS["medium"]
    return TEXT_SIZE_TIERS["large"]


def resolve_params(snapshot: SettingsSnapshot) -> WatermarkParams:
    """Build base parameters (before any device overrides)."""
    position = str(snapshot.get("watermark_position") or DEFAULT_POSITION)
    if position not in POSITIONS:
        position = DEFAULT_POSITION

    logo_size = str(snapshot.get("watermark_logo_size") or "medium")
    if logo_size not in LOGO_TIERS:
        logo_size = "medium"

    return WatermarkParams(
        text=str(snapshot.get("watermark_text") or ""),
        opacity=clamp_opacity(snapshot.get("watermark_opacity")),
        position=position,
        text_size=resolve_text_size(
            snapshot.get("watermark_text_size"),
            snapshot.get("watermark_size"),
        ),
        color=str(snapshot.get("watermark_text_color") or DEFAULT_COLOR),
        logo_path=str(snapshot.get("watermark_logo_path") or ""),
        logo_size=logo_size,
    )
