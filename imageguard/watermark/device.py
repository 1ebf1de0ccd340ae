"""
Device Context Classification

Classifies target render dimensions and derives responsive overrides
for watermark parameters.

Every function here is pure: it takes a base value plus a DeviceContext
and returns a new value. Nothing reads or mutates settings.

Usage:
    ctx = classify(375, 667)
    params = apply_device_overrides(base_params, ctx)
"""

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, Optional, Tuple

from imageguard.watermark.params import LOGO_TIERS, POSITIONS, WatermarkParams


logger = logging.getLogger(__name__)


class DeviceCategory(str, Enum):
    """Size categories, smallest first."""
    VERY_SMALL = "very_small"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    VERY_LARGE = "very_large"


# Upper bound of the larger dimension for each category
CATEGORY_THRESHOLDS: Tuple[Tuple[int, DeviceCategory], ...] = (
    (320, DeviceCategory.VERY_SMALL),
    (480, DeviceCategory.SMALL),
    (768, DeviceCategory.MEDIUM),
    (1024, DeviceCategory.LARGE),
)

VERY_SMALL_MAX_DIMENSION = 320
SMALL_SCREEN_MAX_DIMENSION = 480
HIGH_DENSITY_MIN_PIXELS = 1_000_000
HIGH_DENSITY_MAX_DIMENSION = 800
TABLET_MAX_SHORT_SIDE = 1024
TABLET_MAX_LONG_SIDE = 1366

SQUARE_TOLERANCE = 0.1
WIDE_LANDSCAPE_RATIO = 1.5
ULTRAWIDE_RATIO = 2.0
TALL_RATIO = 0.6

TEXT_SIZE_FACTORS: Dict[DeviceCategory, float] = {
    DeviceCategory.VERY_SMALL: 0.6,
    DeviceCategory.SMALL: 0.75,
    DeviceCategory.MEDIUM: 0.85,
    DeviceCategory.LARGE: 0.9,
    DeviceCategory.VERY_LARGE: 1.0,
}

TEXT_SIZE_BOUNDS: Dict[DeviceCategory, Tuple[int, int]] = {
    DeviceCategory.VERY_SMALL: (8, 18),
    DeviceCategory.SMALL: (10, 20),
    DeviceCategory.MEDIUM: (12, 28),
    DeviceCategory.LARGE: (14, 32),
    DeviceCategory.VERY_LARGE: (16, 36),
}

OPACITY_CEILING = 90

# Rec.601 luminance thresholds for contrast snapping
DARK_LUMINANCE = 80
BRIGHT_LUMINANCE = 200


@dataclass(frozen=True)
class DeviceContext:
    """Classification of one target render size. Never persisted."""
    width: int
    height: int
    category: DeviceCategory
    is_portrait: bool
    is_landscape: bool
    is_square: bool
    is_high_density: bool

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height if self.height else 1.0

    @property
    def aspect_bucket(self) -> str:
        """Coarse aspect class, at the ratios the override recipes branch on."""
        ratio = self.aspect_ratio
        if ratio < TALL_RATIO:
            return "tall"
        if ratio > ULTRAWIDE_RATIO:
            return "ultrawide"
        if ratio >= WIDE_LANDSCAPE_RATIO:
            return "wide"
        return "standard"

    @property
    def min_dimension(self) -> int:
        return min(self.width, self.height)

    @property
    def max_dimension(self) -> int:
        return max(self.width, self.height)

    @property
    def is_very_small(self) -> bool:
        return self.min_dimension <= VERY_SMALL_MAX_DIMENSION

    @property
    def is_small_screen(self) -> bool:
        return self.min_dimension <= SMALL_SCREEN_MAX_DIMENSION

    @property
    def is_mobile(self) -> bool:
        return self.is_small_screen or self.is_high_density

    @property
    def is_tablet(self) -> bool:
        return (
            not self.is_mobile
            and self.min_dimension <= TABLET_MAX_SHORT_SIDE
            and self.max_dimension <= TABLET_MAX_LONG_SIDE
        )

    @property
    def is_desktop(self) -> bool:
        return not self.is_mobile and not self.is_tablet

    def to_dict(self) -> dict:
        """
        Fields that take part in cache-key derivation.

        Only the classification goes in, never the raw pixel sizes: two
        targets that get the same overrides share one artifact.
        """
        return {
            "category": self.category.value,
            "aspect": self.aspect_bucket,
            "is_very_small": self.is_very_small,
            "is_small_screen": self.is_small_screen,
            "is_portrait": self.is_portrait,
            "is_landscape": self.is_landscape,
            "is_square": self.is_square,
            "is_high_density": self.is_high_density,
        }


def categorize(width: int, height: int) -> DeviceCategory:
    longest = max(width, height)
    for limit, category in CATEGORY_THRESHOLDS:
        if longest <= limit:
            return category
    return DeviceCategory.VERY_LARGE


def classify(width: int, height: int) -> DeviceContext:
    """
    Classify target dimensions.

    Raises:
        ValueError: If either dimension is not positive
    """
    width, height = int(width), int(height)
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid target dimensions: {width}x{height}")

    ratio = width / height
    is_square = abs(ratio - 1.0) <= SQUARE_TOLERANCE

    return DeviceContext(
        width=width,
        height=height,
        category=categorize(width, height),
        is_portrait=not is_square and ratio < 1.0,
        is_landscape=not is_square and ratio > 1.0,
        is_square=is_square,
        is_high_density=(
            width * height >= HIGH_DENSITY_MIN_PIXELS
            and min(width, height) <= HIGH_DENSITY_MAX_DIMENSION
        ),
    )


# =============================================================================
# Override recipes
# =============================================================================

def optimize_position(position: str, ctx: DeviceContext) -> str:
    """Move the mark into the area that stays visible on the target."""
    if position not in POSITIONS:
        return position

    row, _, column = position.partition("-")

    if ctx.is_very_small or ctx.is_portrait:
        if row in ("top", "center"):
            return f"bottom-{column or 'center'}"
        return position

    if ctx.is_landscape and ctx.aspect_bucket in ("wide", "ultrawide"):
        if position in ("center", "center-right"):
            return "bottom-right"
        if position == "center-left":
            return "bottom-left"

    return position


def optimize_text_size(size: int, ctx: DeviceContext) -> int:
    """Scale and clamp a font size (pixels) for the target category."""
    factor = TEXT_SIZE_FACTORS[ctx.category]

    aspect = ctx.aspect_bucket
    if aspect == "ultrawide":
        factor *= 1.1
    elif aspect == "tall":
        factor *= 0.9

    if ctx.is_high_density:
        factor *= 1.2

    low, high = TEXT_SIZE_BOUNDS[ctx.category]
    return max(low, min(high, int(round(size * factor))))


def optimize_logo_size(tier: str, ctx: DeviceContext) -> str:
    """Downgrade the logo tier on small targets. Never upgrades."""
    if tier not in LOGO_TIERS:
        return tier

    if ctx.is_very_small:
        return "small"

    if ctx.is_small_screen:
        index = LOGO_TIERS.index(tier)
        return LOGO_TIERS[max(0, index - 1)]

    return tier


def optimize_opacity(opacity: int, ctx: DeviceContext) -> int:
    """
    Raise opacity so the mark stays legible when scaled down.

    The result stays within [floor, 90] unless the base opacity was
    already above 90, which is never lowered.
    """
    if ctx.is_very_small:
        boosted = max(opacity + 15, 65)
    elif ctx.is_small_screen or ctx.is_high_density:
        boosted = max(opacity + 10, 60)
    else:
        return opacity

    return min(boosted, max(OPACITY_CEILING, opacity))


def parse_hex_color(color: str) -> Optional[Tuple[int, int, int]]:
    value = (color or "").strip().lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    if len(value) != 6:
        return None
    try:
        return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
    except ValueError:
        return None


def luminance(rgb: Tuple[int, int, int]) -> float:
    r, g, b = rgb
    return 0.299 * r + 0.587 * g + 0.114 * b


def optimize_color(color: str, ctx: DeviceContext) -> str:
    """Snap very dark or very light colours for contrast on small screens."""
    if not ctx.is_small_screen:
        return color

    rgb = parse_hex_color(color)
    if rgb is None:
        return color

    lum = luminance(rgb)
    if lum < DARK_LUMINANCE:
        return "#FFFFFF"
    if lum > BRIGHT_LUMINANCE:
        return "#000000"
    return color


def apply_device_overrides(params: WatermarkParams, ctx: Optional[DeviceContext]) -> WatermarkParams:
    """Return a new WatermarkParams adapted to the target. Input is untouched."""
    if ctx is None:
        return params

    adapted = replace(
        params,
        position=optimize_position(params.position, ctx),
        text_size=optimize_text_size(params.text_size, ctx),
        logo_size=optimize_logo_size(params.logo_size, ctx),
        opacity=optimize_opacity(params.opacity, ctx),
        color=optimize_color(params.color, ctx),
    )

    if adapted != params:
        logger.debug(
            f"Device overrides for {ctx.width}x{ctx.height} ({ctx.category.value}): "
            f"position={adapted.position} size={adapted.text_size} "
            f"opacity={adapted.opacity} logo={adapted.logo_size}"
        )

    return adapted
