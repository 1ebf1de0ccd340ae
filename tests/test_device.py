"""
Tests for device context classification and responsive overrides.

These tests verify:
- Category and flag classification
- Position, text size, logo, opacity and colour recipes
- apply_device_overrides() purity
"""

import pytest

from imageguard.watermark.device import (
    DeviceCategory,
    apply_device_overrides,
    categorize,
    classify,
    luminance,
    optimize_color,
    optimize_logo_size,
    optimize_opacity,
    optimize_position,
    optimize_text_size,
    parse_hex_color,
)
from imageguard.watermark.params import LOGO_TIERS, WatermarkParams


PHONE = (375, 667)
DESKTOP = (1920, 1080)
TABLET = (768, 1024)
TINY = (300, 300)
HIGH_DENSITY = (1280, 800)


# =============================================================================
# CLASSIFICATION TESTS
# =============================================================================

class TestClassification:
    """Test classify() and categorize()."""

    @pytest.mark.parametrize("dims,expected", [
        ((320, 200), DeviceCategory.VERY_SMALL),
        ((480, 321), DeviceCategory.SMALL),
        ((768, 500), DeviceCategory.MEDIUM),
        ((1024, 768), DeviceCategory.LARGE),
        ((1025, 768), DeviceCategory.VERY_LARGE),
    ])
    def test_categorize_by_larger_dimension(self, dims, expected):
        assert categorize(*dims) == expected

    def test_phone(self):
        ctx = classify(*PHONE)
        assert ctx.category == DeviceCategory.MEDIUM
        assert ctx.is_portrait
        assert ctx.is_small_screen
        assert not ctx.is_very_small
        assert not ctx.is_high_density
        assert ctx.is_mobile
        assert not ctx.is_tablet

    def test_desktop(self):
        ctx = classify(*DESKTOP)
        assert ctx.category == DeviceCategory.VERY_LARGE
        assert ctx.is_landscape
        assert not ctx.is_high_density
        assert ctx.is_desktop

    def test_tablet(self):
        ctx = classify(*TABLET)
        assert ctx.is_tablet
        assert not ctx.is_mobile

    def test_square(self):
        ctx = classify(*TINY)
        assert ctx.is_square
        assert not ctx.is_portrait
        assert not ctx.is_landscape
        assert ctx.is_very_small

    def test_high_density(self):
        ctx = classify(*HIGH_DENSITY)
        assert ctx.is_high_density
        assert ctx.is_mobile

    @pytest.mark.parametrize("dims", [(0, 100), (100, 0), (-5, 10)])
    def test_invalid_dimensions_rejected(self, dims):
        with pytest.raises(ValueError):
            classify(*dims)

    def test_to_dict_is_stable(self):
        assert classify(*PHONE).to_dict() == classify(*PHONE).to_dict()

    def test_to_dict_leaves_out_pixel_sizes(self):
        data = classify(*PHONE).to_dict()
        assert "width" not in data and "height" not in data
        assert classify(376, 667).to_dict() == data

    @pytest.mark.parametrize("dims, bucket", [
        ((300, 600), "tall"),
        ((375, 667), "tall"),
        ((768, 1024), "standard"),
        ((1920, 1080), "wide"),
        ((2560, 1080), "ultrawide"),
    ])
    def test_aspect_bucket(self, dims, bucket):
        assert classify(*dims).aspect_bucket == bucket


# =============================================================================
# RECIPE TESTS
# =============================================================================

class TestPosition:
    """Test optimize_position()."""

    @pytest.mark.parametrize("position,expected", [
        ("top-left", "bottom-left"),
        ("top-center", "bottom-center"),
        ("center", "bottom-center"),
        ("center-right", "bottom-right"),
        ("bottom-right", "bottom-right"),
    ])
    def test_portrait_moves_to_bottom_row(self, position, expected):
        assert optimize_position(position, classify(*PHONE)) == expected

    def test_very_small_moves_to_bottom_row(self):
        assert optimize_position("top-right", classify(*TINY)) == "bottom-right"

    @pytest.mark.parametrize("position,expected", [
        ("center", "bottom-right"),
        ("center-right", "bottom-right"),
        ("center-left", "bottom-left"),
        ("top-left", "top-left"),
    ])
    def test_wide_landscape(self, position, expected):
        assert optimize_position(position, classify(*DESKTOP)) == expected

    def test_moderate_landscape_unchanged(self):
        assert optimize_position("center", classify(1024, 768)) == "center"


class TestTextSize:
    """Test optimize_text_size()."""

    def test_phone_scales_down(self):
        # medium category 0.85, tall aspect 0.9
        assert optimize_text_size(24, classify(*PHONE)) == 18

    def test_desktop_unchanged(self):
        assert optimize_text_size(24, classify(*DESKTOP)) == 24

    def test_very_small(self):
        assert optimize_text_size(24, classify(*TINY)) == 14

    def test_clamped_to_category_bounds(self):
        assert optimize_text_size(32, classify(*TINY)) == 18
        assert optimize_text_size(4, classify(*DESKTOP)) == 16


class TestLogoSize:
    """Test optimize_logo_size()."""

    def test_very_small_forces_small(self):
        assert optimize_logo_size("large", classify(*TINY)) == "small"

    def test_small_screen_drops_one_tier(self):
        assert optimize_logo_size("large", classify(*PHONE)) == "medium"
        assert optimize_logo_size("small", classify(*PHONE)) == "small"

    def test_desktop_unchanged(self):
        assert optimize_logo_size("large", classify(*DESKTOP)) == "large"

    def test_tier_never_grows_as_size_shrinks(self):
        shrinking = [(1920, 1080), (1024, 768), (768, 600), (480, 400), (400, 300), (300, 200)]
        for tier in LOGO_TIERS:
            indexes = [LOGO_TIERS.index(optimize_logo_size(tier, classify(*dims))) for dims in shrinking]
            assert indexes == sorted(indexes, reverse=True)


class TestOpacity:
    """Test optimize_opacity()."""

    @pytest.mark.parametrize("opacity,expected", [(50, 65), (70, 85), (80, 90), (95, 95)])
    def test_very_small(self, opacity, expected):
        assert optimize_opacity(opacity, classify(*TINY)) == expected

    def test_small_screen(self):
        assert optimize_opacity(50, classify(*PHONE)) == 60
        assert optimize_opacity(55, classify(*PHONE)) == 65

    def test_high_density(self):
        assert optimize_opacity(50, classify(*HIGH_DENSITY)) == 60

    def test_desktop_unchanged(self):
        assert optimize_opacity(50, classify(*DESKTOP)) == 50

    def test_bounds(self):
        for dims in (TINY, PHONE, HIGH_DENSITY):
            ctx = classify(*dims)
            for opacity in range(0, 101, 5):
                result = optimize_opacity(opacity, ctx)
                assert result >= opacity
                assert result <= max(90, opacity)

    def test_monotone_for_size_tiers(self):
        # Shrinking a target never lowers opacity or raises the logo tier
        shrinking = [(1920, 1080), (1024, 768), (640, 480), (480, 360), (320, 240), (200, 150)]
        opacities = [optimize_opacity(50, classify(*dims)) for dims in shrinking]
        tiers = [LOGO_TIERS.index(optimize_logo_size("large", classify(*dims))) for dims in shrinking]

        assert opacities == sorted(opacities)
        assert tiers == sorted(tiers, reverse=True)

    def test_high_density_is_not_monotone(self):
        # Density boost is keyed on pixel count, so shrinking out of it drops the boost
        assert optimize_opacity(50, classify(1280, 800)) == 60
        assert optimize_opacity(50, classify(1200, 800)) == 50


class TestColor:
    """Test contrast snapping."""

    def test_parse_hex_color(self):
        assert parse_hex_color("#fff") == (255, 255, 255)
        assert parse_hex_color("#102030") == (16, 32, 48)
        assert parse_hex_color("nonsense") is None

    def test_luminance(self):
        assert luminance((0, 0, 0)) == 0
        assert round(luminance((255, 255, 255))) == 255

    def test_small_screen_snaps_extremes(self):
        ctx = classify(*PHONE)
        assert optimize_color("#000000", ctx) == "#FFFFFF"
        assert optimize_color("#FFFFFF", ctx) == "#000000"
        assert optimize_color("#808080", ctx) == "#808080"

    def test_large_screen_passes_through(self):
        assert optimize_color("#000000", classify(*DESKTOP)) == "#000000"


# =============================================================================
# COMBINED OVERRIDES
# =============================================================================

class TestApplyDeviceOverrides:
    """Test apply_device_overrides()."""

    def test_none_context_returns_input(self):
        params = WatermarkParams(text="Shop")
        assert apply_device_overrides(params, None) is params

    def test_returns_new_params(self):
        params = WatermarkParams(text="Shop", opacity=50, position="top-left", text_size=24)
        adapted = apply_device_overrides(params, classify(*PHONE))

        assert adapted is not params
        assert adapted.position == "bottom-left"
        assert adapted.text_size == 18
        assert adapted.opacity == 60
        assert params.position == "top-left"
        assert params.opacity == 50
