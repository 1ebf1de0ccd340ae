"""
Tests for cache key derivation and parameter resolution.
"""

import pytest

from imageguard.settings import SettingsSnapshot
from imageguard.watermark.device import classify
from imageguard.watermark.keys import KEY_LENGTH, CacheKeyDeriver, derive_cache_key, normalize_value
from imageguard.watermark.params import (
    DEFAULT_POSITION,
    TEXT_SIZE_TIERS,
    clamp_opacity,
    resolve_params,
    resolve_text_size,
)


@pytest.fixture
def snapshot():
    return SettingsSnapshot(version=1, values={
        "watermark_enabled": True,
        "watermark_text": "© Example Shop",
        "watermark_opacity": 50,
        "watermark_position": "bottom-right",
    })


# =============================================================================
# KEY DERIVATION TESTS
# =============================================================================

class TestCacheKeyDeriver:
    """Test deterministic key derivation."""

    def test_key_is_short_hex(self, snapshot):
        key = derive_cache_key("products/a.jpg", snapshot)
        assert len(key) == KEY_LENGTH
        int(key, 16)

    def test_identical_inputs_identical_key(self, snapshot):
        deriver = CacheKeyDeriver()
        assert deriver.derive("products/a.jpg", snapshot) == deriver.derive("products/a.jpg", snapshot)

    def test_source_path_changes_key(self, snapshot):
        assert derive_cache_key("products/a.jpg", snapshot) != derive_cache_key("products/b.jpg", snapshot)

    def test_relevant_setting_changes_key(self, snapshot):
        changed = snapshot.with_values(watermark_opacity=51)
        assert derive_cache_key("products/a.jpg", snapshot) != derive_cache_key("products/a.jpg", changed)

    def test_irrelevant_setting_does_not_change_key(self, snapshot):
        changed = snapshot.with_values(site_name="Another Shop", image_protection_enabled=False)
        assert derive_cache_key("products/a.jpg", snapshot) == derive_cache_key("products/a.jpg", changed)

    def test_version_does_not_change_key(self, snapshot):
        later = SettingsSnapshot(version=99, values=dict(snapshot.values))
        assert derive_cache_key("products/a.jpg", snapshot) == derive_cache_key("products/a.jpg", later)

    def test_string_and_number_normalise_equal(self, snapshot):
        as_string = snapshot.with_values(watermark_opacity="50")
        assert derive_cache_key("products/a.jpg", snapshot) == derive_cache_key("products/a.jpg", as_string)

    def test_boolean_forms_normalise_equal(self, snapshot):
        as_string = snapshot.with_values(watermark_enabled="1")
        assert derive_cache_key("products/a.jpg", snapshot) == derive_cache_key("products/a.jpg", as_string)

    def test_device_changes_key_when_responsive(self, snapshot):
        phone = classify(375, 667)
        assert derive_cache_key("products/a.jpg", snapshot, phone) != derive_cache_key("products/a.jpg", snapshot)

    def test_targets_in_same_class_share_key(self, snapshot):
        keys = {derive_cache_key("products/a.jpg", snapshot, classify(width, 667)) for width in (375, 376, 377, 390)}
        assert len(keys) == 1

    def test_targets_in_different_class_differ(self, snapshot):
        phone = derive_cache_key("products/a.jpg", snapshot, classify(375, 667))
        tiny = derive_cache_key("products/a.jpg", snapshot, classify(300, 300))
        assert phone != tiny

    def test_device_ignored_when_not_responsive(self, snapshot):
        fixed = snapshot.with_values(watermark_responsive_enabled=False)
        phone = classify(375, 667)
        assert derive_cache_key("products/a.jpg", fixed, phone) == derive_cache_key("products/a.jpg", fixed)

    def test_canonical_form_lists_source_first(self, snapshot):
        canonical = CacheKeyDeriver().canonical("products/a.jpg", snapshot)
        assert canonical.startswith('[["source","products/a.jpg"]')

    @pytest.mark.parametrize("value,expected", [
        ("50", 50), (50.0, 50), ("0.5", 0.5), ("  Shop ", "Shop"), (None, ""), ("nan", "nan"),
    ])
    def test_normalize_value(self, value, expected):
        assert normalize_value("watermark_text", value) == expected


# =============================================================================
# PARAMETER RESOLUTION TESTS
# =============================================================================

class TestResolveParams:
    """Test settings -> WatermarkParams."""

    def test_tier_wins_over_numeric_size(self):
        assert resolve_text_size("large", 12) == TEXT_SIZE_TIERS["large"]

    @pytest.mark.parametrize("size,expected", [
        (12, 16), (18, 16), (24, 24), (28, 24), (40, 32), ("small", 16), ("junk", 24),
    ])
    def test_numeric_size_snaps_to_tier(self, size, expected):
        assert resolve_text_size("", size) == expected

    @pytest.mark.parametrize("value,expected", [(-5, 0), (150, 100), ("70", 70), ("x", 50)])
    def test_clamp_opacity(self, value, expected):
        assert clamp_opacity(value) == expected

    def test_invalid_position_falls_back(self, snapshot):
        params = resolve_params(snapshot.with_values(watermark_position="middle-ish"))
        assert params.position == DEFAULT_POSITION

    def test_resolves_text(self, snapshot):
        params = resolve_params(snapshot)
        assert params.text == "© Example Shop"
        assert params.opacity == 50
        assert params.has_text
        assert not params.has_logo
        assert not params.is_empty
