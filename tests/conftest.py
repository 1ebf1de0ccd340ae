"""
Pytest Configuration and Shared Fixtures

Provides a temporary media root with real source images, a settings
store with watermarking switched on, and fully wired ImageGuard
instances for service, gateway and API tests.
"""

import io
from pathlib import Path
from typing import Any, Dict

import pytest
from PIL import Image

from imageguard.bootstrap import ImageGuard
from imageguard.cache import ArtifactCacheStore
from imageguard.config import ImageGuardConfig
from imageguard.notifications import NotificationCenter
from imageguard.settings import InMemoryConfigStore
from imageguard.watermark.service import WatermarkService


TEST_SECRET = "test-secret-key-for-image-tokens"
BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)


# ============================================================================
# Image Helpers
# ============================================================================

def image_bytes(fmt: str = "JPEG", size=(400, 300), color=(120, 80, 40)) -> bytes:
    """Encode a solid-colour test image."""
    mode = "RGBA" if fmt == "PNG" else "RGB"
    fill = color + (255,) if mode == "RGBA" else color
    image = Image.new(mode, size, fill)
    buffer = io.BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


def write_image(root: Path, relative: str, fmt: str = "JPEG", size=(400, 300)) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(image_bytes(fmt, size))
    return path


# ============================================================================
# Settings Fixtures
# ============================================================================

@pytest.fixture
def watermark_settings() -> Dict[str, Any]:
    """Watermarking enabled with a text mark."""
    return {
        "watermark_enabled": True,
        "watermark_text": "© Example Shop",
        "watermark_opacity": 50,
        "watermark_position": "bottom-right",
        "watermark_size": 24,
        "watermark_text_color": "#FFFFFF",
        "watermark_responsive_enabled": True,
        "image_protection_enabled": True,
    }


@pytest.fixture
def config_store(watermark_settings) -> InMemoryConfigStore:
    groups = {
        key: "image_protection" if key.startswith("image_protection") else "watermark"
        for key in watermark_settings
    }
    groups["site_name"] = "general"
    initial = dict(watermark_settings, site_name="Example Shop")
    return InMemoryConfigStore(initial=initial, groups=groups)


# ============================================================================
# Storage Fixtures
# ============================================================================

@pytest.fixture
def media_root(tmp_path) -> Path:
    """Media root holding products/a.jpg (400x300) and products/b.png."""
    root = tmp_path / "media"
    write_image(root, "products/a.jpg", "JPEG", (400, 300))
    write_image(root, "products/b.png", "PNG", (200, 200))
    return root


@pytest.fixture
def cache_store(media_root) -> ArtifactCacheStore:
    return ArtifactCacheStore(media_root)


@pytest.fixture
def notifications() -> NotificationCenter:
    return NotificationCenter(max_per_day=10)


@pytest.fixture
def service(config_store, cache_store, notifications) -> WatermarkService:
    """Service without a scheduler: high priority renders run inline."""
    return WatermarkService(config_store, cache_store, notifications=notifications)


# ============================================================================
# Wired Application
# ============================================================================

@pytest.fixture
def app_config(media_root) -> ImageGuardConfig:
    return ImageGuardConfig(
        media_root=media_root,
        token_secret=TEST_SECRET,
        rate_limit_max_requests=100,
        rate_limit_window_seconds=60,
        worker_count=1,
        render_pool_size=2,
        sync_timeout_seconds=10.0,
    )


@pytest.fixture
def guard(app_config, config_store):
    """Fully wired ImageGuard with workers running."""
    instance = ImageGuard.build(app_config, config_store)
    instance.start(periodic_cleanup=False)
    yield instance
    instance.shutdown()
