"""
Watermark Renderer

Pillow-based compositing of a text and/or logo mark onto a source image.

render() never raises: every failure comes back as a RenderResult
carrying a structured WatermarkError, so callers can decide between
serving the original and serving the CSS fallback.

Output keeps the source dimensions and format family. Metadata (EXIF,
ICC) is not carried over. The same bytes and parameters always give
the same output bytes.
"""

import io
import logging
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import PIL
from PIL import Image, ImageDraw, ImageFont, UnidentifiedImageError, features

from imageguard.errors import (
    CorruptedOrUnreadableSource,
    MissingCodecCapability,
    WatermarkError,
)
from imageguard.watermark.params import LOGO_WIDTHS, WatermarkParams


logger = logging.getLogger(__name__)


PADDING = 20
SHADOW_OFFSET = 1
LOGO_TEXT_GAP = 5
LOGO_MAX_FRACTION = 0.8

CONTENT_TYPES: Dict[str, str] = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}

SAVE_OPTIONS: Dict[str, Dict[str, Any]] = {
    "JPEG": {"quality": 90},
    "PNG": {"compress_level": 9},
    "GIF": {},
    "WEBP": {"quality": 90},
}

# Formats the storefront cannot work without
REQUIRED_FORMATS = ("JPEG", "PNG")

FONT_CANDIDATES = (
    "DejaVuSans.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/System/Library/Fonts/Supplemental/Arial.ttf",
    "C:/Windows/Fonts/arial.ttf",
)


def sniff_format(data: bytes) -> Optional[str]:
    """Identify a supported format from magic bytes, without any codec."""
    if data.startswith(b"\xff\xd8\xff"):
        return "JPEG"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return "PNG"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "GIF"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "WEBP"
    return None


def _format_supported(fmt: str) -> bool:
    Image.init()
    if fmt not in Image.OPEN or fmt not in Image.SAVE:
        return False
    if fmt == "JPEG":
        return bool(features.check_codec("jpg"))
    if fmt == "PNG":
        return bool(features.check_codec("zlib"))
    if fmt == "WEBP":
        return bool(features.check_module("webp"))
    return True


def codec_capabilities() -> Dict[str, Any]:
    """
    Report which image formats this process can decode and encode.

    Returns:
        Dict with pillow_version, per-format support, freetype
        availability and has_required_codec.
    """
    formats = {fmt: _format_supported(fmt) for fmt in CONTENT_TYPES}
    return {
        "pillow_version": PIL.__version__,
        "formats": formats,
        "freetype": bool(features.check_module("freetype2")),
        "has_required_codec": all(formats[fmt] for fmt in REQUIRED_FORMATS),
        "checked_at": datetime.utcnow().isoformat(),
    }


@lru_cache(maxsize=32)
def load_font(size: int):
    """TrueType font at the given pixel size, or Pillow's built-in font."""
    for candidate in FONT_CANDIDATES:
        try:
            return ImageFont.truetype(candidate, size)
        except OSError:
            continue
    try:
        return ImageFont.load_default(size=size)
    except (TypeError, ImportError):
        # Pillow built without FreeType
        return ImageFont.load_default()


def parse_color(color: str) -> Tuple[int, int, int]:
    value = (color or "").strip().lstrip("#")
    if len(value) == 3:
        value = "".join(c * 2 for c in value)
    try:
        return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
    except ValueError:
        return 255, 255, 255


def grid_position(
    image_size: Tuple[int, int],
    mark_size: Tuple[int, int],
    position: str,
    padding: int = PADDING,
) -> Tuple[int, int]:
    """Top-left corner for a mark placed on the 9-point grid."""
    image_w, image_h = image_size
    mark_w, mark_h = mark_size

    row, _, column = position.partition("-")
    if not column:
        column = "center" if row == "center" else "right"

    if column == "left":
        x = padding
    elif column == "center":
        x = (image_w - mark_w) // 2
    else:
        x = image_w - mark_w - padding

    if row == "top":
        y = padding
    elif row == "center":
        y = (image_h - mark_h) // 2
    else:
        y = image_h - mark_h - padding

    return max(0, x), max(0, y)


def logo_dimensions(
    logo_size: Tuple[int, int],
    image_size: Tuple[int, int],
    tier: str,
) -> Tuple[int, int]:
    """Fixed tier width, scaled down to fit 80% of the image."""
    logo_w, logo_h = logo_size
    image_w, image_h = image_size
    ratio = logo_h / logo_w

    target_w = float(LOGO_WIDTHS.get(tier, LOGO_WIDTHS["medium"]))
    target_h = target_w * ratio

    if target_w > image_w * LOGO_MAX_FRACTION:
        target_w = image_w * LOGO_MAX_FRACTION
        target_h = target_w * ratio

    if target_h > image_h * LOGO_MAX_FRACTION:
        target_h = image_h * LOGO_MAX_FRACTION
        target_w = target_h / ratio

    return max(1, int(target_w)), max(1, int(target_h))


@dataclass
class RenderResult:
    """Outcome of one render: bytes and format, or a structured error."""
    data: Optional[bytes] = None
    format: Optional[str] = None
    width: int = 0
    height: int = 0
    error: Optional[WatermarkError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.data is not None

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES.get(self.format or "", "application/octet-stream")

    @classmethod
    def failure(cls, error: WatermarkError) -> "RenderResult":
        return cls(error=error)


class WatermarkRenderer:
    """
    Composites watermark marks with Pillow.

    Logo paths are resolved against media_root unless absolute.
    """

    def __init__(self, media_root: Optional[Path] = None):
        self.media_root = Path(media_root) if media_root else None

    def render(self, source_bytes: bytes, params: WatermarkParams) -> RenderResult:
        try:
            return self._render(source_bytes, params)
        except WatermarkError as e:
            logger.warning(f"Watermark render failed: {e.message}")
            return RenderResult.failure(e)
        except Exception as e:
            logger.error(f"Unexpected render failure: {e}")
            return RenderResult.failure(
                CorruptedOrUnreadableSource(f"Render failed: {e}")
            )

    def _render(self, source_bytes: bytes, params: WatermarkParams) -> RenderResult:
        image = self._decode(source_bytes)
        fmt = image.format or sniff_format(source_bytes)

        if fmt not in CONTENT_TYPES or not _format_supported(fmt):
            raise MissingCodecCapability(f"No encoder available for {fmt}", format=fmt)

        has_alpha = image.mode in ("RGBA", "LA", "PA") or "transparency" in image.info
        base = image.convert("RGBA")

        mark = self._build_mark(base.size, params)
        if mark is not None:
            overlay = Image.new("RGBA", base.size, (0, 0, 0, 0))
            overlay.paste(mark, grid_position(base.size, mark.size, params.position), mark)
            base = Image.alpha_composite(base, overlay)

        output = self._encode(base, fmt, has_alpha)
        return RenderResult(data=output, format=fmt, width=base.width, height=base.height)

    def _decode(self, data: bytes) -> Image.Image:
        if not data:
            raise CorruptedOrUnreadableSource("Source image is empty")

        sniffed = sniff_format(data)
        if sniffed and not _format_supported(sniffed):
            raise MissingCodecCapability(f"No decoder available for {sniffed}", format=sniffed)

        try:
            image = Image.open(io.BytesIO(data))
            image.load()
        except UnidentifiedImageError as e:
            raise CorruptedOrUnreadableSource(f"Unrecognised image data: {e}")
        except Image.DecompressionBombError as e:
            raise CorruptedOrUnreadableSource(f"Image too large: {e}")
        except OSError as e:
            if "not available" in str(e):
                raise MissingCodecCapability(f"Codec unavailable: {e}", format=sniffed)
            raise CorruptedOrUnreadableSource(f"Unreadable image: {e}")

        return image

    def _build_mark(self, image_size: Tuple[int, int], params: WatermarkParams) -> Optional[Image.Image]:
        """Logo stacked above text, as one RGBA image. None if nothing to draw."""
        alpha = int(round(255 * max(0, min(100, params.opacity)) / 100))

        logo = self._load_logo(params, image_size, alpha) if params.has_logo else None
        text = self._draw_text(params, alpha) if params.has_text else None

        parts = [part for part in (logo, text) if part is not None]
        if not parts:
            return None
        if len(parts) == 1:
            return parts[0]

        width = max(part.width for part in parts)
        height = sum(part.height for part in parts) + LOGO_TEXT_GAP
        mark = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        mark.paste(logo, ((width - logo.width) // 2, 0), logo)
        mark.paste(text, ((width - text.width) // 2, logo.height + LOGO_TEXT_GAP), text)
        return mark

    def _draw_text(self, params: WatermarkParams, alpha: int) -> Image.Image:
        font = load_font(params.text_size)
        measure = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
        left, top, right, bottom = measure.textbbox((0, 0), params.text, font=font)

        width = right - left + SHADOW_OFFSET
        height = bottom - top + SHADOW_OFFSET
        layer = Image.new("RGBA", (max(1, width), max(1, height)), (0, 0, 0, 0))
        draw = ImageDraw.Draw(layer)

        origin = (-left, -top)
        shadow = (origin[0] + SHADOW_OFFSET, origin[1] + SHADOW_OFFSET)
        draw.text(shadow, params.text, font=font, fill=(0, 0, 0, alpha))
        draw.text(origin, params.text, font=font, fill=parse_color(params.color) + (alpha,))
        return layer

    def _load_logo(
        self,
        params: WatermarkParams,
        image_size: Tuple[int, int],
        alpha: int,
    ) -> Optional[Image.Image]:
        path = Path(params.logo_path)
        if not path.is_absolute() and self.media_root is not None:
            path = self.media_root / path

        try:
            with Image.open(path) as logo:
                logo = logo.convert("RGBA")
        except (OSError, UnidentifiedImageError) as e:
            logger.warning(f"Watermark logo could not be loaded ({params.logo_path}): {e}")
            return None

        logo = logo.resize(logo_dimensions(logo.size, image_size, params.logo_size), Image.Resampling.LANCZOS)

        if alpha < 255:
            scaled = logo.getchannel("A").point(lambda value: value * alpha // 255)
            logo.putalpha(scaled)

        return logo

    def _encode(self, image: Image.Image, fmt: str, has_alpha: bool) -> bytes:
        if fmt == "JPEG":
            image = image.convert("RGB")
        elif fmt == "GIF":
            image = image.convert("RGB").convert("P", palette=Image.Palette.ADAPTIVE)
        elif not has_alpha:
            image = image.convert("RGB")

        buffer = io.BytesIO()
        image.save(buffer, format=fmt, **SAVE_OPTIONS.get(fmt, {}))
        return buffer.getvalue()
