"""
CSS Fallback Descriptors

When pixel compositing is impossible (no codec for the format), the
delivery layer serves the original image plus a small descriptor the
client can use to draw the watermark as a CSS overlay.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict

from imageguard.watermark.params import WatermarkParams


# Query parameter appended to the source URL when a fallback is active
FALLBACK_QUERY_PARAM = "css_watermark"
FALLBACK_HEADER = "X-Watermark-Fallback"

_VERTICAL = {"top": "top: 20px;", "center": "top: 50%;", "bottom": "bottom: 20px;"}
_HORIZONTAL = {"left": "left: 20px;", "center": "left: 50%;", "right": "right: 20px;"}


def css_placement(position: str) -> str:
    row, _, column = position.partition("-")
    column = column or ("center" if row == "center" else "right")

    rules = [_VERTICAL.get(row, _VERTICAL["bottom"]), _HORIZONTAL.get(column, _HORIZONTAL["right"])]

    translate_x = "-50%" if column == "center" else "0"
    translate_y = "-50%" if row == "center" else "0"
    if translate_x != "0" or translate_y != "0":
        rules.append(f"transform: translate({translate_x}, {translate_y});")

    return " ".join(rules)


def _css_string(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", " ")


@dataclass
class CssFallbackDescriptor:
    """Client-side overlay instructions for one (source, settings) pair."""
    source_path: str
    cache_key: str
    text: str
    opacity: int
    position: str
    color: str
    font_size: int
    css: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CssFallbackDescriptor":
        return cls(**{key: data[key] for key in cls.__dataclass_fields__ if key in data})


def build_descriptor(source_path: str, cache_key: str, params: WatermarkParams) -> CssFallbackDescriptor:
    selector = f'[data-watermark="{cache_key}"]'
    css = (
        f"{selector} {{ position: relative; display: inline-block; }} "
        f"{selector}::after {{ "
        f'content: "{_css_string(params.text)}"; '
        f"position: absolute; {css_placement(params.position)} "
        f"color: {params.color}; "
        f"opacity: {params.opacity / 100:.2f}; "
        f"font-size: {params.text_size}px; "
        f"text-shadow: 1px 1px 0 #000; "
        f"pointer-events: none; user-select: none; }}"
    )

    return CssFallbackDescriptor(
        source_path=source_path,
        cache_key=cache_key,
        text=params.text,
        opacity=params.opacity,
        position=params.position,
        color=params.color,
        font_size=params.text_size,
        css=css,
    )


def fallback_url(source_path: str, cache_key: str) -> str:
    separator = "&" if "?" in source_path else "?"
    return f"{source_path}{separator}{FALLBACK_QUERY_PARAM}={cache_key}"
