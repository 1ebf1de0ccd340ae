"""
ImageGuard

Watermark artifact cache and protected image delivery for a storefront:
1. Derives a stable cache key per (source, settings, device context)
2. Renders watermark overlays at most once per key
3. Invalidates artifacts when watermark settings change
4. Regenerates in the background under load
5. Serves images through a token-gated, rate-limited gateway
"""

__version__ = "0.1.0"
