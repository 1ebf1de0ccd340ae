"""
HTTP Cache Headers

Cache-Control, ETag and protection headers for delivered images.

Delivered images are private to the requesting browser: CDNs and shared
proxies must not keep them, and the browser must revalidate with
If-None-Match once max-age has elapsed.
"""

import hashlib
import logging
from typing import Any, Dict, List, Optional, Tuple


logger = logging.getLogger(__name__)


# Sent with every protected image response, including 304s
SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-Robots-Tag": "noindex, nofollow",
}


def generate_etag(*components: Any, weak: bool = False) -> str:
    """
    Generate a quoted ETag from components.

    Args:
        components: Values to hash
        weak: If True, generates a weak ETag (W/"...")
    """
    hash_input = ":".join(str(c) for c in components)
    hash_value = hashlib.md5(hash_input.encode()).hexdigest()[:16]

    if weak:
        return f'W/"{hash_value}"'
    return f'"{hash_value}"'


def artifact_etag(cache_key: str, source_mtime: float) -> str:
    """ETag for a watermarked artifact: the cache key plus the source version."""
    return generate_etag("artifact", cache_key, f"{source_mtime:.6f}")


def original_etag(source_path: str, source_mtime: float) -> str:
    """ETag for an original served without a watermark."""
    return generate_etag("original", source_path, f"{source_mtime:.6f}")


def parse_etag(etag: str) -> str:
    """Strip the weak prefix and quotes."""
    if not etag:
        return ""
    if etag.startswith("W/"):
        etag = etag[2:]
    return etag.strip('"')


def etags_match(request_etag: Optional[str], current_etag: str) -> bool:
    """
    Weak comparison of an If-None-Match value against the current ETag.

    Handles comma-separated lists and the * wildcard.
    """
    if not request_etag:
        return False

    current = parse_etag(current_etag)

    for etag in request_etag.split(","):
        etag = etag.strip()
        if etag == "*":
            return True
        if parse_etag(etag) == current:
            return True

    return False


def parse_range_header(range_header: Optional[str], size: int) -> Optional[List[Tuple[int, int]]]:
    """
    Parse a bytes Range header against a body of `size` bytes.

    Supports "a-b", open-ended "a-" and suffix "-n" specs. Ends past
    the body are clamped.

    Returns:
        None if the header is absent or not a bytes range (serve the
        full body), otherwise the satisfiable (start, end) pairs, which
        may be empty (416)
    """
    if not range_header:
        return None

    unit, _, specs = range_header.strip().partition("=")
    if unit.strip().lower() != "bytes" or not specs:
        return None

    ranges = []
    for spec in specs.split(","):
        first, dash, last = spec.strip().partition("-")
        if not dash:
            continue
        try:
            if first == "":
                length = int(last)
                if length <= 0:
                    continue
                start, end = max(0, size - length), size - 1
            else:
                start = int(first)
                end = int(last) if last else size - 1
        except ValueError:
            continue

        end = min(end, size - 1)
        if 0 <= start <= end:
            ranges.append((start, end))

    return ranges


class CacheHeadersBuilder:
    """
    Fluent builder for response headers.

    Usage:
        headers = (CacheHeadersBuilder()
            .private()
            .max_age(3600)
            .must_revalidate()
            .etag_value(etag)
            .security()
            .build())
    """

    def __init__(self):
        self._max_age: int = 0
        self._public: bool = True
        self._no_store: bool = False
        self._must_revalidate: bool = False
        self._etag: Optional[str] = None
        self._extra: Dict[str, str] = {}

    def max_age(self, seconds: int) -> "CacheHeadersBuilder":
        self._max_age = seconds
        return self

    def private(self) -> "CacheHeadersBuilder":
        self._public = False
        return self

    def no_store(self) -> "CacheHeadersBuilder":
        self._no_store = True
        return self

    def must_revalidate(self) -> "CacheHeadersBuilder":
        self._must_revalidate = True
        return self

    def etag_value(self, value: str) -> "CacheHeadersBuilder":
        self._etag = value
        return self

    def security(self) -> "CacheHeadersBuilder":
        """Add the protection headers."""
        self._extra.update(SECURITY_HEADERS)
        return self

    def build(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}

        if self._no_store:
            headers["Cache-Control"] = "no-store"
        else:
            directives = ["public" if self._public else "private"]
            if self._max_age > 0:
                directives.append(f"max-age={self._max_age}")
            if self._must_revalidate:
                directives.append("must-revalidate")
            headers["Cache-Control"] = ", ".join(directives)

        if self._etag:
            headers["ETag"] = self._etag

        headers.update(self._extra)
        return headers


def protected_image_headers(etag: Optional[str], max_age: int = 3600) -> Dict[str, str]:
    """Headers for a protected image response (200 or 304)."""
    builder = CacheHeadersBuilder().private().max_age(max_age).must_revalidate().security()
    if etag:
        builder.etag_value(etag)
    headers = builder.build()
    headers["Accept-Ranges"] = "bytes"
    return headers


def no_store_headers() -> Dict[str, str]:
    """Headers for rejected requests."""
    return CacheHeadersBuilder().no_store().security().build()
