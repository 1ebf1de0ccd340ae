"""
Artifact Caching

Key components:
- ArtifactCacheStore: filesystem cache of rendered artifacts with
  mtime freshness checks and epoch-stamped writes
- InFlightRegistry: single-flight duplicate suppression per cache key
- InvalidationListener: settings-driven, once-per-batch purging
- Cache headers: ETag and Cache-Control for delivered images

Usage:
    store = ArtifactCacheStore(media_root)
    entry = store.get(key, "products/a.jpg")

    listener = InvalidationListener(store, scheduler=scheduler)
    listener.attach(config_store)
"""

from imageguard.cache.store import (
    ArtifactCacheStore,
    CacheEntry,
    CacheStats,
    InFlightRegistry,
)
from imageguard.cache.invalidation import (
    InvalidationEvent,
    InvalidationListener,
    InvalidationResult,
)
from imageguard.cache.headers import (
    SECURITY_HEADERS,
    CacheHeadersBuilder,
    artifact_etag,
    etags_match,
    generate_etag,
    original_etag,
    parse_range_header,
    protected_image_headers,
)

__all__ = [
    # Store
    "ArtifactCacheStore",
    "CacheEntry",
    "CacheStats",
    "InFlightRegistry",
    # Invalidation
    "InvalidationEvent",
    "InvalidationListener",
    "InvalidationResult",
    # Headers
    "SECURITY_HEADERS",
    "CacheHeadersBuilder",
    "artifact_etag",
    "etags_match",
    "generate_etag",
    "original_etag",
    "parse_range_header",
    "protected_image_headers",
]
