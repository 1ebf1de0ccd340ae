"""
Watermark Service

Read-through facade over key derivation, rendering, the artifact cache
and the generation scheduler.

Resolution order for a source image:
1. Watermarking disabled (or nothing to draw), or source missing:
   the source path unchanged.
2. Fresh cache entry for the derived key: the artifact.
3. Cached CSS fallback descriptor for the key: source plus fallback.
4. Miss at high priority: render now (bounded by a timeout).
   Miss at normal/low priority: queue a job, serve the source meanwhile.

Render failures never propagate. They become an admin notification
plus the original, or a CSS fallback when no codec can handle the
format.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from imageguard.cache.headers import artifact_etag, original_etag
from imageguard.cache.store import ArtifactCacheStore, CacheEntry, InFlightRegistry
from imageguard.errors import (
    CorruptedOrUnreadableSource,
    InvalidationRaceDetected,
    MissingCodecCapability,
    WatermarkError,
)
from imageguard.jobs import (
    BatchRecord,
    GenerationOutcome,
    GenerationRequest,
    JobRecord,
    Priority,
)
from imageguard.notifications import ErrorType, NotificationCenter
from imageguard.settings import ConfigStore, SettingsSnapshot
from imageguard.watermark.device import DeviceContext, apply_device_overrides, classify
from imageguard.watermark.fallback import build_descriptor, fallback_url
from imageguard.watermark.keys import CacheKeyDeriver
from imageguard.watermark.params import resolve_params
from imageguard.watermark.renderer import WatermarkRenderer, codec_capabilities


logger = logging.getLogger(__name__)

Target = Tuple[int, int]


class WatermarkStatus(str, Enum):
    WATERMARKED = "watermarked"
    ORIGINAL = "original"
    PENDING = "pending"
    CSS_FALLBACK = "css_fallback"


@dataclass
class WatermarkResult:
    """
    Outcome of resolving one source image.

    `path` is what the caller should serve: the artifact path, the
    source path, or the source path with the fallback query parameter.
    """
    status: WatermarkStatus
    path: str
    source_path: str
    cache_key: Optional[str] = None
    entry: Optional[CacheEntry] = None
    job: Optional[JobRecord] = None
    descriptor: Optional[Dict[str, Any]] = None
    error: Optional[WatermarkError] = None

    @property
    def is_watermarked(self) -> bool:
        return self.status == WatermarkStatus.WATERMARKED

    @property
    def is_fallback(self) -> bool:
        return self.status == WatermarkStatus.CSS_FALLBACK

    @property
    def content_type(self) -> Optional[str]:
        return self.entry.content_type if self.entry else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "path": self.path,
            "source_path": self.source_path,
            "cache_key": self.cache_key,
            "job": self.job.to_dict() if self.job else None,
            "error": self.error.to_dict() if self.error else None,
        }


def _original(source_path: str, cache_key: Optional[str] = None, **kwargs) -> WatermarkResult:
    return WatermarkResult(
        status=WatermarkStatus.ORIGINAL,
        path=source_path,
        source_path=source_path,
        cache_key=cache_key,
        **kwargs,
    )


class WatermarkService:
    """
    Watermark facade used by templates, the delivery gateway and the
    admin endpoints.

    The scheduler is attached after construction because it is built
    around this service's generate() and regenerate_item().

    Usage:
        service = WatermarkService(config_store, cache_store, notifications=center)
        service.scheduler = GenerationScheduler(service.generate, service.regenerate_item)
        url = service.apply_watermark("products/a.jpg")
    """

    def __init__(
        self,
        config_store: ConfigStore,
        cache_store: ArtifactCacheStore,
        renderer: Optional[WatermarkRenderer] = None,
        notifications: Optional[NotificationCenter] = None,
        scheduler=None,
        deriver: Optional[CacheKeyDeriver] = None,
        sync_timeout: float = 10.0,
    ):
        self.config_store = config_store
        self.cache_store = cache_store
        self.renderer = renderer or WatermarkRenderer(media_root=cache_store.media_root)
        self.notifications = notifications or NotificationCenter()
        self.scheduler = scheduler
        self.deriver = deriver or CacheKeyDeriver()
        self.sync_timeout = sync_timeout
        self._in_flight = InFlightRegistry()

    # =========================================================================
    # Keys
    # =========================================================================

    def _snapshot(self, snapshot: Optional[SettingsSnapshot]) -> SettingsSnapshot:
        return snapshot if snapshot is not None else self.config_store.snapshot()

    def is_enabled(self, snapshot: Optional[SettingsSnapshot] = None) -> bool:
        snapshot = self._snapshot(snapshot)
        return snapshot.watermark_enabled and snapshot.has_content

    def device_for(self, target: Optional[Target], snapshot: SettingsSnapshot) -> Optional[DeviceContext]:
        """Device context for explicit target dimensions, when responsive rendering is on."""
        if target is None or not snapshot.responsive_enabled:
            return None
        try:
            return classify(*target)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring invalid target dimensions {target}")
            return None

    def current_key(
        self,
        source_path: str,
        target: Optional[Target] = None,
        snapshot: Optional[SettingsSnapshot] = None,
    ) -> Optional[str]:
        """Cache key under the current settings, or None when watermarking is off."""
        snapshot = self._snapshot(snapshot)
        if not self.is_enabled(snapshot):
            return None
        return self.deriver.derive(source_path, snapshot, self.device_for(target, snapshot))

    def etag_for(
        self,
        source_path: str,
        target: Optional[Target] = None,
        snapshot: Optional[SettingsSnapshot] = None,
    ) -> Optional[str]:
        """
        ETag of what would be served for source_path.

        Both tags carry the source mtime, so replacing a source at the
        same path changes the tag even though the cache key does not.

        Returns:
            Key+mtime tag when watermarking is active, a path+mtime tag
            for the original, or None if the source does not exist
        """
        mtime = self.cache_store.source_mtime(source_path)
        if mtime is None:
            return None
        key = self.current_key(source_path, target, snapshot)
        if key is None:
            return original_etag(source_path, mtime)
        return artifact_etag(key, mtime)

    # =========================================================================
    # Resolution
    # =========================================================================

    def apply_watermark(
        self,
        source_path: str,
        priority: Any = Priority.HIGH,
        target: Optional[Target] = None,
        force_original: bool = False,
    ) -> str:
        """Path to serve for source_path. Never raises for render failures."""
        return self.resolve(source_path, priority, target, force_original).path

    def resolve(
        self,
        source_path: str,
        priority: Any = Priority.HIGH,
        target: Optional[Target] = None,
        force_original: bool = False,
        snapshot: Optional[SettingsSnapshot] = None,
        epoch: Optional[int] = None,
    ) -> WatermarkResult:
        """
        Resolve what to serve for source_path.

        Callers that pass their own snapshot should pass the cache epoch
        they read before taking it; otherwise the epoch is read here.
        """
        if epoch is None:
            epoch = self.cache_store.epoch
        snapshot = self._snapshot(snapshot)

        if force_original or not self.is_enabled(snapshot):
            return _original(source_path)

        if ".." in source_path.split("/") or source_path.startswith("/"):
            logger.warning(f"Refusing to watermark path outside media root: {source_path}")
            return _original(source_path)

        if self.cache_store.is_artifact_path(source_path):
            logger.warning(f"Refusing to watermark a cache artifact: {source_path}")
            return _original(source_path)

        if self.cache_store.source_mtime(source_path) is None:
            logger.warning(f"Watermark source not found: {source_path}")
            return _original(source_path)

        device = self.device_for(target, snapshot)
        key = self.deriver.derive(source_path, snapshot, device)

        entry = self.cache_store.get(key, source_path)
        if entry is not None:
            return WatermarkResult(
                status=WatermarkStatus.WATERMARKED,
                path=entry.artifact_path,
                source_path=source_path,
                cache_key=key,
                entry=entry,
            )

        descriptor = self.cache_store.get_descriptor(key)
        if descriptor is not None:
            return WatermarkResult(
                status=WatermarkStatus.CSS_FALLBACK,
                path=fallback_url(source_path, key),
                source_path=source_path,
                cache_key=key,
                descriptor=descriptor,
            )

        request = GenerationRequest(source_path, key, snapshot, device, epoch)
        priority = Priority.parse(priority)

        if priority != Priority.HIGH and self.scheduler is not None:
            job = self.scheduler.generate_async(request, priority)
            return WatermarkResult(
                status=WatermarkStatus.PENDING,
                path=source_path,
                source_path=source_path,
                cache_key=key,
                job=job,
            )

        outcome = self._generate_now(request)
        if outcome.timed_out:
            job = None
            if self.scheduler is not None:
                job = self.scheduler.generate_async(request, Priority.NORMAL)
            return _original(source_path, key, job=job, error=outcome.error)

        if outcome.result is not None:
            return outcome.result
        return _original(source_path, key, error=outcome.error)

    def _generate_now(self, request: GenerationRequest) -> GenerationOutcome:
        if self.scheduler is not None:
            return self.scheduler.generate_sync(request, timeout=self.sync_timeout)
        result = self.generate(request)
        return GenerationOutcome(result=result, error=result.error)

    # =========================================================================
    # Generation
    # =========================================================================

    def generate(self, request: GenerationRequest) -> WatermarkResult:
        """
        Render and cache one artifact.

        Concurrent calls for the same key share a single render. The
        put is stamped with the epoch read before the request's snapshot
        was taken, so a purge that lands any time after that discards
        this result instead of caching an artifact for superseded
        settings.
        """
        return self._in_flight.run(request.cache_key, lambda: self._generate(request))

    def _generate(self, request: GenerationRequest) -> WatermarkResult:
        source_path, key = request.source_path, request.cache_key

        entry = self.cache_store.get(key, source_path)
        if entry is not None:
            return WatermarkResult(
                status=WatermarkStatus.WATERMARKED,
                path=entry.artifact_path,
                source_path=source_path,
                cache_key=key,
                entry=entry,
            )

        epoch = request.epoch if request.epoch is not None else self.cache_store.epoch
        if epoch != self.cache_store.epoch:
            logger.info(f"Skipping render of {source_path}: settings changed since the request")
            return _original(source_path, key, error=InvalidationRaceDetected(
                f"Request for {key} predates cache epoch {self.cache_store.epoch}",
                source_path=source_path,
                cache_key=key,
            ))

        mtime = self.cache_store.source_mtime(source_path)
        if mtime is None:
            logger.warning(f"Source vanished before generation: {source_path}")
            return _original(source_path, key)

        try:
            data = self.cache_store.absolute_path(source_path).read_bytes()
        except OSError as e:
            logger.error(f"Failed to read {source_path}: {e}")
            self.notifications.record(
                ErrorType.IMAGE_LOAD_FAILED,
                {"path": source_path, "error": str(e)},
                "Failed to load source image",
            )
            return _original(source_path, key, error=CorruptedOrUnreadableSource(str(e), source_path=source_path))

        params = resolve_params(request.snapshot)
        if request.snapshot.responsive_enabled:
            params = apply_device_overrides(params, request.device)

        result = self.renderer.render(data, params)
        if not result.ok:
            return self._handle_render_failure(request, params, result.error, epoch)

        try:
            entry = self.cache_store.put(
                key,
                source_path,
                result.data,
                mtime,
                content_type=result.content_type,
                settings_version=request.snapshot.version,
                epoch=epoch,
            )
        except InvalidationRaceDetected as e:
            logger.info(f"Discarded artifact for {source_path}: {e.message}")
            return _original(source_path, key, error=e)
        except OSError as e:
            logger.error(f"Failed to cache artifact for {source_path}: {e}")
            self.notifications.record(
                ErrorType.CACHE_WRITE_FAILED,
                {"path": source_path, "cache_key": key, "error": str(e)},
                "Failed to write watermarked image to cache",
            )
            return _original(source_path, key, error=WatermarkError(str(e), source_path=source_path))

        logger.info(f"Watermarked {source_path} -> {entry.artifact_path}")
        return WatermarkResult(
            status=WatermarkStatus.WATERMARKED,
            path=entry.artifact_path,
            source_path=source_path,
            cache_key=key,
            entry=entry,
        )

    def _handle_render_failure(
        self,
        request: GenerationRequest,
        params,
        error: Optional[WatermarkError],
        epoch: int,
    ) -> WatermarkResult:
        source_path, key = request.source_path, request.cache_key
        context = {"path": source_path, "error": error.message if error else "unknown"}

        if isinstance(error, MissingCodecCapability):
            self.notifications.record(
                ErrorType.MISSING_EXTENSIONS,
                context,
                "Image codec support is missing for watermarking",
            )
            self.notifications.record(
                ErrorType.FALLBACK_ENGAGED,
                context,
                "CSS watermark fallback engaged",
            )

            descriptor = build_descriptor(source_path, key, params).to_dict()
            try:
                self.cache_store.put_descriptor(key, descriptor, epoch=epoch)
            except InvalidationRaceDetected as e:
                logger.info(f"Discarded fallback descriptor for {source_path}: {e.message}")
            except OSError as e:
                logger.error(f"Failed to store fallback descriptor for {source_path}: {e}")

            return WatermarkResult(
                status=WatermarkStatus.CSS_FALLBACK,
                path=fallback_url(source_path, key),
                source_path=source_path,
                cache_key=key,
                descriptor=descriptor,
                error=error,
            )

        if isinstance(error, CorruptedOrUnreadableSource):
            self.notifications.record(
                ErrorType.CORRUPTED_IMAGE,
                context,
                "Corrupted or unreadable image file",
            )
        else:
            self.notifications.record(
                ErrorType.IMAGE_LOAD_FAILED,
                context,
                "Failed to watermark image",
            )

        logger.warning(f"Serving original for {source_path}: {context['error']}")
        return _original(source_path, key, error=error)

    def regenerate_item(
        self,
        source_path: str,
        new_snapshot: SettingsSnapshot,
        old_snapshot: Optional[SettingsSnapshot] = None,
        epoch: Optional[int] = None,
    ) -> WatermarkResult:
        """Drop the artifact for old settings, then render for new settings."""
        if old_snapshot is not None:
            old_key = self.deriver.derive(source_path, old_snapshot)
            self.cache_store.invalidate(old_key)

        if not self.is_enabled(new_snapshot):
            return _original(source_path)

        if self.cache_store.is_artifact_path(source_path):
            return _original(
                source_path,
                error=WatermarkError("Cache artifacts cannot be regenerated", source_path=source_path),
            )

        if self.cache_store.source_mtime(source_path) is None:
            return _original(
                source_path,
                error=CorruptedOrUnreadableSource("Source not found", source_path=source_path),
            )

        key = self.deriver.derive(source_path, new_snapshot)
        return self.generate(GenerationRequest(source_path, key, new_snapshot, epoch=epoch))

    # =========================================================================
    # Bulk operations
    # =========================================================================

    def preload(self, source_paths: Sequence[str], target: Optional[Target] = None) -> List[JobRecord]:
        """Queue low-priority generation for images likely to be requested soon."""
        jobs = []
        for source_path in source_paths:
            result = self.resolve(source_path, Priority.LOW, target)
            if result.job is not None:
                jobs.append(result.job)
        logger.info(f"Preloading {len(jobs)} of {len(source_paths)} watermarks")
        return jobs

    def regenerate_all(
        self,
        source_paths: Sequence[str],
        old_snapshot: Optional[SettingsSnapshot] = None,
    ) -> BatchRecord:
        if self.scheduler is None:
            raise RuntimeError("Bulk regeneration requires a scheduler")
        epoch = self.cache_store.epoch
        snapshot = self.config_store.snapshot()
        return self.scheduler.submit_batch(source_paths, snapshot, old_snapshot, epoch=epoch)

    def clear_cache(self) -> int:
        """Remove every artifact and supersede queued work."""
        count = self.cache_store.invalidate_all()
        if self.scheduler is not None:
            self.scheduler.supersede_pending()
        logger.info(f"Watermark cache cleared ({count} artifacts)")
        return count

    def cleanup_old_cache(self, days: int = 7) -> int:
        return self.cache_store.invalidate_older_than(timedelta(days=days))

    def test_watermark(self, source_path: str) -> Dict[str, Any]:
        """Watermark one image now and report what happened."""
        result = self.resolve(source_path, Priority.HIGH)
        return {
            "success": result.status in (WatermarkStatus.WATERMARKED, WatermarkStatus.CSS_FALLBACK),
            "status": result.status.value,
            "original_path": source_path,
            "result_path": result.path,
            "fallback_used": result.is_fallback,
            "error": result.error.message if result.error else None,
        }

    # =========================================================================
    # Health
    # =========================================================================

    def health_status(self) -> Dict[str, Any]:
        capabilities = codec_capabilities()
        counts = self.notifications.counts()
        critical = counts["by_severity"].get("critical", 0)

        healthy = capabilities["has_required_codec"] and critical == 0
        return {
            "status": "healthy" if healthy else "warning",
            "has_required_codec": capabilities["has_required_codec"],
            "cache_stats": self.cache_store.stats(),
            "active_notification_count": counts["active"],
            "codecs": capabilities,
            "last_check": datetime.utcnow().isoformat(),
        }
