"""
Cache Invalidation Listener

Settings-driven invalidation of watermark artifacts.

Relevance is an explicit membership test:
- a write or delete of any key in WATERMARK_KEYS, or
- a delete of any setting in the watermark / image_protection groups.

A batch of changes (one settings-form save) purges the cache exactly
once, however many relevant keys it touched. The purge runs on the
settings writer's thread, so it has completed by the time the write
returns.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, FrozenSet, List, Optional

from imageguard.cache.store import ArtifactCacheStore
from imageguard.settings import (
    WATCHED_GROUPS,
    WATERMARK_KEYS,
    ConfigStore,
    SettingChange,
    SettingsSnapshot,
)


logger = logging.getLogger(__name__)


class InvalidationEvent(Enum):
    """What triggered an invalidation."""
    SETTINGS_CHANGED = "settings_changed"
    SETTINGS_DELETED = "settings_deleted"


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    event: InvalidationEvent
    success: bool
    entries_invalidated: int
    relevant_keys: List[str]
    jobs_superseded: int = 0
    settings_version: Optional[int] = None
    duration_ms: float = 0.0
    errors: List[str] = field(default_factory=list)
    completed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "event": self.event.value,
            "success": self.success,
            "entries_invalidated": self.entries_invalidated,
            "relevant_keys": list(self.relevant_keys),
            "jobs_superseded": self.jobs_superseded,
            "settings_version": self.settings_version,
            "duration_ms": round(self.duration_ms, 2),
            "errors": list(self.errors),
            "completed_at": self.completed_at.isoformat(),
        }


class InvalidationListener:
    """
    Purges the artifact cache when watermark settings change.

    Usage:
        listener = InvalidationListener(cache_store, scheduler=scheduler)
        listener.attach(config_store)
    """

    def __init__(
        self,
        store: ArtifactCacheStore,
        scheduler=None,
        watched_keys: FrozenSet[str] = WATERMARK_KEYS,
        watched_groups: FrozenSet[str] = WATCHED_GROUPS,
    ):
        self._store = store
        self._scheduler = scheduler
        self.watched_keys = frozenset(watched_keys)
        self.watched_groups = frozenset(watched_groups)
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._lock = threading.Lock()
        self.last_result: Optional[InvalidationResult] = None
        self.invalidation_count = 0

    def attach(self, config_store: ConfigStore) -> None:
        self.detach()
        self._unsubscribe = config_store.on_change(self.handle_changes)
        logger.info("Invalidation listener subscribed to settings changes")

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def is_relevant(self, change: SettingChange) -> bool:
        if change.key in self.watched_keys:
            return True
        return change.deleted and change.group in self.watched_groups

    def handle_changes(
        self,
        changes: List[SettingChange],
        snapshot: Optional[SettingsSnapshot] = None,
    ) -> Optional[InvalidationResult]:
        """
        React to one batch of settings changes.

        Returns:
            InvalidationResult, or None when nothing relevant changed
        """
        relevant = [change for change in changes if self.is_relevant(change)]
        if not relevant:
            return None

        event = (
            InvalidationEvent.SETTINGS_DELETED
            if all(change.deleted for change in relevant)
            else InvalidationEvent.SETTINGS_CHANGED
        )
        keys = sorted({change.key for change in relevant})
        version = snapshot.version if snapshot is not None else None

        logger.info(
            f"Watermark settings changed ({', '.join(keys)}), "
            f"invalidating artifact cache (version={version})"
        )
        return self._invalidate(event, keys, version)

    def _invalidate(
        self,
        event: InvalidationEvent,
        keys: List[str],
        version: Optional[int],
    ) -> InvalidationResult:
        start_time = datetime.utcnow()
        errors = []
        entries_invalidated = 0
        jobs_superseded = 0

        with self._lock:
            try:
                entries_invalidated = self._store.invalidate_all()
            except Exception as e:
                errors.append(str(e))
                logger.error(f"Cache invalidation error: {e}")

            if self._scheduler is not None:
                try:
                    jobs_superseded = self._scheduler.supersede_pending()
                except Exception as e:
                    errors.append(str(e))
                    logger.error(f"Failed to supersede queued generation jobs: {e}")

            duration = (datetime.utcnow() - start_time).total_seconds() * 1000

            result = InvalidationResult(
                event=event,
                success=len(errors) == 0,
                entries_invalidated=entries_invalidated,
                relevant_keys=keys,
                jobs_superseded=jobs_superseded,
                settings_version=version,
                duration_ms=duration,
                errors=errors,
            )
            self.last_result = result
            self.invalidation_count += 1

        logger.info(
            f"Invalidation complete: {entries_invalidated} artifacts, "
            f"{jobs_superseded} jobs superseded, duration: {duration:.2f}ms"
        )
        return result
