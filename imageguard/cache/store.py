"""
Artifact Cache Store

Filesystem cache of rendered watermark artifacts.

Layout under the media root:
    watermarks/cache/<key>.<ext>       rendered bytes
    watermarks/cache/<key>.json        CacheEntry sidecar
    watermarks/fallback/<key>.json     CSS fallback descriptors

Freshness:
- An entry is only served while its recorded source mtime equals the
  source file's current mtime. Stale entries are deleted on read.
- invalidate_all() bumps an epoch. A put() stamped with an older epoch
  was rendered under settings that have since changed and is rejected
  with InvalidationRaceDetected.
"""

import json
import logging
import os
import re
import tempfile
import threading
from concurrent.futures import Future
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

from imageguard.config import StorageLayout
from imageguard.errors import InvalidationRaceDetected


logger = logging.getLogger(__name__)

T = TypeVar("T")

_KEY_PATTERN = re.compile(r"^[0-9a-f]{8,64}$")

SOURCE_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".webp"})


def validate_key(key: str) -> str:
    """Keys become file names; only hex digests are accepted."""
    if not _KEY_PATTERN.match(key or ""):
        raise ValueError(f"Invalid cache key: {key!r}")
    return key


@dataclass
class CacheEntry:
    """Index record for one cached artifact."""
    cache_key: str
    source_path: str
    artifact_path: str
    source_mtime: float
    created_at: datetime = field(default_factory=datetime.utcnow)
    size_bytes: int = 0
    settings_version: int = 0
    content_type: str = "application/octet-stream"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            cache_key=data["cache_key"],
            source_path=data["source_path"],
            artifact_path=data["artifact_path"],
            source_mtime=float(data["source_mtime"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            size_bytes=int(data.get("size_bytes", 0)),
            settings_version=int(data.get("settings_version", 0)),
            content_type=data.get("content_type", "application/octet-stream"),
        )


@dataclass
class CacheStats:
    """Cache operation counters."""
    hits: int = 0
    misses: int = 0
    writes: int = 0
    stale_evictions: int = 0
    race_discards: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0


class InFlightRegistry:
    """
    Single-flight execution per key.

    The first caller for a key runs the work; concurrent callers for the
    same key block on the same Future and receive its result (or its
    exception) instead of doing the work again.
    """

    def __init__(self):
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def run(self, key: str, work: Callable[[], T], timeout: Optional[float] = None) -> T:
        """
        Run work for key, or wait for the run already in progress.

        Raises:
            concurrent.futures.TimeoutError: If a follower waits longer than timeout
        """
        with self._lock:
            future = self._futures.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._futures[key] = future

        if not leader:
            return future.result(timeout=timeout)

        try:
            result = work()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._futures.pop(key, None)

    def is_in_flight(self, key: str) -> bool:
        with self._lock:
            return key in self._futures

    @property
    def count(self) -> int:
        with self._lock:
            return len(self._futures)


class ArtifactCacheStore:
    """
    Filesystem artifact cache with a sidecar-backed index.

    All index mutations, counters and the epoch are guarded by one lock,
    which also makes the epoch check in put() atomic with respect to
    invalidate_all().
    """

    def __init__(self, media_root: Path, layout: StorageLayout = StorageLayout()):
        self.media_root = Path(media_root)
        self.layout = layout
        self.cache_dir = self.media_root / layout.CACHE_DIR
        self.fallback_dir = self.media_root / layout.FALLBACK_DIR
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.fallback_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.RLock()
        self._index: Dict[str, CacheEntry] = {}
        self._epoch = 0
        self._stats = CacheStats()

        self._load_index()
        logger.info(f"ArtifactCacheStore initialized at {self.cache_dir} ({len(self._index)} entries)")

    # =========================================================================
    # Paths
    # =========================================================================

    def _sidecar(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def is_artifact_path(self, relative_path: str) -> bool:
        return self.layout.is_artifact_path(relative_path)

    def absolute_path(self, relative_path: str) -> Path:
        return self.media_root / relative_path

    def source_mtime(self, source_path: str) -> Optional[float]:
        """Current mtime of a source file, or None if it does not exist."""
        path = self.absolute_path(source_path)
        try:
            return path.stat().st_mtime
        except OSError:
            return None

    @property
    def epoch(self) -> int:
        with self._lock:
            return self._epoch

    def _load_index(self) -> None:
        for sidecar in self.cache_dir.glob("*.json"):
            try:
                with open(sidecar, "r", encoding="utf-8") as f:
                    entry = CacheEntry.from_dict(json.load(f))
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Dropping unreadable cache sidecar {sidecar.name}: {e}")
                sidecar.unlink(missing_ok=True)
                continue
            self._index[entry.cache_key] = entry

    def _write_atomic(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    # =========================================================================
    # Read / write
    # =========================================================================

    def get(self, key: str, source_path: Optional[str] = None) -> Optional[CacheEntry]:
        """
        Return a fresh entry or None.

        An entry whose artifact is gone, whose source is gone, or whose
        source mtime changed is evicted and counts as a miss.
        """
        validate_key(key)
        with self._lock:
            entry = self._index.get(key)
            if entry is None:
                self._stats.misses += 1
                return None

            if source_path is not None and entry.source_path != source_path:
                self._stats.misses += 1
                return None

            current_mtime = self.source_mtime(entry.source_path)
            artifact_exists = self.absolute_path(entry.artifact_path).exists()

            if current_mtime is None or current_mtime != entry.source_mtime or not artifact_exists:
                logger.debug(f"Evicting stale cache entry {key} for {entry.source_path}")
                self._remove(key)
                self._stats.stale_evictions += 1
                self._stats.misses += 1
                return None

            self._stats.hits += 1
            return entry

    def put(
        self,
        key: str,
        source_path: str,
        data: bytes,
        source_mtime: float,
        content_type: str = "application/octet-stream",
        settings_version: int = 0,
        epoch: Optional[int] = None,
    ) -> CacheEntry:
        """
        Store an artifact.

        Raises:
            InvalidationRaceDetected: If epoch is older than the current epoch
        """
        validate_key(key)
        artifact_path = self.layout.artifact_path(key, source_path)

        with self._lock:
            if epoch is not None and epoch != self._epoch:
                self._stats.race_discards += 1
                raise InvalidationRaceDetected(
                    f"Artifact {key} rendered at epoch {epoch}, cache is at epoch {self._epoch}",
                    cache_key=key,
                    source_path=source_path,
                )

            entry = CacheEntry(
                cache_key=key,
                source_path=source_path,
                artifact_path=artifact_path,
                source_mtime=source_mtime,
                size_bytes=len(data),
                settings_version=settings_version,
                content_type=content_type,
            )

            self._write_atomic(self.absolute_path(artifact_path), data)
            self._write_atomic(
                self._sidecar(key),
                json.dumps(entry.to_dict(), indent=2).encode("utf-8"),
            )

            self._index[key] = entry
            self._stats.writes += 1

        logger.debug(f"Cached artifact {artifact_path} ({len(data)} bytes)")
        return entry

    def read_bytes(self, entry: CacheEntry) -> bytes:
        with open(self.absolute_path(entry.artifact_path), "rb") as f:
            return f.read()

    # =========================================================================
    # Invalidation
    # =========================================================================

    def _remove(self, key: str) -> bool:
        entry = self._index.pop(key, None)
        if entry is not None:
            self.absolute_path(entry.artifact_path).unlink(missing_ok=True)
        self._sidecar(key).unlink(missing_ok=True)
        return entry is not None

    def invalidate(self, key: str) -> bool:
        validate_key(key)
        with self._lock:
            return self._remove(key)

    def invalidate_all(self) -> int:
        """
        Remove every artifact and descriptor and advance the epoch.

        Returns:
            Number of artifacts removed
        """
        with self._lock:
            self._epoch += 1
            count = len(self._index)

            for key in list(self._index):
                self._remove(key)

            # Orphans left by crashed writers or other processes
            for path in self.cache_dir.iterdir():
                if path.is_file():
                    if not path.name.startswith(".tmp-") and path.suffix != ".json":
                        count += 1
                    path.unlink(missing_ok=True)

            for path in self.fallback_dir.glob("*.json"):
                path.unlink(missing_ok=True)

        logger.info(f"Invalidated {count} cached artifacts (epoch {self._epoch})")
        return count

    def invalidate_older_than(self, age: timedelta) -> int:
        """Remove artifacts created more than age ago. Returns the count."""
        cutoff = datetime.utcnow() - age
        with self._lock:
            expired = [key for key, entry in self._index.items() if entry.created_at < cutoff]
            for key in expired:
                self._remove(key)

            for path in self.fallback_dir.glob("*.json"):
                if datetime.utcfromtimestamp(path.stat().st_mtime) < cutoff:
                    path.unlink(missing_ok=True)

        if expired:
            logger.info(f"Removed {len(expired)} cached artifacts older than {age}")
        return len(expired)

    # =========================================================================
    # CSS fallback descriptors
    # =========================================================================

    def put_descriptor(self, key: str, descriptor: Dict[str, Any], epoch: Optional[int] = None) -> str:
        """
        Store a CSS fallback descriptor. Returns its media-relative path.

        Raises:
            InvalidationRaceDetected: If epoch is older than the current epoch
        """
        validate_key(key)
        relative = self.layout.descriptor_path(key)
        with self._lock:
            if epoch is not None and epoch != self._epoch:
                self._stats.race_discards += 1
                raise InvalidationRaceDetected(
                    f"Descriptor {key} built at epoch {epoch}, cache is at epoch {self._epoch}",
                    cache_key=key,
                )
            self._write_atomic(
                self.absolute_path(relative),
                json.dumps(descriptor, indent=2).encode("utf-8"),
            )
        return relative

    def get_descriptor(self, key: str) -> Optional[Dict[str, Any]]:
        validate_key(key)
        path = self.absolute_path(self.layout.descriptor_path(key))
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except ValueError as e:
            logger.warning(f"Unreadable fallback descriptor {key}: {e}")
            return None

    # =========================================================================
    # Introspection
    # =========================================================================

    def entries(self) -> List[CacheEntry]:
        with self._lock:
            return list(self._index.values())

    def list_sources(self, prefixes: Sequence[str], limit: Optional[int] = None) -> List[str]:
        """Media-relative source images under the given prefixes, artifacts excluded."""
        sources = []
        for prefix in prefixes:
            if self.is_artifact_path(prefix):
                continue
            base = self.media_root / prefix
            if not base.is_dir():
                continue
            for path in sorted(base.rglob("*")):
                if path.is_file() and path.suffix.lower() in SOURCE_EXTENSIONS:
                    sources.append(path.relative_to(self.media_root).as_posix())
                    if limit is not None and len(sources) >= limit:
                        return sources
        return sources

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "count": len(self._index),
                "total_bytes": sum(entry.size_bytes for entry in self._index.values()),
                "hits": self._stats.hits,
                "misses": self._stats.misses,
                "writes": self._stats.writes,
                "stale_evictions": self._stats.stale_evictions,
                "race_discards": self._stats.race_discards,
                "hit_rate": round(self._stats.hit_rate, 4),
                "epoch": self._epoch,
                "cache_dir": str(self.cache_dir),
            }
