"""
Settings Store Interface

The generic site-settings key-value store lives outside this package.
ImageGuard only needs to read it and to hear about changes, so the
interface is deliberately narrow. InMemoryConfigStore is a thread-safe
implementation used for wiring and tests.
"""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from imageguard.settings.snapshot import SettingChange, SettingsSnapshot


logger = logging.getLogger(__name__)

ChangeCallback = Callable[[List[SettingChange], SettingsSnapshot], None]


class ConfigStore(ABC):
    """Read/subscribe view of the site settings."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Read a single value."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any, type: str = "string", group: Optional[str] = None) -> None:
        """Write a value. Subscribers are notified before this returns."""
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a value. Returns False if it did not exist."""
        pass

    @abstractmethod
    def snapshot(self) -> SettingsSnapshot:
        """Current immutable view."""
        pass

    @abstractmethod
    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        """Subscribe to change batches. Returns an unsubscribe function."""
        pass


class InMemoryConfigStore(ConfigStore):
    """
    In-process settings store.

    Writes inside a batch() block are collected and fanned out once,
    so a bulk save of the admin settings form produces one notification.
    Fan-out runs synchronously on the writing thread: once set() or
    the batch block returns, every subscriber has already reacted.
    """

    def __init__(self, initial: Optional[Dict[str, Any]] = None, groups: Optional[Dict[str, str]] = None):
        self._values: Dict[str, Tuple[Any, str, Optional[str]]] = {}
        for key, value in (initial or {}).items():
            self._values[key] = (value, "string", (groups or {}).get(key))
        self._version = 1
        self._lock = threading.RLock()
        self._subscribers: List[ChangeCallback] = []
        self._pending: Optional[List[SettingChange]] = None

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._values.get(key)
        return entry[0] if entry is not None else default

    def group_of(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._values.get(key)
        return entry[2] if entry is not None else None

    @property
    def version(self) -> int:
        return self._version

    def snapshot(self) -> SettingsSnapshot:
        with self._lock:
            return SettingsSnapshot(
                version=self._version,
                values={key: entry[0] for key, entry in self._values.items()},
            )

    def set(self, key: str, value: Any, type: str = "string", group: Optional[str] = None) -> None:
        with self._lock:
            previous = self._values.get(key)
            old_value = previous[0] if previous is not None else None
            if group is None and previous is not None:
                group = previous[2]
            self._values[key] = (value, type, group)
            self._version += 1
            change = SettingChange(key=key, group=group, old_value=old_value, new_value=value)
            self._dispatch([change])

    def delete(self, key: str) -> bool:
        with self._lock:
            previous = self._values.pop(key, None)
            if previous is None:
                return False
            self._version += 1
            change = SettingChange(
                key=key, group=previous[2], old_value=previous[0], deleted=True
            )
            self._dispatch([change])
            return True

    @contextmanager
    def batch(self) -> Iterator["InMemoryConfigStore"]:
        """Collect writes and fan them out as a single change list."""
        with self._lock:
            outer = self._pending is not None
            if not outer:
                self._pending = []
            try:
                yield self
            finally:
                if not outer:
                    changes, self._pending = self._pending, None
                    if changes:
                        self._notify(changes)

    def on_change(self, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _dispatch(self, changes: List[SettingChange]) -> None:
        if self._pending is not None:
            self._pending.extend(changes)
            return
        self._notify(changes)

    def _notify(self, changes: List[SettingChange]) -> None:
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            try:
                callback(changes, snapshot)
            except Exception as e:
                # A failing subscriber must not break the settings write
                logger.error(f"Settings change subscriber failed: {e}")
