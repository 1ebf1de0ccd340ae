"""
Admin Notifications

Observational record of watermarking failures for the admin dashboard.

Notifications are deduplicated by (error type, message): a repeat
occurrence bumps the existing active notification instead of adding a
new one. New notifications are capped per error type per day.

Nothing here ever raises into a render or delivery path.
"""

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union


logger = logging.getLogger(__name__)

MAX_CONTEXTS = 10


class Severity(str, Enum):
    """Notification severity, lowest first."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorType(str, Enum):
    """Failure categories surfaced to admins."""
    MISSING_EXTENSIONS = "missing_extensions"
    CORRUPTED_IMAGE = "corrupted_image"
    IMAGE_LOAD_FAILED = "image_load_failed"
    FALLBACK_ENGAGED = "fallback_engaged"
    CACHE_WRITE_FAILED = "cache_write_failed"


DEFAULT_SEVERITY: Dict[ErrorType, Severity] = {
    ErrorType.MISSING_EXTENSIONS: Severity.CRITICAL,
    ErrorType.CORRUPTED_IMAGE: Severity.MEDIUM,
    ErrorType.IMAGE_LOAD_FAILED: Severity.LOW,
    ErrorType.FALLBACK_ENGAGED: Severity.LOW,
    ErrorType.CACHE_WRITE_FAILED: Severity.MEDIUM,
}

# Repeated fallback engagement escalates: occurrences -> severity
FALLBACK_ESCALATION = (
    (20, Severity.HIGH),
    (5, Severity.MEDIUM),
)

_SEVERITY_RANK = {severity: rank for rank, severity in enumerate(Severity)}

RECOMMENDATIONS: Dict[ErrorType, Dict[str, str]] = {
    ErrorType.MISSING_EXTENSIONS: {
        "type": "critical",
        "title": "Install image codec support",
        "description": "Pillow cannot decode or encode one or more image formats, "
                       "so watermarks fall back to CSS overlays",
        "action": "Install Pillow with JPEG, PNG and WebP support",
    },
    ErrorType.CORRUPTED_IMAGE: {
        "type": "warning",
        "title": "Check image file integrity",
        "description": "Some image files appear to be corrupted or invalid",
        "action": "Review and replace corrupted image files",
    },
    ErrorType.CACHE_WRITE_FAILED: {
        "type": "warning",
        "title": "Check storage permissions",
        "description": "Unable to write watermarked images to the cache directory",
        "action": "Verify the watermarks/cache directory is writable",
    },
}


@dataclass
class AdminNotification:
    """One deduplicated failure notification."""
    id: str
    error_type: ErrorType
    severity: Severity
    message: str
    contexts: List[Dict[str, Any]] = field(default_factory=list)
    dismissed: bool = False
    created_at: datetime = field(default_factory=datetime.utcnow)
    last_occurrence: datetime = field(default_factory=datetime.utcnow)
    occurrences: int = 1
    dismissed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["error_type"] = self.error_type.value
        data["severity"] = self.severity.value
        data["created_at"] = self.created_at.isoformat()
        data["last_occurrence"] = self.last_occurrence.isoformat()
        data["dismissed_at"] = self.dismissed_at.isoformat() if self.dismissed_at else None
        return data


def escalate(error_type: ErrorType, severity: Severity, occurrences: int) -> Severity:
    """Raise severity for repeated fallback engagement. Never lowers it."""
    if error_type != ErrorType.FALLBACK_ENGAGED:
        return severity
    for threshold, escalated in FALLBACK_ESCALATION:
        if occurrences >= threshold and _SEVERITY_RANK[escalated] > _SEVERITY_RANK[severity]:
            return escalated
    return severity


class NotificationCenter:
    """
    Thread-safe in-memory notification store.

    Usage:
        center = NotificationCenter(max_per_day=10)
        center.record("corrupted_image", {"path": "products/a.jpg"}, "Unreadable image")
        center.counts()
    """

    def __init__(
        self,
        max_per_day: int = 10,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.max_per_day = max_per_day
        self._clock = clock
        self._notifications: Dict[str, AdminNotification] = {}
        self._daily_counts: Dict[tuple, int] = {}
        self._lock = threading.Lock()

    def record(
        self,
        error_type: Union[ErrorType, str],
        contexts: Optional[Dict[str, Any]] = None,
        message: str = "",
        severity: Optional[Union[Severity, str]] = None,
    ) -> Optional[AdminNotification]:
        """
        Record a failure.

        Returns:
            The new or updated notification, or None when the daily
            cap for this error type has been reached
        """
        try:
            return self._record(error_type, contexts, message, severity)
        except Exception as e:
            logger.error(f"Failed to record admin notification: {e}")
            return None

    def _record(self, error_type, contexts, message, severity) -> Optional[AdminNotification]:
        error_type = ErrorType(error_type)
        severity = Severity(severity) if severity else DEFAULT_SEVERITY[error_type]
        message = message or error_type.value.replace("_", " ")
        now = self._clock()

        with self._lock:
            existing = self._find_active(error_type, message)
            if existing is not None:
                existing.occurrences += 1
                existing.last_occurrence = now
                if contexts:
                    existing.contexts.append(dict(contexts))
                    del existing.contexts[:-MAX_CONTEXTS]
                existing.severity = escalate(error_type, existing.severity, existing.occurrences)
                return existing

            day_key = (error_type, now.date())
            if self._daily_counts.get(day_key, 0) >= self.max_per_day:
                logger.debug(f"Daily notification cap reached for {error_type.value}")
                return None
            self._daily_counts[day_key] = self._daily_counts.get(day_key, 0) + 1

            notification = AdminNotification(
                id=f"wm_{uuid.uuid4().hex[:16]}",
                error_type=error_type,
                severity=severity,
                message=message,
                contexts=[dict(contexts)] if contexts else [],
                created_at=now,
                last_occurrence=now,
            )
            self._notifications[notification.id] = notification

        log = logger.error if severity in (Severity.HIGH, Severity.CRITICAL) else logger.warning
        log(f"Watermark notification [{severity.value}] {error_type.value}: {message}")
        return notification

    def _find_active(self, error_type: ErrorType, message: str) -> Optional[AdminNotification]:
        for notification in self._notifications.values():
            if (
                not notification.dismissed
                and notification.error_type == error_type
                and notification.message == message
            ):
                return notification
        return None

    def list(self, include_dismissed: bool = False) -> List[AdminNotification]:
        with self._lock:
            notifications = list(self._notifications.values())
        if not include_dismissed:
            notifications = [n for n in notifications if not n.dismissed]
        notifications.sort(
            key=lambda n: (_SEVERITY_RANK[n.severity], n.last_occurrence),
            reverse=True,
        )
        return notifications

    def dismiss(self, notification_id: str) -> bool:
        with self._lock:
            notification = self._notifications.get(notification_id)
            if notification is None or notification.dismissed:
                return False
            notification.dismissed = True
            notification.dismissed_at = self._clock()
        logger.info(f"Dismissed watermark notification {notification_id}")
        return True

    def counts(self) -> Dict[str, Any]:
        with self._lock:
            notifications = list(self._notifications.values())
        active = [n for n in notifications if not n.dismissed]
        by_severity = {severity.value: 0 for severity in Severity}
        for notification in active:
            by_severity[notification.severity.value] += 1
        return {
            "total": len(notifications),
            "active": len(active),
            "by_severity": by_severity,
        }

    @property
    def active_count(self) -> int:
        return self.counts()["active"]

    def purge_dismissed_older_than(self, age: timedelta) -> int:
        """Drop dismissed notifications whose last occurrence is older than age."""
        cutoff = self._clock() - age
        with self._lock:
            stale = [
                notification_id
                for notification_id, n in self._notifications.items()
                if n.dismissed and n.last_occurrence < cutoff
            ]
            for notification_id in stale:
                del self._notifications[notification_id]

            today = self._clock().date()
            for day_key in [key for key in self._daily_counts if key[1] < today]:
                del self._daily_counts[day_key]

        if stale:
            logger.info(f"Purged {len(stale)} dismissed watermark notifications")
        return len(stale)

    def error_report(self) -> Dict[str, Any]:
        """Active notifications grouped by type and severity, with recommendations."""
        notifications = self.list()
        recent_cutoff = self._clock() - timedelta(days=1)

        by_type: Dict[str, List[Dict[str, Any]]] = {}
        by_severity: Dict[str, List[Dict[str, Any]]] = {severity.value: [] for severity in Severity}
        for notification in notifications:
            data = notification.to_dict()
            by_type.setdefault(notification.error_type.value, []).append(data)
            by_severity[notification.severity.value].append(data)

        recommendations = [
            RECOMMENDATIONS[error_type]
            for error_type in ErrorType
            if error_type.value in by_type and error_type in RECOMMENDATIONS
        ]

        return {
            "errors_by_type": by_type,
            "errors_by_severity": by_severity,
            "recent_errors": [
                n.to_dict() for n in notifications if n.last_occurrence >= recent_cutoff
            ],
            "recommendations": recommendations,
        }
