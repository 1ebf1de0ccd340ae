"""
Admin Notifications

Deduplicated, severity-ranked failure notifications for the admin UI.
"""

from .center import (
    AdminNotification,
    ErrorType,
    NotificationCenter,
    Severity,
)

__all__ = [
    "AdminNotification",
    "ErrorType",
    "NotificationCenter",
    "Severity",
]
