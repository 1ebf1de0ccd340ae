"""
Tests for admin notifications.

These tests verify:
- Deduplication by error type and message
- Per-type daily caps on new notifications
- Fallback severity escalation
- Dismissal, counts, retention and the error report
"""

from datetime import datetime, timedelta

import pytest

from imageguard.notifications import ErrorType, NotificationCenter, Severity
from imageguard.notifications.center import MAX_CONTEXTS, escalate


class FakeClock:
    def __init__(self):
        self.now = datetime(2024, 1, 15, 10, 0)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def center(clock):
    return NotificationCenter(max_per_day=3, clock=clock)


# =============================================================================
# RECORDING
# =============================================================================

class TestRecord:
    """Test recording and deduplication."""

    def test_default_severity(self, center):
        notification = center.record(ErrorType.MISSING_EXTENSIONS, {"format": "WEBP"}, "No codec")
        assert notification.severity == Severity.CRITICAL
        assert notification.id.startswith("wm_")

    def test_accepts_string_type(self, center):
        notification = center.record("corrupted_image", {"path": "products/a.jpg"}, "Unreadable")
        assert notification.error_type == ErrorType.CORRUPTED_IMAGE
        assert notification.severity == Severity.MEDIUM

    def test_repeat_bumps_existing(self, center, clock):
        first = center.record(ErrorType.CORRUPTED_IMAGE, {"path": "a.jpg"}, "Unreadable")
        clock.now += timedelta(minutes=5)
        second = center.record(ErrorType.CORRUPTED_IMAGE, {"path": "b.jpg"}, "Unreadable")

        assert second is first
        assert first.occurrences == 2
        assert first.last_occurrence == clock.now
        assert [c["path"] for c in first.contexts] == ["a.jpg", "b.jpg"]
        assert center.counts()["active"] == 1

    def test_contexts_are_bounded(self, center):
        for index in range(MAX_CONTEXTS + 5):
            notification = center.record(ErrorType.CORRUPTED_IMAGE, {"path": f"{index}.jpg"}, "Unreadable")

        assert len(notification.contexts) == MAX_CONTEXTS
        assert notification.contexts[-1]["path"] == f"{MAX_CONTEXTS + 4}.jpg"

    def test_different_messages_are_separate(self, center):
        center.record(ErrorType.CORRUPTED_IMAGE, message="Unreadable")
        center.record(ErrorType.CORRUPTED_IMAGE, message="Truncated")
        assert center.counts()["active"] == 2

    def test_bad_type_never_raises(self, center):
        assert center.record("not_a_type", {}, "whatever") is None
        assert center.counts()["total"] == 0


class TestDailyCap:
    """Test the per-type daily cap."""

    def test_cap_blocks_new_notifications(self, center):
        for index in range(3):
            assert center.record(ErrorType.CORRUPTED_IMAGE, message=f"msg {index}") is not None

        assert center.record(ErrorType.CORRUPTED_IMAGE, message="msg 3") is None
        assert center.counts()["active"] == 3

    def test_cap_does_not_block_repeats(self, center):
        for index in range(3):
            center.record(ErrorType.CORRUPTED_IMAGE, message=f"msg {index}")

        repeat = center.record(ErrorType.CORRUPTED_IMAGE, message="msg 0")
        assert repeat is not None
        assert repeat.occurrences == 2

    def test_cap_is_per_type(self, center):
        for index in range(3):
            center.record(ErrorType.CORRUPTED_IMAGE, message=f"msg {index}")
        assert center.record(ErrorType.IMAGE_LOAD_FAILED, message="load") is not None

    def test_cap_resets_next_day(self, center, clock):
        for index in range(3):
            center.record(ErrorType.CORRUPTED_IMAGE, message=f"msg {index}")
        clock.now += timedelta(days=1)
        assert center.record(ErrorType.CORRUPTED_IMAGE, message="msg 3") is not None


# =============================================================================
# ESCALATION
# =============================================================================

class TestEscalation:
    """Test fallback severity escalation."""

    def test_fallback_escalates_with_occurrences(self, center):
        severities = {}
        for occurrence in range(1, 21):
            notification = center.record(ErrorType.FALLBACK_ENGAGED, {"n": occurrence}, "Fallback")
            severities[occurrence] = notification.severity

        assert severities[4] == Severity.LOW
        assert severities[5] == Severity.MEDIUM
        assert severities[19] == Severity.MEDIUM
        assert severities[20] == Severity.HIGH

    def test_escalation_never_lowers(self):
        assert escalate(ErrorType.FALLBACK_ENGAGED, Severity.CRITICAL, 25) == Severity.CRITICAL

    def test_other_types_do_not_escalate(self):
        assert escalate(ErrorType.CORRUPTED_IMAGE, Severity.MEDIUM, 100) == Severity.MEDIUM


# =============================================================================
# LIFECYCLE
# =============================================================================

class TestLifecycle:
    """Test dismissal, listing and retention."""

    def test_dismiss(self, center):
        notification = center.record(ErrorType.CORRUPTED_IMAGE, message="Unreadable")

        assert center.dismiss(notification.id)
        assert not center.dismiss(notification.id)
        assert not center.dismiss("wm_missing")
        assert center.list() == []
        assert center.list(include_dismissed=True) == [notification]
        assert notification.dismissed_at is not None

    def test_repeat_after_dismiss_creates_new(self, center):
        first = center.record(ErrorType.CORRUPTED_IMAGE, message="Unreadable")
        center.dismiss(first.id)
        second = center.record(ErrorType.CORRUPTED_IMAGE, message="Unreadable")
        assert second.id != first.id

    def test_list_orders_by_severity(self, center):
        center.record(ErrorType.IMAGE_LOAD_FAILED, message="load")
        center.record(ErrorType.MISSING_EXTENSIONS, message="codec")
        center.record(ErrorType.CORRUPTED_IMAGE, message="corrupt")

        assert [n.severity for n in center.list()] == [
            Severity.CRITICAL, Severity.MEDIUM, Severity.LOW,
        ]

    def test_counts(self, center):
        center.record(ErrorType.MISSING_EXTENSIONS, message="codec")
        dismissed = center.record(ErrorType.CORRUPTED_IMAGE, message="corrupt")
        center.dismiss(dismissed.id)

        counts = center.counts()
        assert counts["total"] == 2
        assert counts["active"] == 1
        assert counts["by_severity"]["critical"] == 1
        assert counts["by_severity"]["medium"] == 0

    def test_purge_only_old_dismissed(self, center, clock):
        old = center.record(ErrorType.CORRUPTED_IMAGE, message="old")
        center.dismiss(old.id)
        active = center.record(ErrorType.CORRUPTED_IMAGE, message="active")

        clock.now += timedelta(days=8)
        assert center.purge_dismissed_older_than(timedelta(days=7)) == 1
        assert center.list(include_dismissed=True) == [active]

    def test_to_dict(self, center):
        data = center.record(ErrorType.CACHE_WRITE_FAILED, {"path": "a.jpg"}, "Disk full").to_dict()
        assert data["error_type"] == "cache_write_failed"
        assert data["severity"] == "medium"
        assert data["contexts"] == [{"path": "a.jpg"}]
        assert data["dismissed_at"] is None


class TestErrorReport:
    """Test the grouped admin report."""

    def test_report_groups_and_recommends(self, center):
        center.record(ErrorType.MISSING_EXTENSIONS, message="codec")
        center.record(ErrorType.CORRUPTED_IMAGE, message="corrupt")

        report = center.error_report()

        assert set(report["errors_by_type"]) == {"missing_extensions", "corrupted_image"}
        assert len(report["errors_by_severity"]["critical"]) == 1
        assert len(report["recent_errors"]) == 2
        titles = [r["title"] for r in report["recommendations"]]
        assert titles == ["Install image codec support", "Check image file integrity"]

    def test_old_errors_are_not_recent(self, center, clock):
        center.record(ErrorType.CORRUPTED_IMAGE, message="corrupt")
        clock.now += timedelta(days=2)
        assert center.error_report()["recent_errors"] == []
