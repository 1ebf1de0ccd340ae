"""
Watermark Admin API

Endpoints for the admin dashboard:
- Notifications (list, dismiss, purge)
- Artifact cache statistics and manual clearing
- Health and codec capability report
- Generation job and bulk regeneration status
- One-off test watermarking of an image
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from imageguard.bootstrap import ImageGuard
from imageguard.jobs import JobState


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/watermark", tags=["Watermark Admin"])


def get_guard(request: Request) -> ImageGuard:
    guard = getattr(request.app.state, "guard", None)
    if guard is None:
        raise HTTPException(status_code=503, detail="ImageGuard is not initialized")
    return guard


# =============================================================================
# REQUEST / RESPONSE MODELS
# =============================================================================

class NotificationsResponse(BaseModel):
    """Active notifications with counts and health."""
    notifications: List[Dict[str, Any]]
    counts: Dict[str, Any]
    health: Dict[str, Any]


class OperationResponse(BaseModel):
    success: bool
    message: str = ""
    count: int = 0


class CacheStatsResponse(BaseModel):
    """Artifact cache statistics."""
    count: int
    total_bytes: int
    hits: int
    misses: int
    writes: int
    stale_evictions: int = 0
    race_discards: int = 0
    hit_rate: float
    epoch: int = 0
    cache_dir: str = ""
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class HealthResponse(BaseModel):
    status: str = Field(..., description="healthy or warning")
    has_required_codec: bool
    cache_stats: Dict[str, Any]
    active_notification_count: int
    codecs: Dict[str, Any]
    last_check: str


class JobStatusResponse(BaseModel):
    job_key: str
    source_path: str
    state: str
    priority: str
    batch_id: Optional[str] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    result_path: Optional[str] = None
    error: Optional[str] = None


class BatchRequest(BaseModel):
    """Bulk regeneration request."""
    paths: List[str] = Field(..., min_length=1, description="Source paths to regenerate")


class BatchStatusResponse(BaseModel):
    batch_id: str
    total: int
    processed: int
    succeeded: int
    failed: int
    status: str
    progress_percent: float
    errors: List[Dict[str, Any]] = []
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class TestWatermarkRequest(BaseModel):
    image_path: str = Field(..., min_length=1)


class TestWatermarkResponse(BaseModel):
    success: bool
    status: str
    original_path: str
    result_path: str
    fallback_used: bool
    error: Optional[str] = None


def _batch_response(batch) -> BatchStatusResponse:
    data = batch.to_dict()
    return BatchStatusResponse(**{key: data[key] for key in BatchStatusResponse.model_fields if key in data})


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@router.get("/notifications", response_model=NotificationsResponse)
def list_notifications(
    include_dismissed: bool = Query(False),
    guard: ImageGuard = Depends(get_guard),
):
    """Notifications for the admin dashboard, most severe first."""
    notifications = guard.notifications.list(include_dismissed=include_dismissed)
    return NotificationsResponse(
        notifications=[n.to_dict() for n in notifications],
        counts=guard.notifications.counts(),
        health=guard.service.health_status(),
    )


@router.post("/notifications/{notification_id}/dismiss", response_model=OperationResponse)
def dismiss_notification(notification_id: str, guard: ImageGuard = Depends(get_guard)):
    if not guard.notifications.dismiss(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found or already dismissed")
    return OperationResponse(success=True, message="Notification dismissed", count=1)


@router.post("/notifications/clear-old", response_model=OperationResponse)
def clear_old_notifications(
    days_old: int = Query(7, ge=0, le=365),
    guard: ImageGuard = Depends(get_guard),
):
    removed = guard.notifications.purge_dismissed_older_than(timedelta(days=days_old))
    return OperationResponse(
        success=True,
        message=f"Removed {removed} dismissed notifications older than {days_old} days",
        count=removed,
    )


@router.get("/error-report")
def error_report(guard: ImageGuard = Depends(get_guard)) -> Dict[str, Any]:
    """Active notifications grouped by type and severity, with recommendations."""
    report = guard.notifications.error_report()
    report["health"] = guard.service.health_status()
    return report


# =============================================================================
# CACHE
# =============================================================================

@router.get("/cache/stats", response_model=CacheStatsResponse)
def cache_stats(guard: ImageGuard = Depends(get_guard)):
    return CacheStatsResponse(**guard.cache_store.stats())


@router.post("/cache/clear", response_model=OperationResponse)
def clear_cache(guard: ImageGuard = Depends(get_guard)):
    """Remove every cached artifact. They are regenerated on demand."""
    try:
        count = guard.service.clear_cache()
    except OSError as e:
        logger.error(f"Failed to clear watermark cache: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return OperationResponse(success=True, message=f"Cleared {count} cached artifacts", count=count)


@router.post("/cache/cleanup", response_model=OperationResponse)
def cleanup_cache(
    days_old: int = Query(7, ge=0, le=365),
    guard: ImageGuard = Depends(get_guard),
):
    count = guard.service.cleanup_old_cache(days_old)
    return OperationResponse(
        success=True,
        message=f"Removed {count} artifacts older than {days_old} days",
        count=count,
    )


# =============================================================================
# HEALTH / TESTING
# =============================================================================

@router.get("/health", response_model=HealthResponse)
def health(guard: ImageGuard = Depends(get_guard)):
    return HealthResponse(**guard.service.health_status())


@router.post("/test", response_model=TestWatermarkResponse)
def test_watermark(body: TestWatermarkRequest, guard: ImageGuard = Depends(get_guard)):
    """Watermark one image with the current settings."""
    allowed, reason = guard.gateway.policy.check_path(body.image_path)
    if not allowed:
        raise HTTPException(status_code=400, detail=reason)
    return TestWatermarkResponse(**guard.service.test_watermark(body.image_path))


# =============================================================================
# JOBS
# =============================================================================

def _job_response(job) -> JobStatusResponse:
    data = job.to_dict()
    return JobStatusResponse(**{key: data[key] for key in JobStatusResponse.model_fields if key in data})


@router.get("/jobs", response_model=List[JobStatusResponse])
def list_jobs(
    state: Optional[str] = Query(None, description="queued, running, completed, failed or cancelled"),
    limit: int = Query(100, ge=1, le=1000),
    guard: ImageGuard = Depends(get_guard),
):
    try:
        job_state = JobState(state) if state else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown job state: {state}")
    return [_job_response(job) for job in guard.scheduler.tracker.list_jobs(job_state, limit)]


@router.get("/jobs/{job_key}", response_model=JobStatusResponse)
def job_status(job_key: str, guard: ImageGuard = Depends(get_guard)):
    job = guard.scheduler.status(job_key)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_response(job)


@router.post("/batches", response_model=BatchStatusResponse)
def start_batch(body: BatchRequest, guard: ImageGuard = Depends(get_guard)):
    """Regenerate artifacts for many images in the background."""
    batch = guard.service.regenerate_all(body.paths)
    logger.info(f"Started bulk regeneration {batch.batch_id} ({batch.total} images)")
    return _batch_response(batch)


@router.get("/batches/{batch_id}", response_model=BatchStatusResponse)
def batch_status(batch_id: str, guard: ImageGuard = Depends(get_guard)):
    batch = guard.scheduler.batch_status(batch_id)
    if batch is None:
        raise HTTPException(status_code=404, detail="Batch not found")
    return _batch_response(batch)


@router.post("/batches/{batch_id}/cancel", response_model=OperationResponse)
def cancel_batch(batch_id: str, guard: ImageGuard = Depends(get_guard)):
    if not guard.scheduler.cancel_batch(batch_id):
        raise HTTPException(status_code=404, detail="Batch not found or already finished")
    return OperationResponse(success=True, message="Batch cancelled", count=1)
