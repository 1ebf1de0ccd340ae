"""
Background Generation

Priority-queued watermark generation, bulk regeneration batches and
job status tracking.
"""

from .tracker import (
    BatchRecord,
    BatchStatus,
    JobRecord,
    JobState,
    JobTracker,
    Priority,
)
from .scheduler import GenerationOutcome, GenerationRequest, GenerationScheduler

__all__ = [
    "BatchRecord",
    "BatchStatus",
    "JobRecord",
    "JobState",
    "JobTracker",
    "Priority",
    "GenerationOutcome",
    "GenerationRequest",
    "GenerationScheduler",
]
