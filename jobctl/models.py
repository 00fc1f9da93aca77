from dataclasses import dataclass, field
from typing import Any, Dict, Optional

# Registry namespace job ids live in
JOB_TAXONOMY = "background_job"

# Metadata keys
META_KEY_JOB_NAME = "perflab_job_name"
META_KEY_JOB_DATA = "perflab_job_data"
META_KEY_JOB_ATTEMPTS = "perflab_job_attempts"
META_KEY_JOB_LOCK = "perflab_job_lock"
META_KEY_JOB_ERRORS = "perflab_job_errors"
META_KEY_JOB_STATUS = "perflab_job_status"

# Job States
JOB_STATUS_QUEUED = "perflab_job_queued"
JOB_STATUS_RUNNING = "perflab_job_running"
JOB_STATUS_PARTIAL = "perflab_job_partial"
JOB_STATUS_COMPLETE = "perflab_job_complete"
JOB_STATUS_FAILED = "perflab_job_failed"

JOB_STATUSES = (
    JOB_STATUS_QUEUED,
    JOB_STATUS_RUNNING,
    JOB_STATUS_PARTIAL,
    JOB_STATUS_COMPLETE,
    JOB_STATUS_FAILED,
)


@dataclass
class JobFailure:
    """Structured error recorded against a job by set_error()."""
    kind: str
    details: Optional[Dict[str, Any]] = None


@dataclass
class JobRecord:
    id: int
    name: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    status: str = JOB_STATUS_QUEUED
    attempts: int = 0
    lock_time: Optional[float] = None
    errors: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "data": self.data,
            "status": self.status,
            "attempts": self.attempts,
            "lock_time": self.lock_time,
            "errors": self.errors,
        }
