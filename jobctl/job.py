"""
Background job handle.

A job is an id allocated by a JobRegistry plus a handful of metadata
entries in a MetadataStore. The handle holds no state of its own; every
accessor reads the store and every mutator writes it straight through.

Locking is advisory: lock() only records a timestamp, and callers are
expected to read get_start_time() before deciding to run a job.
"""

import copy
from typing import Any, Dict, Optional

from .exceptions import CreationError, JobctlError, ValidationError
from .models import (
    JOB_STATUSES, JOB_STATUS_COMPLETE, JOB_STATUS_QUEUED, JobFailure, JobRecord,
    META_KEY_JOB_ATTEMPTS, META_KEY_JOB_DATA, META_KEY_JOB_ERRORS,
    META_KEY_JOB_LOCK, META_KEY_JOB_NAME, META_KEY_JOB_STATUS,
)
from .repository import JobRegistry, MetadataStore


def validate_status(status: str) -> str:
    if status not in JOB_STATUSES:
        raise ValidationError(
            f"Invalid job status {status!r}. Allowed: {', '.join(JOB_STATUSES)}"
        )
    return status


class BackgroundJob:
    """One unit of deferred, retryable work."""

    def __init__(self, store: MetadataStore, job_id: int):
        self.store = store
        self._id = job_id

    @classmethod
    def create(
        cls,
        store: MetadataStore,
        registry: JobRegistry,
        name: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> "BackgroundJob":
        """
        Allocate a new job id and persist its name, data and initial status.

        Raises ValueError for an empty name and CreationError when the
        registry cannot hand out an id.
        """
        if not name or not name.strip():
            raise ValueError("Job name cannot be empty.")

        job_id = registry.allocate_id(name)
        if job_id is None:
            raise CreationError(f"Registry returned no id for job {name!r}.")

        job = cls(store, job_id)
        try:
            store.set(job_id, META_KEY_JOB_NAME, name)
            store.set(job_id, META_KEY_JOB_DATA, dict(data or {}))
            store.set(job_id, META_KEY_JOB_STATUS, JOB_STATUS_QUEUED)
        except JobctlError:
            # a half-written job would otherwise list as queued
            registry.delete(job_id)
            raise
        return job

    @classmethod
    def load(cls, store: MetadataStore, job_id: int) -> "BackgroundJob":
        return cls(store, job_id)

    # ---------- Accessors ----------
    def get_id(self) -> int:
        return self._id

    def get_name(self) -> Optional[str]:
        return self.store.get(self._id, META_KEY_JOB_NAME)

    def get_data(self) -> Dict[str, Any]:
        # Copy so callers cannot mutate the persisted payload through us.
        return copy.deepcopy(self.store.get(self._id, META_KEY_JOB_DATA, {}))

    def get_status(self) -> str:
        return self.store.get(self._id, META_KEY_JOB_STATUS, JOB_STATUS_QUEUED)

    def get_attempts(self) -> int:
        return int(self.store.get(self._id, META_KEY_JOB_ATTEMPTS, 0))

    def get_start_time(self) -> Optional[float]:
        """Time the job was last locked, exactly as passed to lock(), or None."""
        return self.store.get(self._id, META_KEY_JOB_LOCK)

    def get_errors(self) -> Optional[Dict[str, Any]]:
        return self.store.get(self._id, META_KEY_JOB_ERRORS)

    def should_run(self) -> bool:
        """
        True unless the job is complete.

        Queued, running, partial and failed jobs are all eligible; whether
        it is safe to run right now is the lock's concern.
        """
        return self.get_status() != JOB_STATUS_COMPLETE

    # ---------- Mutators ----------
    def lock(self, timestamp: float) -> None:
        self.store.set(self._id, META_KEY_JOB_LOCK, timestamp)

    def unlock(self) -> None:
        self.store.delete(self._id, META_KEY_JOB_LOCK)

    def set_status(self, status: str) -> bool:
        """Persist a new status. Any valid status may follow any other."""
        try:
            validate_status(status)
        except ValidationError:
            return False
        self.store.set(self._id, META_KEY_JOB_STATUS, status)
        return True

    def set_error(self, error: JobFailure) -> None:
        """
        Record a failure: overwrite the stored error details and bump the
        attempt counter. Status is left alone.

        The two writes are independent; if the second one fails the details
        are stored without the attempt being counted.
        """
        if error.details is None:
            self.store.delete(self._id, META_KEY_JOB_ERRORS)
        else:
            self.store.set(self._id, META_KEY_JOB_ERRORS, error.details)
        self.store.set(self._id, META_KEY_JOB_ATTEMPTS, self.get_attempts() + 1)

    def to_record(self) -> JobRecord:
        return JobRecord(
            id=self._id,
            name=self.get_name(),
            data=self.get_data(),
            status=self.get_status(),
            attempts=self.get_attempts(),
            lock_time=self.get_start_time(),
            errors=self.get_errors(),
        )

    def __repr__(self) -> str:
        return f"BackgroundJob(id={self._id!r})"


def create_background_job(
    store: MetadataStore,
    registry: JobRegistry,
    name: str,
    data: Optional[Dict[str, Any]] = None,
) -> BackgroundJob:
    return BackgroundJob.create(store, registry, name, data)
