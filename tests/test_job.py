import pytest

from jobctl.exceptions import CreationError, StoreError, ValidationError
from jobctl.job import BackgroundJob, create_background_job, validate_status
from jobctl.repository import list_jobs
from jobctl.models import (
    JOB_STATUSES, JOB_STATUS_COMPLETE, JOB_STATUS_FAILED, JOB_STATUS_PARTIAL,
    JOB_STATUS_QUEUED, JOB_STATUS_RUNNING, JobFailure, META_KEY_JOB_ATTEMPTS,
    META_KEY_JOB_DATA, META_KEY_JOB_ERRORS, META_KEY_JOB_LOCK, META_KEY_JOB_NAME,
)


def test_metadata_keys_and_status_tokens_are_stable():
    from jobctl import models

    assert models.META_KEY_JOB_NAME == "perflab_job_name"
    assert models.META_KEY_JOB_DATA == "perflab_job_data"
    assert models.META_KEY_JOB_ATTEMPTS == "perflab_job_attempts"
    assert models.META_KEY_JOB_LOCK == "perflab_job_lock"
    assert models.META_KEY_JOB_ERRORS == "perflab_job_errors"
    assert models.META_KEY_JOB_STATUS == "perflab_job_status"
    assert JOB_STATUSES == (
        "perflab_job_queued",
        "perflab_job_running",
        "perflab_job_partial",
        "perflab_job_complete",
        "perflab_job_failed",
    )


def test_create_job_persists_name_data_and_queued_status(store, registry):
    data = {"post_id": 10, "some_random_data": "some_random_string"}
    job = create_background_job(store, registry, "test_job", data)

    assert isinstance(job, BackgroundJob)
    assert registry.exists(job.get_id())
    assert store.get(job.get_id(), META_KEY_JOB_NAME) == "test_job"
    assert store.get(job.get_id(), META_KEY_JOB_DATA) == data
    assert job.get_status() == JOB_STATUS_QUEUED
    assert job.get_attempts() == 0
    assert job.get_start_time() is None
    assert job.get_errors() is None


def test_create_job_without_data_stores_empty_mapping(store, registry):
    job = create_background_job(store, registry, "test")
    assert job.get_data() == {}


def test_create_job_rejects_empty_name(store, registry):
    with pytest.raises(ValueError):
        create_background_job(store, registry, "  ")


def test_create_job_allocates_distinct_ids(store, registry):
    a = create_background_job(store, registry, "a")
    b = create_background_job(store, registry, "b")
    assert a.get_id() != b.get_id()


class _BrokenRegistry:
    def allocate_id(self, name):
        raise CreationError("store unavailable")

    def delete(self, job_id):
        return False

    def exists(self, job_id):
        return False


def test_create_job_fails_when_registry_cannot_allocate(store):
    with pytest.raises(CreationError):
        create_background_job(store, _BrokenRegistry(), "test")


def test_get_data_returns_a_copy(store, registry):
    job = create_background_job(store, registry, "test", {"sizes": ["thumb"]})
    job.get_data()["sizes"].append("large")
    assert job.get_data() == {"sizes": ["thumb"]}


def test_set_status_false_for_invalid_status(store, registry):
    job = create_background_job(store, registry, "test")

    assert job.set_status("invalid_status") is False
    assert job.get_status() == JOB_STATUS_QUEUED


def test_set_status_true_for_every_valid_status(store, registry):
    job = create_background_job(store, registry, "test")

    for status in (JOB_STATUS_RUNNING, JOB_STATUS_PARTIAL, JOB_STATUS_FAILED,
                   JOB_STATUS_COMPLETE, JOB_STATUS_QUEUED):
        assert job.set_status(status) is True
        assert job.get_status() == status


def test_any_status_may_follow_complete(store, registry):
    job = create_background_job(store, registry, "test")
    job.set_status(JOB_STATUS_COMPLETE)

    assert job.set_status(JOB_STATUS_RUNNING) is True
    assert job.should_run() is True


def test_validate_status_raises_for_unknown_token():
    assert validate_status(JOB_STATUS_RUNNING) == JOB_STATUS_RUNNING
    with pytest.raises(ValidationError):
        validate_status("bogus")


@pytest.mark.parametrize("status", JOB_STATUSES)
def test_should_run_is_false_only_when_complete(store, registry, status):
    job = create_background_job(store, registry, "test")
    job.set_status(status)
    assert job.should_run() is (status != JOB_STATUS_COMPLETE)


def test_lock_unlock(store, registry):
    job = create_background_job(store, registry, "test")

    job.lock(1700000000)
    assert store.get(job.get_id(), META_KEY_JOB_LOCK) == 1700000000
    assert job.get_start_time() == 1700000000

    job.unlock()
    assert store.get(job.get_id(), META_KEY_JOB_LOCK) is None
    assert job.get_start_time() is None


def test_lock_overwrites_previous_lock(store, registry):
    job = create_background_job(store, registry, "test")
    job.lock(1000)
    job.lock(2000)
    assert job.get_start_time() == 2000


def test_unlock_is_idempotent(store, registry):
    job = create_background_job(store, registry, "test")
    job.unlock()
    job.unlock()
    assert job.get_start_time() is None


def test_lock_is_advisory(store, registry):
    job = create_background_job(store, registry, "test")
    first = BackgroundJob.load(store, job.get_id())
    second = BackgroundJob.load(store, job.get_id())

    assert first.get_start_time() is None
    assert second.get_start_time() is None
    first.lock(1000)
    second.lock(1001)
    assert job.get_start_time() == 1001


def test_set_error(store, registry):
    error_data = {"test_error_data": "descriptive_infomation"}
    job = create_background_job(store, registry, "test", {"post_id": 10})

    job.set_error(JobFailure(kind="perflab_job_failure", details=error_data))

    assert store.get(job.get_id(), META_KEY_JOB_ERRORS) == error_data
    assert job.get_attempts() == 1
    assert job.get_status() == JOB_STATUS_QUEUED


def test_set_error_accumulates_attempts_and_overwrites_errors(store, registry):
    job = create_background_job(store, registry, "test")

    for i in range(3):
        job.set_error(JobFailure(kind="resize_failed", details={"try": i}))

    assert job.get_attempts() == 3
    assert job.get_errors() == {"try": 2}


def test_set_error_without_details_clears_errors(store, registry):
    job = create_background_job(store, registry, "test")
    job.set_error(JobFailure(kind="resize_failed", details={"size": "large"}))
    job.set_error(JobFailure(kind="timeout"))

    assert job.get_errors() is None
    assert job.get_attempts() == 2


class _FailingAttemptsStore:
    def __init__(self, inner):
        self.inner = inner

    def get(self, job_id, key, default=None):
        return self.inner.get(job_id, key, default)

    def set(self, job_id, key, value):
        if key == META_KEY_JOB_ATTEMPTS:
            raise StoreError("disk full")
        self.inner.set(job_id, key, value)

    def delete(self, job_id, key):
        self.inner.delete(job_id, key)


def test_set_error_is_not_atomic(store, registry):
    job = create_background_job(store, registry, "test")
    flaky = BackgroundJob.load(_FailingAttemptsStore(store), job.get_id())

    with pytest.raises(StoreError):
        flaky.set_error(JobFailure(kind="resize_failed", details={"size": "large"}))

    assert job.get_errors() == {"size": "large"}
    assert job.get_attempts() == 0


class _FailingDataStore(_FailingAttemptsStore):
    def set(self, job_id, key, value):
        if key == META_KEY_JOB_DATA:
            raise StoreError("disk full")
        self.inner.set(job_id, key, value)


def test_create_job_removes_registry_entry_when_metadata_write_fails(conn, store, registry):
    with pytest.raises(StoreError):
        create_background_job(_FailingDataStore(store), registry, "resize", {"post_id": 10})

    assert list_jobs(conn) == []


def test_create_job_failure_leaves_other_jobs_alone(conn, store, registry):
    kept = create_background_job(store, registry, "resize", {"post_id": 1})

    with pytest.raises(StoreError):
        create_background_job(_FailingDataStore(store), registry, "resize", {"post_id": 2})

    assert [r.id for r in list_jobs(conn)] == [kept.get_id()]


def test_lock_keeps_fractional_timestamp(store, registry):
    job = create_background_job(store, registry, "test")
    job.lock(1000.5)
    assert job.get_start_time() == 1000.5


def test_to_record(store, registry):
    job = create_background_job(store, registry, "resize", {"post_id": 10})
    job.lock(1000)

    record = job.to_record()

    assert record.id == job.get_id()
    assert record.name == "resize"
    assert record.data == {"post_id": 10}
    assert record.status == JOB_STATUS_QUEUED
    assert record.lock_time == 1000
    assert record.to_dict()["attempts"] == 0


def test_resize_scenario(store, registry):
    job = create_background_job(store, registry, "resize", {"post_id": 10})
    assert job.get_status() == JOB_STATUS_QUEUED
    assert job.should_run() is True

    job.lock(1000)
    assert job.get_start_time() == 1000

    assert job.set_status(JOB_STATUS_PARTIAL) is True
    assert job.should_run() is True

    job.unlock()
    assert job.get_start_time() is None

    job.set_status(JOB_STATUS_COMPLETE)
    assert job.should_run() is False


@pytest.mark.parametrize("status", [JOB_STATUS_RUNNING, JOB_STATUS_COMPLETE])
def test_invalid_status_keeps_previous_status(store, registry, status):
    job = create_background_job(store, registry, "resize")
    job.set_status(status)

    assert job.set_status("bogus") is False
    assert job.get_status() == status


def test_bogus_status_on_fresh_job(store, registry):
    job = create_background_job(store, registry, "resize")
    assert job.set_status("bogus") is False
    assert job.get_status() == JOB_STATUS_QUEUED
