import json
import sqlite3
from typing import Any, Dict, List, Optional, Protocol

from .config import ALLOWED_CONFIG_KEYS
from .exceptions import CreationError, StoreError
from .models import (
    JOB_STATUSES, JOB_STATUS_QUEUED, JOB_TAXONOMY, JobRecord,
    META_KEY_JOB_ATTEMPTS, META_KEY_JOB_DATA, META_KEY_JOB_ERRORS,
    META_KEY_JOB_LOCK, META_KEY_JOB_NAME, META_KEY_JOB_STATUS,
)
from .utils import now_iso


class MetadataStore(Protocol):
    def get(self, job_id: int, key: str, default: Any = None) -> Any: ...

    def set(self, job_id: int, key: str, value: Any) -> None: ...

    def delete(self, job_id: int, key: str) -> None: ...


class JobRegistry(Protocol):
    def allocate_id(self, name: str) -> int: ...

    def delete(self, job_id: int) -> bool: ...

    def exists(self, job_id: int) -> bool: ...


# ---------- Config ----------
def get_config(conn) -> Dict[str, str]:
    cur = conn.execute("SELECT key, value FROM config")
    return {r["key"]: r["value"] for r in cur.fetchall()}


def set_config(conn, key: str, value: str):
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    # every setting is a count or a number of seconds
    if not str(value).isdigit() or int(value) <= 0:
        raise ValueError(f"{key} must be a positive integer.")
    with conn:
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, str(value)),
        )


# ---------- Metadata ----------
def _decode(job_id: int, key: str, raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError as e:
        raise StoreError(f"Corrupt value for job {job_id} key {key!r}: {e}")


class SQLiteMetadataStore:
    """Key/value metadata per job id, values stored JSON-encoded."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, job_id: int, key: str, default: Any = None) -> Any:
        try:
            row = self.conn.execute(
                "SELECT meta_value FROM job_meta WHERE job_id=? AND meta_key=?",
                (job_id, key),
            ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"DB error while reading {key!r} for job {job_id}: {e}")
        if row is None:
            return default
        value = _decode(job_id, key, row["meta_value"])
        return default if value is None else value

    def set(self, job_id: int, key: str, value: Any) -> None:
        try:
            encoded = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StoreError(f"Value for {key!r} is not serialisable: {e}")
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT INTO job_meta(job_id, meta_key, meta_value) VALUES(?,?,?) "
                    "ON CONFLICT(job_id, meta_key) DO UPDATE SET meta_value=excluded.meta_value",
                    (job_id, key, encoded),
                )
        except sqlite3.Error as e:
            raise StoreError(f"DB error while writing {key!r} for job {job_id}: {e}")

    def delete(self, job_id: int, key: str) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    "DELETE FROM job_meta WHERE job_id=? AND meta_key=?",
                    (job_id, key),
                )
        except sqlite3.Error as e:
            raise StoreError(f"DB error while deleting {key!r} for job {job_id}: {e}")


# ---------- Registry ----------
class SQLiteJobRegistry:
    def __init__(self, conn: sqlite3.Connection, taxonomy: str = JOB_TAXONOMY):
        self.conn = conn
        self.taxonomy = taxonomy

    def allocate_id(self, name: str) -> int:
        try:
            with self.conn:
                cur = self.conn.execute(
                    "INSERT INTO job_terms(name, taxonomy, created_at) VALUES(?,?,?)",
                    (name, self.taxonomy, now_iso()),
                )
        except sqlite3.Error as e:
            raise CreationError(f"DB error while allocating job id: {e}")
        return cur.lastrowid

    def exists(self, job_id: int) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM job_terms WHERE id=? AND taxonomy=?",
            (job_id, self.taxonomy),
        ).fetchone()
        return row is not None

    def delete(self, job_id: int) -> bool:
        try:
            with self.conn:
                res = self.conn.execute(
                    "DELETE FROM job_terms WHERE id=? AND taxonomy=?",
                    (job_id, self.taxonomy),
                )
                if res.rowcount != 1:
                    return False
                self.conn.execute("DELETE FROM job_meta WHERE job_id=?", (job_id,))
        except sqlite3.Error as e:
            raise StoreError(f"DB error while deleting job {job_id}: {e}")
        return True


# ---------- Queries ----------
def _record_from_meta(job_id: int, meta: Dict[str, Any]) -> JobRecord:
    return JobRecord(
        id=job_id,
        name=meta.get(META_KEY_JOB_NAME),
        data=meta.get(META_KEY_JOB_DATA) or {},
        status=meta.get(META_KEY_JOB_STATUS) or JOB_STATUS_QUEUED,
        attempts=int(meta.get(META_KEY_JOB_ATTEMPTS) or 0),
        lock_time=meta.get(META_KEY_JOB_LOCK),
        errors=meta.get(META_KEY_JOB_ERRORS),
    )


def list_jobs(conn, status: Optional[str] = None,
              taxonomy: str = JOB_TAXONOMY) -> List[JobRecord]:
    rows = conn.execute(
        """SELECT t.id AS id, m.meta_key AS meta_key, m.meta_value AS meta_value
           FROM job_terms t LEFT JOIN job_meta m ON m.job_id = t.id
           WHERE t.taxonomy=?
           ORDER BY t.id ASC""",
        (taxonomy,),
    ).fetchall()

    meta_by_job: Dict[int, Dict[str, Any]] = {}
    for r in rows:
        meta = meta_by_job.setdefault(r["id"], {})
        if r["meta_key"] is not None:
            meta[r["meta_key"]] = _decode(r["id"], r["meta_key"], r["meta_value"])

    records = [_record_from_meta(job_id, meta) for job_id, meta in meta_by_job.items()]
    if status:
        records = [rec for rec in records if rec.status == status]
    return records


def counts(conn) -> Dict[str, int]:
    out = {s: 0 for s in JOB_STATUSES}
    for rec in list_jobs(conn):
        out[rec.status] = out.get(rec.status, 0) + 1
    return out
