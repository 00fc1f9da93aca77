import os
import sqlite3
from typing import Optional

from .config import DEFAULT_CONFIG

DEFAULT_DB_FILE = "jobs.db"

SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS job_terms (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    taxonomy TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS job_meta (
    job_id INTEGER NOT NULL,
    meta_key TEXT NOT NULL,
    meta_value TEXT,
    PRIMARY KEY (job_id, meta_key)
);

CREATE INDEX IF NOT EXISTS idx_job_meta_key_value ON job_meta(meta_key, meta_value);
CREATE TABLE IF NOT EXISTS config (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""


def db_path() -> str:
    return os.environ.get("JOBCTL_DB", DEFAULT_DB_FILE)


def connect_db(path: Optional[str] = None) -> sqlite3.Connection:
    conn = sqlite3.connect(path or db_path())
    conn.row_factory = sqlite3.Row
    conn.executescript(SCHEMA)
    return conn


def init_db(path: Optional[str] = None):
    conn = connect_db(path)
    try:
        with conn:
            # seed defaults
            for k, v in DEFAULT_CONFIG.items():
                conn.execute(
                    "INSERT OR IGNORE INTO config(key, value) VALUES(?,?)", (k, v)
                )
    finally:
        conn.close()
