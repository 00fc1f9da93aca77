import pytest

from jobctl.db import connect_db, init_db
from jobctl.repository import SQLiteJobRegistry, SQLiteMetadataStore


@pytest.fixture
def conn(tmp_path):
    path = str(tmp_path / "jobs.db")
    init_db(path)
    conn = connect_db(path)
    yield conn
    conn.close()


@pytest.fixture
def store(conn):
    return SQLiteMetadataStore(conn)


@pytest.fixture
def registry(conn):
    return SQLiteJobRegistry(conn)
