"""Shared test fixtures for Sukudo."""

import os
import shutil
import sqlite3
import tempfile
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from sukudo.db import Job, JobStatus, JobType, insert_job, utc_now
from sukudo.db.schema import initialize_database
from sukudo.enhance.controls import normalize


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test isolation."""
    dir_path = tempfile.mkdtemp()
    yield Path(dir_path)
    shutil.rmtree(dir_path, ignore_errors=True)


@pytest.fixture
def runner() -> CliRunner:
    """Click test runner."""
    return CliRunner()


@pytest.fixture
def db_conn():
    """Create an in-memory database with schema."""
    conn = sqlite3.connect(":memory:")
    conn.row_factory = sqlite3.Row
    initialize_database(conn)
    yield conn
    conn.close()


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    """Path of a file database with the schema already created."""
    path = temp_dir / "sukudo.db"
    conn = sqlite3.connect(str(path))
    initialize_database(conn)
    conn.close()
    return path


@pytest.fixture
def make_job() -> Callable[..., Job]:
    """Factory inserting a job row directly, bypassing submission checks."""

    def _make_job(
        conn: sqlite3.Connection,
        input_urls: list[str] | None = None,
        params: dict[str, Any] | None = None,
        status: JobStatus = JobStatus.QUEUED,
        created_at: str | None = None,
    ) -> Job:
        now = created_at or utc_now()
        job = Job(
            id=str(uuid.uuid4()),
            job_type=JobType.ENHANCE,
            status=status,
            input_urls=input_urls or ["inputs/test/talk.wav"],
            params=normalize(params).to_dict(),
            created_at=now,
            updated_at=now,
        )
        insert_job(conn, job)
        conn.commit()
        return job

    return _make_job


@pytest.fixture(autouse=True)
def sukudo_data_dir(temp_dir: Path):
    """Point SUKUDO_DATA_DIR at a temporary directory for every test.

    Keeps CLI and config code away from ~/.sukudo and clears any SUKUDO_*
    variables from the developer's environment.
    """
    data_dir = temp_dir / ".sukudo"
    data_dir.mkdir(parents=True, exist_ok=True)

    env = {k: v for k, v in os.environ.items() if not k.startswith("SUKUDO_")}
    env["SUKUDO_DATA_DIR"] = str(data_dir)
    with patch.dict(os.environ, env, clear=True):
        yield data_dir
