"""Tests for the enhance worker."""

import sqlite3
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from sukudo.db import JobStatus, get_job
from sukudo.db.types import (
    EVENT_COMPLETED,
    EVENT_FAILED,
    EVENT_FALLBACK,
    EVENT_PROGRESS,
    EVENT_STARTED,
)
from sukudo.enhance.pipeline import EnhanceResult, enhanced_name
from sukudo.enhance.strategy import SeparationMode
from sukudo.executor.ffmpeg import Diagnostic, TranscodeError
from sukudo.jobs.events import get_all_events
from sukudo.jobs.queue import claim_next_job
from sukudo.jobs.worker import EnhanceWorker, describe_error
from sukudo.storage import LocalObjectStorage


class FakePipeline:
    """Writes a small output file per input; can fail on a chosen input."""

    def __init__(self, fail_on=None, fallback_reason=None):
        self.fail_on = fail_on
        self.fallback_reason = fallback_reason
        self.calls = []

    def enhance(self, source, controls, probe, work_dir, on_step, on_fallback):
        self.calls.append((source.name, controls, probe))
        if source.name == self.fail_on:
            raise TranscodeError(
                "enhance", Diagnostic(return_code=1, tail=("Invalid data",))
            )
        if self.fallback_reason:
            on_fallback(self.fallback_reason)
        on_step("enhance", {"mode": "fast"})
        output = work_dir / enhanced_name(source.name, probe.kind)
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_bytes(b"enhanced " + source.read_bytes())
        return EnhanceResult(
            output=output,
            mode=SeparationMode.FAST,
            fallback_reason=self.fallback_reason,
        )


@pytest.fixture
def storage(temp_dir: Path):
    store = LocalObjectStorage(temp_dir / "store")
    for name in ("talk.wav", "clip.mp4", "broken.wav"):
        store.upload(f"inputs/u1/{name}", name.encode(), "application/octet-stream")
    store.upload("inputs/u2/talk.wav", b"second", "audio/x-wav")
    return store


def _worker(conn, storage, pipeline, **kwargs):
    return EnhanceWorker(
        conn,
        storage,
        pipeline,
        worker_id="test:1",
        poll_interval=0.01,
        install_signal_handlers=False,
        **kwargs,
    )


class TestProcessJob:
    """End-to-end processing with a fake pipeline."""

    def test_completes_multi_input_job(self, db_conn, make_job, storage):
        job = make_job(db_conn, input_urls=["inputs/u1/talk.wav", "inputs/u1/clip.mp4"])
        pipeline = FakePipeline()
        worker = _worker(db_conn, storage, pipeline)

        assert worker.run_once()

        done = get_job(db_conn, job.id)
        assert done.status is JobStatus.COMPLETED
        assert done.output_urls == [
            f"outputs/{job.id}/talk.enhanced.m4a",
            f"outputs/{job.id}/clip.enhanced.mp4",
        ]
        assert done.result_url == done.output_urls[0]
        assert storage.download(done.output_urls[0]) == b"enhanced talk.wav"
        assert [c[0] for c in pipeline.calls] == ["talk.wav", "clip.mp4"]

    def test_event_sequence(self, db_conn, make_job, storage):
        job = make_job(db_conn, input_urls=["inputs/u1/talk.wav"])
        _worker(db_conn, storage, FakePipeline()).run_once()

        events = get_all_events(db_conn, job.id)
        messages = [e.message for e in events]
        assert messages[0] == EVENT_STARTED
        assert messages[-1] == EVENT_COMPLETED
        steps = [e.data["step"] for e in events if e.message == EVENT_PROGRESS]
        assert steps == ["download", "probe", "enhance", "upload"]
        assert [e.id for e in events] == sorted(e.id for e in events)

    def test_second_input_failure_fails_job(self, db_conn, make_job, storage):
        """A failure on any input fails the whole job with one Failed event."""
        job = make_job(
            db_conn, input_urls=["inputs/u1/talk.wav", "inputs/u1/broken.wav"]
        )
        worker = _worker(db_conn, storage, FakePipeline(fail_on="broken.wav"))

        assert worker.run_once()

        failed = get_job(db_conn, job.id)
        assert failed.status is JobStatus.FAILED
        assert failed.output_urls == []
        assert "ffmpeg exited with code 1" in failed.error_message
        assert "Invalid data" in failed.error_message
        messages = [e.message for e in get_all_events(db_conn, job.id)]
        assert messages.count(EVENT_FAILED) == 1
        assert EVENT_COMPLETED not in messages

    def test_missing_input_fails_job(self, db_conn, make_job, storage):
        job = make_job(db_conn, input_urls=["inputs/u1/nope.wav"])
        _worker(db_conn, storage, FakePipeline()).run_once()

        failed = get_job(db_conn, job.id)
        assert failed.status is JobStatus.FAILED
        assert "object not found" in failed.error_message

    def test_fallback_is_recorded(self, db_conn, make_job, storage):
        job = make_job(
            db_conn,
            input_urls=["inputs/u1/talk.wav"],
            params={"quality": "Max"},
        )
        pipeline = FakePipeline(fallback_reason="source separator not available")
        _worker(db_conn, storage, pipeline).run_once()

        events = get_all_events(db_conn, job.id)
        fallback = [e for e in events if e.message == EVENT_FALLBACK]
        assert len(fallback) == 1
        assert fallback[0].data == {
            "path": "inputs/u1/talk.wav",
            "reason": "source separator not available",
        }
        assert get_job(db_conn, job.id).status is JobStatus.COMPLETED
        assert pipeline.calls[0][1].quality.value == "Max"

    def test_duplicate_output_names(self, db_conn, make_job, storage):
        job = make_job(db_conn, input_urls=["inputs/u1/talk.wav", "inputs/u2/talk.wav"])
        _worker(db_conn, storage, FakePipeline()).run_once()

        done = get_job(db_conn, job.id)
        assert done.output_urls == [
            f"outputs/{job.id}/talk.enhanced.m4a",
            f"outputs/{job.id}/2-talk.enhanced.m4a",
        ]
        assert storage.download(done.output_urls[1]) == b"enhanced second"

    def test_probe_uses_extension_without_ffprobe(self, db_conn, make_job, storage):
        make_job(db_conn, input_urls=["inputs/u1/clip.mp4"])
        pipeline = FakePipeline()
        _worker(db_conn, storage, pipeline).run_once()
        probe = pipeline.calls[0][2]
        assert probe.kind.value == "video"
        assert probe.channels == 2

    def test_completion_write_error_fails_job(self, db_conn, make_job, storage):
        """A failed completion write still moves the job out of Running."""
        job = make_job(db_conn, input_urls=["inputs/u1/talk.wav"])
        worker = _worker(db_conn, storage, FakePipeline())

        with patch(
            "sukudo.jobs.worker.complete_job",
            side_effect=sqlite3.OperationalError("database is locked"),
        ):
            assert worker.run_once()

        failed = get_job(db_conn, job.id)
        assert failed.status is JobStatus.FAILED
        assert "database is locked" in failed.error_message
        messages = [e.message for e in get_all_events(db_conn, job.id)]
        assert messages.count(EVENT_FAILED) == 1
        assert EVENT_COMPLETED not in messages
        assert worker.jobs_processed == 1


class TestRunLoop:
    """Polling, limits and shutdown."""

    def test_run_once_empty_queue(self, db_conn, storage):
        assert not _worker(db_conn, storage, FakePipeline()).run_once()

    def test_max_jobs(self, db_conn, make_job, storage):
        for _ in range(3):
            make_job(db_conn, input_urls=["inputs/u1/talk.wav"])
        worker = _worker(db_conn, storage, FakePipeline(), max_jobs=2)

        assert worker.run() == 2
        assert claim_next_job(db_conn, "other") is not None

    def test_max_duration(self, db_conn, storage):
        worker = _worker(db_conn, storage, FakePipeline(), max_duration=0)
        assert worker.run() == 0

    def test_shutdown_stops_idle_loop(self, db_conn, storage):
        worker = _worker(db_conn, storage, FakePipeline())
        worker.poll_interval = 10
        timer = threading.Timer(0.05, worker.request_shutdown)
        timer.start()
        try:
            assert worker.run() == 0
        finally:
            timer.cancel()

    def test_reaps_before_claiming(self, db_conn, make_job, storage):
        stale = make_job(db_conn, input_urls=["inputs/u1/talk.wav"])
        claim_next_job(db_conn, "dead:1")
        db_conn.execute(
            "UPDATE jobs SET worker_heartbeat = '2000-01-01T00:00:00+00:00' "
            "WHERE id = ?",
            (stale.id,),
        )
        db_conn.commit()

        worker = _worker(db_conn, storage, FakePipeline(), reap_after=60)
        assert not worker.run_once()

        assert get_job(db_conn, stale.id).status is JobStatus.FAILED


class TestDescribeError:
    """Job error text."""

    def test_transcode_error_uses_diagnostic(self):
        error = TranscodeError("remix", Diagnostic(return_code=2, tail=("x",)))
        assert describe_error(error) == "ffmpeg exited with code 2:\nx"

    def test_empty_message_uses_type(self):
        assert describe_error(RuntimeError()) == "RuntimeError"
