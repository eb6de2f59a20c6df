"""Worker that claims and processes queued enhancement jobs.

Each worker process polls the queue at a fixed interval, claims one job at
a time and processes its inputs in order:

- Graceful shutdown on SIGTERM/SIGINT (the current job finishes first)
- Optional limits on jobs processed and run time
- Heartbeat updates from a separate thread while a job runs
- Optional reaping of jobs whose worker stopped heartbeating
"""

import logging
import signal
import sqlite3
import tempfile
import threading
import time
from pathlib import Path, PurePosixPath

from sukudo.db.connection import get_connection
from sukudo.db.types import Job
from sukudo.enhance.controls import ControlSet, normalize
from sukudo.enhance.pipeline import EnhancePipeline
from sukudo.executor.ffmpeg import TranscodeError
from sukudo.jobs.events import JobEventLog
from sukudo.jobs.queue import (
    claim_next_job,
    complete_job,
    default_worker_id,
    fail_job,
    reap_stale_jobs,
    update_heartbeat,
)
from sukudo.logging import job_context
from sukudo.storage import (
    ObjectStorage,
    guess_content_type,
    output_object_path,
)
from sukudo.tools.detection import probe_media

logger = logging.getLogger(__name__)

# Seconds between queue polls when idle
DEFAULT_POLL_INTERVAL = 2.0

# Seconds between heartbeats while a job runs
HEARTBEAT_INTERVAL = 30.0
MAX_HEARTBEAT_FAILURES = 3


def describe_error(error: BaseException) -> str:
    """Job error text for an exception raised while processing."""
    if isinstance(error, TranscodeError):
        return error.diagnostic.summary()
    return str(error) or type(error).__name__


class EnhanceWorker:
    """Claims queued jobs and runs them through the enhancement pipeline."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        storage: ObjectStorage,
        pipeline: EnhancePipeline,
        ffprobe_path: Path | None = None,
        worker_id: str | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
        max_jobs: int | None = None,
        max_duration: int | None = None,
        reap_after: int | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        """Initialize the worker.

        Args:
            conn: Database connection used for claims, events and results.
            storage: Object storage holding inputs and receiving outputs.
            pipeline: Enhancement pipeline run for every input.
            ffprobe_path: ffprobe executable; None probes by extension only.
            worker_id: Identity recorded on claimed jobs (default host:pid).
            poll_interval: Seconds to sleep when the queue is empty.
            heartbeat_interval: Seconds between heartbeats.
            max_jobs: Stop after this many jobs (None = unlimited).
            max_duration: Stop after this many seconds (None = unlimited).
            reap_after: Fail running jobs silent for this many seconds
                before each poll (None = never).
            install_signal_handlers: Stop gracefully on SIGTERM/SIGINT.
        """
        self.conn = conn
        self.storage = storage
        self.pipeline = pipeline
        self.ffprobe_path = ffprobe_path
        self.worker_id = worker_id or default_worker_id()
        self.poll_interval = poll_interval
        self.heartbeat_interval = heartbeat_interval
        self.max_jobs = max_jobs
        self.max_duration = max_duration
        self.reap_after = reap_after

        # PRAGMA database_list returns (seq, name, file); file is empty
        # for in-memory databases
        row = conn.execute("PRAGMA database_list").fetchone()
        self._db_path = Path(row[2]) if row and row[2] else None

        self._shutdown = threading.Event()
        self._jobs_processed = 0
        self._start_time: float | None = None

        self._heartbeat_thread: threading.Thread | None = None
        self._heartbeat_stop = threading.Event()

        if install_signal_handlers:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)

    @property
    def jobs_processed(self) -> int:
        return self._jobs_processed

    def _signal_handler(self, signum: int, frame) -> None:
        sig_name = signal.Signals(signum).name
        logger.info("Received %s, requesting shutdown...", sig_name)
        self.request_shutdown()

    def request_shutdown(self) -> None:
        """Stop after the current job; wakes an idle poll immediately."""
        self._shutdown.set()

    def _should_continue(self) -> bool:
        if self._shutdown.is_set():
            return False

        if self.max_jobs is not None and self._jobs_processed >= self.max_jobs:
            logger.info("Reached max jobs limit (%d)", self.max_jobs)
            return False

        if self.max_duration is not None and self._start_time is not None:
            if time.monotonic() - self._start_time >= self.max_duration:
                logger.info(
                    "Reached max duration limit (%d seconds)", self.max_duration
                )
                return False

        return True

    def _start_heartbeat(self, job_id: str) -> None:
        """Start the heartbeat thread for a job.

        The thread uses its own connection so its commits never interleave
        with a transaction on the main connection.
        """
        if self._db_path is None:
            logger.debug("Heartbeat disabled: database has no file path")
            return

        self._heartbeat_stop.clear()
        db_path = self._db_path

        def heartbeat_loop() -> None:
            failures = 0
            with get_connection(db_path) as heartbeat_conn:
                while not self._heartbeat_stop.wait(self.heartbeat_interval):
                    try:
                        alive = update_heartbeat(
                            heartbeat_conn, job_id, self.worker_id
                        )
                        if not alive:
                            logger.warning(
                                "Job %s is no longer running under this worker",
                                job_id,
                            )
                            return
                        failures = 0
                    except sqlite3.Error as e:
                        failures += 1
                        logger.error(
                            "Heartbeat failed (%d/%d): %s",
                            failures,
                            MAX_HEARTBEAT_FAILURES,
                            e,
                        )
                        if failures >= MAX_HEARTBEAT_FAILURES:
                            logger.critical(
                                "Max heartbeat failures reached, requesting shutdown"
                            )
                            self.request_shutdown()
                            return

        self._heartbeat_thread = threading.Thread(
            target=heartbeat_loop,
            daemon=True,
            name=f"heartbeat-{job_id[:8]}",
        )
        self._heartbeat_thread.start()

    def _stop_heartbeat(self) -> None:
        self._heartbeat_stop.set()
        if self._heartbeat_thread is not None:
            self._heartbeat_thread.join(timeout=1.0)
            if self._heartbeat_thread.is_alive():
                logger.warning(
                    "Heartbeat thread %s did not stop within timeout",
                    self._heartbeat_thread.name,
                )
            self._heartbeat_thread = None

    def process_job(self, job: Job) -> bool:
        """Process every input of a claimed job and record the outcome.

        Any failure fails the whole job; outputs already uploaded for
        earlier inputs are left in storage but not reported.

        Returns:
            True if the job completed.
        """
        self._start_heartbeat(job.id)
        try:
            with job_context(job.id):
                logger.info("Processing job with %d input(s)", len(job.input_urls))
                try:
                    outputs = self._enhance_inputs(job)
                except Exception as e:
                    logger.exception("Job failed")
                    fail_job(self.conn, job.id, self.worker_id, describe_error(e))
                    return False

                try:
                    completed = complete_job(
                        self.conn, job.id, self.worker_id, outputs
                    )
                except sqlite3.Error as e:
                    # The guarded update keeps this to one terminal event
                    logger.exception("Could not record job completion")
                    fail_job(
                        self.conn,
                        job.id,
                        self.worker_id,
                        f"could not record completion: {e}",
                    )
                    return False
                if completed:
                    logger.info("Job completed with %d output(s)", len(outputs))
                return completed
        finally:
            self._stop_heartbeat()
            self._jobs_processed += 1

    def _enhance_inputs(self, job: Job) -> list[str]:
        controls = normalize(job.params)
        events = JobEventLog(self.conn, job.id)
        events.started(job.input_urls)

        outputs: list[str] = []
        with tempfile.TemporaryDirectory(prefix=f"sukudo-{job.id[:8]}-") as tmp:
            for index, url in enumerate(job.input_urls):
                with job_context(job.id, index):
                    work_dir = Path(tmp) / f"input-{index}"
                    outputs.append(
                        self._process_input(
                            job, index, url, controls, events, work_dir, outputs
                        )
                    )
        return outputs

    def _process_input(
        self,
        job: Job,
        index: int,
        url: str,
        controls: ControlSet,
        events: JobEventLog,
        work_dir: Path,
        taken: list[str],
    ) -> str:
        """Download, probe, enhance and upload one input.

        Returns:
            Storage path of the uploaded output.
        """
        local = work_dir / "source" / PurePosixPath(url).name

        events.progress("download", file=url, index=index)
        self.storage.download_file(url, local)

        events.progress("probe", file=url, index=index)
        probe = probe_media(self.ffprobe_path, local)
        logger.debug(
            "%s is %s with %d channel(s)", url, probe.kind.value, probe.channels
        )

        result = self.pipeline.enhance(
            local,
            controls,
            probe,
            work_dir,
            on_step=lambda step, details: events.progress(
                step, file=url, index=index, **details
            ),
            on_fallback=lambda reason: events.fallback(url, reason),
        )

        name = result.output.name
        output = output_object_path(job.id, name)
        if output in taken:
            # Two inputs with the same stem
            output = output_object_path(job.id, f"{index + 1}-{name}")

        events.progress("upload", file=url, index=index, output=output)
        self.storage.upload_file(output, result.output, guess_content_type(name))
        return output

    def run_once(self) -> bool:
        """Claim and process at most one job.

        Returns:
            True if a job was claimed (whatever its outcome).
        """
        if self.reap_after is not None:
            reap_stale_jobs(self.conn, self.reap_after)

        job = claim_next_job(self.conn, self.worker_id)
        if job is None:
            return False
        self.process_job(job)
        return True

    def run(self) -> int:
        """Poll the queue until shutdown or a configured limit.

        Errors from a single tick are logged and the loop continues.

        Returns:
            Number of jobs processed.
        """
        self._start_time = time.monotonic()
        self._jobs_processed = 0

        config_parts = [f"id={self.worker_id}", f"poll={self.poll_interval}s"]
        if self.max_jobs is not None:
            config_parts.append(f"max_jobs={self.max_jobs}")
        if self.max_duration is not None:
            config_parts.append(f"max_duration={self.max_duration}s")
        if self.reap_after is not None:
            config_parts.append(f"reap_after={self.reap_after}s")
        logger.info("Starting enhance worker: %s", ", ".join(config_parts))

        while self._should_continue():
            try:
                claimed = self.run_once()
            except Exception:
                logger.exception("Worker tick failed")
                claimed = False
            if not claimed:
                self._shutdown.wait(self.poll_interval)

        elapsed = time.monotonic() - self._start_time
        logger.info(
            "Worker finished: %d job(s) in %.1f seconds",
            self._jobs_processed,
            elapsed,
        )
        return self._jobs_processed
