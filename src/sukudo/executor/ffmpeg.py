"""ffmpeg transcode executor.

Runs one ffmpeg invocation per pipeline stage (extract, single pass,
remix). stderr is read on a separate thread so a timeout can be enforced,
and only the last TAIL_LINES lines are kept for diagnostics. The executor
never retries; callers decide what a failure means for the job.
"""

import logging
import queue
import subprocess  # nosec B404 - subprocess is required for FFmpeg invocation
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

from sukudo.enhance.graph import ChainSource, FilterChain, MediaKind
from sukudo.tools.detection import require_tool

logger = logging.getLogger(__name__)

# Number of stderr lines kept for a failure diagnostic
TAIL_LINES = 40

# Intermediate format handed to the source separator
EXTRACT_SAMPLE_RATE = 48000
EXTRACT_CHANNELS = 2

AUDIO_BITRATE = "160k"
VIDEO_AUDIO_BITRATE = "192k"


@dataclass(frozen=True)
class Diagnostic:
    """Bounded failure report from an external tool."""

    return_code: int
    tail: tuple[str, ...] = ()
    timed_out: bool = False
    reason: str | None = None

    def summary(self, tool: str = "ffmpeg") -> str:
        """Human-readable one-block description for job error text."""
        if self.timed_out:
            head = f"{tool} timed out"
        elif self.reason:
            head = f"{tool} failed: {self.reason}"
        else:
            head = f"{tool} exited with code {self.return_code}"
        if not self.tail:
            return head
        return head + ":\n" + "\n".join(self.tail)


@dataclass
class TranscodeResult:
    """Result of a single ffmpeg stage."""

    success: bool
    outputs: list[Path] = field(default_factory=list)
    diagnostic: Diagnostic | None = None


class TranscodeError(Exception):
    """Raised when an ffmpeg stage fails and the caller cannot recover."""

    def __init__(self, stage: str, diagnostic: Diagnostic) -> None:
        self.stage = stage
        self.diagnostic = diagnostic
        super().__init__(f"{stage}: {diagnostic.summary()}")


def output_suffix(kind: MediaKind) -> str:
    """Container suffix for enhanced output of a given media kind."""
    return ".mp4" if kind is MediaKind.VIDEO else ".m4a"


def encode_args(kind: MediaKind) -> list[str]:
    """Stream mapping and encoder arguments for the final output."""
    if kind is MediaKind.VIDEO:
        return [
            "-map",
            "0:v?",
            "-c:v",
            "copy",
            "-map",
            "[aout]",
            "-c:a",
            "aac",
            "-b:a",
            VIDEO_AUDIO_BITRATE,
            "-movflags",
            "+faststart",
        ]
    return ["-map", "[aout]", "-c:a", "aac", "-b:a", AUDIO_BITRATE]


class TranscodeExecutor:
    """Builds and runs ffmpeg commands for the enhancement pipeline."""

    DEFAULT_TIMEOUT: int = 1800  # 30 minutes
    STDERR_DRAIN_TIMEOUT: float = 5.0

    def __init__(
        self, ffmpeg_path: Path | None = None, timeout: float | None = None
    ) -> None:
        """Initialize the executor.

        Args:
            ffmpeg_path: Configured ffmpeg path. None searches PATH.
            timeout: Per-stage timeout in seconds. None uses DEFAULT_TIMEOUT.
        """
        self._configured_path = ffmpeg_path
        self._tool_path: Path | None = None
        self._timeout = timeout if timeout is not None else self.DEFAULT_TIMEOUT

    @property
    def tool_path(self) -> Path:
        """Get path to ffmpeg, verifying availability.

        Raises:
            RuntimeError: If ffmpeg is not available.
        """
        if self._tool_path is None:
            self._tool_path = require_tool("ffmpeg", self._configured_path)
        return self._tool_path

    def extract_command(self, source: Path, dest: Path) -> list[str]:
        """Command producing a stereo 48 kHz PCM intermediate."""
        return [
            str(self.tool_path),
            "-y",
            "-hide_banner",
            "-i",
            str(source),
            "-vn",
            "-ac",
            str(EXTRACT_CHANNELS),
            "-ar",
            str(EXTRACT_SAMPLE_RATE),
            "-c:a",
            "pcm_s16le",
            str(dest),
        ]

    def chain_command(
        self, inputs: list[Path], chain: FilterChain, dest: Path
    ) -> list[str]:
        """Command applying a filter chain to its inputs.

        Mid/side chains take the original file only. Stem chains take the
        vocal and background stems, preceded by the original file for video
        so its picture can be stream-copied.

        Raises:
            ValueError: If the number of inputs does not match the chain.
        """
        expected = 1
        if chain.source is ChainSource.STEMS:
            expected = 3 if chain.kind is MediaKind.VIDEO else 2
        if len(inputs) != expected:
            raise ValueError(
                f"{chain.source.value} chain for {chain.kind.value} expects "
                f"{expected} input(s), got {len(inputs)}"
            )

        cmd = [str(self.tool_path), "-y", "-hide_banner"]
        for path in inputs:
            cmd.extend(["-i", str(path)])
        cmd.extend(["-filter_complex", chain.to_filtergraph()])
        cmd.extend(encode_args(chain.kind))
        cmd.append(str(dest))
        return cmd

    def extract(self, source: Path, dest: Path) -> TranscodeResult:
        """Extract the separator intermediate from any input."""
        return self.execute(self.extract_command(source, dest), [dest], "extract")

    def run(
        self, inputs: list[Path], chain: FilterChain, dest: Path
    ) -> TranscodeResult:
        """Run a filter chain over its inputs, producing dest."""
        description = "remix" if chain.source is ChainSource.STEMS else "enhance"
        cmd = self.chain_command(inputs, chain, dest)
        return self.execute(cmd, [dest], description)

    def execute(
        self, cmd: list[str], outputs: list[Path], description: str
    ) -> TranscodeResult:
        """Run an ffmpeg command and verify its outputs exist.

        Args:
            cmd: Full ffmpeg command line.
            outputs: Files the command is expected to produce.
            description: Stage name for logging.

        Returns:
            TranscodeResult; on failure diagnostic carries the stderr tail.
        """
        logger.debug("Running %s: %s", description, " ".join(cmd))
        try:
            success, rc, tail = self._run_with_timeout(
                cmd, description, self._timeout
            )
        except OSError as e:
            logger.error("Could not start ffmpeg for %s: %s", description, e)
            return TranscodeResult(
                success=False, diagnostic=Diagnostic(return_code=-1, reason=str(e))
            )

        if not success:
            diagnostic = Diagnostic(
                return_code=rc, tail=tuple(tail), timed_out=rc == -1
            )
            logger.warning("%s failed with code %d", description, rc)
            for path in outputs:
                _cleanup_partial(path)
            return TranscodeResult(success=False, diagnostic=diagnostic)

        missing = [p for p in outputs if not p.exists()]
        if missing:
            return TranscodeResult(
                success=False,
                diagnostic=Diagnostic(
                    return_code=rc,
                    tail=tuple(tail),
                    reason=f"output not produced: {missing[0].name}",
                ),
            )
        return TranscodeResult(success=True, outputs=list(outputs))

    def _run_with_timeout(
        self, cmd: list[str], description: str, timeout: float | None
    ) -> tuple[bool, int, list[str]]:
        """Run a command with timeout and threaded stderr reading.

        Returns:
            Tuple of (success, return_code, stderr_tail). return_code is -1
            on timeout.
        """
        process = subprocess.Popen(  # nosec B603
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
        )

        tail: deque[str] = deque(maxlen=TAIL_LINES)
        stderr_queue: queue.Queue[str | None] = queue.Queue()
        stop_event = threading.Event()

        def read_stderr() -> None:
            """Read stderr lines and put them in the queue."""
            try:
                assert process.stderr is not None
                for line in process.stderr:
                    if stop_event.is_set():
                        break
                    stderr_queue.put(line.rstrip("\n"))
            except (ValueError, OSError) as e:
                logger.debug("Stderr reader stopped: %s", e)
            finally:
                stderr_queue.put(None)

        reader_thread = threading.Thread(target=read_stderr, daemon=True)
        reader_thread.start()

        timeout_expired = False
        start_time = time.monotonic()

        while True:
            if timeout is not None and time.monotonic() - start_time >= timeout:
                timeout_expired = True
                break
            if process.poll() is not None:
                break
            try:
                line = stderr_queue.get(timeout=1.0)
            except queue.Empty:
                continue
            if line is None:
                break
            tail.append(line)

        if timeout_expired:
            logger.warning("%s timed out after %s seconds", description, timeout)
            stop_event.set()
            process.kill()
            process.wait()
            reader_thread.join(timeout=2.0)
            return (False, -1, list(tail))

        reader_thread.join(timeout=self.STDERR_DRAIN_TIMEOUT)
        while True:
            try:
                line = stderr_queue.get_nowait()
            except queue.Empty:
                break
            if line is None:
                break
            tail.append(line)

        process.wait()
        return (process.returncode == 0, process.returncode, list(tail))


def _cleanup_partial(path: Path) -> None:
    """Remove a partially written output file."""
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove partial output %s: %s", path, e)
