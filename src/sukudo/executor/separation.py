"""Source separation through demucs.

demucs splits a stereo intermediate into a vocal stem and a residual
(background) stem. Its absence or failure is a soft error: callers catch
SeparationError and fall back to mid/side processing.
"""

import logging
import subprocess  # nosec B404 - subprocess is required for demucs invocation
from dataclasses import dataclass
from pathlib import Path

from sukudo.executor.ffmpeg import TAIL_LINES, Diagnostic
from sukudo.tools.detection import probe_separator

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "htdemucs"
DEFAULT_SEPARATION_TIMEOUT = 3600
VOCAL_STEM = "vocals.wav"
RESIDUAL_STEM = "no_vocals.wav"


class SeparationError(Exception):
    """Source separation could not produce usable stems."""

    def __init__(self, message: str, diagnostic: Diagnostic | None = None) -> None:
        self.diagnostic = diagnostic
        super().__init__(message)


class SeparationUnavailableError(SeparationError):
    """No invocable source separation tool was found."""


@dataclass(frozen=True)
class Stems:
    """Paths of the two stems produced for one input."""

    vocals: Path
    background: Path


def find_stems(out_dir: Path, model: str, track: str) -> Stems | None:
    """Locate the stems demucs wrote for a track.

    demucs writes ``<out>/<model>/<track>/vocals.wav``; some versions drop
    the track folder. Both layouts are checked before a recursive search.

    Args:
        out_dir: Directory passed to demucs with ``-o``.
        model: Model name, which demucs uses as a subfolder.
        track: Input file stem.

    Returns:
        Stems if both files exist, otherwise None.
    """
    for folder in (out_dir / model / track, out_dir / model):
        vocals = folder / VOCAL_STEM
        background = folder / RESIDUAL_STEM
        if vocals.is_file() and background.is_file():
            return Stems(vocals=vocals, background=background)

    for vocals in sorted(out_dir.rglob(VOCAL_STEM)):
        background = vocals.with_name(RESIDUAL_STEM)
        if background.is_file():
            return Stems(vocals=vocals, background=background)
    return None


class DemucsRunner:
    """Invokes demucs in two-stem mode."""

    def __init__(
        self,
        command: list[str] | None = None,
        model: str = DEFAULT_MODEL,
        jobs: int = 2,
        timeout: float = DEFAULT_SEPARATION_TIMEOUT,
    ) -> None:
        """Initialize the runner.

        Args:
            command: Explicit demucs command prefix. None probes for one.
            model: demucs model name.
            jobs: Parallel jobs passed with ``-j``.
            timeout: Seconds before a separation run is abandoned.
        """
        self._configured = command
        self._command: list[str] | None = None
        self._probed = False
        self.model = model
        self.jobs = jobs
        self.timeout = timeout

    def resolve(self) -> list[str] | None:
        """Return the demucs command prefix, probing once."""
        if not self._probed:
            self._command = probe_separator(self._configured)
            self._probed = True
            if self._command is None:
                logger.info("Source separator not available")
        return self._command

    def is_available(self) -> bool:
        return self.resolve() is not None

    def build_command(
        self, command: list[str], source: Path, out_dir: Path
    ) -> list[str]:
        return [
            *command,
            "--two-stems=vocals",
            "-n",
            self.model,
            "-j",
            str(self.jobs),
            "-o",
            str(out_dir),
            str(source),
        ]

    def separate(self, source: Path, out_dir: Path) -> Stems:
        """Split source into vocal and background stems under out_dir.

        Raises:
            SeparationUnavailableError: If demucs cannot be invoked.
            SeparationError: If demucs fails or its stems cannot be found.
        """
        command = self.resolve()
        if command is None:
            raise SeparationUnavailableError("source separator not available")

        out_dir.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(command, source, out_dir)
        logger.debug("Running separation: %s", " ".join(cmd))
        try:
            result = subprocess.run(  # nosec B603 - command comes from config/probe
                cmd,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise SeparationError(
                f"separation timed out after {self.timeout} seconds",
                Diagnostic(return_code=-1, timed_out=True),
            ) from e
        except OSError as e:
            raise SeparationUnavailableError(f"could not start separator: {e}") from e

        if result.returncode != 0:
            tail = tuple(result.stderr.splitlines()[-TAIL_LINES:])
            diagnostic = Diagnostic(return_code=result.returncode, tail=tail)
            raise SeparationError(diagnostic.summary("demucs"), diagnostic)

        stems = find_stems(out_dir, self.model, source.stem)
        if stems is None:
            raise SeparationError(f"separator produced no stems in {out_dir}")
        return stems
