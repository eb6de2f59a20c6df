"""External process executors for the enhancement pipeline."""

from sukudo.executor.ffmpeg import (
    Diagnostic,
    TranscodeError,
    TranscodeExecutor,
    TranscodeResult,
)
from sukudo.executor.separation import (
    DemucsRunner,
    SeparationError,
    SeparationUnavailableError,
    Stems,
)

__all__ = [
    "DemucsRunner",
    "Diagnostic",
    "SeparationError",
    "SeparationUnavailableError",
    "Stems",
    "TranscodeError",
    "TranscodeExecutor",
    "TranscodeResult",
]
