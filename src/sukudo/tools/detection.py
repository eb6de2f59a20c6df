"""External tool detection and media probing.

This module finds the external tools the pipeline shells out to (ffmpeg,
ffprobe, demucs), enumerates ffmpeg's filter capabilities and probes
input files for their media kind and audio channel count.
"""

import json
import logging
import re
import shutil
import subprocess  # nosec B404 - subprocess is required for tool detection
import sys
from dataclasses import dataclass, field
from pathlib import Path

from sukudo.enhance.graph import MediaKind

logger = logging.getLogger(__name__)

# Timeout for version/capability detection commands (seconds)
DETECTION_TIMEOUT = 10

# Timeout for the separator availability probe (seconds)
SEPARATOR_PROBE_TIMEOUT = 30

# Filters the enhancement graph can emit
REQUIRED_FILTERS: tuple[str, ...] = (
    "aformat",
    "asplit",
    "pan",
    "highpass",
    "equalizer",
    "afftdn",
    "highshelf",
    "lowshelf",
    "acompressor",
    "lowpass",
    "compand",
    "volume",
    "amix",
    "loudnorm",
    "alimiter",
)

# Only needed when clip repair is enabled
OPTIONAL_FILTERS: tuple[str, ...] = ("adeclip",)

VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".mkv", ".webm", ".m4v", ".avi"})

_FILTER_LINE = re.compile(r"^\s*[TSC.]{3}\s+(\S+)\s+\S+->\S+")


def find_tool(name: str, configured_path: Path | None = None) -> Path | None:
    """Find a tool executable.

    Args:
        name: Tool name (e.g., "ffmpeg").
        configured_path: Optional configured path override.

    Returns:
        Path to tool executable, or None if not found.
    """
    if configured_path:
        if configured_path.is_file():
            return configured_path
        logger.warning(
            "Configured path for %s is not a file: %s", name, configured_path
        )

    which_result = shutil.which(name)
    if which_result:
        return Path(which_result)

    return None


def require_tool(name: str, configured_path: Path | None = None) -> Path:
    """Get path to a required tool, raising an error if not available.

    Raises:
        RuntimeError: If the tool is not available.
    """
    path = find_tool(name, configured_path)
    if path is None:
        raise RuntimeError(
            f"Required tool not available: {name}. "
            f"Install it or set tools.{name} in the config file."
        )
    return path


def run_command(
    args: list[str], timeout: int = DETECTION_TIMEOUT
) -> tuple[str, str, int]:
    """Run a command and capture output.

    Args:
        args: Command and arguments.
        timeout: Timeout in seconds.

    Returns:
        Tuple of (stdout, stderr, returncode). returncode is -1 when the
        command could not be started or timed out.
    """
    try:
        result = subprocess.run(  # nosec B603 - args are tool paths and fixed flags
            args,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
        )
        return result.stdout, result.stderr, result.returncode
    except subprocess.TimeoutExpired:
        logger.warning("Command timed out: %s", " ".join(args))
        return "", "timeout", -1
    except FileNotFoundError:
        return "", "not found", -1
    except OSError as e:
        logger.warning("Command failed: %s - %s", " ".join(args), e)
        return "", str(e), -1


@dataclass(frozen=True)
class FilterSupport:
    """Set of filters reported by ``ffmpeg -filters``."""

    available: frozenset[str] = field(default_factory=frozenset)

    def has(self, name: str) -> bool:
        return name in self.available

    def missing(self, names: tuple[str, ...] = REQUIRED_FILTERS) -> list[str]:
        """Return the subset of names ffmpeg does not provide."""
        return [name for name in names if name not in self.available]


def parse_filter_list(output: str) -> FilterSupport:
    """Parse the table printed by ``ffmpeg -hide_banner -filters``."""
    names = set()
    for line in output.splitlines():
        match = _FILTER_LINE.match(line)
        if match:
            names.add(match.group(1))
    return FilterSupport(available=frozenset(names))


def detect_filters(ffmpeg_path: Path) -> FilterSupport:
    """Enumerate the filters compiled into an ffmpeg binary."""
    stdout, stderr, rc = run_command([str(ffmpeg_path), "-hide_banner", "-filters"])
    if rc != 0:
        logger.warning("Could not list ffmpeg filters (rc=%d): %s", rc, stderr)
        return FilterSupport()
    return parse_filter_list(stdout)


@dataclass(frozen=True)
class MediaProbe:
    """What the pipeline needs to know about one input file."""

    kind: MediaKind
    channels: int


def kind_from_name(name: str) -> MediaKind:
    """Guess the media kind from a file name's extension."""
    if Path(name).suffix.casefold() in VIDEO_EXTENSIONS:
        return MediaKind.VIDEO
    return MediaKind.AUDIO


def parse_probe_output(output: str, fallback: MediaKind) -> MediaProbe:
    """Parse ffprobe JSON stream output into a MediaProbe.

    Unparseable output or a file without an audio stream yields a stereo
    probe of the fallback kind; ffmpeg upmixes or rejects it later.
    """
    try:
        data = json.loads(output)
    except json.JSONDecodeError:
        return MediaProbe(kind=fallback, channels=2)

    streams = data.get("streams") or []
    has_video = any(
        s.get("codec_type") == "video"
        and not (s.get("disposition") or {}).get("attached_pic")
        for s in streams
    )
    audio = [s for s in streams if s.get("codec_type") == "audio"]
    channels = int(audio[0].get("channels") or 2) if audio else 2
    kind = MediaKind.VIDEO if has_video else MediaKind.AUDIO
    return MediaProbe(kind=kind, channels=channels)


def probe_media(ffprobe_path: Path | None, path: Path) -> MediaProbe:
    """Probe an input file for media kind and audio channel count.

    Falls back to the file extension and two channels when ffprobe is not
    available or fails.
    """
    fallback = kind_from_name(path.name)
    if ffprobe_path is None:
        return MediaProbe(kind=fallback, channels=2)

    stdout, stderr, rc = run_command(
        [
            str(ffprobe_path),
            "-v",
            "error",
            "-show_entries",
            "stream=codec_type,channels:stream_disposition=attached_pic",
            "-of",
            "json",
            str(path),
        ]
    )
    if rc != 0:
        logger.warning("ffprobe failed for %s (rc=%d): %s", path.name, rc, stderr)
        return MediaProbe(kind=fallback, channels=2)
    return parse_probe_output(stdout, fallback)


def separator_candidates(configured: list[str] | None = None) -> list[list[str]]:
    """Return the command prefixes tried when locating demucs, in order."""
    if configured:
        return [list(configured)]
    candidates: list[list[str]] = []
    demucs = shutil.which("demucs")
    if demucs:
        candidates.append([demucs])
    candidates.append([sys.executable, "-m", "demucs"])
    return candidates


def probe_separator(configured: list[str] | None = None) -> list[str] | None:
    """Find an invocable demucs command.

    Each candidate is run with ``--help``, since demucs has no ``--version``
    flag; the first that exits 0 wins.

    Args:
        configured: Explicit command prefix from configuration, if any.

    Returns:
        Command prefix to invoke demucs with, or None when unavailable.
    """
    for candidate in separator_candidates(configured):
        _, stderr, rc = run_command(
            [*candidate, "--help"], timeout=SEPARATOR_PROBE_TIMEOUT
        )
        if rc == 0:
            logger.debug("Source separator available: %s", " ".join(candidate))
            return candidate
        logger.debug(
            "Separator candidate unavailable (%s): %s", " ".join(candidate), stderr
        )
    return None
