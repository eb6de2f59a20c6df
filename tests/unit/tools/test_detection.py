"""Tests for external tool detection and media probing."""

import json
import subprocess
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

from sukudo.enhance.graph import MediaKind
from sukudo.tools.detection import (
    REQUIRED_FILTERS,
    MediaProbe,
    detect_filters,
    find_tool,
    kind_from_name,
    parse_filter_list,
    parse_probe_output,
    probe_media,
    probe_separator,
    require_tool,
    run_command,
    separator_candidates,
)

FILTER_TABLE = """\
Filters:
  T.. = Timeline support
  .S. = Slice threading
  A = Audio input/output
 ... abench            A->A       Benchmark part of a filtergraph.
 TSC acompressor       A->A       Audio compressor.
 ... adeclip           A->A       Remove impulsive noise from input audio.
 T.C highpass          A->A       Apply a high-pass filter.
 ... asplit            A->N       Pass on the audio input to N audio outputs.
"""


class TestFindTool:
    """Tests for find_tool() and require_tool()."""

    def test_configured_path(self, temp_dir: Path):
        tool = temp_dir / "ffmpeg"
        tool.write_text("")
        assert find_tool("ffmpeg", tool) == tool

    def test_configured_path_missing_falls_back_to_path(self, temp_dir: Path):
        with patch("shutil.which", return_value="/usr/bin/ffmpeg"):
            assert find_tool("ffmpeg", temp_dir / "nope") == Path("/usr/bin/ffmpeg")

    def test_not_found(self):
        with patch("shutil.which", return_value=None):
            assert find_tool("ffmpeg") is None
            with pytest.raises(RuntimeError, match="tools.ffmpeg"):
                require_tool("ffmpeg")


class TestRunCommand:
    """Tests for run_command()."""

    def test_timeout(self):
        with patch(
            "subprocess.run", side_effect=subprocess.TimeoutExpired(["x"], 1)
        ):
            assert run_command(["x"]) == ("", "timeout", -1)

    def test_not_found(self):
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            assert run_command(["x"]) == ("", "not found", -1)


class TestFilters:
    """Filter list parsing."""

    def test_parse_filter_list(self):
        support = parse_filter_list(FILTER_TABLE)
        assert support.has("acompressor")
        assert support.has("asplit")
        assert support.has("adeclip")
        assert not support.has("Timeline")
        assert "loudnorm" in support.missing()

    def test_detect_filters_failure_reports_everything_missing(self):
        with patch(
            "sukudo.tools.detection.run_command", return_value=("", "boom", 1)
        ):
            support = detect_filters(Path("/usr/bin/ffmpeg"))
        assert support.missing() == list(REQUIRED_FILTERS)


class TestProbe:
    """Media probing."""

    @pytest.mark.parametrize(
        "name,kind",
        [
            ("talk.wav", MediaKind.AUDIO),
            ("talk.MP4", MediaKind.VIDEO),
            ("talk.mkv", MediaKind.VIDEO),
            ("noext", MediaKind.AUDIO),
        ],
    )
    def test_kind_from_name(self, name, kind):
        assert kind_from_name(name) is kind

    def test_parse_video(self):
        output = json.dumps(
            {
                "streams": [
                    {"codec_type": "video"},
                    {"codec_type": "audio", "channels": 6},
                ]
            }
        )
        assert parse_probe_output(output, MediaKind.AUDIO) == MediaProbe(
            MediaKind.VIDEO, 6
        )

    def test_cover_art_is_not_video(self):
        output = json.dumps(
            {
                "streams": [
                    {"codec_type": "audio", "channels": 1},
                    {"codec_type": "video", "disposition": {"attached_pic": 1}},
                ]
            }
        )
        assert parse_probe_output(output, MediaKind.VIDEO) == MediaProbe(
            MediaKind.AUDIO, 1
        )

    def test_unparseable_uses_fallback(self):
        probe = parse_probe_output("not json", MediaKind.VIDEO)
        assert probe == MediaProbe(MediaKind.VIDEO, 2)

    def test_probe_without_ffprobe(self, temp_dir: Path):
        probe = probe_media(None, temp_dir / "clip.mov")
        assert probe == MediaProbe(MediaKind.VIDEO, 2)

    def test_probe_failure_uses_extension(self, temp_dir: Path):
        with patch(
            "sukudo.tools.detection.run_command", return_value=("", "bad", 1)
        ):
            probe = probe_media(Path("/usr/bin/ffprobe"), temp_dir / "a.flac")
        assert probe == MediaProbe(MediaKind.AUDIO, 2)


class TestSeparatorProbe:
    """Locating demucs."""

    def test_configured_only(self):
        assert separator_candidates(["/opt/demucs"]) == [["/opt/demucs"]]

    def test_default_candidates(self):
        with patch("shutil.which", return_value="/usr/bin/demucs"):
            candidates = separator_candidates()
        assert candidates == [
            ["/usr/bin/demucs"],
            [sys.executable, "-m", "demucs"],
        ]

    def test_first_working_candidate_wins(self):
        with (
            patch("shutil.which", return_value=None),
            patch(
                "sukudo.tools.detection.run_command",
                return_value=("usage: demucs", "", 0),
            ) as run,
        ):
            assert probe_separator() == [sys.executable, "-m", "demucs"]
        run.assert_called_once()
        assert run.call_args.args[0] == [sys.executable, "-m", "demucs", "--help"]

    def test_unavailable(self):
        with patch(
            "sukudo.tools.detection.run_command",
            return_value=("", "No module named demucs", 1),
        ):
            assert probe_separator(["python3", "-m", "demucs"]) is None

    def test_rejected_version_flag_does_not_hide_separator(self):
        """demucs exits 2 on --version; only the --help probe decides."""

        def fake_run(cmd, timeout=None):
            if cmd[-1] == "--help":
                return ("usage: demucs.separate [-h]", "", 0)
            return ("", "error: unrecognized arguments: --version", 2)

        with patch("sukudo.tools.detection.run_command", side_effect=fake_run):
            assert probe_separator(["demucs"]) == ["demucs"]
