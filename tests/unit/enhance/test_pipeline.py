"""Tests for the per-input enhancement pipeline."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from sukudo.config import SukudoConfig
from sukudo.enhance.controls import ControlSet, normalize
from sukudo.enhance.graph import ChainSource, MediaKind
from sukudo.enhance.pipeline import (
    EnhancePipeline,
    build_pipeline,
    enhanced_name,
)
from sukudo.enhance.strategy import (
    STEMS_DIRNAME,
    DemucsSeparator,
    MidSideSeparator,
    SeparationMode,
    SeparationPlan,
)
from sukudo.executor.ffmpeg import Diagnostic, TranscodeError, TranscodeResult
from sukudo.executor.separation import SeparationError
from sukudo.tools.detection import MediaProbe

STEREO_AUDIO = MediaProbe(MediaKind.AUDIO, 2)
MAX = normalize({"quality": "Max"})


class TestEnhancedName:
    """Tests for enhanced_name()."""

    @pytest.mark.parametrize(
        "name,kind,expected",
        [
            ("talk.wav", MediaKind.AUDIO, "talk.enhanced.m4a"),
            ("talk.final.mp3", MediaKind.AUDIO, "talk.final.enhanced.m4a"),
            ("clip.mov", MediaKind.VIDEO, "clip.enhanced.mp4"),
        ],
    )
    def test_names(self, name, kind, expected):
        assert enhanced_name(name, kind) == expected


class FakeTwoStage:
    """Two-stage separator double that records calls and can fail."""

    mode = SeparationMode.TWO_STAGE

    def __init__(self, available=True, error=None):
        self.available = available
        self.error = error
        self.prepared = 0

    def is_available(self):
        return self.available

    def prepare(self, source, controls, probe, work_dir):
        self.prepared += 1
        scratch = work_dir / STEMS_DIRNAME
        scratch.mkdir(parents=True, exist_ok=True)
        (scratch / "vocals.wav").write_bytes(b"v")
        if self.error is not None:
            raise self.error
        plan = MidSideSeparator().prepare(source, controls, probe, work_dir)
        return SeparationPlan(
            mode=self.mode, chain=plan.chain, inputs=plan.inputs, scratch=scratch
        )


def _ok_executor():
    executor = MagicMock()
    executor.run.return_value = TranscodeResult(success=True)
    return executor


class TestFastPath:
    """Fast and balanced jobs run a single pass."""

    def test_single_pass(self, temp_dir: Path):
        executor = _ok_executor()
        steps = []
        pipeline = EnhancePipeline(executor, two_stage=FakeTwoStage())
        source = temp_dir / "talk.wav"

        result = pipeline.enhance(
            source,
            ControlSet(),
            STEREO_AUDIO,
            temp_dir,
            on_step=lambda step, data: steps.append((step, data)),
        )

        assert result.mode is SeparationMode.FAST
        assert result.fallback_reason is None
        assert result.output == temp_dir / "talk.enhanced.m4a"
        inputs, chain, dest = executor.run.call_args.args
        assert inputs == [source]
        assert chain.source is ChainSource.MID_SIDE
        assert dest == result.output
        assert steps == [("enhance", {"mode": "fast"})]

    def test_fast_failure_propagates(self, temp_dir: Path):
        executor = MagicMock()
        executor.run.return_value = TranscodeResult(
            success=False, diagnostic=Diagnostic(return_code=1)
        )
        pipeline = EnhancePipeline(executor)

        with pytest.raises(TranscodeError) as exc_info:
            pipeline.enhance(temp_dir / "a.wav", ControlSet(), STEREO_AUDIO, temp_dir)

        assert exc_info.value.stage == "enhance"


class TestTwoStage:
    """Max quality with and without a working separator."""

    def test_success(self, temp_dir: Path):
        executor = _ok_executor()
        two_stage = FakeTwoStage()
        steps = []
        pipeline = EnhancePipeline(executor, two_stage=two_stage)

        result = pipeline.enhance(
            temp_dir / "talk.wav",
            MAX,
            STEREO_AUDIO,
            temp_dir,
            on_step=lambda step, data: steps.append(step),
        )

        assert result.mode is SeparationMode.TWO_STAGE
        assert result.fallback_reason is None
        assert steps == ["separate", "remix"]
        assert executor.run.call_count == 1
        assert not (temp_dir / STEMS_DIRNAME).exists()

    def test_unavailable_falls_back(self, temp_dir: Path):
        """A missing separator downgrades to fast without failing."""
        executor = _ok_executor()
        reasons = []
        pipeline = EnhancePipeline(executor, two_stage=FakeTwoStage(available=False))

        result = pipeline.enhance(
            temp_dir / "talk.wav",
            MAX,
            STEREO_AUDIO,
            temp_dir,
            on_fallback=reasons.append,
        )

        assert result.mode is SeparationMode.FAST
        assert result.fallback_reason == "source separator not available"
        assert reasons == ["source separator not available"]
        assert executor.run.call_count == 1

    def test_no_two_stage_configured(self, temp_dir: Path):
        pipeline = EnhancePipeline(_ok_executor())
        result = pipeline.enhance(temp_dir / "t.wav", MAX, STEREO_AUDIO, temp_dir)
        assert result.fallback_reason == "source separator not available"

    def test_separation_error_falls_back_and_cleans_up(self, temp_dir: Path):
        executor = _ok_executor()
        two_stage = FakeTwoStage(error=SeparationError("demucs exited with code 1"))
        pipeline = EnhancePipeline(executor, two_stage=two_stage)

        result = pipeline.enhance(temp_dir / "talk.wav", MAX, STEREO_AUDIO, temp_dir)

        assert two_stage.prepared == 1
        assert result.mode is SeparationMode.FAST
        assert result.fallback_reason == "demucs exited with code 1"
        assert not (temp_dir / STEMS_DIRNAME).exists()

    @pytest.mark.parametrize(
        "error, reason",
        [
            (RuntimeError("CUDA out of memory"), "CUDA out of memory"),
            (ValueError("unexpected stem layout"), "unexpected stem layout"),
            (RuntimeError(), "RuntimeError"),
        ],
    )
    def test_unexpected_separator_error_falls_back(
        self, temp_dir: Path, error, reason
    ):
        executor = _ok_executor()
        reasons = []
        pipeline = EnhancePipeline(executor, two_stage=FakeTwoStage(error=error))

        result = pipeline.enhance(
            temp_dir / "talk.wav",
            MAX,
            STEREO_AUDIO,
            temp_dir,
            on_fallback=reasons.append,
        )

        assert result.mode is SeparationMode.FAST
        assert result.fallback_reason == reason
        assert reasons == [reason]
        assert executor.run.call_count == 1
        assert not (temp_dir / STEMS_DIRNAME).exists()

    def test_remix_failure_falls_back(self, temp_dir: Path):
        """A failed remix pass is retried once in fast mode."""
        executor = MagicMock()
        executor.run.side_effect = [
            TranscodeResult(success=False, diagnostic=Diagnostic(return_code=1)),
            TranscodeResult(success=True),
        ]
        pipeline = EnhancePipeline(executor, two_stage=FakeTwoStage())

        result = pipeline.enhance(temp_dir / "talk.wav", MAX, STEREO_AUDIO, temp_dir)

        assert result.mode is SeparationMode.FAST
        assert result.fallback_reason.startswith("remix: ffmpeg exited with code 1")
        assert executor.run.call_count == 2

    def test_fast_failure_after_fallback_propagates(self, temp_dir: Path):
        executor = MagicMock()
        executor.run.return_value = TranscodeResult(
            success=False, diagnostic=Diagnostic(return_code=8)
        )
        pipeline = EnhancePipeline(executor, two_stage=FakeTwoStage(available=False))

        with pytest.raises(TranscodeError, match="enhance: ffmpeg exited with code 8"):
            pipeline.enhance(temp_dir / "talk.wav", MAX, STEREO_AUDIO, temp_dir)


class TestBuildPipeline:
    """Tests for build_pipeline()."""

    def test_wires_config(self):
        config = SukudoConfig()
        config.tools.demucs = "python -m demucs"
        config.worker.ffmpeg_timeout = 60
        config.worker.separator_model = "mdx"

        pipeline = build_pipeline(config)

        assert isinstance(pipeline.two_stage, DemucsSeparator)
        assert isinstance(pipeline.fast, MidSideSeparator)
        runner = pipeline.two_stage.runner
        assert runner.model == "mdx"
        assert runner._configured == ["python", "-m", "demucs"]
        assert pipeline.executor._timeout == 60
