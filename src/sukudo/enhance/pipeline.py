"""Per-input enhancement pipeline with separation fallback."""

from __future__ import annotations

import logging
import shlex
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from sukudo.enhance.strategy import (
    STEMS_DIRNAME,
    DemucsSeparator,
    MidSideSeparator,
    SeparationMode,
    SeparationPlan,
    Separator,
    select,
)
from sukudo.executor.ffmpeg import TranscodeError, TranscodeExecutor, output_suffix
from sukudo.executor.separation import DemucsRunner, SeparationError

if TYPE_CHECKING:
    from sukudo.config.models import SukudoConfig
    from sukudo.enhance.controls import ControlSet
    from sukudo.enhance.graph import MediaKind
    from sukudo.tools.detection import MediaProbe

logger = logging.getLogger(__name__)

StepCallback = Callable[[str, dict[str, Any]], None]
FallbackCallback = Callable[[str], None]


def enhanced_name(name: str, kind: MediaKind) -> str:
    """Output file name for an input, e.g. ``talk.wav -> talk.enhanced.m4a``."""
    return f"{Path(name).stem}.enhanced{output_suffix(kind)}"


@dataclass
class EnhanceResult:
    """Outcome of enhancing one input."""

    output: Path
    mode: SeparationMode
    fallback_reason: str | None = None


class EnhancePipeline:
    """Runs the selected separation strategy and the final filter pass.

    A two-stage attempt that cannot run, or fails at any step, is
    downgraded to the fast strategy for the same input. Only a failure of
    the fast pass itself propagates.
    """

    def __init__(
        self,
        executor: TranscodeExecutor,
        two_stage: Separator | None = None,
        fast: Separator | None = None,
    ) -> None:
        self.executor = executor
        self.two_stage = two_stage
        self.fast = fast if fast is not None else MidSideSeparator()

    def enhance(
        self,
        source: Path,
        controls: ControlSet,
        probe: MediaProbe,
        work_dir: Path,
        on_step: StepCallback | None = None,
        on_fallback: FallbackCallback | None = None,
    ) -> EnhanceResult:
        """Enhance one local input file.

        Args:
            source: Downloaded input file.
            controls: Normalized controls for the job.
            probe: Media kind and channel count of the input.
            work_dir: Job-scoped scratch directory.
            on_step: Called with a step name and details before each stage.
            on_fallback: Called with the reason when two-stage is abandoned.

        Returns:
            EnhanceResult naming the output file inside work_dir.

        Raises:
            TranscodeError: If the fast pass fails.
        """
        dest = work_dir / enhanced_name(source.name, probe.kind)
        fallback_reason: str | None = None

        if select(controls) is SeparationMode.TWO_STAGE:
            fallback_reason = self._try_two_stage(
                source, controls, probe, work_dir, dest, on_step
            )
            if fallback_reason is None:
                return EnhanceResult(output=dest, mode=SeparationMode.TWO_STAGE)
            logger.warning(
                "Two-stage separation abandoned for %s: %s",
                source.name,
                fallback_reason,
            )
            if on_fallback is not None:
                on_fallback(fallback_reason)

        _notify(on_step, "enhance", mode=SeparationMode.FAST.value)
        plan = self.fast.prepare(source, controls, probe, work_dir)
        self._run(plan, dest)
        return EnhanceResult(
            output=dest, mode=SeparationMode.FAST, fallback_reason=fallback_reason
        )

    def _try_two_stage(
        self,
        source: Path,
        controls: ControlSet,
        probe: MediaProbe,
        work_dir: Path,
        dest: Path,
        on_step: StepCallback | None,
    ) -> str | None:
        """Attempt the two-stage path, returning a reason on failure."""
        if self.two_stage is None or not self.two_stage.is_available():
            return "source separator not available"

        try:
            _notify(on_step, "separate", mode=SeparationMode.TWO_STAGE.value)
            plan = self.two_stage.prepare(source, controls, probe, work_dir)
            _notify(on_step, "remix", mode=SeparationMode.TWO_STAGE.value)
            self._run(plan, dest)
        except (
            SeparationError,
            TranscodeError,
            OSError,
            RuntimeError,
            ValueError,
        ) as e:
            dest.unlink(missing_ok=True)
            return str(e) or type(e).__name__
        finally:
            shutil.rmtree(work_dir / STEMS_DIRNAME, ignore_errors=True)
        return None

    def _run(self, plan: SeparationPlan, dest: Path) -> None:
        result = self.executor.run(list(plan.inputs), plan.chain, dest)
        if not result.success:
            assert result.diagnostic is not None
            stage = "remix" if plan.mode is SeparationMode.TWO_STAGE else "enhance"
            raise TranscodeError(stage, result.diagnostic)


def _notify(on_step: StepCallback | None, step: str, **details: Any) -> None:
    if on_step is not None:
        on_step(step, details)


def build_pipeline(config: SukudoConfig) -> EnhancePipeline:
    """Assemble the pipeline from configured tool paths and timeouts."""
    executor = TranscodeExecutor(
        ffmpeg_path=config.tools.ffmpeg, timeout=config.worker.ffmpeg_timeout
    )
    command = shlex.split(config.tools.demucs) if config.tools.demucs else None
    runner = DemucsRunner(
        command=command,
        model=config.worker.separator_model,
        jobs=config.worker.separator_jobs,
        timeout=config.worker.separation_timeout,
    )
    return EnhancePipeline(executor, two_stage=DemucsSeparator(executor, runner))
