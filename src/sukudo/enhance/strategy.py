"""Separation strategy selection.

Two separators share one interface. MidSideSeparator derives the vocal
and background buses from a mid/side split of the original input;
DemucsSeparator extracts a clean intermediate, separates it into real
stems and feeds those to the remix chain. The orchestrator only sees
SeparationPlan objects and never cares which separator produced one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from sukudo.enhance.controls import ControlSet, Quality
from sukudo.enhance.graph import FilterChain, MediaKind, build, build_stems
from sukudo.executor.separation import SeparationError

if TYPE_CHECKING:
    from sukudo.executor.ffmpeg import TranscodeExecutor
    from sukudo.executor.separation import DemucsRunner
    from sukudo.tools.detection import MediaProbe

logger = logging.getLogger(__name__)

STEMS_DIRNAME = "stems"


class SeparationMode(Enum):
    """How the vocal and background buses are obtained."""

    FAST = "fast"
    TWO_STAGE = "two_stage"


def select(controls: ControlSet) -> SeparationMode:
    """Pick the separation mode for a job's controls."""
    if controls.quality is Quality.MAX:
        return SeparationMode.TWO_STAGE
    return SeparationMode.FAST


@dataclass(frozen=True)
class SeparationPlan:
    """Everything needed to run the final filter pass for one input.

    Attributes:
        mode: Mode that produced the plan.
        chain: Filter chain for the final pass.
        inputs: ffmpeg inputs for the final pass, in chain order.
        scratch: Directory holding intermediate files, or None.
    """

    mode: SeparationMode
    chain: FilterChain
    inputs: tuple[Path, ...]
    scratch: Path | None = None


class Separator(Protocol):
    """Produces the final-pass plan for one input."""

    mode: SeparationMode

    def is_available(self) -> bool: ...

    def prepare(
        self,
        source: Path,
        controls: ControlSet,
        probe: MediaProbe,
        work_dir: Path,
    ) -> SeparationPlan: ...


class MidSideSeparator:
    """Mid/side approximation: centre content is voice, the rest is room."""

    mode = SeparationMode.FAST

    def is_available(self) -> bool:
        return True

    def prepare(
        self,
        source: Path,
        controls: ControlSet,
        probe: MediaProbe,
        work_dir: Path,
    ) -> SeparationPlan:
        chain = build(controls, probe.kind, probe.channels)
        return SeparationPlan(mode=self.mode, chain=chain, inputs=(source,))


class DemucsSeparator:
    """True source separation: extract, split into stems, remix."""

    mode = SeparationMode.TWO_STAGE

    def __init__(self, executor: TranscodeExecutor, runner: DemucsRunner) -> None:
        self.executor = executor
        self.runner = runner

    def is_available(self) -> bool:
        return self.runner.is_available()

    def prepare(
        self,
        source: Path,
        controls: ControlSet,
        probe: MediaProbe,
        work_dir: Path,
    ) -> SeparationPlan:
        """Extract and separate source into stems.

        Intermediate files are written under ``work_dir/stems``; the
        caller removes that directory whatever the outcome.

        Raises:
            SeparationError: If extraction or separation fails.
        """
        scratch = work_dir / STEMS_DIRNAME
        scratch.mkdir(parents=True, exist_ok=True)
        intermediate = scratch / f"{source.stem}.wav"

        extracted = self.executor.extract(source, intermediate)
        if not extracted.success:
            assert extracted.diagnostic is not None
            raise SeparationError(
                "extract " + extracted.diagnostic.summary(), extracted.diagnostic
            )

        stems = self.runner.separate(intermediate, scratch / "separated")
        chain = build_stems(controls, probe.kind)
        if probe.kind is MediaKind.VIDEO:
            inputs: tuple[Path, ...] = (source, stems.vocals, stems.background)
        else:
            inputs = (stems.vocals, stems.background)
        return SeparationPlan(
            mode=self.mode, chain=chain, inputs=inputs, scratch=scratch
        )
