"""Filter graph construction for the enhancement pipeline.

build() maps a ControlSet and a media kind to an immutable FilterChain: an
ordered tuple of FilterStage objects, each tagged with the signal path it
applies to. The chain renders to an ffmpeg ``-filter_complex`` string.

Vocal path order is fixed:

    highpass -> de-hum notches -> clip repair -> denoise -> de-ess
    -> transient compressor -> crackle low-pass -> de-reverb
    -> mono fold -> voice gain

The background path gets two shelving cuts and a static gain. The mix path
recombines both buses and always ends with loudnorm followed by the
limiter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from sukudo.enhance.controls import ControlSet, Dehum, Hpf

# Loudness normalizer settings
TRUE_PEAK_DB = -1.2
LOUDNESS_RANGE = 11
LIMITER_CEILING_DB = -1.0

# Vocal path constants
DEHUM_WIDTHS = (30, 25, 20, 15)
DEHUM_GAINS_DB = (-25, -18, -14, -10)
DEESS_FREQUENCY_HZ = 6800
DEESS_MAX_DEPTH_DB = 10.0
TRANSIENT_THRESHOLD_DB = -24.0
CRACKLE_FLOOR_HZ = 4000
CRACKLE_CEILING_HZ = 18000

# Background path constants
BACKGROUND_LOW_SHELF_HZ = 150
BACKGROUND_HIGH_SHELF_HZ = 9000
BACKGROUND_SHELF_SCALE = 0.6

MID_PAN = "stereo|c0=0.5*c0+0.5*c1|c1=0.5*c0+0.5*c1"
SIDE_PAN = "stereo|c0=0.5*c0-0.5*c1|c1=0.5*c1-0.5*c0"

OUTPUT_LABEL = "aout"


class MediaKind(Enum):
    """Kind of media a job input carries."""

    AUDIO = "audio"
    VIDEO = "video"


class SignalPath(Enum):
    """Signal path a filter stage is applied to."""

    VOCAL = "vocal"
    BACKGROUND = "background"
    MIX = "mix"


class StageRole(Enum):
    """Functional role of a stage, used to reason about ordering."""

    HIGHPASS = "highpass"
    DEHUM = "dehum"
    CLIP_REPAIR = "clip_repair"
    DENOISE = "denoise"
    DEESS = "deess"
    TRANSIENT = "transient"
    SMOOTHING = "smoothing"
    DEREVERB = "dereverb"
    MONO = "mono"
    GAIN = "gain"
    SHELF = "shelf"
    MIX = "mix"
    LOUDNESS = "loudness"
    LIMITER = "limiter"


class ChainSource(Enum):
    """Where the vocal and background buses come from."""

    MID_SIDE = "mid_side"
    STEMS = "stems"


def format_number(value: float) -> str:
    """Render a number the same way every time.

    Integral values drop the decimal point; everything else is rounded to
    six places with trailing zeros stripped.
    """
    if float(value).is_integer():
        return str(int(value))
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def db_to_linear(db: float) -> float:
    """Convert a decibel value to a linear amplitude ratio."""
    return round(10 ** (db / 20), 6)


@dataclass(frozen=True)
class FilterStage:
    """A single named ffmpeg filter with its parameters.

    Params are ordered (key, value) pairs; an empty key marks a positional
    argument rendered without ``key=``.
    """

    name: str
    role: StageRole
    path: SignalPath
    params: tuple[tuple[str, str], ...] = ()

    def param(self, key: str) -> str | None:
        """Return the value of a named parameter, or None."""
        for k, v in self.params:
            if k == key:
                return v
        return None

    def render(self) -> str:
        """Render as ffmpeg filter syntax (``name=k=v:k=v``)."""
        if not self.params:
            return self.name
        args = ":".join(v if not k else f"{k}={v}" for k, v in self.params)
        return f"{self.name}={args}"


@dataclass(frozen=True)
class FilterChain:
    """Immutable, ordered enhancement filter chain for one input.

    Attributes:
        kind: Media kind of the input the chain was built for.
        channels: Channel count of the source audio.
        source: Whether the buses come from a mid/side split of input 0
            or from separated stem inputs.
        stages: Stages in application order across all paths.
        inputs: ffmpeg input stream labels feeding the chain. One label
            for mid/side; vocal then background stem for stems.
    """

    kind: MediaKind
    channels: int
    source: ChainSource
    stages: tuple[FilterStage, ...]
    inputs: tuple[str, ...] = field(default=("0:a",))

    @property
    def is_mono(self) -> bool:
        return self.channels < 2 and self.source is ChainSource.MID_SIDE

    def for_path(self, path: SignalPath) -> tuple[FilterStage, ...]:
        """Return the stages applied to one signal path, in order."""
        return tuple(s for s in self.stages if s.path is path)

    def roles(self) -> list[StageRole]:
        return [s.role for s in self.stages]

    def to_filtergraph(self) -> str:
        """Serialize to an ffmpeg ``-filter_complex`` description.

        The final bus is labelled ``[aout]``.
        """
        vocal = ",".join(s.render() for s in self.for_path(SignalPath.VOCAL))
        background = ",".join(
            s.render() for s in self.for_path(SignalPath.BACKGROUND)
        )
        mix = ",".join(s.render() for s in self.for_path(SignalPath.MIX))

        if self.source is ChainSource.STEMS:
            vocal_in, background_in = self.inputs
            return ";".join(
                [
                    f"[{vocal_in}]aformat=channel_layouts=stereo,{vocal}[voice]",
                    f"[{background_in}]aformat=channel_layouts=stereo,"
                    f"{background}[background]",
                    f"[voice][background]{mix}[{OUTPUT_LABEL}]",
                ]
            )

        source = self.inputs[0]
        if self.is_mono:
            return (
                f"[{source}]aformat=channel_layouts=mono,"
                f"{vocal},{mix}[{OUTPUT_LABEL}]"
            )

        return ";".join(
            [
                f"[{source}]aformat=channel_layouts=stereo,asplit=2[mid][side]",
                f"[mid]pan={MID_PAN},{vocal}[voice]",
                f"[side]pan={SIDE_PAN},{background}[background]",
                f"[voice][background]{mix}[{OUTPUT_LABEL}]",
            ]
        )


def _stage(
    name: str,
    role: StageRole,
    path: SignalPath,
    *params: tuple[str, float | str],
) -> FilterStage:
    rendered = tuple(
        (k, v if isinstance(v, str) else format_number(v)) for k, v in params
    )
    return FilterStage(name=name, role=role, path=path, params=rendered)


def highpass_frequency(controls: ControlSet) -> int:
    """Resolve the vocal high-pass cutoff in Hz."""
    if controls.hpf is Hpf.HZ_60:
        return 60
    if controls.hpf is Hpf.HZ_80:
        return 80
    return 70 + round(controls.plosive * 0.8)


def dehum_base_frequency(controls: ControlSet) -> int | None:
    """Resolve the mains hum base frequency, or None when de-hum is off."""
    if controls.dehum is Dehum.OFF:
        return None
    if controls.dehum is Dehum.HZ_60:
        return 60
    return 50


def denoise_reduction_db(noise_percent: float) -> int:
    return 10 + round(noise_percent / 100 * 16)


def _vocal_stages(controls: ControlSet, channels: int) -> list[FilterStage]:
    vocal = SignalPath.VOCAL
    stages = [
        _stage(
            "highpass", StageRole.HIGHPASS, vocal, ("f", highpass_frequency(controls))
        )
    ]

    base = dehum_base_frequency(controls)
    if base is not None:
        for harmonic, (width, gain) in enumerate(
            zip(DEHUM_WIDTHS, DEHUM_GAINS_DB, strict=True), start=1
        ):
            stages.append(
                _stage(
                    "equalizer",
                    StageRole.DEHUM,
                    vocal,
                    ("f", base * harmonic),
                    ("t", "q"),
                    ("w", width),
                    ("g", gain),
                )
            )

    if controls.clip_repair:
        stages.append(_stage("adeclip", StageRole.CLIP_REPAIR, vocal))

    if controls.noise_percent > 0:
        stages.append(
            _stage(
                "afftdn",
                StageRole.DENOISE,
                vocal,
                ("nr", denoise_reduction_db(controls.noise_percent)),
            )
        )

    if controls.deess > 0:
        depth = controls.deess / 100 * DEESS_MAX_DEPTH_DB
        stages.append(
            _stage(
                "highshelf",
                StageRole.DEESS,
                vocal,
                ("f", DEESS_FREQUENCY_HZ),
                ("g", -depth),
            )
        )

    if controls.mouth > 0:
        amount = controls.mouth / 100
        stages.append(
            _stage(
                "acompressor",
                StageRole.TRANSIENT,
                vocal,
                ("threshold", db_to_linear(TRANSIENT_THRESHOLD_DB)),
                ("ratio", round(2 + amount * 6, 2)),
                ("attack", round(20 - amount * 19, 2)),
                ("release", round(250 - amount * 200, 2)),
            )
        )

    if controls.crackle > 0:
        cutoff = max(
            CRACKLE_FLOOR_HZ, round(CRACKLE_CEILING_HZ - controls.crackle * 140)
        )
        stages.append(_stage("lowpass", StageRole.SMOOTHING, vocal, ("f", cutoff)))

    if controls.dereverb > 0:
        threshold = -50 + round(controls.dereverb / 100 * 20)
        stages.append(
            _stage(
                "compand",
                StageRole.DEREVERB,
                vocal,
                ("attacks", 0.005),
                ("decays", 0.25),
                ("points", f"-80/-80|{threshold}/-60|-20/-10|0/0"),
                ("soft-knee", 3),
            )
        )

    if controls.mono_voice and channels >= 2:
        stages.append(_stage("pan", StageRole.MONO, vocal, ("", MID_PAN)))

    stages.append(
        _stage(
            "volume",
            StageRole.GAIN,
            vocal,
            ("volume", f"{format_number(controls.voice_gain_db)}dB"),
        )
    )
    return stages


def _background_stages(controls: ControlSet) -> list[FilterStage]:
    background = SignalPath.BACKGROUND
    stages: list[FilterStage] = []
    if controls.noise_percent > 0:
        cut = round(BACKGROUND_SHELF_SCALE * controls.noise_percent / 100 * 16, 2)
        stages.append(
            _stage(
                "lowshelf",
                StageRole.SHELF,
                background,
                ("f", BACKGROUND_LOW_SHELF_HZ),
                ("g", -cut),
            )
        )
        stages.append(
            _stage(
                "highshelf",
                StageRole.SHELF,
                background,
                ("f", BACKGROUND_HIGH_SHELF_HZ),
                ("g", -cut),
            )
        )
    stages.append(
        _stage(
            "volume",
            StageRole.GAIN,
            background,
            ("volume", round((100 - controls.bg_percent) / 100, 4)),
        )
    )
    return stages


def _mix_stages(controls: ControlSet, with_background: bool) -> list[FilterStage]:
    mix = SignalPath.MIX
    stages: list[FilterStage] = []
    if with_background:
        stages.append(
            _stage("amix", StageRole.MIX, mix, ("inputs", 2), ("normalize", 0))
        )
    stages.append(
        _stage(
            "loudnorm",
            StageRole.LOUDNESS,
            mix,
            ("I", controls.lufs.value),
            ("TP", TRUE_PEAK_DB),
            ("LRA", LOUDNESS_RANGE),
        )
    )
    stages.append(
        _stage(
            "alimiter",
            StageRole.LIMITER,
            mix,
            ("limit", db_to_linear(LIMITER_CEILING_DB)),
        )
    )
    return stages


def build(controls: ControlSet, kind: MediaKind, channels: int = 2) -> FilterChain:
    """Build the single-pass (mid/side) filter chain for one input.

    Args:
        controls: Normalized enhancement controls.
        kind: Media kind of the input.
        channels: Source channel count. Mono input drops the background
            path entirely.

    Returns:
        Immutable FilterChain reading from input ``0:a``.
    """
    stereo = channels >= 2
    stages = _vocal_stages(controls, channels)
    if stereo:
        stages.extend(_background_stages(controls))
    stages.extend(_mix_stages(controls, with_background=stereo))
    return FilterChain(
        kind=kind,
        channels=channels,
        source=ChainSource.MID_SIDE,
        stages=tuple(stages),
    )


def build_stems(controls: ControlSet, kind: MediaKind) -> FilterChain:
    """Build the remix chain applied to separated vocal/background stems.

    The stems are always stereo. For video jobs input 0 is the original
    container (for its video stream) so the stems sit at inputs 1 and 2.

    Args:
        controls: Normalized enhancement controls.
        kind: Media kind of the original input.

    Returns:
        Immutable FilterChain reading from the two stem inputs.
    """
    stages = _vocal_stages(controls, 2)
    stages.extend(_background_stages(controls))
    stages.extend(_mix_stages(controls, with_background=True))
    inputs = ("1:a", "2:a") if kind is MediaKind.VIDEO else ("0:a", "1:a")
    return FilterChain(
        kind=kind,
        channels=2,
        source=ChainSource.STEMS,
        stages=tuple(stages),
        inputs=inputs,
    )
