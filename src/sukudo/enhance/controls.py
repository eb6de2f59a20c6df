"""User-facing enhancement controls and their normalization.

A raw control payload arrives from the job submitter as a loose JSON
object using camelCase keys. normalize() turns it into a ControlSet where
every numeric field is clamped to its domain and every unknown or invalid
value has been replaced by its default. It never raises.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class Lufs(Enum):
    """Integrated loudness target in LUFS."""

    LOUD = -12
    STANDARD = -14
    QUIET = -16


class Dehum(Enum):
    """Mains hum removal mode."""

    OFF = "Off"
    HZ_50 = "50Hz"
    HZ_60 = "60Hz"
    AUTO = "Auto"


class Hpf(Enum):
    """Explicit high-pass cutoff override."""

    OFF = "Off"
    HZ_60 = "60Hz"
    HZ_80 = "80Hz"


class Quality(Enum):
    """Processing quality tier."""

    FAST = "Fast"
    BALANCED = "Balanced"
    MAX = "Max"


# (low, high, default) for each numeric control
NUMERIC_DOMAINS: dict[str, tuple[float, float, float]] = {
    "voice_gain_db": (-60.0, 24.0, 3.0),
    "noise_percent": (0.0, 100.0, 50.0),
    "bg_percent": (0.0, 100.0, 20.0),
    "deess": (0.0, 100.0, 30.0),
    "mouth": (0.0, 100.0, 30.0),
    "crackle": (0.0, 100.0, 0.0),
    "plosive": (0.0, 100.0, 0.0),
    "dereverb": (0.0, 100.0, 20.0),
}

# Wire (camelCase) name for each field
WIRE_NAMES: dict[str, str] = {
    "voice_gain_db": "voiceGainDb",
    "noise_percent": "noisePercent",
    "bg_percent": "bgPercent",
    "lufs": "lufs",
    "dehum": "dehum",
    "deess": "deess",
    "mouth": "mouth",
    "crackle": "crackle",
    "plosive": "plosive",
    "dereverb": "dereverb",
    "hpf": "hpf",
    "clip_repair": "clipRepair",
    "mono_voice": "monoVoice",
    "quality": "quality",
}

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


@dataclass(frozen=True)
class ControlSet:
    """Validated enhancement parameters for a single job.

    Instances are immutable; build them with normalize() rather than
    directly so that clamping and defaults are applied.
    """

    voice_gain_db: float = 3.0
    noise_percent: float = 50.0
    bg_percent: float = 20.0
    lufs: Lufs = Lufs.STANDARD
    dehum: Dehum = Dehum.AUTO
    deess: float = 30.0
    mouth: float = 30.0
    crackle: float = 0.0
    plosive: float = 0.0
    dereverb: float = 20.0
    hpf: Hpf = Hpf.OFF
    clip_repair: bool = False
    mono_voice: bool = False
    quality: Quality = Quality.BALANCED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the camelCase wire form stored with the job."""
        result: dict[str, Any] = {}
        for key, value in asdict(self).items():
            if isinstance(value, Lufs):
                value = str(value.value)
            elif isinstance(value, Enum):
                value = value.value
            result[WIRE_NAMES[key]] = value
        return result


def _lookup(raw: Mapping[str, Any], field_name: str) -> Any:
    """Find a raw value by wire name, falling back to the snake_case name."""
    wire = WIRE_NAMES[field_name]
    if wire in raw:
        return raw[wire]
    return raw.get(field_name)


def _coerce_number(value: Any, field_name: str) -> float:
    low, high, default = NUMERIC_DOMAINS[field_name]
    if isinstance(value, bool):
        return default
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return default
    if not isinstance(value, int | float):
        return default
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        return default
    return min(high, max(low, number))


def _coerce_bool(value: Any, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int | float) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().casefold()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return default


def _coerce_lufs(value: Any) -> Lufs:
    if isinstance(value, bool):
        return Lufs.STANDARD
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return Lufs.STANDARD
    if isinstance(value, int | float):
        for member in Lufs:
            if member.value == value:
                return member
    return Lufs.STANDARD


def _coerce_enum(value: Any, enum_cls: type[Enum], default: Enum) -> Enum:
    if not isinstance(value, str):
        return default
    wanted = value.strip().casefold()
    for member in enum_cls:
        if member.value.casefold() == wanted or member.name.casefold() == wanted:
            return member
    return default


def normalize(raw: Mapping[str, Any] | None) -> ControlSet:
    """Normalize a raw control payload into a ControlSet.

    Missing, non-numeric, NaN and infinite numbers fall back to the field
    default; valid numbers are clamped to the field domain. Enumerated
    fields accept their wire strings and fall back to the default for
    anything else. This function never raises.

    Args:
        raw: Raw control mapping, typically decoded from JSON. None or a
            non-mapping value yields the all-defaults ControlSet.

    Returns:
        A fully populated ControlSet.
    """
    if not isinstance(raw, Mapping):
        if raw is not None:
            logger.debug("Ignoring non-mapping control payload: %r", raw)
        return ControlSet()

    defaults = ControlSet()
    values: dict[str, Any] = {}
    for f in fields(ControlSet):
        value = _lookup(raw, f.name)
        if f.name in NUMERIC_DOMAINS:
            values[f.name] = _coerce_number(value, f.name)
        elif f.name == "lufs":
            values[f.name] = _coerce_lufs(value)
        elif f.name == "dehum":
            values[f.name] = _coerce_enum(value, Dehum, defaults.dehum)
        elif f.name == "hpf":
            values[f.name] = _coerce_enum(value, Hpf, defaults.hpf)
        elif f.name == "quality":
            values[f.name] = _coerce_enum(value, Quality, defaults.quality)
        else:
            values[f.name] = _coerce_bool(value, getattr(defaults, f.name))
    return ControlSet(**values)
