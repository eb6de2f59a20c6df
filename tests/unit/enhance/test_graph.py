"""Tests for filter graph construction."""

import pytest

from sukudo.enhance.controls import ControlSet, normalize
from sukudo.enhance.graph import (
    ChainSource,
    MediaKind,
    SignalPath,
    StageRole,
    build,
    build_stems,
    db_to_linear,
    format_number,
)

REFERENCE_CONTROLS = {
    "voiceGainDb": 3,
    "noisePercent": 50,
    "bgPercent": 20,
    "lufs": "-14",
    "dehum": "Auto",
    "deess": 25,
    "hpf": "Off",
    "quality": "Balanced",
}


def _index(roles: list[StageRole], role: StageRole) -> int:
    return roles.index(role)


class TestReferenceChain:
    """The documented stereo audio scenario."""

    @pytest.fixture
    def chain(self):
        return build(normalize(REFERENCE_CONTROLS), MediaKind.AUDIO, channels=2)

    def test_starts_with_highpass_at_70(self, chain):
        first = chain.stages[0]
        assert first.name == "highpass"
        assert first.param("f") == "70"

    def test_four_dehum_notches(self, chain):
        notches = [s for s in chain.stages if s.role is StageRole.DEHUM]
        assert [s.param("f") for s in notches] == ["50", "100", "150", "200"]

    def test_ends_with_loudnorm_then_limiter(self, chain):
        loudnorm, limiter = chain.stages[-2:]
        assert loudnorm.name == "loudnorm"
        assert loudnorm.param("I") == "-14"
        assert loudnorm.param("TP") == "-1.2"
        assert loudnorm.param("LRA") == "11"
        assert limiter.name == "alimiter"
        assert limiter.param("limit") == format_number(db_to_linear(-1.0))

    def test_denoise_strength(self, chain):
        denoise = next(s for s in chain.stages if s.role is StageRole.DENOISE)
        assert denoise.param("nr") == "18"

    def test_background_gain(self, chain):
        background = chain.for_path(SignalPath.BACKGROUND)
        assert background[-1].name == "volume"
        assert background[-1].param("volume") == "0.8"

    def test_filtergraph_shape(self, chain):
        graph = chain.to_filtergraph()
        assert graph.startswith("[0:a]aformat=channel_layouts=stereo,asplit=2")
        assert "[mid]pan=" in graph
        assert "[side]pan=" in graph
        assert graph.endswith("[aout]")
        assert "amix=inputs=2:normalize=0" in graph


class TestDeterminism:
    """Same controls give byte-identical output."""

    @pytest.mark.parametrize(
        "raw",
        [
            {},
            REFERENCE_CONTROLS,
            {"crackle": 73.3, "mouth": 99, "plosive": 12.5, "monoVoice": True},
            {"dehum": "60Hz", "clipRepair": True, "dereverb": 0, "deess": 0},
        ],
    )
    def test_build_is_deterministic(self, raw):
        first = build(normalize(raw), MediaKind.VIDEO, 2).to_filtergraph()
        second = build(normalize(dict(raw)), MediaKind.VIDEO, 2).to_filtergraph()
        assert first == second

    def test_chain_is_immutable(self):
        chain = build(ControlSet(), MediaKind.AUDIO)
        with pytest.raises(AttributeError):
            chain.stages = ()  # type: ignore[misc]


class TestOrdering:
    """Stage ordering holds for every combination of enabled stages."""

    @pytest.mark.parametrize("noise", [0, 1, 50, 100])
    @pytest.mark.parametrize("dehum", ["Off", "Auto", "60Hz"])
    @pytest.mark.parametrize("deess,mouth", [(0, 0), (30, 0), (0, 30), (80, 80)])
    def test_invariants(self, noise, dehum, deess, mouth):
        controls = normalize(
            {
                "noisePercent": noise,
                "dehum": dehum,
                "deess": deess,
                "mouth": mouth,
                "crackle": 50,
                "clipRepair": True,
            }
        )
        chain = build(controls, MediaKind.AUDIO, 2)
        roles = chain.roles()

        if StageRole.DENOISE in roles:
            denoise = _index(roles, StageRole.DENOISE)
            assert _index(roles, StageRole.HIGHPASS) < denoise
            for i, role in enumerate(roles):
                if role is StageRole.DEHUM:
                    assert i < denoise

        if StageRole.DEESS in roles and StageRole.TRANSIENT in roles:
            assert _index(roles, StageRole.DEESS) < _index(roles, StageRole.TRANSIENT)

        assert roles[-2] is StageRole.LOUDNESS
        assert roles[-1] is StageRole.LIMITER
        assert roles.count(StageRole.LOUDNESS) == 1


class TestParameterMapping:
    """Individual control-to-parameter mappings."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ({"plosive": 0}, "70"),
            ({"plosive": 100}, "150"),
            ({"plosive": 50, "hpf": "60Hz"}, "60"),
            ({"plosive": 50, "hpf": "80Hz"}, "80"),
        ],
    )
    def test_highpass_frequency(self, raw, expected):
        chain = build(normalize(raw), MediaKind.AUDIO)
        assert chain.stages[0].param("f") == expected

    def test_dehum_off_skips_notches(self):
        chain = build(normalize({"dehum": "Off"}), MediaKind.AUDIO)
        assert StageRole.DEHUM not in chain.roles()

    def test_dehum_60hz_harmonics(self):
        chain = build(normalize({"dehum": "60Hz"}), MediaKind.AUDIO)
        notches = [s.param("f") for s in chain.stages if s.role is StageRole.DEHUM]
        assert notches == ["60", "120", "180", "240"]

    def test_deess_depth(self):
        chain = build(normalize({"deess": 25}), MediaKind.AUDIO)
        deess = next(s for s in chain.stages if s.role is StageRole.DEESS)
        assert deess.name == "highshelf"
        assert deess.param("f") == "6800"
        assert deess.param("g") == "-2.5"

    def test_crackle_cutoff_has_floor(self):
        chain = build(normalize({"crackle": 100}), MediaKind.AUDIO)
        lowpass = next(s for s in chain.stages if s.role is StageRole.SMOOTHING)
        assert lowpass.param("f") == "4000"

    def test_crackle_zero_skips_lowpass(self):
        chain = build(normalize({"crackle": 0}), MediaKind.AUDIO)
        assert StageRole.SMOOTHING not in chain.roles()

    def test_mouth_scales_compressor(self):
        gentle = build(normalize({"mouth": 10}), MediaKind.AUDIO)
        strong = build(normalize({"mouth": 90}), MediaKind.AUDIO)
        g = next(s for s in gentle.stages if s.role is StageRole.TRANSIENT)
        s = next(s for s in strong.stages if s.role is StageRole.TRANSIENT)
        assert float(s.param("ratio")) > float(g.param("ratio"))
        assert float(s.param("attack")) < float(g.param("attack"))

    def test_dereverb_threshold_rises(self):
        low = build(normalize({"dereverb": 10}), MediaKind.AUDIO)
        high = build(normalize({"dereverb": 90}), MediaKind.AUDIO)
        low_points = next(x for x in low.stages if x.role is StageRole.DEREVERB)
        high_points = next(x for x in high.stages if x.role is StageRole.DEREVERB)
        assert "|-48/-60|" in low_points.param("points")
        assert "|-32/-60|" in high_points.param("points")

    def test_clip_repair_after_dehum_before_denoise(self):
        chain = build(normalize({"clipRepair": True}), MediaKind.AUDIO)
        roles = chain.roles()
        assert roles.index(StageRole.CLIP_REPAIR) < roles.index(StageRole.DENOISE)

    def test_voice_gain_last_on_vocal_path(self):
        chain = build(normalize({"voiceGainDb": -4.5}), MediaKind.AUDIO)
        vocal = chain.for_path(SignalPath.VOCAL)
        assert vocal[-1].render() == "volume=volume=-4.5dB"

    def test_background_shelves_scale_with_noise(self):
        chain = build(normalize({"noisePercent": 100}), MediaKind.AUDIO)
        shelves = [s for s in chain.stages if s.role is StageRole.SHELF]
        assert [s.param("g") for s in shelves] == ["-9.6", "-9.6"]


class TestMonoAndStems:
    """Channel-count and stem variants."""

    def test_mono_has_no_background_path(self):
        chain = build(normalize({"monoVoice": True}), MediaKind.AUDIO, channels=1)
        assert chain.is_mono
        assert chain.for_path(SignalPath.BACKGROUND) == ()
        assert StageRole.MIX not in chain.roles()
        assert StageRole.MONO not in chain.roles()
        graph = chain.to_filtergraph()
        assert "asplit" not in graph
        assert graph.startswith("[0:a]aformat=channel_layouts=mono,")

    def test_mono_voice_on_stereo(self):
        chain = build(normalize({"monoVoice": True}), MediaKind.AUDIO, channels=2)
        assert StageRole.MONO in chain.roles()

    def test_stems_audio_inputs(self):
        chain = build_stems(ControlSet(), MediaKind.AUDIO)
        assert chain.source is ChainSource.STEMS
        assert chain.inputs == ("0:a", "1:a")
        graph = chain.to_filtergraph()
        assert graph.startswith("[0:a]aformat=channel_layouts=stereo,highpass")
        assert "[1:a]aformat=channel_layouts=stereo," in graph
        assert "pan=" not in graph

    def test_stems_video_skip_original_input(self):
        chain = build_stems(ControlSet(), MediaKind.VIDEO)
        assert chain.inputs == ("1:a", "2:a")

    def test_stems_share_vocal_stages_with_mid_side(self):
        controls = normalize(REFERENCE_CONTROLS)
        mid_side = build(controls, MediaKind.AUDIO, 2)
        stems = build_stems(controls, MediaKind.AUDIO)
        assert mid_side.for_path(SignalPath.VOCAL) == stems.for_path(SignalPath.VOCAL)
        assert mid_side.for_path(SignalPath.MIX) == stems.for_path(SignalPath.MIX)


class TestFormatting:
    """Number rendering."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (70, "70"),
            (70.0, "70"),
            (-2.5, "-2.5"),
            (0.1234567, "0.123457"),
            (-0.0, "0"),
        ],
    )
    def test_format_number(self, value, expected):
        assert format_number(value) == expected

    def test_db_to_linear(self):
        assert db_to_linear(-1.0) == 0.891251
        assert db_to_linear(0) == 1.0
