"""Tests for MediaProfiler loudness analysis and pipeline recommendation."""

import numpy as np
import pytest

from reelscribe.modules.errors import ProfilingError
from reelscribe.modules.media_profiler import (
    MediaProfiler,
    analysis_window_seconds,
    classify_pipeline,
    default_profile,
    describe_profile,
    dynamic_silence_threshold,
    sample_positions,
    tick_levels,
    window_starts,
)
from reelscribe.modules.types import Pipeline


class TestSamplingPlan:
    @pytest.mark.parametrize("duration, count", [(60.0, 1), (300.0, 1), (400.0, 2), (2700.0, 3)])
    def test_position_count_grows_with_duration(self, duration, count):
        assert len(sample_positions(duration)) == count

    def test_window_sizes(self):
        assert analysis_window_seconds(60.0) == 18.0
        assert analysis_window_seconds(400.0) == 24.0
        assert analysis_window_seconds(2700.0) == 30.0
        assert analysis_window_seconds(5.0) == 5.0

    def test_window_starts_stay_inside_media(self):
        starts = window_starts(100.0, 18.0, (0.0, 0.5, 1.0))
        assert starts == [0.0, 41.0, 82.0]


class TestStatistics:
    def test_tick_levels(self):
        samples = np.concatenate([np.full(100, 0.5), np.full(100, -0.1)])
        ticks = tick_levels(samples, sample_rate=1000, tick_seconds=0.1)
        assert ticks.tolist() == pytest.approx([0.5, 0.1])

    def test_threshold_has_floor(self):
        assert dynamic_silence_threshold(np.zeros(10)) == 0.01

    def test_threshold_scales_with_level(self):
        assert dynamic_silence_threshold(np.full(10, 0.2)) == pytest.approx(0.1)

    @pytest.mark.parametrize("has_audio, average, silence, expected", [
        (False, 0.2, 0.0, Pipeline.VISUAL),
        (True, 0.005, 0.1, Pipeline.VISUAL),
        (True, 0.2, 0.8, Pipeline.VISUAL),
        (True, 0.02, 0.1, Pipeline.HYBRID),
        (True, 0.2, 0.5, Pipeline.HYBRID),
        (True, 0.2, 0.1, Pipeline.AUDIO),
    ])
    def test_classify(self, has_audio, average, silence, expected):
        pipeline, reasons = classify_pipeline(has_audio, average, silence)
        assert pipeline == expected
        assert reasons


class TestMediaProfiler:
    def test_clear_audio(self, make_media_tools, make_source):
        profile = MediaProfiler(make_media_tools(level=0.3)).profile(make_source(duration=60.0))
        assert profile.has_audio_track
        assert profile.recommended_pipeline == Pipeline.AUDIO
        assert profile.average_loudness == pytest.approx(0.3)
        assert profile.silence_ratio == 0.0
        assert not profile.is_default

    def test_silence_recommends_visual(self, make_media_tools, make_source):
        profile = MediaProfiler(make_media_tools(level=0.0)).profile(make_source(duration=60.0))
        assert not profile.has_audio_track
        assert profile.recommended_pipeline == Pipeline.VISUAL

    def test_quiet_audio_recommends_hybrid(self, make_media_tools, make_source):
        profile = MediaProfiler(make_media_tools(level=0.02)).profile(make_source(duration=60.0))
        assert profile.has_audio_track
        assert profile.recommended_pipeline == Pipeline.HYBRID

    def test_missing_audio_stream_skips_decoding(self, make_media_tools, make_source):
        tools = make_media_tools()
        profile = MediaProfiler(tools).profile(make_source(duration=2700.0, has_audio=False))
        assert tools.decode_calls == []
        assert not profile.has_audio_track
        assert profile.recommended_pipeline == Pipeline.VISUAL
        assert profile.duration == 2700.0

    def test_long_media_samples_three_windows(self, make_media_tools, make_source):
        tools = make_media_tools()
        profile = MediaProfiler(tools).profile(make_source(duration=2700.0))
        assert [start for start, _ in tools.decode_calls] == pytest.approx([670.0, 1345.0, 2020.0])
        assert all(length == pytest.approx(10.0) for _, length in tools.decode_calls)
        assert profile.sampled_window_seconds == pytest.approx(30.0)

    def test_decode_failure_raises(self, make_media_tools, make_source):
        tools = make_media_tools(decode_error=RuntimeError("ffmpeg exploded"))
        with pytest.raises(ProfilingError) as exc_info:
            MediaProfiler(tools).profile(make_source(duration=60.0))
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_unknown_duration_raises(self, media_tools, make_source):
        with pytest.raises(ProfilingError):
            MediaProfiler(media_tools).profile(make_source(duration=0.0))

    def test_cancelled_before_decoding(self, media_tools, make_source):
        from reelscribe.modules.errors import CancelledError
        from reelscribe.utils.cancellation import CancellationToken

        token = CancellationToken()
        token.cancel()
        with pytest.raises(CancelledError):
            MediaProfiler(media_tools).profile(make_source(duration=60.0), cancel=token)
        assert media_tools.decode_calls == []


def test_default_profile(make_source):
    profile = default_profile(make_source(duration=42.0))
    assert profile.is_default
    assert profile.has_audio_track
    assert profile.recommended_pipeline == Pipeline.AUDIO
    assert profile.duration == 42.0
    assert "unavailable" in describe_profile(profile)


def test_profile_dict_round_trip(make_media_tools, make_source):
    profile = MediaProfiler(make_media_tools(level=0.3)).profile(make_source(duration=60.0))
    assert type(profile).from_dict(profile.to_dict()) == profile
