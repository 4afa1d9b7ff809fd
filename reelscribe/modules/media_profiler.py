"""
Audio presence/quality profiling.

Decodes a short audio window at one to three positions spread across the
timeline and derives loudness statistics per tick. The silence threshold is
computed from the tick distribution (median and first quartile) so that
quiet-but-present speech is not mistaken for silence.

The recommended pipeline orders the router's fallback chain; it never rules
a pipeline out.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from reelscribe.config.constants import ProfilerConstants
from reelscribe.modules.errors import CancelledError, ProfilingError
from reelscribe.modules.media_tools import AudioExtractor
from reelscribe.modules.types import MediaProfile, MediaSource, Pipeline
from reelscribe.utils.logger import logger


@dataclass
class LoudnessStats:
    average: float
    peak: float
    silence_ratio: float
    threshold: float
    tick_count: int
    reasons: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Sampling plan
# ---------------------------------------------------------------------------


def sample_positions(duration: float, constants: ProfilerConstants = ProfilerConstants()) -> Tuple[float, ...]:
    """Fractions of the timeline to sample; more positions for longer media."""
    if duration > constants.LONG_MEDIA_SECONDS:
        return constants.LONG_POSITIONS
    if duration > constants.MEDIUM_MEDIA_SECONDS:
        return constants.MEDIUM_POSITIONS
    return constants.SHORT_POSITIONS


def analysis_window_seconds(duration: float, constants: ProfilerConstants = ProfilerConstants()) -> float:
    """Total seconds of audio to decode, split evenly across sample positions."""
    seconds = constants.MAX_ANALYSIS_SECONDS
    if duration > constants.LONG_MEDIA_SECONDS:
        seconds = min(constants.LONG_WINDOW_CAP, duration * constants.LONG_WINDOW_FRACTION)
    elif duration > constants.MEDIUM_MEDIA_SECONDS:
        seconds = min(constants.MEDIUM_WINDOW_CAP, duration * constants.MEDIUM_WINDOW_FRACTION)
    if duration > 0:
        seconds = min(seconds, duration)
    return max(seconds, 1.0)


def window_starts(duration: float, window: float, positions: Sequence[float]) -> List[float]:
    """Window start times centred on each position and kept inside the media."""
    latest = max(0.0, duration - window)
    return [min(latest, max(0.0, duration * pos - window / 2)) for pos in positions]


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def tick_levels(samples: np.ndarray, sample_rate: int, tick_seconds: float) -> np.ndarray:
    """Mean absolute amplitude per tick."""
    samples = np.abs(np.asarray(samples, dtype=np.float32).reshape(-1))
    if samples.size == 0:
        return np.zeros(0, dtype=np.float32)

    tick = max(1, int(sample_rate * tick_seconds))
    usable = (samples.size // tick) * tick
    if usable == 0:
        return np.array([samples.mean()], dtype=np.float32)
    return samples[:usable].reshape(-1, tick).mean(axis=1)


def dynamic_silence_threshold(ticks: np.ndarray, constants: ProfilerConstants = ProfilerConstants()) -> float:
    """
    Silence threshold from the tick distribution.

    ``max(floor, max(median * 0.3, q1 * 0.5))``: scales with the recording's
    own level instead of assuming a fixed noise floor.
    """
    if ticks.size == 0:
        return constants.SILENCE_FLOOR
    median = float(np.median(ticks))
    q1 = float(np.percentile(ticks, 25))
    return max(
        constants.SILENCE_FLOOR,
        max(median * constants.SILENCE_MEDIAN_FACTOR, q1 * constants.SILENCE_Q1_FACTOR),
    )


def compute_loudness(ticks: np.ndarray, peak: float, constants: ProfilerConstants = ProfilerConstants()) -> LoudnessStats:
    if ticks.size == 0:
        return LoudnessStats(0.0, 0.0, 1.0, constants.SILENCE_FLOOR, 0, ["no decoded ticks"])
    threshold = dynamic_silence_threshold(ticks, constants)
    return LoudnessStats(
        average=float(ticks.mean()),
        peak=float(peak),
        silence_ratio=float(np.mean(ticks < threshold)),
        threshold=threshold,
        tick_count=int(ticks.size),
    )


def has_audio_evidence(stats: LoudnessStats, constants: ProfilerConstants = ProfilerConstants()) -> bool:
    return stats.peak > constants.PEAK_PRESENCE or stats.average > constants.AVERAGE_PRESENCE


def classify_pipeline(
    has_audio: bool,
    average: float,
    silence_ratio: float,
    constants: ProfilerConstants = ProfilerConstants(),
) -> Tuple[Pipeline, List[str]]:
    """Pipeline recommendation with the reasons that triggered it."""
    reasons = []
    if not has_audio:
        reasons.append("no audio evidence")
    if average < constants.VISUAL_MAX_AVERAGE:
        reasons.append(f"average loudness {average:.4f} < {constants.VISUAL_MAX_AVERAGE}")
    if silence_ratio > constants.VISUAL_MIN_SILENCE:
        reasons.append(f"silence ratio {silence_ratio:.2f} > {constants.VISUAL_MIN_SILENCE}")
    if reasons:
        return Pipeline.VISUAL, reasons

    if average < constants.HYBRID_MAX_AVERAGE:
        reasons.append(f"average loudness {average:.4f} < {constants.HYBRID_MAX_AVERAGE}")
    if silence_ratio > constants.HYBRID_MIN_SILENCE:
        reasons.append(f"silence ratio {silence_ratio:.2f} > {constants.HYBRID_MIN_SILENCE}")
    if reasons:
        return Pipeline.HYBRID, reasons

    return Pipeline.AUDIO, ["clear audio"]


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


def default_profile(source: MediaSource) -> MediaProfile:
    """Fallback when profiling fails: assume audio, trust the reported duration."""
    return MediaProfile(
        duration=source.duration,
        width=source.width,
        height=source.height,
        has_audio_track=True,
        average_loudness=0.0,
        peak_loudness=0.0,
        silence_ratio=0.0,
        recommended_pipeline=Pipeline.AUDIO,
        sampled_window_seconds=0.0,
        is_default=True,
    )


def describe_profile(profile: MediaProfile) -> str:
    """One-line summary for progress messages and logs."""
    if profile.is_default:
        return "Audio profile unavailable, assuming audio is present"
    if not profile.has_audio_track:
        return "No usable audio detected, subtitles will be inferred from video frames"
    pipeline = Pipeline(profile.recommended_pipeline).value
    return (
        f"Audio level {profile.average_loudness:.3f} (peak {profile.peak_loudness:.3f}), "
        f"{profile.silence_ratio:.0%} silence, recommended pipeline: {pipeline}"
    )


class MediaProfiler:
    """
    Estimates audio presence and quality for a media source.

    Args:
        audio_extractor: Decodes PCM windows (see media_tools.AudioExtractor)
        constants: Window sizes and classification thresholds
    """

    def __init__(self, audio_extractor: AudioExtractor, constants: Optional[ProfilerConstants] = None):
        self.audio_extractor = audio_extractor
        self.constants = constants or ProfilerConstants()

    def profile(self, source: MediaSource, cancel=None) -> MediaProfile:
        """
        Profile ``source``.

        Raises:
            ProfilingError: Duration unknown or no window could be decoded
            CancelledError: Cancelled while decoding
        """
        c = self.constants
        duration = source.duration
        if duration <= 0:
            raise ProfilingError("Media duration is unknown", context={"file": source.name})

        if source.has_audio_stream is False:
            logger.info(f"{source.name}: no audio stream")
            return self._build(source, False, LoudnessStats(0.0, 0.0, 1.0, c.SILENCE_FLOOR, 0), 0.0)

        positions = sample_positions(duration, c)
        total_window = analysis_window_seconds(duration, c)
        per_window = total_window / len(positions)
        starts = window_starts(duration, per_window, positions)

        tick_chunks = []
        peak = 0.0
        errors = []
        for start in starts:
            if cancel is not None:
                cancel.raise_if_cancelled()
            try:
                samples = self.audio_extractor.decode_window(
                    source, start, per_window, c.SAMPLE_RATE, cancel=cancel
                )
            except CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Audio window at {start:.1f}s failed: {e}")
                errors.append(e)
                continue

            samples = np.asarray(samples, dtype=np.float32)
            if samples.size:
                peak = max(peak, float(np.max(np.abs(samples))))
            tick_chunks.append(tick_levels(samples, c.SAMPLE_RATE, c.TICK_SECONDS))

        if errors and not tick_chunks:
            raise ProfilingError(
                f"Could not decode audio from {source.name}: {errors[-1]}",
                context={"windows": len(starts)},
            ) from errors[-1]

        ticks = np.concatenate(tick_chunks) if tick_chunks else np.zeros(0, dtype=np.float32)
        stats = compute_loudness(ticks, peak, c)
        profile = self._build(source, has_audio_evidence(stats, c), stats, per_window * len(tick_chunks))
        logger.info(f"{source.name}: {describe_profile(profile)}")
        return profile

    def _build(self, source: MediaSource, has_audio: bool, stats: LoudnessStats, sampled: float) -> MediaProfile:
        pipeline, reasons = classify_pipeline(has_audio, stats.average, stats.silence_ratio, self.constants)
        logger.debug(f"Pipeline {pipeline.value}: {', '.join(reasons)}")
        return MediaProfile(
            duration=source.duration,
            width=source.width,
            height=source.height,
            has_audio_track=has_audio,
            average_loudness=stats.average,
            peak_loudness=stats.peak,
            silence_ratio=stats.silence_ratio,
            recommended_pipeline=pipeline,
            sampled_window_seconds=sampled,
        )
