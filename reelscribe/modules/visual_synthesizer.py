"""
Subtitle synthesis from video frames.

Used when audio is absent or every audio provider failed. Frames are
sampled evenly across the timeline (denser for short media), each frame is
given a timestamp-range hint, and a vision model is asked for SRT grounded
in both. The result goes through the same normalization as audio output,
so callers can only tell it apart by the provider tag.
"""

import base64
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence, Tuple

from reelscribe.config.constants import VisualConstants, language_code
from reelscribe.config.settings import VisualSettings
from reelscribe.modules.errors import CancelledError, EmptyResultError, FatalProviderError
from reelscribe.modules.media_tools import FrameSampler
from reelscribe.modules.retry import RetryExecutor
from reelscribe.modules.segment_normalizer import normalize_segments
from reelscribe.modules.srt_io import from_srt
from reelscribe.modules.types import MediaSource, RetryPolicy, SubtitleSegment
from reelscribe.utils.logger import logger

_CONSTANTS = VisualConstants()

PROVIDER_TAG = "visual"


class VisionBackend(Protocol):
    name: str

    def generate(self, frames: Sequence[bytes], prompt: str, cancel=None) -> str: ...


@dataclass(frozen=True)
class TimelineHint:
    index: int
    start: float
    end: float

    @property
    def label(self) -> str:
        return f"Frame {self.index + 1}: {format_clock(self.start)} -> {format_clock(self.end)}"


def format_clock(seconds: float) -> str:
    seconds = max(0.0, seconds)
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    millis = int(round((seconds - int(seconds)) * 1000))
    if millis == 1000:
        millis = 999
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


# ---------------------------------------------------------------------------
# Sampling plan
# ---------------------------------------------------------------------------


def frame_budgets(duration: float, constants: VisualConstants = _CONSTANTS) -> Tuple[int, ...]:
    """Frame counts to try, largest first. Shorter media gets denser sampling."""
    if not duration or duration <= 0:
        return constants.UNKNOWN_DURATION_BUDGETS
    for max_duration, budgets in constants.FRAME_BUDGETS:
        if duration <= max_duration:
            return budgets
    return constants.FRAME_BUDGETS[-1][1]


def frame_timestamps(duration: float, count: int) -> List[float]:
    """Timestamp of each frame: the start of its equal share of the timeline."""
    if count <= 0:
        return []
    if duration <= 0:
        # Position is unknowable; a single opening frame is all we can place
        return [0.0]
    interval = duration / count
    return [i * interval for i in range(count)]


def build_timeline_hints(duration: float, count: int) -> List[TimelineHint]:
    if count <= 0:
        return []
    interval = duration / count if duration > 0 else 0.0
    return [TimelineHint(i, i * interval, (i + 1) * interval) for i in range(count)]


def encoded_size(frames: Sequence[bytes]) -> int:
    """Payload size once frames are base64-encoded for transport."""
    return sum(len(base64.b64encode(f)) for f in frames)


def build_prompt(
    hints: Sequence[TimelineHint],
    language: str,
    instructions: Optional[str] = None,
    max_hints: int = _CONSTANTS.MAX_TIMELINE_HINTS,
) -> str:
    code = language_code(language)
    target = "the language spoken or shown in the video" if code == "auto" else code
    lines = [
        "The audio track is unavailable, so rely entirely on the provided frames to understand the video.",
    ]
    if instructions:
        lines.append(f"The user request was: {instructions}")
    lines += [
        "Frames are ordered chronologically. Use the timestamp hints below to keep subtitles aligned with the timeline.",
        "Return only valid SRT formatted subtitles. Timecodes must be increasing and must not overlap.",
        "If consecutive frames show a static scene, merge them into one subtitle instead of repeating captions.",
        f"Produce subtitles in {target} if that language is supported; otherwise respond in English.",
        "Timestamp hints for the frames:\n" + "\n".join(h.label for h in hints[:max_hints]),
    ]
    return "\n\n".join(lines)


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------


class VisualSynthesizer:
    """
    Frames + vision model -> subtitle segments.

    Args:
        frame_sampler: Extracts JPEG frames (see media_tools.FrameSampler)
        backend: Vision-capable model
        settings: Payload ceiling, frame size and retry settings
        executor: RetryExecutor for the model call
    """

    provider_tag = PROVIDER_TAG

    def __init__(
        self,
        frame_sampler: FrameSampler,
        backend: VisionBackend,
        settings: Optional[VisualSettings] = None,
        executor: Optional[RetryExecutor] = None,
        constants: VisualConstants = _CONSTANTS,
    ):
        self.frame_sampler = frame_sampler
        self.backend = backend
        self.settings = settings or VisualSettings()
        self.executor = executor or RetryExecutor()
        self.constants = constants

    def is_configured(self) -> bool:
        check = getattr(self.backend, "is_configured", None)
        return bool(check()) if callable(check) else True

    def extract_frames(self, source: MediaSource, cancel=None, on_progress=None) -> List[bytes]:
        """
        Try each frame budget, largest first.

        A budget is rejected when extraction fails or the encoded payload
        exceeds the ceiling; the next, smaller budget is tried.
        """
        ceiling = int(self.settings.max_payload_mb * 1024 * 1024)
        last_error: Optional[Exception] = None

        for budget in frame_budgets(source.duration, self.constants):
            if cancel is not None:
                cancel.raise_if_cancelled()
            _notify(on_progress, f"Extracting visual key frames ({budget})...", 35)
            try:
                frames = self.frame_sampler.sample_frames(
                    source,
                    frame_timestamps(source.duration, budget),
                    max_width=self.settings.max_frame_width,
                    max_height=self.settings.max_frame_height,
                    quality=self.constants.JPEG_QUALITY,
                    cancel=cancel,
                )
            except CancelledError:
                raise
            except Exception as e:
                logger.warning(f"Frame extraction with budget {budget} failed: {e}")
                last_error = e
                continue

            if not frames:
                continue
            size = encoded_size(frames)
            if size > ceiling:
                logger.info(
                    f"{len(frames)} frames encode to {size / 1024 / 1024:.1f} MB "
                    f"(limit {self.settings.max_payload_mb} MB), reducing frame budget"
                )
                last_error = None
                continue
            return frames

        raise FatalProviderError(
            "Unable to extract frames within the payload limit"
            + (f": {last_error}" if last_error else ""),
            reason=FatalProviderError.INPUT,
            provider=PROVIDER_TAG,
            suggestion="Try a shorter clip or a lower-resolution copy of the video",
        )

    def synthesize(
        self,
        source: MediaSource,
        language_hint: str = "auto",
        on_progress=None,
        cancel=None,
        instructions: Optional[str] = None,
    ) -> List[SubtitleSegment]:
        """
        Produce subtitles for ``source`` from its frames.

        Raises:
            FatalProviderError: No frame budget fits the payload ceiling
            EmptyResultError: The model output contained no usable cues
            CancelledError: ``cancel`` fired
        """
        frames = self.extract_frames(source, cancel=cancel, on_progress=on_progress)
        hints = build_timeline_hints(source.duration, len(frames))
        prompt = build_prompt(hints, language_hint, instructions, self.constants.MAX_TIMELINE_HINTS)

        _notify(on_progress, "Inferring subtitles from visual timeline...", 65)
        policy = RetryPolicy(
            max_retries=self.settings.max_retries,
            base_delay=self.settings.base_delay,
            on_retry=lambda attempt, _err: _notify(
                on_progress,
                f"Retrying visual subtitle synthesis ({attempt}/{self.settings.max_retries})...",
                72,
            ),
        )
        executor = self.executor.with_cancel(cancel)
        raw = executor.run(lambda: self.backend.generate(frames, prompt, cancel), policy)

        segments = normalize_segments(from_srt(raw), duration=source.duration or None)
        if not segments:
            raise EmptyResultError(
                "Visual pipeline returned content that could not be parsed as subtitles",
                provider=PROVIDER_TAG,
            )

        _notify(on_progress, "Visual subtitles ready", 92)
        logger.info(f"Visual synthesis produced {len(segments)} segments from {len(frames)} frames")
        return segments


def _notify(on_progress, stage: str, progress: float) -> None:
    if on_progress is None:
        return
    try:
        on_progress(stage, progress)
    except Exception as e:
        logger.debug(f"Progress callback failed: {e}")
