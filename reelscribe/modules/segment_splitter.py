"""
Time-window splitting and bounded parallel transcription.

Long media is cut into contiguous, non-overlapping windows which a single
provider transcribes through a small worker pool. Windows run in fixed-size
batches; a batch is awaited completely before the next one starts, so at
most ``max_parallel`` uploads are ever in flight.

A failure in any window fails the whole job. Retrying the job (or moving to
another provider) is the router's decision.
"""

import math
import tempfile
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from reelscribe.config.constants import SplitterConstants
from reelscribe.config.settings import SplitterSettings
from reelscribe.modules.errors import ProviderError
from reelscribe.modules.media_tools import ClipCutter
from reelscribe.modules.segment_normalizer import normalize_segments
from reelscribe.modules.types import MediaSource, SubtitleSegment
from reelscribe.utils.logger import logger

_CONSTANTS = SplitterConstants()

# A trailing remainder shorter than this is folded into the previous window
MIN_TAIL_SECONDS = 1.0


@dataclass(frozen=True)
class TimeWindow:
    index: int
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


def _report(on_progress, stage: str, progress: float) -> None:
    if on_progress is None:
        return
    try:
        on_progress(stage, progress)
    except Exception as e:
        logger.debug(f"Progress callback failed: {e}")


class SegmentSplitter:
    """
    Plans and cuts time windows.

    One window for short media, ~2 minute windows up to the long-media
    threshold, ~3 minute windows beyond it, widened further if the count
    would exceed ``max_windows``.
    """

    def __init__(self, clip_cutter: Optional[ClipCutter] = None, settings: Optional[SplitterSettings] = None):
        self.clip_cutter = clip_cutter
        self.settings = settings or SplitterSettings()

    def window_length(self, duration: float) -> float:
        s = self.settings
        if duration <= s.single_window_max_sec:
            return duration
        length = s.window_sec if duration <= s.long_media_sec else s.long_window_sec
        if math.ceil(duration / length) > s.max_windows:
            length = math.ceil(duration / s.max_windows)
        return float(length)

    def plan_windows(self, duration: float) -> List[TimeWindow]:
        if duration <= 0:
            raise ValueError("Cannot split media of unknown duration")

        length = self.window_length(duration)
        bounds = []
        start = 0.0
        while start < duration:
            end = min(duration, start + length)
            if duration - end < MIN_TAIL_SECONDS:
                end = duration
            bounds.append((start, end))
            start = end

        return [TimeWindow(i, start, end) for i, (start, end) in enumerate(bounds)]

    def split(
        self,
        source: MediaSource,
        windows: Sequence[TimeWindow],
        output_dir: Path,
        cancel=None,
        on_progress=None,
    ) -> List[Tuple[TimeWindow, MediaSource]]:
        """Cut ``windows`` out of ``source``. A single window reuses the source file."""
        if len(windows) == 1:
            return [(windows[0], source)]
        if self.clip_cutter is None:
            raise ValueError("A clip cutter is required to split media")

        lo, hi = _CONSTANTS.SPLIT_PROGRESS
        clips = []
        for window in windows:
            if cancel is not None:
                cancel.raise_if_cancelled()
            clip = self.clip_cutter.cut(source, window.start, window.duration, output_dir, cancel=cancel)
            clips.append((window, clip))
            _report(
                on_progress,
                f"Splitting video ({window.index + 1}/{len(windows)})...",
                lo + (hi - lo) * (window.index + 1) / len(windows),
            )
        return clips


def merge_window_segments(
    windows: Sequence[TimeWindow],
    results: Dict[int, List[SubtitleSegment]],
) -> List[SubtitleSegment]:
    """
    Shift each window's segments by its start offset and merge.

    Window-relative segments are clipped to their window so neighbouring
    windows cannot overlap. Missing windows are skipped, which makes this
    usable for partial merges while work is still running.
    """
    merged = []
    for window in sorted(windows, key=lambda w: w.index):
        for seg in results.get(window.index, []):
            if seg.start >= window.duration:
                continue
            end = min(seg.end, window.duration)
            merged.append(SubtitleSegment(seg.start, end, seg.text).shifted(window.start))
    return normalize_segments(merged)


class ParallelSegmentProcessor:
    """
    Transcribes a split source with a bounded worker pool.

    Args:
        splitter: Plans and cuts the windows
        max_parallel: Worker pool width (batch size)
    """

    def __init__(self, splitter: SegmentSplitter, max_parallel: Optional[int] = None):
        self.splitter = splitter
        self.max_parallel = max_parallel or splitter.settings.max_parallel

    def process(
        self,
        source: MediaSource,
        adapter,
        language_hint: str = "auto",
        on_progress: Optional[Callable[[str, float], None]] = None,
        on_partial: Optional[Callable[[List[SubtitleSegment]], None]] = None,
        cancel=None,
        instructions: Optional[str] = None,
    ) -> List[SubtitleSegment]:
        """
        Transcribe ``source`` window by window with ``adapter``.

        Returns:
            Merged segments in media time

        Raises:
            The first failing window's error (by window index); the whole job fails
        """
        windows = self.splitter.plan_windows(source.duration)
        logger.info(
            f"Processing {source.name} in {len(windows)} window(s) of "
            f"~{windows[0].duration:.0f}s, {self.max_parallel} at a time"
        )
        _report(on_progress, f"Splitting into {len(windows)} segments...", _CONSTANTS.SPLIT_PROGRESS[0])

        with tempfile.TemporaryDirectory(prefix="reelscribe_split_") as tmp:
            clips = self.splitter.split(source, windows, Path(tmp), cancel=cancel, on_progress=on_progress)
            results = self._run_batches(
                clips, windows, adapter, language_hint, on_progress, on_partial, cancel, instructions
            )

        return merge_window_segments(windows, results)

    def _run_batches(self, clips, windows, adapter, language_hint, on_progress, on_partial, cancel, instructions=None):
        lo, hi = _CONSTANTS.PROCESS_PROGRESS
        total = len(clips)
        results: Dict[int, List[SubtitleSegment]] = {}

        with ThreadPoolExecutor(max_workers=self.max_parallel, thread_name_prefix="reelscribe-window") as pool:
            for batch_start in range(0, total, self.max_parallel):
                if cancel is not None:
                    cancel.raise_if_cancelled()

                batch = clips[batch_start:batch_start + self.max_parallel]
                futures = {
                    pool.submit(
                        adapter.transcribe, clip, language_hint, None, cancel, instructions=instructions
                    ): window
                    for window, clip in batch
                }

                failures = []
                for future in as_completed(futures):
                    window = futures[future]
                    try:
                        results[window.index] = future.result()
                    except Exception as e:
                        logger.warning(f"Window {window.index + 1}/{total} failed: {e}")
                        failures.append((window.index, e))
                        continue

                    _report(
                        on_progress,
                        f"Processed segment {len(results)}/{total}",
                        lo + (hi - lo) * len(results) / total,
                    )
                    if on_partial is not None:
                        try:
                            on_partial(merge_window_segments(windows, results))
                        except Exception as e:
                            logger.debug(f"Partial merge callback failed: {e}")

                if failures:
                    index, error = min(failures, key=lambda item: item[0])
                    if isinstance(error, ProviderError):
                        error.context.setdefault("window", f"{index + 1}/{total}")
                    raise error

        return results
