"""Tests for window planning and bounded parallel processing."""

import threading
import time

import pytest

from reelscribe.config.settings import SplitterSettings
from reelscribe.modules.errors import CancelledError, EmptyResultError
from reelscribe.modules.segment_splitter import (
    ParallelSegmentProcessor,
    SegmentSplitter,
    TimeWindow,
    merge_window_segments,
)
from reelscribe.modules.types import SubtitleSegment
from reelscribe.utils.cancellation import CancellationToken


def window_index(media, length=180.0):
    """Recover the window index from a clip cut by FakeMediaTools."""
    start_ms = int(media.path.stem.rsplit("_", 1)[-1])
    return int(round(start_ms / 1000.0 / length))


class ConcurrencyProbe:
    """Adapter callable that records in-flight counts and start/end order."""

    def __init__(self, delay=0.01, fail=()):
        self.delay = delay
        self.fail = set(fail)
        self.events = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()

    def __call__(self, media, on_partial, cancel):
        index = window_index(media)
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
            self.events.append(("start", index))
        time.sleep(self.delay)
        with self._lock:
            self.in_flight -= 1
            self.events.append(("end", index))
        if index in self.fail:
            raise EmptyResultError(f"window {index} empty", provider="fake")
        return [SubtitleSegment(0.0, 180.0, f"window {index}")]


class TestPlanWindows:
    @pytest.fixture
    def splitter(self):
        return SegmentSplitter()

    def test_short_media_single_window(self, splitter):
        assert splitter.plan_windows(100.0) == [TimeWindow(0, 0.0, 100.0)]

    def test_standard_windows(self, splitter):
        windows = splitter.plan_windows(600.0)
        assert [(w.start, w.end) for w in windows] == [(0, 120), (120, 240), (240, 360), (360, 480), (480, 600)]

    def test_long_media_uses_longer_windows(self, splitter):
        windows = splitter.plan_windows(5400.0)
        assert len(windows) == 30
        assert all(w.duration == 180.0 for w in windows)

    def test_tiny_tail_folded_into_last_window(self, splitter):
        windows = splitter.plan_windows(240.5)
        assert [(w.start, w.end) for w in windows] == [(0.0, 120.0), (120.0, 240.5)]

    def test_window_count_capped(self, splitter):
        windows = splitter.plan_windows(10_000.0)
        assert len(windows) <= 40
        assert windows[-1].end == 10_000.0

    def test_windows_are_contiguous(self, splitter):
        windows = splitter.plan_windows(3333.3)
        assert windows[0].start == 0.0
        assert windows[-1].end == 3333.3
        for prev, cur in zip(windows, windows[1:]):
            assert prev.end == cur.start

    def test_unknown_duration_rejected(self, splitter):
        with pytest.raises(ValueError):
            splitter.plan_windows(0.0)

    def test_settings_override(self):
        splitter = SegmentSplitter(settings=SplitterSettings(single_window_max_sec=10.0, window_sec=30.0))
        assert len(splitter.plan_windows(90.0)) == 3


def test_merge_shifts_and_clips_to_window():
    windows = [TimeWindow(0, 0.0, 10.0), TimeWindow(1, 10.0, 20.0)]
    results = {
        0: [SubtitleSegment(8.0, 12.0, "runs over")],
        1: [SubtitleSegment(1.0, 2.0, "second"), SubtitleSegment(15.0, 16.0, "outside")],
    }
    assert merge_window_segments(windows, results) == [
        SubtitleSegment(8.0, 10.0, "runs over"),
        SubtitleSegment(11.0, 12.0, "second"),
    ]


def test_segment_shift_keeps_text_and_duration():
    shifted = SubtitleSegment(1.0, 2.5, "second").shifted(120.0)
    assert shifted == SubtitleSegment(121.0, 122.5, "second")
    assert shifted.duration == pytest.approx(1.5)


class TestParallelSegmentProcessor:
    def test_long_media_processed_in_batches_of_three(self, make_source, make_media_tools, make_adapter, progress_log):
        tools = make_media_tools()
        probe = ConcurrencyProbe()
        adapter = make_adapter("fake", script=[probe])
        processor = ParallelSegmentProcessor(SegmentSplitter(clip_cutter=tools))

        partials = []
        segments = processor.process(
            make_source(duration=5400.0), adapter, on_progress=progress_log, on_partial=partials.append,
        )

        assert len(tools.cuts) == 30
        assert len(adapter.calls) == 30
        assert probe.max_in_flight <= 3

        # Every window of batch k finishes before any window of batch k+1 starts
        for batch in range(1, 10):
            starts = [i for i, e in enumerate(probe.events) if e[0] == "start" and e[1] // 3 == batch]
            ends = [i for i, e in enumerate(probe.events) if e[0] == "end" and e[1] // 3 == batch - 1]
            assert max(ends) < min(starts)

        assert segments[0].start == 0.0
        assert segments[-1].end == 5400.0
        for prev, cur in zip(segments, segments[1:]):
            assert prev.end == cur.start
        assert len(segments) == 30

        assert len(partials) == 30
        assert len(partials[-1]) == 30
        assert progress_log.events[0][0] == "Splitting into 30 segments..."
        assert progress_log.events[-1][1] == pytest.approx(95.0)

    def test_single_window_reuses_source(self, make_source, make_media_tools, make_adapter):
        tools = make_media_tools()
        adapter = make_adapter("fake")
        source = make_source(duration=90.0)
        segments = ParallelSegmentProcessor(SegmentSplitter(clip_cutter=tools)).process(source, adapter)
        assert tools.cuts == []
        assert adapter.calls == [source]
        assert segments == [SubtitleSegment(0.0, 1.0, "hello from fake")]

    def test_failure_fails_job_with_lowest_window(self, make_source, make_media_tools, make_adapter):
        probe = ConcurrencyProbe(fail={2, 1})
        adapter = make_adapter("fake", script=[probe])
        processor = ParallelSegmentProcessor(SegmentSplitter(clip_cutter=make_media_tools()))

        with pytest.raises(EmptyResultError) as exc_info:
            processor.process(make_source(duration=5400.0), adapter)

        assert "window 1 empty" in exc_info.value.message
        assert exc_info.value.context["window"] == "2/30"
        # No batch starts after a failed one
        assert len(adapter.calls) == 3

    def test_cancelled_before_cutting(self, make_source, make_media_tools, make_adapter):
        tools = make_media_tools()
        token = CancellationToken()
        token.cancel()
        processor = ParallelSegmentProcessor(SegmentSplitter(clip_cutter=tools))
        with pytest.raises(CancelledError):
            processor.process(make_source(duration=5400.0), make_adapter("fake"), cancel=token)
        assert tools.cuts == []

    def test_max_parallel_override(self, make_source, make_media_tools, make_adapter):
        probe = ConcurrencyProbe()
        processor = ParallelSegmentProcessor(SegmentSplitter(clip_cutter=make_media_tools()), max_parallel=1)
        processor.process(make_source(duration=900.0), make_adapter("fake", script=[probe]))
        assert probe.max_in_flight == 1
