"""
Pytest configuration for reelscribe tests.

Registers custom markers and provides in-process fakes for the external
collaborators (providers, media tools, vision model) so the orchestration
can be exercised without ffmpeg or network access.
"""

import threading
from pathlib import Path
from typing import Callable, List, Optional

import numpy as np
import pytest

from reelscribe.modules.retry import RetryExecutor
from reelscribe.modules.types import MediaSource, SubtitleSegment


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (longer than 60 seconds)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeAdapter:
    """
    Scripted provider adapter.

    ``script`` items are consumed one per call (the last one repeats): a list
    of segments is returned, an exception is raised, a callable is invoked
    with ``(media, on_partial, cancel)``.
    """

    supports_splitting = True

    def __init__(self, name: str, script=None, configured: bool = True, max_duration: Optional[float] = None):
        self.name = name
        self.script = list(script or [[SubtitleSegment(0.0, 1.0, f"hello from {name}")]])
        self.configured = configured
        self.max_duration = max_duration
        self.calls: List[MediaSource] = []
        self.instructions: List[Optional[str]] = []
        self._lock = threading.Lock()

    def is_configured(self) -> bool:
        return self.configured

    def accepts(self, media: MediaSource) -> bool:
        return self.max_duration is None or media.duration <= self.max_duration

    def transcribe(
        self, media, language_hint="auto", on_progress=None, cancel=None,
        on_partial=None, on_stream_text=None, instructions=None,
    ):
        with self._lock:
            self.calls.append(media)
            self.instructions.append(instructions)
            step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return step(media, on_partial, cancel)
        return list(step)


class FakeMediaTools:
    """AudioExtractor + FrameSampler + ClipCutter backed by synthetic data."""

    def __init__(self, level: float = 0.3, decode_error: Optional[Exception] = None, frame_bytes: int = 1000):
        self.level = level
        self.decode_error = decode_error
        self.frame_bytes = frame_bytes
        self.decode_calls = []
        self.frame_requests = []
        self.cuts = []

    def decode_window(self, source, start, duration, sample_rate=16000, cancel=None):
        self.decode_calls.append((start, duration))
        if self.decode_error is not None:
            raise self.decode_error
        return np.full(int(duration * sample_rate), self.level, dtype=np.float32)

    def extract_audio(self, source, start=None, duration=None, bitrate_kbps=32, cancel=None):
        return b"\xff\xfb" * 100

    def sample_frames(self, source, timestamps, max_width=1280, max_height=720, quality=8, cancel=None):
        self.frame_requests.append(len(timestamps))
        return [b"\xff\xd8" + b"\x00" * self.frame_bytes for _ in timestamps]

    def cut(self, source, start, duration, output_dir, cancel=None):
        self.cuts.append((start, duration))
        return MediaSource(
            path=Path(output_dir) / f"{source.path.stem}_{int(start * 1000):09d}.mp4",
            size_bytes=max(1, int(source.size_bytes * duration / max(source.duration, 1))),
            duration=duration,
            has_audio_stream=source.has_audio_stream,
        )


class FakeVisionBackend:
    name = "fake-vision"

    def __init__(self, responses=None, configured: bool = True):
        self.responses = list(responses or ["1\n00:00:01,000 --> 00:00:03,000\nA sign reads OPEN\n"])
        self.configured = configured
        self.calls = []

    def is_configured(self) -> bool:
        return self.configured

    def generate(self, frames, prompt, cancel=None):
        self.calls.append((len(frames), prompt))
        step = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(step, BaseException):
            raise step
        return step


class FakeVisual:
    """Stand-in for VisualSynthesizer at the router seam."""

    def __init__(self, result=None, configured: bool = True):
        self.result = result if result is not None else [SubtitleSegment(1.0, 3.0, "visual caption")]
        self.backend = FakeVisionBackend(configured=configured)
        self.calls = 0
        self.instructions = []

    def is_configured(self) -> bool:
        return self.backend.configured

    def synthesize(self, source, language_hint="auto", on_progress=None, cancel=None, instructions=None):
        self.calls += 1
        self.instructions.append(instructions)
        if isinstance(self.result, BaseException):
            raise self.result
        return list(self.result)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_source(tmp_path) -> Callable[..., MediaSource]:
    def _make(duration: float = 60.0, size_bytes: int = 5 * 1024 * 1024, has_audio: Optional[bool] = True, name="clip.mp4"):
        return MediaSource(
            path=tmp_path / name,
            size_bytes=size_bytes,
            duration=duration,
            width=1280,
            height=720,
            has_audio_stream=has_audio,
        )
    return _make


@pytest.fixture
def make_adapter():
    return FakeAdapter


@pytest.fixture
def media_tools():
    return FakeMediaTools()


@pytest.fixture
def make_media_tools():
    return FakeMediaTools


@pytest.fixture
def make_vision_backend():
    return FakeVisionBackend


@pytest.fixture
def make_visual():
    return FakeVisual


@pytest.fixture
def sleeps():
    """Delays requested by a RetryExecutor, without actually sleeping."""
    return []


@pytest.fixture
def executor(sleeps):
    return RetryExecutor(sleep=sleeps.append)


@pytest.fixture
def progress_log():
    events = []

    def _sink(stage, progress):
        events.append((stage, progress))

    _sink.events = events
    return _sink
