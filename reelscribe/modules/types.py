"""
Shared data types for the transcription router.

All timestamps are in seconds relative to the start of the media unless
otherwise noted. Window-relative coordinates are an internal concern of the
segment splitter and are shifted back before they leave it.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Pipeline(str, Enum):
    """Strategy for turning media into subtitles."""
    AUDIO = "audio"
    VISUAL = "visual"
    HYBRID = "hybrid"


class CacheStatus(str, Enum):
    PARTIAL = "partial"
    COMPLETE = "complete"


class ErrorKind(str, Enum):
    """Retry classification of a failure."""
    OVERLOAD = "overload"    # 429/503/"overloaded": long cooldown
    TRANSIENT = "transient"  # dropped connection, 5xx, timeout
    FATAL = "fatal"          # bad input, non-429 4xx, cancellation


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------


@dataclass
class MediaSource:
    """
    A local media file with known size and (probed) duration.

    ``duration`` is 0.0 when unknown; callers treat that as "short".
    """

    path: Path
    size_bytes: int
    duration: float = 0.0
    width: int = 0
    height: int = 0
    has_audio_stream: Optional[bool] = None
    name: str = ""

    def __post_init__(self):
        self.path = Path(self.path)
        if not self.name:
            self.name = self.path.name

    @property
    def size_mb(self) -> float:
        return self.size_bytes / (1024 * 1024)

    @classmethod
    def from_path(cls, path: Union[str, Path], probe: bool = True) -> "MediaSource":
        """Build a source from a file, probing duration and streams with ffprobe."""
        path = Path(path)
        size = os.path.getsize(path)
        if not probe:
            return cls(path=path, size_bytes=size)

        from reelscribe.modules.media_tools import probe_media
        info = probe_media(path)
        return cls(
            path=path,
            size_bytes=size,
            duration=info.duration,
            width=info.width,
            height=info.height,
            has_audio_stream=info.has_audio,
        )


@dataclass(frozen=True)
class MediaProfile:
    """
    Audio presence/quality estimate for one request.

    Advisory only: the recommendation orders the fallback chain, it never
    excludes a pipeline.
    """

    duration: float
    width: int
    height: int
    has_audio_track: bool
    average_loudness: float
    peak_loudness: float
    silence_ratio: float
    recommended_pipeline: Pipeline
    sampled_window_seconds: float
    is_default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "duration": self.duration,
            "width": self.width,
            "height": self.height,
            "has_audio_track": self.has_audio_track,
            "average_loudness": self.average_loudness,
            "peak_loudness": self.peak_loudness,
            "silence_ratio": self.silence_ratio,
            "recommended_pipeline": Pipeline(self.recommended_pipeline).value,
            "sampled_window_seconds": self.sampled_window_seconds,
            "is_default": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MediaProfile":
        return cls(
            duration=float(data["duration"]),
            width=int(data.get("width", 0)),
            height=int(data.get("height", 0)),
            has_audio_track=bool(data["has_audio_track"]),
            average_loudness=float(data["average_loudness"]),
            peak_loudness=float(data["peak_loudness"]),
            silence_ratio=float(data["silence_ratio"]),
            recommended_pipeline=Pipeline(data["recommended_pipeline"]),
            sampled_window_seconds=float(data.get("sampled_window_seconds", 0.0)),
            is_default=bool(data.get("is_default", False)),
        )


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubtitleSegment:
    """One subtitle cue. After normalization ``end > start``."""

    start: float
    end: float
    text: str

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)

    def shifted(self, offset: float) -> "SubtitleSegment":
        return SubtitleSegment(self.start + offset, self.end + offset, self.text)


@dataclass
class WordTiming:
    """A recognized word with its time boundaries, as returned by a backend."""

    word: str
    start: float
    end: float
    confidence: Optional[float] = None


@dataclass
class ProviderResult:
    """Backend-agnostic output of a provider attempt."""

    segments: List[SubtitleSegment]
    provider: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def segment_count(self) -> int:
        return len(self.segments)


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@dataclass
class CacheEntry:
    """
    A cached transcription (or analysis) keyed by content hash.

    ``content`` holds serialized segments (SRT) for subtitle entries, or a
    JSON document for analysis entries (``kind != "subtitles"``).
    """

    key: str
    content: str
    status: CacheStatus
    provider: str
    timestamp: float
    source_size: int = 0
    source_duration: float = 0.0
    language: str = "auto"
    segment_count: int = 0
    kind: str = "subtitles"

    @property
    def is_complete(self) -> bool:
        return CacheStatus(self.status) == CacheStatus.COMPLETE

    def segments(self) -> List[SubtitleSegment]:
        from reelscribe.modules.srt_io import from_srt
        return from_srt(self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "content": self.content,
            "status": CacheStatus(self.status).value,
            "provider": self.provider,
            "timestamp": self.timestamp,
            "source_size": self.source_size,
            "source_duration": self.source_duration,
            "language": self.language,
            "segment_count": self.segment_count,
            "kind": self.kind,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        return cls(
            key=data["key"],
            content=data.get("content", ""),
            status=CacheStatus(data.get("status", CacheStatus.PARTIAL.value)),
            provider=data.get("provider", "unknown"),
            timestamp=float(data.get("timestamp", 0.0)),
            source_size=int(data.get("source_size", 0)),
            source_duration=float(data.get("source_duration", 0.0)),
            language=data.get("language", "auto"),
            segment_count=int(data.get("segment_count", 0)),
            kind=data.get("kind", "subtitles"),
        )


@dataclass
class CacheMeta:
    """Metadata supplied with a cache write."""

    provider: str
    source_size: int = 0
    source_duration: float = 0.0
    language: str = "auto"


@dataclass(frozen=True)
class CacheHit:
    entry: CacheEntry

    found = True


@dataclass(frozen=True)
class CacheMiss:
    reason: str = "not found"

    found = False


CacheLookup = Union[CacheHit, CacheMiss]


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


@dataclass
class RetryPolicy:
    """
    Per-call retry settings. Not persisted.

    ``classifier`` maps an exception to an ErrorKind; ``on_retry`` receives
    the 1-based retry number and the error that caused it.
    """

    max_retries: int = 3
    base_delay: float = 1.0
    classifier: Optional[Callable[[BaseException], ErrorKind]] = None
    on_retry: Optional[Callable[[int, BaseException], None]] = None
    overload_multiplier: float = 3.0
    max_delay: Optional[float] = None


# ---------------------------------------------------------------------------
# Router I/O
# ---------------------------------------------------------------------------

ProgressSink = Callable[[str, float], None]
TextSink = Callable[[str], None]
SegmentsSink = Callable[[List[SubtitleSegment]], None]


@dataclass
class TranscriptionRequest:
    """Everything the router needs for one request."""

    source: MediaSource
    language_hint: str = "auto"
    instructions: Optional[str] = None  # free-form guidance for prompt-driven backends
    on_progress: Optional[ProgressSink] = None
    on_stream_text: Optional[TextSink] = None
    on_partial_segments: Optional[SegmentsSink] = None
    cancel: Optional[Any] = None  # CancellationToken
    content_hash: Optional[str] = None
    use_cache: bool = True


@dataclass
class RouterOutcome:
    """Final result of a request."""

    segments: List[SubtitleSegment]
    provider: str
    pipeline: Pipeline
    elapsed_seconds: float
    from_cache: bool = False
    profile: Optional[MediaProfile] = None
    attempts: List[str] = field(default_factory=list)

    @property
    def srt(self) -> str:
        from reelscribe.modules.srt_io import to_srt
        return to_srt(self.segments)
