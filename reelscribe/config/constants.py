"""
Constant tables for reelscribe.

Grouped by concern in dataclasses so a component can take its table as a
constructor argument and tests can substitute an adjusted copy.
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple


@dataclass
class NormalizationConstants:
    """Segment normalization and word grouping."""
    MIN_SEGMENT_DURATION: float = 0.1
    TIME_PRECISION: int = 3  # milliseconds

    MAX_GROUP_DURATION: float = 5.0
    MAX_GROUP_WORDS: int = 15
    SENTENCE_END_CHARS: str = ".!?。！？"

    # One-letter words that are legitimate outside ideographic scripts
    SINGLE_CHAR_ALLOWLIST: Tuple[str, ...] = ("a", "i", "o")


@dataclass
class RetryConstants:
    OVERLOAD_STATUS_CODES: Tuple[int, ...] = (429, 503, 529)
    OVERLOAD_MARKERS: Tuple[str, ...] = ("overloaded", "rate limit", "too many requests", "resource exhausted")
    TRANSIENT_MARKERS: Tuple[str, ...] = ("network", "timeout", "timed out", "connection", "temporarily")


@dataclass
class ProfilerConstants:
    """Media profiling windows and classification thresholds."""
    MAX_ANALYSIS_SECONDS: float = 18.0
    LONG_MEDIA_SECONDS: float = 600.0
    MEDIUM_MEDIA_SECONDS: float = 300.0
    LONG_WINDOW_CAP: float = 30.0
    LONG_WINDOW_FRACTION: float = 0.05
    MEDIUM_WINDOW_CAP: float = 24.0
    MEDIUM_WINDOW_FRACTION: float = 0.08

    LONG_POSITIONS: Tuple[float, ...] = (0.25, 0.5, 0.75)
    MEDIUM_POSITIONS: Tuple[float, ...] = (0.3, 0.6)
    SHORT_POSITIONS: Tuple[float, ...] = (0.5,)

    SAMPLE_RATE: int = 16000
    TICK_SECONDS: float = 0.12

    # Dynamic silence threshold: max(FLOOR, max(median*M, q1*Q))
    SILENCE_FLOOR: float = 0.01
    SILENCE_MEDIAN_FACTOR: float = 0.3
    SILENCE_Q1_FACTOR: float = 0.5

    # Audio evidence
    PEAK_PRESENCE: float = 0.02
    AVERAGE_PRESENCE: float = 0.005

    # Classification
    VISUAL_MAX_AVERAGE: float = 0.01
    VISUAL_MIN_SILENCE: float = 0.75
    HYBRID_MAX_AVERAGE: float = 0.035
    HYBRID_MIN_SILENCE: float = 0.45


@dataclass
class SplitterConstants:
    """Progress bands reported while splitting and processing windows."""
    SPLIT_PROGRESS: Tuple[float, float] = (5.0, 30.0)
    PROCESS_PROGRESS: Tuple[float, float] = (30.0, 95.0)


@dataclass
class VisualConstants:
    # (max duration seconds, budgets); first match wins, last row is the default
    FRAME_BUDGETS: Tuple[Tuple[float, Tuple[int, ...]], ...] = (
        (120.0, (120, 90, 60)),
        (600.0, (90, 70, 48)),
        (1800.0, (75, 60, 40)),
        (float("inf"), (60, 45, 30)),
    )
    UNKNOWN_DURATION_BUDGETS: Tuple[int, ...] = (40, 30, 20)
    JPEG_QUALITY: int = 8  # ffmpeg -q:v scale, 2 (best) .. 31
    MAX_TIMELINE_HINTS: int = 40


@dataclass
class TransportConstants:
    """Payload-scaled request timeouts (seconds)."""
    CONNECT_TIMEOUT: float = 15.0
    TIERS: Tuple[Tuple[float, float], ...] = (
        (10.0, 60.0),    # <= 10 MB
        (100.0, 120.0),  # <= 100 MB
    )
    LARGE_TIMEOUT: float = 300.0
    SECONDS_PER_MB: float = 1.0
    MAX_TIMEOUT: float = 900.0


# Language names accepted on the command line mapped to ISO-639-1
LANGUAGE_CODES: Dict[str, str] = {
    "english": "en",
    "chinese": "zh",
    "spanish": "es",
    "french": "fr",
    "german": "de",
    "japanese": "ja",
    "korean": "ko",
    "russian": "ru",
}


def language_code(language: str) -> str:
    """
    Map a language name or code to the code providers expect.

    Returns "auto" for auto-detection; unknown values pass through.
    """
    if not language:
        return "auto"
    value = language.strip()
    lowered = value.lower()
    if lowered in ("auto", "detect", "auto-detect"):
        return "auto"
    return LANGUAGE_CODES.get(lowered, value)


DEFAULT_PROVIDER_ORDER: List[str] = ["deepgram", "groq", "openai", "gemini"]


@dataclass
class ProviderEndpoints:
    DEEPGRAM_URL: str = "https://api.deepgram.com/v1/listen"
