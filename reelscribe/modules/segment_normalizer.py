"""
Segment normalization shared by every provider and the visual path.

Raw recognition output arrives as word timings (Deepgram, Whisper) or as
loosely ordered cues (LLM-produced SRT). Everything leaving a provider goes
through ``normalize_segments`` so downstream code sees one invariant:
ascending, non-overlapping, trimmed segments with ``end > start``.

Steps:
    1. Degenerate token filtering (word level, before grouping)
    2. Pseudo-sentence grouping bounded by duration and word count
    3. Text sanitizing, sorting, de-duplication and overlap repair
"""

import math
from typing import Iterable, List, Optional, Sequence

import regex

from reelscribe.config.constants import NormalizationConstants
from reelscribe.modules.types import SubtitleSegment, WordTiming

_DEFAULTS = NormalizationConstants()

_WHITESPACE = regex.compile(r"\s+")
_IDEOGRAPHIC = regex.compile(r"[\p{Han}\p{Hiragana}\p{Katakana}\p{Hangul}]")
_EDGE_PUNCT = regex.compile(r"^[\p{P}\p{S}]+|[\p{P}\p{S}]+$")


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def clean_text(text: Optional[str]) -> str:
    """Collapse whitespace runs and trim."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def _token_key(word: str) -> str:
    return _EDGE_PUNCT.sub("", word.strip()).casefold()


def _is_ideographic(char: str) -> bool:
    return bool(_IDEOGRAPHIC.match(char))


def is_degenerate_single_char(word: str, constants: NormalizationConstants = _DEFAULTS) -> bool:
    """
    True for one-character tokens outside ideographic scripts.

    A lone Latin/Cyrillic letter is almost always a misrecognized breath or
    click. Digits and the allow-listed one-letter words survive; a token that
    is nothing but punctuation counts as degenerate.
    """
    core = _EDGE_PUNCT.sub("", word.strip())
    if not core:
        return True
    if len(core) != 1:
        return False
    if core.isdigit() or _is_ideographic(core):
        return False
    return core.casefold() not in constants.SINGLE_CHAR_ALLOWLIST


# ---------------------------------------------------------------------------
# Degenerate token filtering
# ---------------------------------------------------------------------------


def filter_degenerate_tokens(
    words: Sequence[WordTiming],
    constants: NormalizationConstants = _DEFAULTS,
) -> List[WordTiming]:
    """
    Drop tokens that are likely misrecognition.

    - single characters outside ideographic scripts
    - immediate repeats ("the the")
    - short A-B-A-B cycles, collapsed to A-B
    """
    kept: List[WordTiming] = []

    for word in words:
        if is_degenerate_single_char(word.word, constants):
            continue

        key = _token_key(word.word)
        if kept and key == _token_key(kept[-1].word):
            continue

        if (
            len(kept) >= 3
            and key == _token_key(kept[-2].word)
            and _token_key(kept[-1].word) == _token_key(kept[-3].word)
        ):
            # kept ends with A-B-A and this is B: drop the second A-B
            kept.pop()
            continue

        kept.append(word)

    return kept


def filter_degenerate_text(text: str, constants: NormalizationConstants = _DEFAULTS) -> str:
    """Token filter for backends that only return cue text, not word timings."""
    tokens = [WordTiming(token, 0.0, 0.0) for token in clean_text(text).split(" ") if token]
    return " ".join(w.word for w in filter_degenerate_tokens(tokens, constants))


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def join_words(words: Iterable[str]) -> str:
    """Join tokens, without spaces between adjacent ideographic tokens."""
    text = ""
    for word in words:
        word = word.strip()
        if not word:
            continue
        if text and not (_is_ideographic(text[-1]) and _is_ideographic(word[0])):
            text += " "
        text += word
    return text


def group_words(
    words: Sequence[WordTiming],
    max_duration: Optional[float] = None,
    max_words: Optional[int] = None,
    constants: NormalizationConstants = _DEFAULTS,
) -> List[SubtitleSegment]:
    """
    Group word timings into pseudo-sentences.

    A group closes when adding the next word would exceed ``max_duration``,
    when it already holds ``max_words`` words, or after a word ending in
    sentence-final punctuation.
    """
    max_duration = constants.MAX_GROUP_DURATION if max_duration is None else max_duration
    max_words = constants.MAX_GROUP_WORDS if max_words is None else max_words
    sentence_end = tuple(constants.SENTENCE_END_CHARS)

    segments: List[SubtitleSegment] = []
    current: List[WordTiming] = []

    def _close():
        if current:
            text = join_words(w.word for w in current)
            if text:
                segments.append(SubtitleSegment(current[0].start, current[-1].end, text))
            current.clear()

    for word in words:
        if current and (
            word.end - current[0].start > max_duration or len(current) >= max_words
        ):
            _close()
        current.append(word)
        if word.word.rstrip().endswith(sentence_end):
            _close()

    _close()
    return segments


def words_to_segments(
    words: Sequence[WordTiming],
    max_duration: Optional[float] = None,
    max_words: Optional[int] = None,
    constants: NormalizationConstants = _DEFAULTS,
) -> List[SubtitleSegment]:
    """Filter then group: the adapter-side normalization path for word timings."""
    filtered = filter_degenerate_tokens(words, constants)
    return group_words(filtered, max_duration, max_words, constants)


# ---------------------------------------------------------------------------
# Segment normalization
# ---------------------------------------------------------------------------


def normalize_segments(
    segments: Iterable[SubtitleSegment],
    duration: Optional[float] = None,
    constants: NormalizationConstants = _DEFAULTS,
) -> List[SubtitleSegment]:
    """
    Repair raw segments into the ascending, non-overlapping invariant.

    Idempotent: a normalized list comes back unchanged.

    Args:
        segments: Segments in any order, possibly overlapping or empty
        duration: Media duration; segments beyond it are dropped or clamped
        constants: Minimum duration and timestamp precision

    Returns:
        New list satisfying ``segments[i].end <= segments[i+1].start``
    """
    precision = constants.TIME_PRECISION
    min_duration = constants.MIN_SEGMENT_DURATION
    limit = duration if duration and duration > 0 else None

    prepared = []
    for seg in segments:
        text = clean_text(seg.text)
        if not text:
            continue
        try:
            start, end = float(seg.start), float(seg.end)
        except (TypeError, ValueError):
            continue
        if not (math.isfinite(start) and math.isfinite(end)):
            continue
        prepared.append((max(0.0, start), end, text))

    prepared.sort(key=lambda item: (item[0], item[1]))

    result: List[SubtitleSegment] = []
    for start, end, text in prepared:
        if limit is not None:
            end = min(end, limit)

        if result:
            prev = result[-1]
            if text == prev.text and start < prev.end:
                merged_end = round(max(prev.end, end), precision)
                result[-1] = SubtitleSegment(prev.start, merged_end, prev.text)
                continue
            start = max(start, prev.end)

        start = round(start, precision)
        if limit is not None and start >= limit:
            continue

        end = max(end, start + min_duration)
        if limit is not None:
            end = min(end, limit)
        end = round(end, precision)
        if end <= start:
            continue

        result.append(SubtitleSegment(start, end, text))

    return result


def is_normalized(segments: Sequence[SubtitleSegment]) -> bool:
    """Check the ordering invariant without modifying anything."""
    for i, seg in enumerate(segments):
        if seg.end <= seg.start or not seg.text or seg.text != clean_text(seg.text):
            return False
        if i and segments[i - 1].end > seg.start:
            return False
    return True
