"""
SRT serialization for subtitle segments.

Uses the ``srt`` library for both directions so timestamp formatting
(``HH:MM:SS,mmm``) and block layout match every other SRT tool.
"""

import re
from datetime import timedelta
from pathlib import Path
from typing import List, Sequence, Union

import srt

from reelscribe.modules.segment_normalizer import clean_text
from reelscribe.modules.types import SubtitleSegment
from reelscribe.utils.logger import logger

_FENCE_OPEN = re.compile(r"^\s*```[A-Za-z0-9_-]*[ \t]*\r?\n?")
_FENCE_CLOSE = re.compile(r"\r?\n?```\s*$")


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence (```srt ... ```) wrapped around model output."""
    if not text:
        return ""
    text = _FENCE_OPEN.sub("", text, count=1)
    text = _FENCE_CLOSE.sub("", text, count=1)
    return text.strip()


def to_srt(segments: Sequence[SubtitleSegment]) -> str:
    """Compose segments into SRT text, numbered from 1."""
    subtitles = [
        srt.Subtitle(
            index=i,
            start=timedelta(seconds=seg.start),
            end=timedelta(seconds=seg.end),
            content=seg.text,
        )
        for i, seg in enumerate(segments, start=1)
    ]
    return srt.compose(subtitles)


def from_srt(text: str) -> List[SubtitleSegment]:
    """
    Parse SRT text into segments.

    Tolerates fenced or partially streamed input: malformed blocks are
    skipped rather than failing the whole document.
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        return []

    segments = []
    for sub in srt.parse(cleaned, ignore_errors=True):
        content = clean_text(sub.content)
        if not content:
            continue
        segments.append(SubtitleSegment(
            start=sub.start.total_seconds(),
            end=sub.end.total_seconds(),
            text=content,
        ))
    return segments


def write_srt(segments: Sequence[SubtitleSegment], path: Union[str, Path]) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(to_srt(segments), encoding="utf-8")
    logger.info(f"Wrote {len(segments)} subtitles to {path}")
    return path


def read_srt(path: Union[str, Path]) -> List[SubtitleSegment]:
    return from_srt(Path(path).read_text(encoding="utf-8"))
