"""Tests for SRT composition and parsing."""

import random

import pytest

from reelscribe.modules.segment_normalizer import normalize_segments
from reelscribe.modules.srt_io import from_srt, read_srt, strip_code_fences, to_srt, write_srt
from reelscribe.modules.types import SubtitleSegment

SAMPLE = """1
00:00:01,000 --> 00:00:02,500
Hello there

2
00:01:02,250 --> 00:01:04,000
General   Kenobi
"""


def test_to_srt_format():
    text = to_srt([SubtitleSegment(1.0, 2.5, "Hello there"), SubtitleSegment(3661.25, 3662.0, "Later")])
    assert text.startswith("1\n00:00:01,000 --> 00:00:02,500\nHello there\n\n")
    assert "2\n01:01:01,250 --> 01:01:02,000\nLater\n" in text


def test_from_srt_parses_and_cleans():
    segments = from_srt(SAMPLE)
    assert segments == [
        SubtitleSegment(1.0, 2.5, "Hello there"),
        SubtitleSegment(62.25, 64.0, "General Kenobi"),
    ]


@pytest.mark.parametrize("fence", ["```srt\n{}\n```", "```\n{}```", "{}"])
def test_code_fences_are_stripped(fence):
    assert from_srt(fence.format(SAMPLE.strip()))[0].text == "Hello there"


def test_strip_code_fences_plain_text_untouched():
    assert strip_code_fences("no fences here") == "no fences here"


def test_from_srt_skips_malformed_blocks():
    text = SAMPLE + "\n3\nnot a timestamp\nbroken\n\n4\n00:02:00,000 --> 00:02:01,000\nRecovered\n"
    texts = [s.text for s in from_srt(text)]
    assert texts[0] == "Hello there"
    assert "Recovered" in texts


def test_from_srt_empty():
    assert from_srt("") == []
    assert from_srt("```srt\n```") == []


@pytest.mark.parametrize("seed", range(20))
def test_round_trip_is_stable(seed):
    rng = random.Random(seed)
    raw = []
    for _ in range(rng.randint(1, 40)):
        start = rng.uniform(0, 7200)
        raw.append(SubtitleSegment(start, start + rng.uniform(0.05, 6.0), f"line {rng.randint(0, 999)}"))
    segments = normalize_segments(raw)

    composed = to_srt(segments)
    assert to_srt(from_srt(composed)) == composed


def test_write_and_read(tmp_path):
    segments = [SubtitleSegment(0.0, 1.2, "你好世界"), SubtitleSegment(1.2, 2.0, "ça va")]
    path = write_srt(segments, tmp_path / "out" / "clip.srt")
    assert path.exists()
    assert read_srt(path) == segments
