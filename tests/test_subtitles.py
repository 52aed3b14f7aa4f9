from __future__ import annotations

import pytest

from shadowing.subtitles import (
    SubtitleFormatError,
    format_srt,
    format_timestamp,
    parse_srt,
    parse_timestamp,
)

SAMPLE = (
    "1\r\n00:00:01,500 --> 00:00:03,000\r\nHello there\r\n\r\n"
    "2\r\n00:01:02.250 --> 00:01:04,000 align:start\r\nSecond\r\nline\r\n"
)


def test_parse_crlf_document() -> None:
    segments = parse_srt(SAMPLE)
    assert [(seg["start"], seg["end"], seg["text"]) for seg in segments] == [
        (1.5, 3.0, "Hello there"),
        (62.25, 64.0, "Second\nline"),
    ]
    assert len({seg["id"] for seg in segments}) == 2


def test_parse_strips_bom_and_skips_short_blocks() -> None:
    content = "\ufeff1\n00:00:00,000 --> 00:00:01,000\nA\n\njunk\n\n3\nno timing here\nB\n"
    segments = parse_srt(content)
    assert [seg["text"] for seg in segments] == ["A"]


def test_bad_timestamp_rejects_document() -> None:
    with pytest.raises(SubtitleFormatError):
        parse_srt("1\n00:00:xx,000 --> 00:00:01,000\nA\n")


def test_format_matches_block_layout() -> None:
    text = format_srt(
        [
            {"start": 0.0, "end": 2.0, "text": "One"},
            {"start": 3661.007, "end": 3662.5, "text": "Two"},
        ]
    )
    assert text == (
        "1\n00:00:00,000 --> 00:00:02,000\nOne\n"
        "\n"
        "2\n01:01:01,007 --> 01:01:02,500\nTwo\n"
    )


def test_export_then_import_keeps_times_within_a_millisecond() -> None:
    original = [
        {"start": 0.0004, "end": 1.2345, "text": "a"},
        {"start": 10.9999, "end": 12.0, "text": "b\nc"},
        {"start": 13.0, "end": 14.5, "text": ""},
    ]
    parsed = parse_srt(format_srt(original))
    assert len(parsed) == len(original)
    for before, after in zip(original, parsed):
        assert abs(after["start"] - before["start"]) <= 0.001
        assert abs(after["end"] - before["end"]) <= 0.001
        assert after["text"] == before["text"]


def test_block_without_text_is_kept() -> None:
    segments = parse_srt("1\n00:00:01,000 --> 00:00:02,000\n\n\n2\n00:00:03,000 --> 00:00:04,000\nB\n")
    assert [(seg["start"], seg["text"]) for seg in segments] == [(1.0, ""), (3.0, "B")]


def test_timestamp_helpers() -> None:
    assert format_timestamp(-5) == "00:00:00,000"
    assert parse_timestamp("00:00:05,5") == 5.5
