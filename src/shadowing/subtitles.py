"""SubRip (``.srt``) caption import and export."""

from __future__ import annotations

import re
import uuid
from typing import Iterable, Mapping

_TIMESTAMP = re.compile(r"^\s*(\d+):(\d{1,2}):(\d{1,2})(?:[,.](\d{1,3}))?\s*$")
_ARROW = " --> "


class SubtitleFormatError(ValueError):
    """Raised when a caption document cannot be parsed."""


def parse_timestamp(value: str) -> float:
    match = _TIMESTAMP.match(value)
    if not match:
        raise SubtitleFormatError(f"Invalid timestamp: {value!r}")
    hours, minutes, seconds, fraction = match.groups()
    millis = int((fraction or "0").ljust(3, "0"))
    return int(hours) * 3600 + int(minutes) * 60 + int(seconds) + millis / 1000.0


def format_timestamp(seconds: float) -> str:
    total_ms = int(round(max(0.0, float(seconds)) * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def parse_srt(content: str) -> list[dict[str, object]]:
    """Parse caption blocks into ``{id, start, end, text}`` dicts.

    Blocks without a timing line are skipped and a block may carry no text
    at all; a timing line that does not parse rejects the whole document.
    """
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    if normalized.startswith("\ufeff"):
        normalized = normalized[1:]
    segments: list[dict[str, object]] = []
    for block in re.split(r"\n\s*\n", normalized):
        if not block.strip():
            continue
        lines = block.strip("\n").split("\n")
        if len(lines) < 2:
            continue
        timing = lines[1]
        if "-->" not in timing:
            continue
        start_text, _, end_text = timing.partition("-->")
        if not start_text.strip() or not end_text.strip():
            continue
        # Some writers append cue settings after the end time.
        end_text = end_text.strip().split(" ", 1)[0]
        segments.append(
            {
                "id": uuid.uuid4().hex,
                "start": parse_timestamp(start_text),
                "end": parse_timestamp(end_text),
                "text": "\n".join(lines[2:]),
            }
        )
    return segments


def format_srt(segments: Iterable[Mapping[str, object]]) -> str:
    blocks: list[str] = []
    for index, segment in enumerate(segments, start=1):
        start = format_timestamp(float(segment.get("start") or 0.0))
        end = format_timestamp(float(segment.get("end") or 0.0))
        text = str(segment.get("text") or "")
        blocks.append(f"{index}\n{start}{_ARROW}{end}\n{text}\n")
    return "\n".join(blocks)


__all__ = [
    "SubtitleFormatError",
    "format_srt",
    "format_timestamp",
    "parse_srt",
    "parse_timestamp",
]
