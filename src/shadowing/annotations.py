from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Iterable, Mapping

from .store import LibraryStore, StoreError
from .subtitles import format_srt, parse_srt

logger = logging.getLogger(__name__)

DEFAULT_SUBTITLE_DURATION = 2.0
DEFAULT_MARKER_LABEL = "Marker"
DEFAULT_MARKER_COLOR = "#fbbf24"


def _new_id() -> str:
    return uuid.uuid4().hex


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


@dataclass(slots=True)
class Note:
    id: str
    timestamp: float
    content: str
    created_at: str

    @classmethod
    def from_payload(cls, raw: Mapping[str, object]) -> "Note | None":
        timestamp = _number(raw.get("timestamp"))
        content = raw.get("content")
        if timestamp is None or not isinstance(content, str):
            return None
        entry_id = raw.get("id")
        created_at = raw.get("created_at")
        return cls(
            id=entry_id if isinstance(entry_id, str) and entry_id else _new_id(),
            timestamp=timestamp,
            content=content,
            created_at=created_at if isinstance(created_at, str) else "",
        )


@dataclass(slots=True)
class SubtitleSegment:
    id: str
    start: float
    end: float
    text: str = ""

    @classmethod
    def from_payload(cls, raw: Mapping[str, object]) -> "SubtitleSegment | None":
        start = _number(raw.get("start"))
        end = _number(raw.get("end"))
        if start is None or end is None:
            return None
        entry_id = raw.get("id")
        text = raw.get("text")
        return cls(
            id=entry_id if isinstance(entry_id, str) and entry_id else _new_id(),
            start=start,
            end=end,
            text=text if isinstance(text, str) else "",
        )


@dataclass(slots=True)
class Marker:
    id: str
    time: float
    label: str = DEFAULT_MARKER_LABEL
    color: str = DEFAULT_MARKER_COLOR

    @classmethod
    def from_payload(cls, raw: Mapping[str, object]) -> "Marker | None":
        time_value = _number(raw.get("time"))
        if time_value is None:
            return None
        entry_id = raw.get("id")
        label = raw.get("label")
        color = raw.get("color")
        return cls(
            id=entry_id if isinstance(entry_id, str) and entry_id else _new_id(),
            time=time_value,
            label=label if isinstance(label, str) else DEFAULT_MARKER_LABEL,
            color=color if isinstance(color, str) else DEFAULT_MARKER_COLOR,
        )


def _parse_entries(raw_items: Iterable[Mapping[str, object]], factory) -> list:
    items = []
    seen: set[str] = set()
    for raw in raw_items:
        item = factory(raw)
        if item is None or item.id in seen:
            continue
        seen.add(item.id)
        items.append(item)
    return items


class AnnotationStore:
    """Notes, subtitles and markers of the active track, written through on change."""

    def __init__(self, store: LibraryStore) -> None:
        self.store = store
        self.track_id: str | None = None
        self.notes: list[Note] = []
        self.subtitles: list[SubtitleSegment] = []
        self.markers: list[Marker] = []
        self.last_error: str | None = None
        self._pending: asyncio.Future[bool] | None = None

    async def _load_kind(
        self,
        track_id: str,
        loader: Callable[[str], Awaitable[list[dict[str, object]]]],
        factory,
        label: str,
    ) -> list:
        try:
            raw_items = await loader(track_id)
        except StoreError as exc:
            logger.error("Failed to load %s for %s: %s", label, track_id, exc)
            return []
        return _parse_entries(raw_items, factory)

    async def load(self, track_id: str | None) -> bool:
        """Switch to ``track_id``. Returns False when a newer switch superseded this one.

        The previous track's entries are dropped immediately; mutations issued
        while the load is in flight wait for it before touching the lists.
        """
        self.track_id = track_id
        self.notes, self.subtitles, self.markers = [], [], []
        if track_id is None:
            self._pending = None
            return True
        pending = asyncio.ensure_future(self._fetch(track_id))
        self._pending = pending
        return await pending

    async def _fetch(self, track_id: str) -> bool:
        notes, subtitles, markers = await asyncio.gather(
            self._load_kind(track_id, self.store.get_notes, Note.from_payload, "notes"),
            self._load_kind(track_id, self.store.get_subtitles, SubtitleSegment.from_payload, "subtitles"),
            self._load_kind(track_id, self.store.get_markers, Marker.from_payload, "markers"),
        )
        if self.track_id != track_id:
            logger.debug("Discarding stale annotation load for %s", track_id)
            return False
        self.notes = sorted(notes, key=lambda note: note.timestamp)
        self.subtitles = sorted(subtitles, key=lambda segment: segment.start)
        self.markers = sorted(markers, key=lambda marker: marker.time)
        return True

    async def _settle(self) -> None:
        # A newer load may replace the one being awaited.
        while self._pending is not None and not self._pending.done():
            await self._pending

    def clear(self) -> None:
        self.track_id = None
        self._pending = None
        self.notes, self.subtitles, self.markers = [], [], []

    async def _persist(
        self,
        saver: Callable[[str, list[dict[str, object]]], Awaitable[None]],
        items: Iterable[object],
        label: str,
    ) -> bool:
        track_id = self.track_id
        if track_id is None:
            return False
        try:
            await saver(track_id, [asdict(item) for item in items])
        except StoreError as exc:
            logger.error("Failed to save %s for %s: %s", label, track_id, exc)
            self.last_error = str(exc)
            return False
        self.last_error = None
        return True

    async def add_note(self, content: str, timestamp: float) -> Note | None:
        await self._settle()
        if self.track_id is None:
            return None
        note = Note(
            id=_new_id(),
            timestamp=float(timestamp),
            content=content,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self.notes = sorted([*self.notes, note], key=lambda entry: entry.timestamp)
        await self._persist(self.store.save_notes, self.notes, "notes")
        return note

    async def delete_note(self, note_id: str) -> bool:
        await self._settle()
        if self.track_id is None:
            return False
        remaining = [note for note in self.notes if note.id != note_id]
        if len(remaining) == len(self.notes):
            return False
        self.notes = remaining
        await self._persist(self.store.save_notes, self.notes, "notes")
        return True

    async def edit_note(self, note_id: str, content: str) -> bool:
        await self._settle()
        if self.track_id is None:
            return False
        for note in self.notes:
            if note.id == note_id:
                note.content = content
                break
        else:
            return False
        await self._persist(self.store.save_notes, self.notes, "notes")
        return True

    async def replace_subtitles(self, segments: Iterable[SubtitleSegment]) -> bool:
        await self._settle()
        if self.track_id is None:
            return False
        self.subtitles = sorted(segments, key=lambda segment: segment.start)
        await self._persist(self.store.save_subtitles, self.subtitles, "subtitles")
        return True

    async def add_subtitle(self, start: float, text: str = "") -> SubtitleSegment | None:
        await self._settle()
        if self.track_id is None:
            return None
        segment = SubtitleSegment(
            id=_new_id(),
            start=float(start),
            end=float(start) + DEFAULT_SUBTITLE_DURATION,
            text=text,
        )
        await self.replace_subtitles([*self.subtitles, segment])
        return segment

    async def update_subtitle(self, segment_id: str, field: str, value: object) -> bool:
        """Edit one field in place. The collection is not re-sorted until the next insert."""
        await self._settle()
        if self.track_id is None:
            return False
        if field not in {"start", "end", "text"}:
            raise ValueError(f"Unknown subtitle field: {field}")
        for segment in self.subtitles:
            if segment.id != segment_id:
                continue
            if field == "text":
                segment.text = str(value)
            else:
                number = _number(value)
                if number is None:
                    raise ValueError(f"{field} must be a number")
                if field == "start":
                    segment.start = number
                    segment.end = max(segment.end, number)
                else:
                    segment.end = max(number, segment.start)
            break
        else:
            return False
        await self._persist(self.store.save_subtitles, self.subtitles, "subtitles")
        return True

    async def delete_subtitle(self, segment_id: str) -> bool:
        await self._settle()
        if self.track_id is None:
            return False
        remaining = [segment for segment in self.subtitles if segment.id != segment_id]
        if len(remaining) == len(self.subtitles):
            return False
        self.subtitles = remaining
        await self._persist(self.store.save_subtitles, self.subtitles, "subtitles")
        return True

    async def import_srt(self, content: str) -> int:
        """Replace the captions with a parsed document; malformed input leaves them untouched."""
        await self._settle()
        if self.track_id is None:
            return 0
        parsed = parse_srt(content)
        segments = [SubtitleSegment(**raw) for raw in parsed]
        await self.replace_subtitles(segments)
        return len(segments)

    def export_srt(self) -> str:
        return format_srt(asdict(segment) for segment in self.subtitles)

    def subtitle_at(self, position: float) -> SubtitleSegment | None:
        for segment in self.subtitles:
            if segment.start <= position <= segment.end:
                return segment
        return None

    async def add_marker(self, marker: Marker) -> Marker | None:
        await self._settle()
        if self.track_id is None:
            return None
        self.markers = sorted([*self.markers, marker], key=lambda entry: entry.time)
        await self._persist(self.store.save_markers, self.markers, "markers")
        return marker

    async def delete_marker(self, marker_id: str) -> bool:
        await self._settle()
        if self.track_id is None:
            return False
        remaining = [marker for marker in self.markers if marker.id != marker_id]
        if len(remaining) == len(self.markers):
            return False
        self.markers = remaining
        await self._persist(self.store.save_markers, self.markers, "markers")
        return True

    def to_payload(self) -> dict[str, object]:
        return {
            "track_id": self.track_id,
            "notes": [asdict(note) for note in self.notes],
            "subtitles": [asdict(segment) for segment in self.subtitles],
            "markers": [asdict(marker) for marker in self.markers],
            "error": self.last_error,
        }


__all__ = [
    "AnnotationStore",
    "DEFAULT_MARKER_COLOR",
    "DEFAULT_MARKER_LABEL",
    "Marker",
    "Note",
    "SubtitleSegment",
]
