"""Chunked ingestion of user-selected files into persisted tracks."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence, TypeVar

from .catalog import Track, is_audio
from .store import LibraryStore, StoredTrack, StoreError, TrackEntry

logger = logging.getLogger(__name__)

IMPORT_CHUNK_SIZE = 20
RESTORE_CHUNK_SIZE = 50

_T = TypeVar("_T")


class DescriptorError(ValueError):
    """Raised when a file descriptor cannot be turned into a track."""


class IngestionError(RuntimeError):
    """Raised once per failed ingestion with a user-facing message."""


@dataclass(slots=True)
class FileDescriptor:
    name: str
    relative_path: str
    size: int
    last_modified: int
    media_type: str = ""
    source: Path | None = None
    data: bytes | None = None

    @classmethod
    def from_path(cls, path: Path, base: Path | None = None) -> "FileDescriptor":
        """Describe a local file, keeping the folder-relative path when ``base`` is given.

        The relative path includes the name of ``base`` itself, the way a
        folder picker reports it.
        """
        stat = path.stat()
        if base is not None:
            relative = path.relative_to(base.parent).as_posix()
        else:
            relative = path.name
        media_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            relative_path=relative,
            size=stat.st_size,
            last_modified=int(stat.st_mtime * 1000),
            media_type=media_type or "",
            source=path,
        )


@dataclass(slots=True, frozen=True)
class IngestProgress:
    processed: int
    total: int
    filename: str

    def to_payload(self) -> dict[str, object]:
        return {"processed": self.processed, "total": self.total, "filename": self.filename}


ProgressCallback = Callable[[IngestProgress], None]


@dataclass(slots=True)
class ChunkOutcome:
    tracks: list[Track] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def _normalize_path(value: str) -> str:
    cleaned = str(value).replace("\\", "/").strip().strip("/")
    parts = [part for part in cleaned.split("/") if part.strip() and part not in {".", ".."}]
    return "/".join(parts)


def track_id_for(path: str, size: int, last_modified: int) -> str:
    return f"{path}-{size}-{last_modified}"


def normalize_descriptor(descriptor: FileDescriptor) -> TrackEntry:
    path = _normalize_path(descriptor.relative_path or descriptor.name or "")
    if not path:
        raise DescriptorError("File has neither a name nor a relative path.")
    name = path.rsplit("/", 1)[-1]
    if not isinstance(descriptor.size, int) or descriptor.size < 0:
        raise DescriptorError(f"Invalid size for {path}: {descriptor.size!r}")
    try:
        last_modified = int(descriptor.last_modified)
    except (TypeError, ValueError) as exc:
        raise DescriptorError(f"Invalid modification time for {path}") from exc
    if descriptor.source is None and descriptor.data is None:
        raise DescriptorError(f"No readable payload for {path}")
    return TrackEntry(
        id=track_id_for(path, descriptor.size, last_modified),
        name=name,
        path=path,
        size=descriptor.size,
        last_modified=last_modified,
        media_type=descriptor.media_type or "",
        source=descriptor.source,
        data=descriptor.data,
    )


def chunked(items: Sequence[_T], size: int) -> Iterator[Sequence[_T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _entry_to_track(entry: TrackEntry, *, persisted: bool) -> Track:
    origin: Path | bytes | None = None
    if not persisted:
        origin = entry.data if entry.data is not None else entry.source
    return Track(
        id=entry.id,
        name=entry.name,
        path=entry.path,
        size=entry.size,
        last_modified=entry.last_modified,
        media_type=entry.media_type,
        origin=origin,
    )


def stored_to_track(record: StoredTrack) -> Track:
    return Track(
        id=record.id,
        name=record.name,
        path=record.path,
        size=record.size,
        last_modified=record.last_modified,
        media_type=record.media_type,
    )


async def ingest_chunk(
    store: LibraryStore,
    descriptors: Iterable[FileDescriptor],
) -> ChunkOutcome:
    """Normalize one chunk, drop non-audio files and persist the rest."""
    entries = [normalize_descriptor(descriptor) for descriptor in descriptors]
    entries = [
        entry
        for entry in entries
        if is_audio(Track(id=entry.id, name=entry.name, path=entry.path, media_type=entry.media_type))
    ]
    outcome = ChunkOutcome()
    if not entries:
        return outcome
    persisted = True
    try:
        await store.save_tracks(entries)
    except StoreError as exc:
        persisted = False
        logger.warning("Could not persist %d track(s): %s", len(entries), exc)
        outcome.warnings.append(str(exc))
    outcome.tracks.extend(_entry_to_track(entry, persisted=persisted) for entry in entries)
    return outcome


async def yield_to_loop() -> None:
    await asyncio.sleep(0)


__all__ = [
    "IMPORT_CHUNK_SIZE",
    "RESTORE_CHUNK_SIZE",
    "ChunkOutcome",
    "DescriptorError",
    "FileDescriptor",
    "IngestProgress",
    "IngestionError",
    "ProgressCallback",
    "chunked",
    "ingest_chunk",
    "normalize_descriptor",
    "stored_to_track",
    "track_id_for",
    "yield_to_loop",
]
