from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import shutil
import tempfile
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, TypeVar

logger = logging.getLogger(__name__)

TRACKS_DIRNAME = "tracks"
TRASH_DIRNAME = ".trash"
RECORD_FILENAME = "track.json"
PAYLOAD_FILENAME = "audio"
NOTES_FILENAME = "notes.json"
SUBTITLES_FILENAME = "subtitles.json"
MARKERS_FILENAME = "markers.json"
RECORD_VERSION = 1

_T = TypeVar("_T")


class StoreError(RuntimeError):
    """Raised when durable storage cannot be read or written."""


class UnknownTrackError(StoreError):
    """Raised when annotations are written for a track that is not stored."""


@dataclass(slots=True)
class TrackEntry:
    """A track about to be persisted, with a way to obtain its bytes."""

    id: str
    name: str
    path: str
    size: int
    last_modified: int
    media_type: str
    source: Path | None = None
    data: bytes | None = None


@dataclass(slots=True)
class StoredTrack:
    id: str
    name: str
    path: str
    size: int
    last_modified: int
    media_type: str
    payload_path: Path


def track_key(track_id: str) -> str:
    return hashlib.sha1(track_id.encode("utf-8")).hexdigest()


def _atomic_write_bytes(path: Path, data: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _atomic_copy(source: Path, path: Path) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle, source.open("rb") as src:
            shutil.copyfileobj(src, handle, 1024 * 1024)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _atomic_write_json(path: Path, payload: object) -> None:
    _atomic_write_bytes(
        path, json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")
    )


class LibraryStore:
    """Durable storage for track payloads and their annotation collections.

    Each track owns one directory holding the record, the audio payload and
    the three annotation files, so removing a track is a single rename.
    """

    def __init__(self, root: Path) -> None:
        self.root = root
        self.tracks_dir = root / TRACKS_DIRNAME
        self.trash_dir = root / TRASH_DIRNAME
        self._lock = threading.Lock()

    async def _run(self, func: Callable[[], _T]) -> _T:
        loop = asyncio.get_running_loop()

        def work() -> _T:
            with self._lock:
                return func()

        try:
            return await loop.run_in_executor(None, work)
        except StoreError:
            raise
        except (OSError, ValueError) as exc:
            raise StoreError(f"{exc.__class__.__name__}: {exc}") from exc

    def _track_dir(self, track_id: str) -> Path:
        return self.tracks_dir / track_key(track_id)

    def _ensure_dirs(self) -> None:
        self.tracks_dir.mkdir(parents=True, exist_ok=True)

    def _discard(self, directory: Path) -> None:
        if not directory.exists():
            return
        self.trash_dir.mkdir(parents=True, exist_ok=True)
        target = self.trash_dir / f"{directory.name}-{uuid.uuid4().hex}"
        os.replace(directory, target)
        shutil.rmtree(target, ignore_errors=True)

    def _save_tracks_sync(self, entries: list[TrackEntry]) -> None:
        self._ensure_dirs()
        for entry in entries:
            directory = self._track_dir(entry.id)
            directory.mkdir(exist_ok=True)
            payload_path = directory / PAYLOAD_FILENAME
            if entry.data is not None:
                _atomic_write_bytes(payload_path, entry.data)
            elif entry.source is not None:
                _atomic_copy(entry.source, payload_path)
            else:
                raise StoreError(f"No payload for track {entry.id}")
            _atomic_write_json(
                directory / RECORD_FILENAME,
                {
                    "version": RECORD_VERSION,
                    "id": entry.id,
                    "name": entry.name,
                    "path": entry.path,
                    "size": entry.size,
                    "last_modified": entry.last_modified,
                    "media_type": entry.media_type,
                },
            )

    async def save_tracks(self, entries: Iterable[TrackEntry]) -> None:
        batch = list(entries)
        if not batch:
            return
        await self._run(lambda: self._save_tracks_sync(batch))

    def _load_record(self, directory: Path) -> StoredTrack | None:
        record_path = directory / RECORD_FILENAME
        payload_path = directory / PAYLOAD_FILENAME
        if not record_path.exists() or not payload_path.exists():
            return None
        try:
            raw = json.loads(record_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Skipping unreadable track record %s: %s", record_path, exc)
            return None
        if not isinstance(raw, dict):
            return None
        track_id = raw.get("id")
        path = raw.get("path")
        if not isinstance(track_id, str) or not isinstance(path, str):
            return None
        name = raw.get("name")
        size = raw.get("size")
        modified = raw.get("last_modified")
        media_type = raw.get("media_type")
        return StoredTrack(
            id=track_id,
            name=name if isinstance(name, str) else path.rsplit("/", 1)[-1],
            path=path,
            size=int(size) if isinstance(size, (int, float)) else 0,
            last_modified=int(modified) if isinstance(modified, (int, float)) else 0,
            media_type=media_type if isinstance(media_type, str) else "",
            payload_path=payload_path,
        )

    def _get_all_tracks_sync(self) -> list[StoredTrack]:
        if not self.tracks_dir.exists():
            return []
        records: list[StoredTrack] = []
        for directory in sorted(self.tracks_dir.iterdir()):
            if not directory.is_dir():
                continue
            record = self._load_record(directory)
            if record is None:
                logger.debug("Ignoring incomplete track directory %s", directory)
                continue
            records.append(record)
        return records

    async def get_all_tracks(self) -> list[StoredTrack]:
        return await self._run(self._get_all_tracks_sync)

    def _delete_tracks_sync(self, ids: list[str]) -> None:
        for track_id in ids:
            self._discard(self._track_dir(track_id))

    async def delete_tracks(self, ids: Iterable[str]) -> None:
        """Remove each track's payload together with all of its annotations."""
        batch = list(dict.fromkeys(ids))
        if not batch:
            return
        await self._run(lambda: self._delete_tracks_sync(batch))

    def _clear_all_sync(self) -> None:
        self._discard(self.tracks_dir)
        if self.trash_dir.exists():
            shutil.rmtree(self.trash_dir, ignore_errors=True)

    async def clear_all(self) -> None:
        await self._run(self._clear_all_sync)

    def payload_path(self, track_id: str) -> Path | None:
        directory = self._track_dir(track_id)
        path = directory / PAYLOAD_FILENAME
        if not (directory / RECORD_FILENAME).exists() or not path.exists():
            return None
        return path

    def _read_collection_sync(self, track_id: str, filename: str) -> list[dict[str, object]]:
        path = self._track_dir(track_id) / filename
        if not path.exists():
            return []
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning("Discarding malformed %s for track %s: %s", filename, track_id, exc)
            return []
        if not isinstance(raw, list):
            return []
        return [entry for entry in raw if isinstance(entry, dict)]

    def _write_collection_sync(
        self, track_id: str, filename: str, items: list[dict[str, object]]
    ) -> None:
        directory = self._track_dir(track_id)
        if not (directory / RECORD_FILENAME).exists():
            raise UnknownTrackError(f"Track not stored: {track_id}")
        _atomic_write_json(directory / filename, items)

    async def _get_collection(self, track_id: str, filename: str) -> list[dict[str, object]]:
        return await self._run(lambda: self._read_collection_sync(track_id, filename))

    async def _save_collection(
        self, track_id: str, filename: str, items: Iterable[dict[str, object]]
    ) -> None:
        batch = [dict(item) for item in items]
        await self._run(lambda: self._write_collection_sync(track_id, filename, batch))

    async def get_notes(self, track_id: str) -> list[dict[str, object]]:
        return await self._get_collection(track_id, NOTES_FILENAME)

    async def save_notes(self, track_id: str, notes: Iterable[dict[str, object]]) -> None:
        await self._save_collection(track_id, NOTES_FILENAME, notes)

    async def get_subtitles(self, track_id: str) -> list[dict[str, object]]:
        return await self._get_collection(track_id, SUBTITLES_FILENAME)

    async def save_subtitles(
        self, track_id: str, subtitles: Iterable[dict[str, object]]
    ) -> None:
        await self._save_collection(track_id, SUBTITLES_FILENAME, subtitles)

    async def get_markers(self, track_id: str) -> list[dict[str, object]]:
        return await self._get_collection(track_id, MARKERS_FILENAME)

    async def save_markers(self, track_id: str, markers: Iterable[dict[str, object]]) -> None:
        await self._save_collection(track_id, MARKERS_FILENAME, markers)


__all__ = [
    "LibraryStore",
    "StoreError",
    "StoredTrack",
    "TrackEntry",
    "UnknownTrackError",
    "track_key",
]
