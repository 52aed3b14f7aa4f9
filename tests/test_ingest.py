from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from shadowing.ingest import (
    DescriptorError,
    FileDescriptor,
    IngestionError,
    IngestProgress,
    normalize_descriptor,
    track_id_for,
)
from shadowing.library import Library
from shadowing.store import LibraryStore, StoreError


def _descriptor(path: str, data: bytes = b"data", modified: int = 1000, media_type: str = "") -> FileDescriptor:
    return FileDescriptor(
        name=path.rsplit("/", 1)[-1],
        relative_path=path,
        size=len(data),
        last_modified=modified,
        media_type=media_type,
        data=data,
    )


def test_track_id_combines_path_size_and_mtime() -> None:
    entry = normalize_descriptor(_descriptor("Course\\01.mp3", data=b"abc", modified=5))
    assert entry.path == "Course/01.mp3"
    assert entry.id == track_id_for("Course/01.mp3", 3, 5) == "Course/01.mp3-3-5"


def test_descriptor_without_name_is_rejected() -> None:
    with pytest.raises(DescriptorError):
        normalize_descriptor(FileDescriptor(name="", relative_path="", size=0, last_modified=0, data=b""))


def test_from_path_keeps_folder_name(tmp_path: Path) -> None:
    folder = tmp_path / "Lessons"
    (folder / "Unit 1").mkdir(parents=True)
    audio = folder / "Unit 1" / "a.mp3"
    audio.write_bytes(b"xyz")
    descriptor = FileDescriptor.from_path(audio, base=folder)
    assert descriptor.relative_path == "Lessons/Unit 1/a.mp3"
    assert descriptor.size == 3
    assert descriptor.media_type == "audio/mpeg"
    assert descriptor.source == audio


def test_progress_is_reported_per_chunk(tmp_path: Path) -> None:
    library = Library(LibraryStore(tmp_path))
    descriptors = [_descriptor(f"Course/{i}.mp3") for i in range(45)]
    events: list[IngestProgress] = []

    change = asyncio.run(library.ingest(descriptors, progress=events.append))

    assert [event.processed for event in events] == [0, 20, 40, 45]
    assert all(event.total == 45 for event in events)
    assert len(library.tracks) == 45
    assert len(change.added_ids) == 45
    assert not library.processing


def test_reimport_is_idempotent(tmp_path: Path) -> None:
    library = Library(LibraryStore(tmp_path))
    descriptors = [_descriptor("a.mp3"), _descriptor("b.mp3")]
    asyncio.run(library.ingest(descriptors))
    first = [track.id for track in library.tracks]
    asyncio.run(library.ingest(descriptors))
    assert [track.id for track in library.tracks] == first


def test_non_audio_files_are_not_persisted(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    library = Library(store)
    asyncio.run(
        library.ingest(
            [
                _descriptor("a.mp3"),
                _descriptor("notes.txt", media_type="text/plain"),
                _descriptor("voice", media_type="audio/wav"),
            ]
        )
    )
    stored = asyncio.run(store.get_all_tracks())
    assert sorted(record.path for record in stored) == ["a.mp3", "voice"]
    assert [track.path for track in library.tracks] == ["a.mp3", "voice"]


def test_reset_replaces_library(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    library = Library(store)
    asyncio.run(library.ingest([_descriptor("old.mp3")]))
    old_id = library.tracks[0].id
    change = asyncio.run(library.ingest([_descriptor("new.mp3")], reset=True))
    assert [track.path for track in library.tracks] == ["new.mp3"]
    assert change.removed_ids == {old_id}
    assert old_id not in library.references
    assert [record.path for record in asyncio.run(store.get_all_tracks())] == ["new.mp3"]


def test_invalid_descriptor_aborts_and_keeps_catalog(tmp_path: Path) -> None:
    library = Library(LibraryStore(tmp_path))
    asyncio.run(library.ingest([_descriptor("keep.mp3")]))
    before = list(library.tracks)
    bad = FileDescriptor(name="bad.mp3", relative_path="bad.mp3", size=-1, last_modified=0, data=b"")
    descriptors = [_descriptor(f"n{i}.mp3") for i in range(25)] + [bad]

    with pytest.raises(IngestionError) as excinfo:
        asyncio.run(library.ingest(descriptors))

    assert str(excinfo.value).startswith("Failed to process files. Please try again.")
    assert library.tracks == before
    assert len(library.references) == 1
    assert not library.processing


def test_store_failure_keeps_tracks_playable(tmp_path: Path, monkeypatch) -> None:
    store = LibraryStore(tmp_path)
    library = Library(store)

    async def broken_save(entries) -> None:
        raise StoreError("disk full")

    monkeypatch.setattr(store, "save_tracks", broken_save)
    change = asyncio.run(library.ingest([_descriptor("a.mp3", data=b"payload")]))

    assert change.warnings == ["disk full"]
    track = library.tracks[0]
    assert track.url is not None
    assert library.open_payload(track.id) == b"payload"


def test_restore_rebuilds_catalog(tmp_path: Path) -> None:
    store = LibraryStore(tmp_path)
    asyncio.run(Library(store).ingest([_descriptor("B/2.mp3"), _descriptor("B/10.mp3"), _descriptor("A.mp3")]))

    restored = Library(LibraryStore(tmp_path))
    events: list[IngestProgress] = []
    asyncio.run(restored.restore(events.append))
    assert [track.path for track in restored.tracks] == ["B/2.mp3", "B/10.mp3", "A.mp3"]
    assert events[-1].processed == 3
    assert not restored.processing
    assert all(track.url and track.url.startswith("/media/") for track in restored.tracks)


def test_restore_failure_leaves_empty_catalog(tmp_path: Path, monkeypatch) -> None:
    store = LibraryStore(tmp_path)
    library = Library(store)

    async def broken_load():
        raise StoreError("unreadable")

    monkeypatch.setattr(store, "get_all_tracks", broken_load)
    change = asyncio.run(library.restore())
    assert library.tracks == []
    assert change.warnings == ["unreadable"]
