from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Sequence

from .catalog import Catalog, Track, TreeNode, build_catalog, find_node, iter_tracks
from .ingest import (
    IMPORT_CHUNK_SIZE,
    RESTORE_CHUNK_SIZE,
    FileDescriptor,
    IngestionError,
    IngestProgress,
    ProgressCallback,
    chunked,
    ingest_chunk,
    stored_to_track,
    yield_to_loop,
)
from .store import LibraryStore, StoreError

logger = logging.getLogger(__name__)

MEDIA_URL_PREFIX = "/media/"


class MediaReferences:
    """Playable references granted per track for the lifetime of a session.

    Every ``acquire`` is paired with a ``release`` when the track leaves the
    catalog; released tokens stop resolving.
    """

    def __init__(self) -> None:
        self._by_track: dict[str, str] = {}
        self._by_token: dict[str, str] = {}

    def acquire(self, track_id: str) -> str:
        token = self._by_track.get(track_id)
        if token is None:
            token = uuid.uuid4().hex
            self._by_track[track_id] = token
            self._by_token[token] = track_id
        return MEDIA_URL_PREFIX + token

    def release(self, track_ids: Iterable[str]) -> None:
        for track_id in track_ids:
            token = self._by_track.pop(track_id, None)
            if token is not None:
                self._by_token.pop(token, None)

    def release_all(self) -> None:
        self._by_track.clear()
        self._by_token.clear()

    def resolve(self, token: str) -> str | None:
        if token.startswith(MEDIA_URL_PREFIX):
            token = token[len(MEDIA_URL_PREFIX) :]
        return self._by_token.get(token)

    def __contains__(self, track_id: object) -> bool:
        return track_id in self._by_track

    def __len__(self) -> int:
        return len(self._by_track)


@dataclass(slots=True)
class CatalogChange:
    removed_ids: set[str] = field(default_factory=set)
    added_ids: set[str] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, object]:
        return {
            "removed": sorted(self.removed_ids),
            "added": sorted(self.added_ids),
            "warnings": list(self.warnings),
        }


class Library:
    """Owns the catalog. Only ``build_catalog`` ever produces its tracks and tree."""

    def __init__(self, store: LibraryStore, references: MediaReferences | None = None) -> None:
        self.store = store
        self.references = references or MediaReferences()
        self.catalog = Catalog()
        self.progress: IngestProgress | None = None
        self.processing = False

    @property
    def tracks(self) -> list[Track]:
        return self.catalog.tracks

    @property
    def tree(self) -> list[TreeNode]:
        return self.catalog.tree

    def track_at(self, index: int | None) -> Track | None:
        if index is None or index < 0 or index >= len(self.catalog.tracks):
            return None
        return self.catalog.tracks[index]

    def index_of(self, track_id: str | None) -> int | None:
        if track_id is None:
            return None
        for index, track in enumerate(self.catalog.tracks):
            if track.id == track_id:
                return index
        return None

    def track_by_id(self, track_id: str) -> Track | None:
        index = self.index_of(track_id)
        return None if index is None else self.catalog.tracks[index]

    def find_node(self, path: str, kind: str | None = None) -> TreeNode | None:
        return find_node(self.catalog.tree, path, kind)

    def open_payload(self, track_id: str) -> Path | bytes | None:
        stored = self.store.payload_path(track_id)
        if stored is not None:
            return stored
        track = self.track_by_id(track_id)
        return track.origin if track is not None else None

    def _report(self, callback: ProgressCallback | None, progress: IngestProgress) -> None:
        self.progress = progress
        if callback is not None:
            callback(progress)

    def _with_reference(self, track: Track) -> Track:
        return replace(track, url=self.references.acquire(track.id))

    async def restore(self, progress: ProgressCallback | None = None) -> CatalogChange:
        """Rebuild the catalog from storage. Load failures leave it empty."""
        change = CatalogChange()
        try:
            records = await self.store.get_all_tracks()
        except StoreError as exc:
            logger.error("Failed to load library from storage: %s", exc)
            change.warnings.append(str(exc))
            self.catalog = build_catalog([])
            return change

        total = len(records)
        prepared: list[Track] = []
        for chunk in chunked(records, RESTORE_CHUNK_SIZE):
            prepared.extend(self._with_reference(stored_to_track(record)) for record in chunk)
            self._report(
                progress,
                IngestProgress(processed=len(prepared), total=total, filename=chunk[0].name),
            )
            await yield_to_loop()

        self.catalog = build_catalog(prepared)
        change.added_ids = self.catalog.ids()
        self.references.release({track.id for track in prepared} - change.added_ids)
        logger.info("Restored %d track(s) from %s", len(self.catalog), self.store.root)
        return change

    async def ingest(
        self,
        descriptors: Sequence[FileDescriptor],
        *,
        reset: bool = False,
        progress: ProgressCallback | None = None,
    ) -> CatalogChange:
        items = list(descriptors)
        change = CatalogChange()
        if not items:
            return change

        self.processing = True
        self._report(progress, IngestProgress(processed=0, total=len(items), filename="Starting..."))
        previous = self.catalog
        acquired: set[str] = set()
        processed: list[Track] = []
        try:
            if reset:
                change.removed_ids = previous.ids()
                self.references.release_all()
                self.catalog = build_catalog([])
                try:
                    await self.store.clear_all()
                except StoreError as exc:
                    logger.warning("Failed to clear stored library: %s", exc)
                    change.warnings.append(str(exc))
                base: list[Track] = []
            else:
                base = list(previous.tracks)

            done = 0
            for chunk in chunked(items, IMPORT_CHUNK_SIZE):
                outcome = await ingest_chunk(self.store, chunk)
                for track in outcome.tracks:
                    acquired.add(track.id)
                    processed.append(self._with_reference(track))
                for warning in outcome.warnings:
                    if warning not in change.warnings:
                        change.warnings.append(warning)
                done += len(chunk)
                self._report(
                    progress,
                    IngestProgress(processed=done, total=len(items), filename=chunk[0].name),
                )
                await yield_to_loop()

            catalog = build_catalog([*base, *processed])
        except Exception as exc:
            if reset:
                # Storage was already cleared; keep memory in line with the chunks that landed.
                self.catalog = build_catalog(processed)
            stale = acquired - self.catalog.ids()
            self.references.release(stale)
            logger.error("Failed to process files: %s", exc)
            raise IngestionError(
                f"Failed to process files. Please try again.\nError: {exc}"
            ) from exc
        finally:
            self.processing = False

        self.catalog = catalog
        current_ids = catalog.ids()
        change.added_ids = {track_id for track_id in acquired if track_id in current_ids}
        if reset:
            change.removed_ids -= current_ids
        logger.info(
            "Ingested %d file(s); library now holds %d track(s)", len(items), len(catalog)
        )
        return change

    async def delete_tracks(self, ids: Iterable[str]) -> CatalogChange:
        removing = set(ids) & self.catalog.ids()
        change = CatalogChange(removed_ids=removing)
        if not removing:
            return change
        self.references.release(removing)
        self.catalog = build_catalog(
            track for track in self.catalog.tracks if track.id not in removing
        )
        try:
            await self.store.delete_tracks(sorted(removing))
        except StoreError as exc:
            logger.error("Failed to delete %d track(s) from storage: %s", len(removing), exc)
            change.warnings.append(str(exc))
        return change

    async def delete_node(self, path: str, kind: str | None = None) -> CatalogChange:
        node = self.find_node(path, kind)
        if node is None:
            raise KeyError(path)
        return await self.delete_tracks(track.id for track in iter_tracks([node]))

    async def clear(self) -> CatalogChange:
        change = CatalogChange(removed_ids=self.catalog.ids())
        self.references.release_all()
        self.catalog = build_catalog([])
        try:
            await self.store.clear_all()
        except StoreError as exc:
            logger.error("Failed to clear stored library: %s", exc)
            change.warnings.append(str(exc))
        return change

    def close(self) -> None:
        self.references.release_all()


__all__ = ["CatalogChange", "Library", "MEDIA_URL_PREFIX", "MediaReferences"]
