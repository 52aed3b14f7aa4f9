from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from .annotations import AnnotationStore
from .hotkeys import HotkeyDispatcher
from .ingest import FileDescriptor, IngestionError, ProgressCallback
from .library import CatalogChange, Library
from .media import CommandQueueOutput, MediaOutput
from .session import PlaybackSession
from .settings import SETTINGS_FILENAME, Settings, SettingsStore
from .store import LibraryStore

logger = logging.getLogger(__name__)

UPLOADS_DIRNAME = ".uploads"


@dataclass(slots=True)
class PlayerConfig:
    root: Path
    host: str = "127.0.0.1"
    port: int = 2046
    debug: bool = False


class ShadowingPlayer:
    """Owns every stateful component for one player instance.

    Created once per process (or per test), started before use and closed
    on shutdown; collaborators receive it explicitly.
    """

    def __init__(self, root: Path, output: MediaOutput | None = None) -> None:
        self.root = root
        self.store = LibraryStore(root)
        self.library = Library(self.store)
        self.annotations = AnnotationStore(self.store)
        self.settings_store = SettingsStore(root / SETTINGS_FILENAME)
        self.uploads_dir = root / UPLOADS_DIRNAME
        self.settings = Settings()
        self.output = output if output is not None else CommandQueueOutput()
        self.session = PlaybackSession(self.library, self.annotations, self.output, self.settings)
        self.hotkeys = HotkeyDispatcher(self.session, self.settings)
        self.started = False

    async def start(self, progress: ProgressCallback | None = None) -> CatalogChange:
        self.root.mkdir(parents=True, exist_ok=True)
        # Spooled uploads only back tracks of the previous run.
        shutil.rmtree(self.uploads_dir, ignore_errors=True)
        self.apply_settings(self.settings_store.load())
        change = await self.library.restore(progress)
        self.started = True
        return change

    async def close(self) -> None:
        if self.session.current_track_id is not None:
            self.session.pause()
        self.library.close()
        self.started = False

    def apply_settings(self, settings: Settings) -> None:
        self.settings = settings
        self.session.settings = settings
        self.hotkeys.settings = settings

    def save_settings(self, settings: Settings) -> None:
        self.apply_settings(settings)
        self.settings_store.save(settings)

    def discard_uploads(self, paths: Iterable[Path]) -> None:
        """Delete spooled uploads that no catalog track still plays from."""
        in_use = {track.origin for track in self.library.tracks if isinstance(track.origin, Path)}
        for path in paths:
            if path not in in_use:
                path.unlink(missing_ok=True)

    async def ingest(
        self,
        descriptors: Sequence[FileDescriptor],
        *,
        reset: bool = False,
        progress: ProgressCallback | None = None,
    ) -> CatalogChange:
        try:
            change = await self.library.ingest(descriptors, reset=reset, progress=progress)
        except IngestionError:
            # A failed reset still replaced the catalog.
            await self.session.reconcile(CatalogChange())
            raise
        await self.session.reconcile(change)
        return change

    async def delete_node(self, path: str, kind: str | None = None) -> CatalogChange:
        change = await self.library.delete_node(path, kind)
        await self.session.reconcile(change)
        return change

    async def delete_tracks(self, ids: Sequence[str]) -> CatalogChange:
        change = await self.library.delete_tracks(ids)
        await self.session.reconcile(change)
        return change

    async def clear(self) -> CatalogChange:
        change = await self.library.clear()
        await self.session.reconcile(change)
        return change


__all__ = ["PlayerConfig", "ShadowingPlayer", "UPLOADS_DIRNAME"]
