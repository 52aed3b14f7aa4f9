from .annotations import AnnotationStore, Marker, Note, SubtitleSegment
from .catalog import Catalog, FileNode, FolderNode, Track, build_catalog
from .ingest import DescriptorError, FileDescriptor, IngestionError, IngestProgress
from .library import CatalogChange, Library, MediaReferences
from .media import AutoplayRejected, CommandQueueOutput, MediaOutput
from .player import PlayerConfig, ShadowingPlayer
from .session import PlaybackSession, TrackEndAction
from .settings import Settings, SettingsStore
from .store import LibraryStore, StoreError, UnknownTrackError
from .subtitles import SubtitleFormatError, format_srt, parse_srt

__all__ = [
    "AnnotationStore",
    "AutoplayRejected",
    "Catalog",
    "CatalogChange",
    "CommandQueueOutput",
    "DescriptorError",
    "FileDescriptor",
    "FileNode",
    "FolderNode",
    "IngestProgress",
    "IngestionError",
    "Library",
    "LibraryStore",
    "Marker",
    "MediaOutput",
    "MediaReferences",
    "Note",
    "PlaybackSession",
    "PlayerConfig",
    "Settings",
    "SettingsStore",
    "ShadowingPlayer",
    "StoreError",
    "SubtitleFormatError",
    "SubtitleSegment",
    "Track",
    "TrackEndAction",
    "UnknownTrackError",
    "build_catalog",
    "format_srt",
    "parse_srt",
]
