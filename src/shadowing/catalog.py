from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Iterable, Iterator, Union

from .natsort import natural_sort_key

AUDIO_NAME_PATTERN = re.compile(r"\.(mp3|wav|m4a|aac|ogg)$", re.IGNORECASE)
ROOT_FOLDER_NAME = "Root"


@dataclass(slots=True, frozen=True)
class Track:
    id: str
    name: str
    path: str
    size: int = 0
    last_modified: int = 0
    media_type: str = ""
    parent_folder: str = ROOT_FOLDER_NAME
    url: str | None = None
    # Original upload/file, kept only while the payload is not persisted.
    origin: Path | bytes | None = field(default=None, compare=False, repr=False)

    def to_payload(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "parent_folder": self.parent_folder,
            "size": self.size,
            "last_modified": self.last_modified,
            "media_type": self.media_type,
            "url": self.url,
        }


@dataclass(slots=True)
class FolderNode:
    name: str
    path: str
    children: list["TreeNode"] = field(default_factory=list)

    kind = "folder"

    def to_payload(self) -> dict[str, object]:
        return {
            "type": self.kind,
            "name": self.name,
            "path": self.path,
            "children": [child.to_payload() for child in self.children],
        }


@dataclass(slots=True)
class FileNode:
    name: str
    path: str
    track: Track

    kind = "file"

    def to_payload(self) -> dict[str, object]:
        return {
            "type": self.kind,
            "name": self.name,
            "path": self.path,
            "track": self.track.to_payload(),
        }


TreeNode = Union[FolderNode, FileNode]


@dataclass(slots=True)
class Catalog:
    tracks: list[Track] = field(default_factory=list)
    tree: list[TreeNode] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.tracks)

    def ids(self) -> set[str]:
        return {track.id for track in self.tracks}

    def to_payload(self) -> dict[str, object]:
        return {
            "tracks": [track.to_payload() for track in self.tracks],
            "tree": [node.to_payload() for node in self.tree],
        }


def is_audio(track: Track) -> bool:
    media_type = (track.media_type or "").lower()
    if media_type.startswith("audio/"):
        return True
    return bool(AUDIO_NAME_PATTERN.search(track.name or ""))


def _node_sort_key(node: TreeNode) -> tuple[object, ...]:
    folder_rank = 0 if isinstance(node, FolderNode) else 1
    track_id = node.track.id if isinstance(node, FileNode) else ""
    return (folder_rank, natural_sort_key(node.name), track_id)


def _sort_and_flatten(nodes: list[TreeNode], flat: list[Track]) -> None:
    nodes.sort(key=_node_sort_key)
    for node in nodes:
        if isinstance(node, FolderNode):
            _sort_and_flatten(node.children, flat)
        else:
            flat.append(node.track)


def build_catalog(entries: Iterable[Track]) -> Catalog:
    """Build the ordered flat list and folder tree for a set of tracks.

    Later entries replace earlier ones with the same id. Non-audio entries
    are dropped. The result depends only on the set of surviving tracks,
    never on the order they were supplied in.
    """
    unique: dict[str, Track] = {}
    for entry in entries:
        unique.pop(entry.id, None)
        unique[entry.id] = entry

    roots: list[TreeNode] = []
    folders: dict[str, FolderNode] = {}
    for track in unique.values():
        if not is_audio(track):
            continue
        parts = track.path.split("/")
        level = roots
        for depth, part in enumerate(parts[:-1]):
            prefix = "/".join(parts[: depth + 1])
            folder = folders.get(prefix)
            if folder is None:
                folder = FolderNode(name=part, path=prefix)
                folders[prefix] = folder
                level.append(folder)
            level = folder.children
        parent = parts[-2] if len(parts) > 1 else ROOT_FOLDER_NAME
        if parent != track.parent_folder:
            track = replace(track, parent_folder=parent)
        level.append(FileNode(name=parts[-1], path=track.path, track=track))

    flat: list[Track] = []
    _sort_and_flatten(roots, flat)
    return Catalog(tracks=flat, tree=roots)


def iter_tracks(nodes: Iterable[TreeNode]) -> Iterator[Track]:
    """Depth-first traversal in display order."""
    for node in nodes:
        if isinstance(node, FolderNode):
            yield from iter_tracks(node.children)
        else:
            yield node.track


def find_node(nodes: Iterable[TreeNode], path: str, kind: str | None = None) -> TreeNode | None:
    for node in nodes:
        if node.path == path and (kind is None or node.kind == kind):
            return node
        if isinstance(node, FolderNode) and (path == node.path or path.startswith(node.path + "/")):
            found = find_node(node.children, path, kind)
            if found is not None:
                return found
    return None


__all__ = [
    "AUDIO_NAME_PATTERN",
    "Catalog",
    "FileNode",
    "FolderNode",
    "Track",
    "TreeNode",
    "build_catalog",
    "find_node",
    "is_audio",
    "iter_tracks",
]
