from __future__ import annotations

import argparse
import asyncio
import os
import socket
import sys
from importlib import metadata
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.markup import escape
from rich.progress import (
    BarColumn,
    Progress,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.tree import Tree

from .catalog import FolderNode, TreeNode
from .ingest import FileDescriptor, IngestionError, IngestProgress
from .logging_utils import build_uvicorn_log_config, configure_logging
from .player import PlayerConfig, ShadowingPlayer
from .subtitles import SubtitleFormatError
from .web import create_app

HOME_ENV = "SHADOWING_HOME"

try:
    __version__ = metadata.version("shadowing")
except metadata.PackageNotFoundError:
    __version__ = "0.0.0+unknown"


def resolve_root(value: str | None) -> Path:
    if value:
        return Path(value).expanduser().resolve()
    env_value = os.environ.get(HOME_ENV)
    if env_value:
        return Path(env_value).expanduser().resolve()
    return (Path.home() / ".shadowing").resolve()


def _add_root_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--root",
        help=f"Library data directory (default: ${HOME_ENV} or ~/.shadowing).",
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="shadowing",
        description="Local audio library and shadowing practice player.",
    )
    ap.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"shadowing {__version__}",
    )
    sub = ap.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Serve the web player.")
    _add_root_flag(serve)
    serve.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host interface for the web server (default: 127.0.0.1).",
    )
    serve.add_argument(
        "--port",
        type=int,
        default=2046,
        help="Port for the web server (default: 2046).",
    )
    serve.add_argument("--debug", action="store_true", help="Enable debug logging.")

    imp = sub.add_parser("import", help="Import a folder of audio files into the library.")
    imp.add_argument("folder", help="Folder to import (scanned recursively).")
    _add_root_flag(imp)
    imp.add_argument(
        "--reset",
        action="store_true",
        help="Discard the existing library before importing.",
    )

    ls = sub.add_parser("ls", help="Print the library tree.")
    _add_root_flag(ls)

    clear = sub.add_parser("clear", help="Remove every track and its annotations.")
    _add_root_flag(clear)

    subs = sub.add_parser("subtitles", help="Import or export a track's subtitles as SRT.")
    subs.add_argument("action", choices=["import", "export"])
    subs.add_argument("track_id", help="Track id as printed by `shadowing ls`.")
    subs.add_argument("file", help="SRT file to read (import) or write (export).")
    _add_root_flag(subs)
    return ap


def collect_descriptors(folder: Path) -> list[FileDescriptor]:
    """Describe every regular file below ``folder``; non-audio files are filtered at ingest."""
    return [
        FileDescriptor.from_path(path, base=folder)
        for path in sorted(folder.rglob("*"))
        if path.is_file() and not path.name.startswith(".")
    ]


class _RichProgress:
    def __init__(self, console: Console, total: int) -> None:
        self.enabled = total > 0 and console.is_terminal
        self.progress: Progress | None = None
        self.task_id = None
        if not self.enabled:
            return
        self.progress = Progress(
            TextColumn("{task.description}", justify="left"),
            BarColumn(bar_width=None),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            TextColumn("{task.fields[detail]}", justify="left"),
            console=console,
            transient=False,
        )
        self.progress.start()
        self.task_id = self.progress.add_task("Importing", total=total, detail="")

    @staticmethod
    def _truncate(text: str, width: int = 32) -> str:
        if len(text) <= width:
            return text
        return text[: max(0, width - 1)] + "…"

    def handle(self, event: IngestProgress) -> None:
        if self.progress is None or self.task_id is None:
            return
        self.progress.update(
            self.task_id,
            total=event.total,
            completed=event.processed,
            detail=self._truncate(event.filename),
        )

    def close(self) -> None:
        if self.progress is not None:
            self.progress.stop()


def _resolve_local_ip(host: str) -> str:
    if host not in {"", "0.0.0.0"}:
        return host
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("8.8.8.8", 80))
            return sock.getsockname()[0]
    except OSError:
        return "127.0.0.1"


def _run_serve(args: argparse.Namespace) -> int:
    config = PlayerConfig(
        root=resolve_root(args.root),
        host=args.host,
        port=args.port,
        debug=args.debug,
    )
    app = create_app(config)
    url = f"http://{_resolve_local_ip(config.host)}:{config.port}/"
    print(f"Serving shadowing player from {config.root}")
    print(f"Web URL: {url}")
    print("Press Ctrl+C to stop.\n")
    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="debug" if config.debug else "info",
        log_config=build_uvicorn_log_config(config.debug),
    )
    return 0


async def _import_folder(player: ShadowingPlayer, folder: Path, reset: bool, console: Console) -> int:
    await player.start()
    try:
        descriptors = collect_descriptors(folder)
        if not descriptors:
            console.print(f"No files found in {folder}")
            return 1
        progress = _RichProgress(console, len(descriptors))
        try:
            change = await player.ingest(descriptors, reset=reset, progress=progress.handle)
        finally:
            progress.close()
    finally:
        await player.close()
    for warning in change.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    console.print(
        f"Imported {len(change.added_ids)} track(s); library has {len(player.library.tracks)}."
    )
    return 0


def _run_import(args: argparse.Namespace, console: Console) -> int:
    folder = Path(args.folder).expanduser().resolve()
    if not folder.is_dir():
        console.print(f"[red]Not a folder:[/red] {folder}")
        return 2
    player = ShadowingPlayer(resolve_root(args.root))
    try:
        return asyncio.run(_import_folder(player, folder, args.reset, console))
    except IngestionError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1


def _add_nodes(branch: Tree, nodes: list[TreeNode]) -> None:
    for node in nodes:
        if isinstance(node, FolderNode):
            _add_nodes(branch.add(f"[bold]{escape(node.name)}/[/bold]"), node.children)
        else:
            branch.add(f"{escape(node.name)} [dim]{escape(node.track.id)}[/dim]")


async def _list_library(player: ShadowingPlayer, console: Console) -> int:
    await player.start()
    try:
        if not player.library.tracks:
            console.print("Library is empty.")
            return 0
        tree = Tree(f"{len(player.library.tracks)} track(s)")
        _add_nodes(tree, player.library.tree)
        console.print(tree)
    finally:
        await player.close()
    return 0


async def _clear_library(player: ShadowingPlayer, console: Console) -> int:
    await player.start()
    try:
        change = await player.clear()
    finally:
        await player.close()
    for warning in change.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    console.print(f"Removed {len(change.removed_ids)} track(s).")
    return 0


async def _subtitles(player: ShadowingPlayer, args: argparse.Namespace, console: Console) -> int:
    await player.start()
    try:
        track = player.library.track_by_id(args.track_id)
        if track is None:
            console.print(f"[red]Unknown track:[/red] {args.track_id}")
            return 1
        await player.annotations.load(track.id)
        path = Path(args.file).expanduser()
        if args.action == "export":
            path.write_text(player.annotations.export_srt(), encoding="utf-8")
            console.print(f"Wrote {len(player.annotations.subtitles)} subtitle(s) to {path}")
            return 0
        try:
            count = await player.annotations.import_srt(path.read_text(encoding="utf-8-sig"))
        except SubtitleFormatError as exc:
            console.print(f"[red]Invalid subtitle file:[/red] {exc}")
            return 1
        if player.annotations.last_error:
            console.print(f"[red]Failed to save subtitles:[/red] {player.annotations.last_error}")
            return 1
        console.print(f"Imported {count} subtitle(s) for {track.name}")
        return 0
    finally:
        await player.close()


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    if not argv:
        parser.print_help()
        return 0
    args = parser.parse_args(argv)
    if args.command == "serve":
        return _run_serve(args)

    configure_logging()
    console = Console()
    if args.command == "import":
        return _run_import(args, console)
    player = ShadowingPlayer(resolve_root(args.root))
    if args.command == "ls":
        return asyncio.run(_list_library(player, console))
    if args.command == "clear":
        return asyncio.run(_clear_library(player, console))
    if args.command == "subtitles":
        return asyncio.run(_subtitles(player, args, console))
    parser.print_help()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
