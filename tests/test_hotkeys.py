from __future__ import annotations

import asyncio
from pathlib import Path

from shadowing.media import CommandQueueOutput
from shadowing.ingest import FileDescriptor
from shadowing.player import ShadowingPlayer


def _player(tmp_path: Path) -> ShadowingPlayer:
    player = ShadowingPlayer(tmp_path)
    asyncio.run(player.start())
    asyncio.run(
        player.ingest(
            [FileDescriptor(name="a.mp3", relative_path="a.mp3", size=1, last_modified=0, data=b"x")]
        )
    )
    asyncio.run(player.session.play_file_by_id(player.library.tracks[0].id))
    return player


def test_default_bindings(tmp_path: Path) -> None:
    player = _player(tmp_path)
    session = player.session
    session.on_loaded(60.0)
    session.on_time_update(10.0)

    assert asyncio.run(player.hotkeys.dispatch("ArrowLeft")) == "seek_back"
    assert session.current_time == 7.0
    assert asyncio.run(player.hotkeys.dispatch("ArrowRight")) == "seek_forward"
    assert session.current_time == 10.0
    assert asyncio.run(player.hotkeys.dispatch("Space")) == "play_pause"
    assert session.is_playing is False
    assert asyncio.run(player.hotkeys.dispatch("KeyP")) == "add_marker"
    assert [marker.time for marker in player.annotations.markers] == [10.0]
    assert asyncio.run(player.hotkeys.dispatch("KeyR")) == "replay"
    assert session.current_time == 0.0 and session.is_playing


def test_unbound_and_placeholder_keys(tmp_path: Path) -> None:
    player = _player(tmp_path)
    assert isinstance(player.output, CommandQueueOutput)
    player.output.drain()
    assert asyncio.run(player.hotkeys.dispatch("KeyQ")) is None
    assert asyncio.run(player.hotkeys.dispatch("KeyM")) == "toggle_record"
    assert player.output.drain() == []


def test_rebinding_follows_settings(tmp_path: Path) -> None:
    player = _player(tmp_path)
    settings = player.settings
    settings.key_map["play_pause"] = "KeyK"
    player.save_settings(settings)
    assert player.hotkeys.action_for("Space") is None
    assert player.hotkeys.action_for("KeyK") == "play_pause"
