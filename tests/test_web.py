from __future__ import annotations

import asyncio
import io
import json
import mimetypes
from pathlib import Path

import pytest
from fastapi import HTTPException, UploadFile
from starlette.datastructures import Headers

from shadowing.player import PlayerConfig, ShadowingPlayer
from shadowing.web import create_app


def _find_route(app, path: str, method: str):
    method = method.upper()
    for route in app.router.routes:
        if getattr(route, "path", None) == path and method in getattr(route, "methods", set()):
            return route.endpoint
    raise RuntimeError(f"Route {method} {path} not found")


def _upload(name: str, data: bytes = b"ID3", content_type: str = "audio/mpeg") -> UploadFile:
    return UploadFile(
        file=io.BytesIO(data),
        filename=name,
        headers=Headers({"content-type": content_type}),
    )


def _app(tmp_path: Path):
    player = ShadowingPlayer(tmp_path)
    asyncio.run(player.start())
    return create_app(PlayerConfig(root=tmp_path), player=player), player


def _upload_files(app, paths: list[str], reset: bool = False) -> dict:
    route = _find_route(app, "/api/library/uploads", "POST")
    files = [
        _upload(path.rsplit("/", 1)[-1], content_type=mimetypes.guess_type(path)[0] or "")
        for path in paths
    ]
    response = asyncio.run(route(files, paths, [1000] * len(paths), reset))
    assert response.status_code == 200
    return json.loads(response.body)


def test_index_page_is_served(tmp_path: Path) -> None:
    app, _ = _app(tmp_path)
    html = _find_route(app, "/", "GET")()
    assert "<audio" in html
    assert "/api/library/uploads" in html


def test_upload_builds_tree_and_serves_media(tmp_path: Path) -> None:
    app, player = _app(tmp_path)
    payload = _upload_files(app, ["Course/2.mp3", "Course/10.mp3", "Course/readme.txt"])

    assert [track["path"] for track in payload["tracks"]] == ["Course/2.mp3", "Course/10.mp3"]
    assert payload["tree"][0]["type"] == "folder"
    assert len(payload["change"]["added"]) == 2

    url = payload["tracks"][0]["url"]
    media = _find_route(app, "/media/{token}", "GET")(url.rsplit("/", 1)[-1])
    assert media.media_type == "audio/mpeg"

    with pytest.raises(HTTPException) as excinfo:
        _find_route(app, "/media/{token}", "GET")("unknown")
    assert excinfo.value.status_code == 404

    progress = json.loads(_find_route(app, "/api/library/progress", "GET")().body)
    assert progress["active"] is False
    assert progress["progress"]["processed"] == 3


def test_upload_spools_to_disk_and_discards_copies(tmp_path: Path) -> None:
    app, player = _app(tmp_path)
    route = _find_route(app, "/api/library/uploads", "POST")
    data = b"ID3" + b"\x00" * (3 * 1024 * 1024)
    response = asyncio.run(route([_upload("big.mp3", data)], ["Course/big.mp3"], [1000], False))
    payload = json.loads(response.body)

    assert payload["tracks"][0]["size"] == len(data)
    assert list(player.uploads_dir.iterdir()) == []
    stored = player.library.open_payload(payload["tracks"][0]["id"])
    assert isinstance(stored, Path)
    assert stored.read_bytes() == data


def test_upload_keeps_spooled_file_when_storage_fails(tmp_path: Path, monkeypatch) -> None:
    from shadowing.store import StoreError

    app, player = _app(tmp_path)

    async def failing_save(entries) -> None:
        raise StoreError("disk full")

    monkeypatch.setattr(player.store, "save_tracks", failing_save)
    route = _find_route(app, "/api/library/uploads", "POST")
    response = asyncio.run(route([_upload("a.mp3", b"ID3-data")], ["a.mp3"], [1000], False))
    payload = json.loads(response.body)

    assert payload["change"]["warnings"] == ["disk full"]
    spooled = list(player.uploads_dir.iterdir())
    assert len(spooled) == 1
    media = _find_route(app, "/media/{token}", "GET")(payload["tracks"][0]["url"].rsplit("/", 1)[-1])
    assert Path(media.path) == spooled[0]

    asyncio.run(player.start())
    assert not player.uploads_dir.exists()


def test_failed_upload_ingest_discards_spooled_files(tmp_path: Path) -> None:
    app, player = _app(tmp_path)
    route = _find_route(app, "/api/library/uploads", "POST")
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(route([_upload("a.mp3")], ["a.mp3"], ["not-a-time"], False))
    assert excinfo.value.status_code == 500
    assert list(player.uploads_dir.iterdir()) == []


def test_select_returns_commands(tmp_path: Path) -> None:
    app, _ = _app(tmp_path)
    payload = _upload_files(app, ["a.mp3", "b.mp3"])
    track_id = payload["tracks"][1]["id"]

    response = asyncio.run(_find_route(app, "/api/session/select", "POST")({"id": track_id}))
    body = json.loads(response.body)
    assert body["session"]["current_index"] == 1
    ops = [command["op"] for command in body["commands"]]
    assert ops[:3] == ["load", "rate", "play"]

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(_find_route(app, "/api/session/select", "POST")({"id": "missing"}))
    assert excinfo.value.status_code == 404


def test_session_events_and_ab_repeat(tmp_path: Path) -> None:
    app, player = _app(tmp_path)
    payload = _upload_files(app, ["a.mp3"])
    asyncio.run(_find_route(app, "/api/session/select", "POST")({"id": payload["tracks"][0]["id"]}))
    events = _find_route(app, "/api/session/events", "POST")
    ab_repeat = _find_route(app, "/api/session/ab-repeat", "POST")

    asyncio.run(events({"type": "loaded", "duration": 20.0}))
    asyncio.run(events({"type": "time", "time": 10.0}))
    ab_repeat()
    asyncio.run(events({"type": "time", "time": 5.0}))
    body = json.loads(ab_repeat().body)
    assert body["session"]["loop_region"] == {"start": 5.0, "end": 10.0}

    body = json.loads(asyncio.run(events({"type": "time", "time": 10.5})).body)
    assert body["session"]["current_time"] == 5.0
    assert {"op": "seek", "time": 5.0} in body["commands"]

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(events({"type": "bogus"}))
    assert excinfo.value.status_code == 400


def test_ended_event_reports_action(tmp_path: Path) -> None:
    app, _ = _app(tmp_path)
    payload = _upload_files(app, ["a.mp3", "b.mp3"])
    asyncio.run(_find_route(app, "/api/session/select", "POST")({"id": payload["tracks"][0]["id"]}))
    body = json.loads(asyncio.run(_find_route(app, "/api/session/events", "POST")({"type": "ended"})).body)
    assert body["action"] == "advance_playing"
    assert body["session"]["current_index"] == 1


def test_annotations_require_active_track(tmp_path: Path) -> None:
    app, _ = _app(tmp_path)
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(_find_route(app, "/api/annotations/notes", "POST")({"content": "hi"}))
    assert excinfo.value.status_code == 409


def test_notes_and_subtitles_endpoints(tmp_path: Path) -> None:
    app, player = _app(tmp_path)
    payload = _upload_files(app, ["lesson.mp3"])
    asyncio.run(_find_route(app, "/api/session/select", "POST")({"id": payload["tracks"][0]["id"]}))

    body = json.loads(
        asyncio.run(_find_route(app, "/api/annotations/notes", "POST")({"content": " stress ", "timestamp": 2})).body
    )
    assert body["notes"][0]["content"] == "stress"

    srt = b"1\n00:00:01,000 --> 00:00:02,500\nHello\n"
    asyncio.run(_find_route(app, "/api/annotations/subtitles/import", "POST")(_upload("lesson.srt", srt, "text/plain")))
    assert [segment.text for segment in player.annotations.subtitles] == ["Hello"]

    exported = _find_route(app, "/api/annotations/subtitles/export", "GET")()
    assert exported.body.decode("utf-8") == "1\n00:00:01,000 --> 00:00:02,500\nHello\n"
    assert "lesson.srt" in exported.headers["content-disposition"]

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(
            _find_route(app, "/api/annotations/subtitles/import", "POST")(
                _upload("bad.srt", b"1\nnope --> 00:00:01,000\nX\n", "text/plain")
            )
        )
    assert excinfo.value.status_code == 400
    assert len(player.annotations.subtitles) == 1

    segment_id = player.annotations.subtitles[0].id
    update = _find_route(app, "/api/annotations/subtitles/{segment_id}", "PATCH")
    body = json.loads(asyncio.run(update(segment_id, {"end": 0.5})).body)
    assert body["subtitles"][0]["end"] == 1.0

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(_find_route(app, "/api/annotations/notes/{note_id}", "DELETE")("missing"))
    assert excinfo.value.status_code == 404


def test_delete_node_endpoint(tmp_path: Path) -> None:
    app, player = _app(tmp_path)
    _upload_files(app, ["Unit/a.mp3", "b.mp3"])
    delete = _find_route(app, "/api/library/nodes/{node_path:path}", "DELETE")

    body = json.loads(asyncio.run(delete("Unit", "folder")).body)
    assert [track["path"] for track in body["tracks"]] == ["b.mp3"]

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(delete("Unit", "folder"))
    assert excinfo.value.status_code == 404


def test_settings_and_hotkeys(tmp_path: Path) -> None:
    app, player = _app(tmp_path)
    payload = json.loads(_find_route(app, "/api/settings", "GET")().body)
    payload["key_map"]["play_pause"] = "KeyK"
    payload["auto_replay"]["count"] = 1
    _find_route(app, "/api/settings", "PUT")(payload)
    assert (tmp_path / "settings.json").exists()
    assert player.session.settings.auto_replay.count == 1

    body = json.loads(asyncio.run(_find_route(app, "/api/hotkeys", "POST")({"code": "Space"})).body)
    assert body["action"] is None
    body = json.loads(asyncio.run(_find_route(app, "/api/hotkeys", "POST")({"code": "KeyK"})).body)
    assert body["action"] == "play_pause"


def test_rate_validation(tmp_path: Path) -> None:
    app, player = _app(tmp_path)
    rate = _find_route(app, "/api/session/rate", "POST")
    rate({"rate": 1.25})
    assert player.session.playback_rate == 1.25
    with pytest.raises(HTTPException) as excinfo:
        rate({"rate": -1})
    assert excinfo.value.status_code == 400
