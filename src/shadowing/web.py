from __future__ import annotations

import mimetypes
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator
from urllib.parse import quote

from fastapi import Body, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, Response

from .annotations import SubtitleSegment
from .ingest import FileDescriptor, IngestionError
from .library import CatalogChange
from .media import CommandQueueOutput
from .player import PlayerConfig, ShadowingPlayer
from .settings import Settings
from .subtitles import SubtitleFormatError
from .web_assets import FAVICON_URL

UPLOAD_CHUNK_SIZE = 1024 * 1024

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>Shadowing Player</title>
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <link rel="icon" href="__FAVICON__">
  <style>
    :root { color-scheme: dark; font-family: -apple-system, "Segoe UI", sans-serif; }
    body { margin: 0; background: #090b12; color: #f5f5f5; display: flex; min-height: 100vh; }
    aside { width: 320px; background: #141724; padding: 1rem; overflow-y: auto; }
    main { flex: 1; padding: 1.5rem; display: flex; flex-direction: column; gap: 1rem; }
    ul { list-style: none; padding-left: 0.9rem; margin: 0; }
    li.file { cursor: pointer; padding: 0.15rem 0; color: #cbd5f5; }
    li.file.active { color: #3b82f6; font-weight: 600; }
    li.folder > span { color: #9aa0b5; }
    button { background: #1b1f32; color: inherit; border: 1px solid #ffffff1f; border-radius: 10px; padding: 0.4rem 0.8rem; cursor: pointer; }
    button.on { background: #2563eb; }
    #subtitle { min-height: 2.5rem; font-size: 1.3rem; text-align: center; }
    #progress { color: #9aa0b5; font-size: 0.85rem; }
  </style>
</head>
<body>
  <aside>
    <input id="picker" type="file" webkitdirectory multiple>
    <div id="progress"></div>
    <div id="tree"></div>
  </aside>
  <main>
    <h1 id="title">No track</h1>
    <div id="subtitle"></div>
    <div>
      <button data-action="prev">Prev</button>
      <button data-action="toggle">Play/Pause</button>
      <button data-action="next">Next</button>
      <button data-action="ab-repeat">A-B</button>
      <button data-action="marker">Marker</button>
    </div>
    <div>
      <button data-mode="continuous_play">Continuous</button>
      <button data-mode="loop_current">Loop</button>
      <button data-mode="auto_pause">Auto-pause</button>
    </div>
    <div id="time"></div>
  </main>
  <audio id="audio"></audio>
  <script>
    const audio = document.getElementById('audio');
    let session = null;
    let lastTick = 0;

    async function api(path, options = {}) {
      const response = await fetch(path, options);
      const payload = await response.json();
      if (!response.ok) throw new Error(payload.detail || response.statusText);
      if (payload.commands) applyCommands(payload.commands);
      if (payload.session) renderSession(payload.session);
      return payload;
    }
    const post = (path, body) => api(path, {
      method: 'POST', headers: {'Content-Type': 'application/json'}, body: JSON.stringify(body || {}),
    });
    const sendEvent = (body) => post('/api/session/events', body).catch(console.warn);

    function applyCommands(commands) {
      for (const command of commands) {
        if (command.op === 'load') { audio.src = command.src; }
        else if (command.op === 'detach') { audio.pause(); audio.removeAttribute('src'); audio.load(); }
        else if (command.op === 'play') {
          audio.play().catch(() => sendEvent({type: 'autoplay-rejected'}));
        }
        else if (command.op === 'pause') { audio.pause(); }
        else if (command.op === 'seek') { audio.currentTime = command.time; }
        else if (command.op === 'rate') { audio.playbackRate = command.rate; }
      }
    }

    function renderSession(state) {
      session = state;
      document.getElementById('title').textContent = state.current_track ? state.current_track.name : 'No track';
      document.getElementById('subtitle').textContent = state.active_subtitle || '';
      document.getElementById('time').textContent = state.current_time.toFixed(1) + ' / ' + state.duration.toFixed(1);
      for (const button of document.querySelectorAll('[data-mode]')) {
        button.classList.toggle('on', !!state.modes[button.dataset.mode]);
      }
      for (const item of document.querySelectorAll('li.file')) {
        item.classList.toggle('active', !!state.current_track && item.dataset.id === state.current_track.id);
      }
    }

    function renderNodes(nodes) {
      const list = document.createElement('ul');
      for (const node of nodes) {
        const item = document.createElement('li');
        item.className = node.type;
        if (node.type === 'folder') {
          const label = document.createElement('span');
          label.textContent = node.name;
          item.append(label, renderNodes(node.children));
        } else {
          item.textContent = node.name;
          item.dataset.id = node.track.id;
          item.onclick = () => post('/api/session/select', {id: node.track.id});
        }
        list.append(item);
      }
      return list;
    }

    async function refreshLibrary() {
      const payload = await api('/api/library');
      document.getElementById('tree').replaceChildren(renderNodes(payload.tree));
    }

    document.getElementById('picker').addEventListener('change', async (event) => {
      const form = new FormData();
      for (const file of event.target.files) {
        form.append('files', file);
        form.append('paths', file.webkitRelativePath || file.name);
        form.append('modified', String(file.lastModified));
      }
      const timer = setInterval(async () => {
        const state = await fetch('/api/library/progress').then((r) => r.json());
        if (state.progress) {
          document.getElementById('progress').textContent =
            state.progress.processed + '/' + state.progress.total + ' ' + state.progress.filename;
        }
      }, 300);
      try {
        await api('/api/library/uploads', {method: 'POST', body: form});
      } catch (error) {
        alert(error.message);
      } finally {
        clearInterval(timer);
        document.getElementById('progress').textContent = '';
      }
      refreshLibrary();
    });

    for (const button of document.querySelectorAll('[data-action]')) {
      button.onclick = () => post('/api/session/' + button.dataset.action);
    }
    for (const button of document.querySelectorAll('[data-mode]')) {
      button.onclick = () => post('/api/session/modes', {[button.dataset.mode]: !session.modes[button.dataset.mode]});
    }
    document.addEventListener('keydown', (event) => {
      if (['INPUT', 'TEXTAREA'].includes(event.target.tagName) || event.target.isContentEditable) return;
      post('/api/hotkeys', {code: event.code}).then((payload) => {
        if (payload.action) event.preventDefault();
      }).catch(console.warn);
    });

    audio.addEventListener('loadedmetadata', () => sendEvent({type: 'loaded', duration: audio.duration}));
    audio.addEventListener('timeupdate', () => {
      const now = Date.now();
      if (now - lastTick < 250) return;
      lastTick = now;
      sendEvent({type: 'time', time: audio.currentTime});
    });
    audio.addEventListener('ended', () => sendEvent({type: 'ended'}));
    audio.addEventListener('play', () => sendEvent({type: 'play'}));
    audio.addEventListener('pause', () => sendEvent({type: 'pause'}));
    audio.addEventListener('error', () => {
      if (!audio.getAttribute('src')) return;
      sendEvent({type: 'error', code: audio.error && audio.error.code, message: audio.error && audio.error.message});
    });

    refreshLibrary();
  </script>
</body>
</html>
""".replace("__FAVICON__", FAVICON_URL)


def _optional_bool(payload: dict[str, object], key: str) -> bool | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, bool):
        raise HTTPException(status_code=400, detail=f"{key} must be a boolean.")
    return value


def _require_number(payload: dict[str, object], key: str) -> float:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise HTTPException(status_code=400, detail=f"{key} must be a number.")
    return float(value)


def _require_dict(payload: object) -> dict[str, object]:
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload.")
    return payload


async def _spool_upload(upload: UploadFile, directory: Path) -> tuple[Path, int]:
    """Stream ``upload`` into ``directory`` and return the spooled path and its size."""
    directory.mkdir(parents=True, exist_ok=True)
    name = Path(upload.filename or "upload").name
    target = directory / f"{uuid.uuid4().hex}-{name}"
    size = 0
    try:
        with target.open("wb") as destination:
            while True:
                chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                destination.write(chunk)
                size += len(chunk)
    except OSError:
        target.unlink(missing_ok=True)
        raise
    return target, size


def create_app(config: PlayerConfig, player: ShadowingPlayer | None = None) -> FastAPI:
    root = config.root.expanduser().resolve()
    if player is None:
        player = ShadowingPlayer(root)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if not player.started:
            await player.start()
        try:
            yield
        finally:
            await player.close()

    app = FastAPI(title="Shadowing Player", lifespan=lifespan)
    app.state.config = config
    app.state.player = player
    session = player.session
    annotations = player.annotations
    library = player.library

    def _session_payload() -> dict[str, object]:
        commands: list[dict[str, object]] = []
        if isinstance(player.output, CommandQueueOutput):
            commands = player.output.drain()
        return {"session": session.snapshot(), "commands": commands}

    def _session_response(**extra: object) -> JSONResponse:
        payload = _session_payload()
        payload.update(extra)
        return JSONResponse(payload)

    def _library_response(change: CatalogChange | None = None) -> JSONResponse:
        payload = library.catalog.to_payload()
        payload.update(_session_payload())
        if change is not None:
            payload["change"] = change.to_payload()
        return JSONResponse(payload)

    def _require_track() -> None:
        if annotations.track_id is None:
            raise HTTPException(status_code=409, detail="No active track.")

    @app.get("/", response_class=HTMLResponse)
    def index() -> str:
        return INDEX_HTML

    @app.get("/api/library")
    def api_library() -> JSONResponse:
        return _library_response()

    @app.get("/api/library/progress")
    def api_library_progress() -> JSONResponse:
        progress = library.progress
        return JSONResponse(
            {
                "active": library.processing,
                "progress": progress.to_payload() if progress else None,
            }
        )

    @app.post("/api/library/uploads")
    async def api_upload_files(
        files: list[UploadFile] = File(...),
        paths: list[str] = Form(default=[]),
        modified: list[int] = Form(default=[]),
        reset: bool = Form(False),
    ) -> JSONResponse:
        descriptors: list[FileDescriptor] = []
        spooled: list[Path] = []
        try:
            for index, upload in enumerate(files):
                name = Path(upload.filename or f"upload-{index}").name
                try:
                    target, size = await _spool_upload(upload, player.uploads_dir)
                finally:
                    await upload.close()
                spooled.append(target)
                relative = paths[index] if index < len(paths) and paths[index] else name
                descriptors.append(
                    FileDescriptor(
                        name=name,
                        relative_path=relative,
                        size=size,
                        last_modified=modified[index] if index < len(modified) else 0,
                        media_type=upload.content_type or "",
                        source=target,
                    )
                )
        except OSError as exc:
            player.discard_uploads(spooled)
            raise HTTPException(status_code=500, detail=f"Failed to save upload: {exc}") from exc
        try:
            change = await player.ingest(descriptors, reset=reset)
        except IngestionError as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        finally:
            player.discard_uploads(spooled)
        return _library_response(change)

    @app.delete("/api/library")
    async def api_clear_library() -> JSONResponse:
        change = await player.clear()
        return _library_response(change)

    @app.delete("/api/library/nodes/{node_path:path}")
    async def api_delete_node(node_path: str, kind: str | None = None) -> JSONResponse:
        if kind not in (None, "folder", "file"):
            raise HTTPException(status_code=400, detail="kind must be 'folder' or 'file'.")
        try:
            change = await player.delete_node(node_path, kind)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Item not found.") from exc
        return _library_response(change)

    @app.get("/media/{token}")
    def api_media(token: str) -> Response:
        track_id = library.references.resolve(token)
        track = library.track_by_id(track_id) if track_id else None
        if track is None:
            raise HTTPException(status_code=404, detail="Media not found.")
        payload = library.open_payload(track.id)
        media_type = track.media_type or mimetypes.guess_type(track.name)[0] or "application/octet-stream"
        if isinstance(payload, Path):
            return FileResponse(payload, media_type=media_type)
        if isinstance(payload, bytes):
            return Response(content=payload, media_type=media_type)
        raise HTTPException(status_code=404, detail="Media not found.")

    @app.get("/api/session")
    def api_session() -> JSONResponse:
        return _session_response()

    @app.post("/api/session/select")
    async def api_select(payload: dict[str, object] = Body(...)) -> JSONResponse:
        track_id = _require_dict(payload).get("id")
        if not isinstance(track_id, str) or not await session.play_file_by_id(track_id):
            raise HTTPException(status_code=404, detail="Track not found.")
        return _session_response()

    @app.post("/api/session/next")
    async def api_next() -> JSONResponse:
        moved = await session.next_track()
        return _session_response(moved=moved)

    @app.post("/api/session/prev")
    async def api_prev() -> JSONResponse:
        moved = await session.prev_track()
        return _session_response(moved=moved)

    @app.post("/api/session/toggle")
    def api_toggle() -> JSONResponse:
        session.toggle_play_pause()
        return _session_response()

    @app.post("/api/session/replay")
    def api_replay() -> JSONResponse:
        session.replay_from_start()
        return _session_response()

    @app.post("/api/session/seek")
    def api_seek(payload: dict[str, object] = Body(...)) -> JSONResponse:
        payload = _require_dict(payload)
        if "offset" in payload:
            session.seek_by(_require_number(payload, "offset"))
        else:
            session.seek(_require_number(payload, "time"))
        return _session_response()

    @app.post("/api/session/rate")
    def api_rate(payload: dict[str, object] = Body(...)) -> JSONResponse:
        rate = _require_number(_require_dict(payload), "rate")
        try:
            session.set_playback_rate(rate)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _session_response()

    @app.post("/api/session/modes")
    def api_modes(payload: dict[str, object] = Body(...)) -> JSONResponse:
        payload = _require_dict(payload)
        session.set_modes(
            continuous_play=_optional_bool(payload, "continuous_play"),
            loop_current=_optional_bool(payload, "loop_current"),
            auto_pause=_optional_bool(payload, "auto_pause"),
        )
        return _session_response()

    @app.post("/api/session/ab-repeat")
    def api_ab_repeat() -> JSONResponse:
        session.toggle_ab_repeat()
        return _session_response()

    @app.post("/api/session/marker")
    async def api_add_marker() -> JSONResponse:
        marker = await session.add_marker_at_current_time()
        if marker is None:
            raise HTTPException(status_code=409, detail="No active track.")
        return _session_response(annotations=annotations.to_payload())

    @app.post("/api/session/events")
    async def api_session_event(payload: dict[str, object] = Body(...)) -> JSONResponse:
        payload = _require_dict(payload)
        event = payload.get("type")
        if event == "time":
            session.on_time_update(_require_number(payload, "time"))
        elif event == "loaded":
            session.on_loaded(_require_number(payload, "duration"))
        elif event == "ended":
            action = await session.on_ended()
            return _session_response(action=action.value)
        elif event == "error":
            code = payload.get("code")
            session.on_error(
                str(payload.get("message") or ""),
                code if isinstance(code, int) else None,
            )
        elif event == "autoplay-rejected":
            session.on_autoplay_rejected()
        elif event == "play":
            session.on_play()
        elif event == "pause":
            session.on_pause()
        else:
            raise HTTPException(status_code=400, detail="Unknown event type.")
        return _session_response()

    @app.post("/api/hotkeys")
    async def api_hotkey(payload: dict[str, object] = Body(...)) -> JSONResponse:
        code = _require_dict(payload).get("code")
        if not isinstance(code, str):
            raise HTTPException(status_code=400, detail="code is required.")
        action = await player.hotkeys.dispatch(code)
        return _session_response(action=action)

    @app.get("/api/annotations")
    def api_annotations() -> JSONResponse:
        return JSONResponse(annotations.to_payload())

    @app.post("/api/annotations/notes")
    async def api_add_note(payload: dict[str, object] = Body(...)) -> JSONResponse:
        payload = _require_dict(payload)
        _require_track()
        content = payload.get("content")
        if not isinstance(content, str) or not content.strip():
            raise HTTPException(status_code=400, detail="content is required.")
        timestamp = payload.get("timestamp")
        if timestamp is None:
            timestamp = session.current_time
        elif isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or timestamp < 0:
            raise HTTPException(status_code=400, detail="timestamp must be non-negative.")
        await annotations.add_note(content.strip(), float(timestamp))
        return JSONResponse(annotations.to_payload())

    @app.patch("/api/annotations/notes/{note_id}")
    async def api_edit_note(note_id: str, payload: dict[str, object] = Body(...)) -> JSONResponse:
        _require_track()
        content = _require_dict(payload).get("content")
        if not isinstance(content, str):
            raise HTTPException(status_code=400, detail="content must be a string.")
        if not await annotations.edit_note(note_id, content):
            raise HTTPException(status_code=404, detail="Note not found.")
        return JSONResponse(annotations.to_payload())

    @app.delete("/api/annotations/notes/{note_id}")
    async def api_delete_note(note_id: str) -> JSONResponse:
        _require_track()
        if not await annotations.delete_note(note_id):
            raise HTTPException(status_code=404, detail="Note not found.")
        return JSONResponse(annotations.to_payload())

    @app.post("/api/annotations/subtitles")
    async def api_add_subtitle(payload: dict[str, object] = Body(default={})) -> JSONResponse:
        payload = _require_dict(payload)
        _require_track()
        start = payload.get("start")
        if start is None:
            start = session.current_time
        elif isinstance(start, bool) or not isinstance(start, (int, float)):
            raise HTTPException(status_code=400, detail="start must be a number.")
        text = payload.get("text")
        await annotations.add_subtitle(float(start), text if isinstance(text, str) else "")
        return JSONResponse(annotations.to_payload())

    @app.put("/api/annotations/subtitles")
    async def api_replace_subtitles(payload: dict[str, object] = Body(...)) -> JSONResponse:
        _require_track()
        raw_items = _require_dict(payload).get("subtitles")
        if not isinstance(raw_items, list):
            raise HTTPException(status_code=400, detail="subtitles must be a list.")
        segments: list[SubtitleSegment] = []
        for raw in raw_items:
            segment = SubtitleSegment.from_payload(raw) if isinstance(raw, dict) else None
            if segment is None:
                raise HTTPException(status_code=400, detail="Invalid subtitle entry.")
            segments.append(segment)
        await annotations.replace_subtitles(segments)
        return JSONResponse(annotations.to_payload())

    @app.patch("/api/annotations/subtitles/{segment_id}")
    async def api_update_subtitle(
        segment_id: str, payload: dict[str, object] = Body(...)
    ) -> JSONResponse:
        _require_track()
        payload = _require_dict(payload)
        for field in ("start", "end", "text"):
            if field not in payload:
                continue
            try:
                updated = await annotations.update_subtitle(segment_id, field, payload[field])
            except ValueError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            if not updated:
                raise HTTPException(status_code=404, detail="Subtitle not found.")
        return JSONResponse(annotations.to_payload())

    @app.delete("/api/annotations/subtitles/{segment_id}")
    async def api_delete_subtitle(segment_id: str) -> JSONResponse:
        _require_track()
        if not await annotations.delete_subtitle(segment_id):
            raise HTTPException(status_code=404, detail="Subtitle not found.")
        return JSONResponse(annotations.to_payload())

    @app.post("/api/annotations/subtitles/import")
    async def api_import_subtitles(file: UploadFile = File(...)) -> JSONResponse:
        _require_track()
        try:
            raw = await file.read()
        finally:
            await file.close()
        try:
            await annotations.import_srt(raw.decode("utf-8-sig", errors="replace"))
        except SubtitleFormatError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return JSONResponse(annotations.to_payload())

    @app.get("/api/annotations/subtitles/export")
    def api_export_subtitles() -> Response:
        _require_track()
        track = session.current_track
        stem = Path(track.name).stem if track else "subtitles"
        return Response(
            content=annotations.export_srt(),
            media_type="application/x-subrip; charset=utf-8",
            headers={
                "Content-Disposition": f"attachment; filename*=UTF-8''{quote(stem + '.srt')}"
            },
        )

    @app.delete("/api/annotations/markers/{marker_id}")
    async def api_delete_marker(marker_id: str) -> JSONResponse:
        _require_track()
        if not await session.remove_marker(marker_id):
            raise HTTPException(status_code=404, detail="Marker not found.")
        return JSONResponse(annotations.to_payload())

    @app.get("/api/settings")
    def api_settings() -> JSONResponse:
        return JSONResponse(player.settings.as_payload())

    @app.put("/api/settings")
    def api_save_settings(payload: dict[str, object] = Body(...)) -> JSONResponse:
        settings = Settings.from_payload(_require_dict(payload))
        try:
            player.save_settings(settings)
        except OSError as exc:
            raise HTTPException(status_code=500, detail=f"Failed to save settings: {exc}") from exc
        return JSONResponse(settings.as_payload())

    return app


__all__ = ["INDEX_HTML", "create_app"]
