"""Playback session: track selection, play modes, A-B repeat and end-of-track policy."""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, replace
from enum import Enum

from .annotations import DEFAULT_MARKER_COLOR, DEFAULT_MARKER_LABEL, AnnotationStore, Marker
from .catalog import Track
from .library import CatalogChange, Library
from .media import AutoplayRejected, MediaOutput
from .settings import AutoReplay, Settings

logger = logging.getLogger(__name__)

SEEK_STEP_SECONDS = 3.0


class TrackEndAction(str, Enum):
    AUTO_REPLAY = "auto_replay"
    LOOP_CURRENT = "loop_current"
    ADVANCE_PAUSED = "advance_paused"
    ADVANCE_PLAYING = "advance_playing"
    STOP = "stop"


@dataclass(slots=True)
class PlaybackModes:
    continuous_play: bool = True
    loop_current: bool = False
    auto_pause: bool = False

    def as_payload(self) -> dict[str, bool]:
        return {
            "continuous_play": self.continuous_play,
            "loop_current": self.loop_current,
            "auto_pause": self.auto_pause,
        }


@dataclass(slots=True, frozen=True)
class LoopRegion:
    start: float | None = None
    end: float | None = None

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None

    def capture(self, position: float) -> "LoopRegion":
        """Advance the unset -> start -> start/end -> unset cycle at ``position``."""
        if self.start is None:
            return LoopRegion(start=position, end=None)
        if self.end is None:
            if position <= self.start:
                return LoopRegion(start=position, end=self.start)
            return LoopRegion(start=self.start, end=position)
        return LoopRegion()

    def as_payload(self) -> dict[str, float | None]:
        return {"start": self.start, "end": self.end}


def decide_track_end(
    modes: PlaybackModes,
    auto_replay: AutoReplay,
    replays_done: int,
) -> TrackEndAction:
    """Pick exactly one end-of-track behaviour, in priority order."""
    if auto_replay.count > 0 and replays_done < auto_replay.count:
        return TrackEndAction.AUTO_REPLAY
    if modes.loop_current:
        return TrackEndAction.LOOP_CURRENT
    if modes.auto_pause:
        return TrackEndAction.ADVANCE_PAUSED
    if modes.continuous_play:
        return TrackEndAction.ADVANCE_PLAYING
    return TrackEndAction.STOP


class PlaybackSession:
    def __init__(
        self,
        library: Library,
        annotations: AnnotationStore,
        output: MediaOutput,
        settings: Settings | None = None,
    ) -> None:
        self.library = library
        self.annotations = annotations
        self.output = output
        self.settings = settings or Settings()
        self.current_track_id: str | None = None
        self.is_playing = False
        self.current_time = 0.0
        self.duration = 0.0
        self.playback_rate = 1.0
        self.modes = PlaybackModes()
        self.loop_region = LoopRegion()
        self.replays_done = 0
        self._source: str | None = None
        # Bumped on every track switch; pending auto-replays compare against it.
        self._generation = 0

    @property
    def current_index(self) -> int | None:
        return self.library.index_of(self.current_track_id)

    @property
    def current_track(self) -> Track | None:
        if self.current_track_id is None:
            return None
        return self.library.track_by_id(self.current_track_id)

    def _reset_track_state(self) -> None:
        self._generation += 1
        self.loop_region = LoopRegion()
        self.replays_done = 0
        self.current_time = 0.0
        self.duration = 0.0

    def _start_playback(self) -> bool:
        try:
            self.output.play()
        except AutoplayRejected as exc:
            logger.info("Autoplay prevented: %s", exc)
            self.is_playing = False
            return False
        self.is_playing = True
        return True

    async def _activate(self, index: int, *, autoplay: bool = True) -> bool:
        track = self.library.track_at(index)
        if track is None:
            return False
        self.current_track_id = track.id
        self._reset_track_state()
        self._source = track.url
        self.output.load(track.url or "")
        self.output.set_rate(self.playback_rate)
        if autoplay:
            self._start_playback()
        else:
            self.output.pause()
            self.is_playing = False
        await self.annotations.load(track.id)
        return True

    async def _deactivate(self) -> None:
        self.current_track_id = None
        self._reset_track_state()
        self._source = None
        self.is_playing = False
        self.output.pause()
        self.output.detach()
        await self.annotations.load(None)

    async def play_file_by_id(self, track_id: str) -> bool:
        index = self.library.index_of(track_id)
        if index is None:
            return False
        if track_id == self.current_track_id:
            return True
        return await self._activate(index)

    async def next_track(self, *, autoplay: bool = True) -> bool:
        index = self.current_index
        if index is None or index >= len(self.library.tracks) - 1:
            return False
        return await self._activate(index + 1, autoplay=autoplay)

    async def prev_track(self) -> bool:
        index = self.current_index
        if index is None or index <= 0:
            return False
        return await self._activate(index - 1)

    async def reconcile(self, change: CatalogChange) -> None:
        """Keep the active track selected by identity after a catalog mutation."""
        if self.current_track_id is None:
            return
        track = self.current_track
        if track is None:
            logger.info("Active track %s was removed from the library", self.current_track_id)
            await self._deactivate()
            return
        if track.url != self._source:
            self._source = track.url
            self.output.load(track.url or "")
            self.output.set_rate(self.playback_rate)
            self.output.seek(self.current_time)
            if self.is_playing:
                self._start_playback()

    def play(self) -> bool:
        if self.current_track_id is None:
            return False
        return self._start_playback()

    def pause(self) -> bool:
        if self.current_track_id is None:
            return False
        self.output.pause()
        self.is_playing = False
        return True

    def toggle_play_pause(self) -> bool:
        if self.current_track_id is None:
            return False
        if self.is_playing:
            return self.pause()
        self.play()
        return True

    def seek(self, position: float) -> bool:
        if self.current_track_id is None:
            return False
        target = max(0.0, float(position))
        if self.duration > 0:
            target = min(target, self.duration)
        self.current_time = target
        self.output.seek(target)
        return True

    def seek_by(self, offset: float) -> bool:
        return self.seek(self.current_time + offset)

    def replay_from_start(self) -> bool:
        if not self.seek(0.0):
            return False
        self._start_playback()
        return True

    def set_playback_rate(self, rate: float) -> None:
        value = float(rate)
        if not math.isfinite(value) or value <= 0:
            raise ValueError("Playback rate must be a positive number.")
        self.playback_rate = value
        self.output.set_rate(value)

    def set_modes(
        self,
        *,
        continuous_play: bool | None = None,
        loop_current: bool | None = None,
        auto_pause: bool | None = None,
    ) -> PlaybackModes:
        updates = {
            key: bool(value)
            for key, value in (
                ("continuous_play", continuous_play),
                ("loop_current", loop_current),
                ("auto_pause", auto_pause),
            )
            if value is not None
        }
        self.modes = replace(self.modes, **updates)
        return self.modes

    def toggle_ab_repeat(self) -> LoopRegion:
        if self.current_track_id is None:
            return self.loop_region
        self.loop_region = self.loop_region.capture(self.current_time)
        return self.loop_region

    def on_loaded(self, duration: float) -> None:
        if isinstance(duration, (int, float)) and math.isfinite(duration) and duration >= 0:
            self.duration = float(duration)

    def on_time_update(self, position: float) -> bool:
        """Record the position; returns True when the A-B region wrapped it back."""
        self.current_time = float(position)
        region = self.loop_region
        if region.is_complete and self.current_time >= region.end:
            self.current_time = region.start
            self.output.seek(region.start)
            return True
        return False

    def on_play(self) -> None:
        if self.current_track_id is not None:
            self.is_playing = True

    def on_pause(self) -> None:
        self.is_playing = False

    def on_autoplay_rejected(self) -> None:
        logger.info("Autoplay prevented for %s", self.current_track_id)
        self.is_playing = False

    def on_error(self, message: str = "", code: int | None = None) -> bool:
        """Handle a media error. Returns False when it was an expected detach artefact."""
        if self.current_track_id is None or self._source is None:
            logger.debug("Ignoring media error without an active source: %s", message)
            return False
        logger.error("Audio error for %s: %s %s", self.current_track_id, code, message)
        self.is_playing = False
        self.output.pause()
        return True

    async def on_ended(self) -> TrackEndAction:
        action = decide_track_end(self.modes, self.settings.auto_replay, self.replays_done)
        if action is TrackEndAction.AUTO_REPLAY:
            self.replays_done += 1
            generation = self._generation
            await asyncio.sleep(self.settings.auto_replay.interval_seconds)
            if generation != self._generation:
                logger.debug("Auto-replay discarded after track change")
                return action
            self.current_time = 0.0
            self.output.seek(0.0)
            self._start_playback()
        elif action is TrackEndAction.LOOP_CURRENT:
            self.current_time = 0.0
            self.output.seek(0.0)
            self._start_playback()
        elif action is TrackEndAction.ADVANCE_PAUSED:
            if not await self.next_track(autoplay=False):
                self.pause()
        elif action is TrackEndAction.ADVANCE_PLAYING:
            if not await self.next_track():
                self.pause()
        else:
            self.pause()
        return action

    async def add_marker_at_current_time(self) -> Marker | None:
        if self.current_track_id is None:
            return None
        marker = Marker(
            id=uuid.uuid4().hex,
            time=self.current_time,
            label=DEFAULT_MARKER_LABEL,
            color=DEFAULT_MARKER_COLOR,
        )
        return await self.annotations.add_marker(marker)

    async def remove_marker(self, marker_id: str) -> bool:
        return await self.annotations.delete_marker(marker_id)

    def snapshot(self) -> dict[str, object]:
        track = self.current_track
        subtitle = self.annotations.subtitle_at(self.current_time) if track else None
        auto_replay = self.settings.auto_replay
        return {
            "current_index": self.current_index,
            "current_track": track.to_payload() if track else None,
            "is_playing": self.is_playing,
            "current_time": self.current_time,
            "duration": self.duration,
            "playback_rate": self.playback_rate,
            "modes": self.modes.as_payload(),
            "auto_replay": auto_replay.as_payload(),
            "replays_remaining": max(0, auto_replay.count - self.replays_done),
            "loop_region": self.loop_region.as_payload(),
            "active_subtitle": subtitle.text if subtitle else None,
        }


__all__ = [
    "LoopRegion",
    "PlaybackModes",
    "PlaybackSession",
    "SEEK_STEP_SECONDS",
    "TrackEndAction",
    "decide_track_end",
]
