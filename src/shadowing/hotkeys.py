from __future__ import annotations

import inspect
import logging
from typing import Callable

from .session import SEEK_STEP_SECONDS, PlaybackSession
from .settings import Settings

logger = logging.getLogger(__name__)


class HotkeyDispatcher:
    """Maps physical key codes from the page to session actions."""

    def __init__(self, session: PlaybackSession, settings: Settings) -> None:
        self.session = session
        self.settings = settings
        self._handlers: dict[str, Callable[[], object]] = {
            "play_pause": session.toggle_play_pause,
            "replay": session.replay_from_start,
            "seek_back": lambda: session.seek_by(-SEEK_STEP_SECONDS),
            "seek_forward": lambda: session.seek_by(SEEK_STEP_SECONDS),
            "toggle_record": self._toggle_record,
            "add_marker": session.add_marker_at_current_time,
        }

    def _toggle_record(self) -> None:
        # Recording is not implemented yet; the binding is reserved.
        logger.info("Toggle record triggered (placeholder)")

    def action_for(self, code: str) -> str | None:
        for action, bound in self.settings.key_map.items():
            if bound is not None and bound == code and action in self._handlers:
                return action
        return None

    async def dispatch(self, code: str) -> str | None:
        action = self.action_for(code)
        if action is None:
            return None
        result = self._handlers[action]()
        if inspect.isawaitable(result):
            await result
        return action


__all__ = ["HotkeyDispatcher"]
