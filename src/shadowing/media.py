from __future__ import annotations

import threading


class AutoplayRejected(RuntimeError):
    """Raised by a media output when the environment refuses to start playback."""


class MediaOutput:
    """The single audio sink driven by the playback session."""

    def load(self, source: str) -> None:
        raise NotImplementedError

    def detach(self) -> None:
        raise NotImplementedError

    def play(self) -> None:
        raise NotImplementedError

    def pause(self) -> None:
        raise NotImplementedError

    def seek(self, position: float) -> None:
        raise NotImplementedError

    def set_rate(self, rate: float) -> None:
        raise NotImplementedError


class CommandQueueOutput(MediaOutput):
    """Collects commands for a browser page that owns the real ``<audio>`` element.

    The page applies drained commands in order and reports lifecycle events
    back to the session.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._commands: list[dict[str, object]] = []
        self.source: str | None = None

    def _push(self, command: dict[str, object]) -> None:
        with self._lock:
            self._commands.append(command)

    def load(self, source: str) -> None:
        self.source = source
        self._push({"op": "load", "src": source})

    def detach(self) -> None:
        self.source = None
        self._push({"op": "detach"})

    def play(self) -> None:
        self._push({"op": "play"})

    def pause(self) -> None:
        self._push({"op": "pause"})

    def seek(self, position: float) -> None:
        self._push({"op": "seek", "time": position})

    def set_rate(self, rate: float) -> None:
        self._push({"op": "rate", "rate": rate})

    def drain(self) -> list[dict[str, object]]:
        with self._lock:
            commands = self._commands
            self._commands = []
        return commands


__all__ = ["AutoplayRejected", "CommandQueueOutput", "MediaOutput"]
