from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

SETTINGS_FILENAME = "settings.json"
SETTINGS_VERSION = 1

DEFAULT_KEY_MAP: dict[str, str | None] = {
    "play_pause": "Space",
    "replay": "KeyR",
    "seek_back": "ArrowLeft",
    "seek_forward": "ArrowRight",
    "toggle_record": "KeyM",
    "add_marker": "KeyP",
}
DEFAULT_REPLAY_COUNT = 0
DEFAULT_REPLAY_INTERVAL = 0.5


@dataclass(slots=True)
class AutoReplay:
    count: int = DEFAULT_REPLAY_COUNT
    interval_seconds: float = DEFAULT_REPLAY_INTERVAL

    def as_payload(self) -> dict[str, float | int]:
        return {"count": self.count, "interval_seconds": self.interval_seconds}

    @classmethod
    def from_payload(cls, payload: object) -> "AutoReplay":
        if not isinstance(payload, dict):
            return cls()
        count = payload.get("count")
        interval = payload.get("interval_seconds")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            count = DEFAULT_REPLAY_COUNT
        if isinstance(interval, bool) or not isinstance(interval, (int, float)) or interval < 0:
            interval = DEFAULT_REPLAY_INTERVAL
        return cls(count=count, interval_seconds=float(interval))


@dataclass(slots=True)
class Settings:
    key_map: dict[str, str | None] = field(default_factory=lambda: dict(DEFAULT_KEY_MAP))
    auto_replay: AutoReplay = field(default_factory=AutoReplay)

    def as_payload(self) -> dict[str, object]:
        return {
            "version": SETTINGS_VERSION,
            "key_map": dict(self.key_map),
            "auto_replay": self.auto_replay.as_payload(),
        }

    @classmethod
    def from_payload(cls, payload: object) -> "Settings":
        """Build settings from stored or submitted JSON, defaulting anything invalid."""
        if not isinstance(payload, dict):
            return cls()
        key_map = dict(DEFAULT_KEY_MAP)
        raw_map = payload.get("key_map")
        if isinstance(raw_map, dict):
            for action, code in raw_map.items():
                if action not in key_map:
                    continue
                if code is None or (isinstance(code, str) and code.strip()):
                    key_map[action] = code.strip() if isinstance(code, str) else None
        return cls(key_map=key_map, auto_replay=AutoReplay.from_payload(payload.get("auto_replay")))


class SettingsStore:
    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Settings:
        if not self.path.exists():
            return Settings()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to parse settings at %s: %s", self.path, exc)
            return Settings()
        return Settings.from_payload(raw)

    def save(self, settings: Settings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".settings.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(settings.as_payload(), handle, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


__all__ = [
    "AutoReplay",
    "DEFAULT_KEY_MAP",
    "SETTINGS_FILENAME",
    "Settings",
    "SettingsStore",
]
