from __future__ import annotations

import logging
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter

from .library import MEDIA_URL_PREFIX

LOG_FORMAT = "%(levelname)s [%(name)s] %(message)s"
MEDIA_TOKEN_DISPLAY_LENGTH = 8


def display_path(full_path: str) -> str:
    """Render a request target for the access log.

    Track paths arrive percent-encoded, so they are decoded for reading.
    Media tokens grant playback, so only their prefix is written.
    """
    path, separator, query = full_path.partition("?")
    path = unquote(path, errors="replace")
    if path.startswith(MEDIA_URL_PREFIX):
        token = path[len(MEDIA_URL_PREFIX) :]
        if len(token) > MEDIA_TOKEN_DISPLAY_LENGTH:
            path = f"{MEDIA_URL_PREFIX}{token[:MEDIA_TOKEN_DISPLAY_LENGTH]}…"
    return f"{path}{separator}{query}"


class AccessLogFormatter(AccessFormatter):
    """Access lines with readable library paths and shortened media tokens."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        client_addr, method, full_path, http_version, status_code = record.args  # type: ignore[misc]
        shown = copy(record)
        shown.args = (client_addr, method, display_path(full_path), http_version, status_code)
        return super().formatMessage(shown)


def build_uvicorn_log_config(debug: bool = False) -> dict[str, Any]:
    """Return uvicorn's logging config with the access formatter above and the app's loggers."""
    config = deepcopy(LOGGING_CONFIG)
    config["formatters"]["access"]["()"] = "shadowing.logging_utils.AccessLogFormatter"
    config.setdefault("loggers", {})["shadowing"] = {
        "handlers": ["default"],
        "level": "DEBUG" if debug else "INFO",
        "propagate": False,
    }
    return config


def configure_logging(debug: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)


__all__ = [
    "AccessLogFormatter",
    "build_uvicorn_log_config",
    "configure_logging",
    "display_path",
]
