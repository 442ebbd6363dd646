from __future__ import annotations

import logging
from copy import copy, deepcopy
from typing import Any
from urllib.parse import unquote

from rich.console import Console
from rich.logging import RichHandler
from uvicorn.config import LOGGING_CONFIG
from uvicorn.logging import AccessFormatter as UvicornAccessFormatter

__all__ = [
    "LOGGER_NAME",
    "Utf8AccessFormatter",
    "build_uvicorn_log_config",
    "configure_logging",
]

LOGGER_NAME = "spanmark"


def _decode_path(value: str) -> str:
    """Decode each path segment; an encoded slash inside a document id stays encoded."""
    path, sep, query = value.partition("?")
    segments = [
        unquote(segment, encoding="utf-8", errors="replace").replace("/", "%2F")
        for segment in path.split("/")
    ]
    return "/".join(segments) + sep + query


class Utf8AccessFormatter(UvicornAccessFormatter):
    """Access log lines with percent-encoded document ids decoded."""

    def formatMessage(self, record):  # type: ignore[override]
        args = record.args
        if not isinstance(args, tuple) or len(args) != 5 or not isinstance(args[2], str):
            return super().formatMessage(record)
        patched = copy(record)
        patched.args = args[:2] + (_decode_path(args[2]),) + args[3:]
        return super().formatMessage(patched)


def build_uvicorn_log_config(*, debug: bool = False) -> dict[str, Any]:
    """Uvicorn's logging config, plus the ``spanmark`` logger on its default handler."""
    config = deepcopy(LOGGING_CONFIG)
    formatter = config.get("formatters", {}).get("access")
    if isinstance(formatter, dict):
        formatter["()"] = "spanmark.logging_utils.Utf8AccessFormatter"
    config.setdefault("loggers", {})[LOGGER_NAME] = {
        "handlers": ["default"],
        "level": "DEBUG" if debug else "INFO",
        "propagate": False,
    }
    return config


def configure_logging(*, debug: bool = False, console: Console | None = None) -> None:
    """Route log records for non-server commands through rich on stderr."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console or Console(stderr=True), show_path=debug)],
        force=True,
    )
