"""Logging setup shared by the planner and the ``waluigi`` command.

Records use a ``key=value`` line format so planning runs can be grepped
next to the ``jobs.jsonl`` they produce.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

LOGGER_NAME = "waluigi"
LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR")

_HANDLER_ATTR = "_waluigi_handler_id"
_STREAM_ID = "stream"
_FILE_ID = "file"
_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"


def resolve_level(level: int | str | None = None) -> int:
    """Turn a level number or name into a logging level.

    ``None`` falls back to ``WALUIGI_LOG_LEVEL`` and then to WARNING. Unknown
    names fall back the same way instead of failing the command.
    """
    if isinstance(level, int):
        return level
    name = (level or os.environ.get("WALUIGI_LOG_LEVEL", "")).strip().upper()
    if name in LEVEL_NAMES:
        return getattr(logging, name)
    return logging.WARNING


def _find(root: logging.Logger, handler_id: str) -> logging.Handler | None:
    for handler in root.handlers:
        if getattr(handler, _HANDLER_ATTR, None) == handler_id:
            return handler
    return None


def _attach(root: logging.Logger, handler: logging.Handler, handler_id: str) -> None:
    setattr(handler, _HANDLER_ATTR, handler_id)
    handler.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(handler)


def _detach(root: logging.Logger, handler: logging.Handler | None) -> None:
    if handler is not None:
        root.removeHandler(handler)
        handler.close()


def _file_target(log_file: str | Path | None) -> Path | None:
    raw = str(log_file) if log_file else os.environ.get("WALUIGI_LOG_FILE", "")
    if not raw.strip():
        return None
    return Path(raw.strip()).expanduser().resolve()


def setup_logging(
    *, level: int | str | None = None, log_file: str | Path | None = None
) -> None:
    """Configure the ``waluigi`` logger tree.

    The stream handler logs at *level* (see :func:`resolve_level`). A file
    handler is attached when *log_file* or ``WALUIGI_LOG_FILE`` names a path;
    it always records at least INFO so the per-run planning summary lands on
    disk. Repeated calls reconfigure the same handlers.
    """
    stream_level = resolve_level(level)
    root = logging.getLogger(LOGGER_NAME)

    stream = _find(root, _STREAM_ID)
    if stream is None:
        stream = logging.StreamHandler()
        _attach(root, stream, _STREAM_ID)
    stream.setLevel(stream_level)

    target = _file_target(log_file)
    current = _find(root, _FILE_ID)
    effective = stream_level
    if target is None:
        _detach(root, current)
    else:
        if not (
            isinstance(current, logging.FileHandler)
            and Path(current.baseFilename).resolve() == target
        ):
            _detach(root, current)
            target.parent.mkdir(parents=True, exist_ok=True)
            current = logging.FileHandler(target, encoding="utf-8")
            _attach(root, current, _FILE_ID)
        file_level = min(stream_level, logging.INFO)
        current.setLevel(file_level)
        effective = min(effective, file_level)
    root.setLevel(effective)
