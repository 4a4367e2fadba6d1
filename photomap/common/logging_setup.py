from __future__ import annotations

"""
JSON logging shared by the API server and the capture CLI.

Each record is one line:
  {"ts": "2024-05-01T10:00:00.123Z", "level": "INFO", "svc": "photomap-server",
   "logger": "photomap.server.app", "msg": "Photo stored", "id": "...", "backend": "local"}

Fields passed as log.info(..., extra={"extra": {...}}) are lifted to the top
level next to the fixed keys, which they cannot overwrite.
"""

import json
import logging
import os
import sys
from typing import Optional

from photomap.common.utils import iso_ms


_HANDLER_FLAG = "_photomap_handler"
DEFAULT_SERVICE = "photomap"


class JsonFormatter(logging.Formatter):
    def __init__(self, service: str = DEFAULT_SERVICE):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "ts": iso_ms(record.created),
            "level": record.levelname,
            "svc": self.service,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "extra", None)
        if isinstance(fields, dict):
            for k, v in fields.items():
                payload.setdefault(str(k), v)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class StdStreamHandler(logging.StreamHandler):
    """
    Writes to sys.stdout or sys.stderr as they are at emit time, so a CLI
    whose stdout carries JSON output can keep its logs on stderr and
    redirections made after setup are still honoured.
    """

    def __init__(self, stream_name: str = "stdout"):
        logging.Handler.__init__(self)
        if stream_name not in ("stdout", "stderr"):
            raise ValueError(f"stream must be 'stdout' or 'stderr', got {stream_name!r}")
        self.stream_name = stream_name

    @property
    def stream(self):  # type: ignore[override]
        return getattr(sys, self.stream_name)


def setup_logging(
    level: Optional[str] = None,
    *,
    service: Optional[str] = None,
    stream: Optional[str] = None,
) -> logging.Handler:
    """
    Install the JSON handler on the root logger, or retune the one already there.

    First call: level from `level`, else env LOG_LEVEL, else INFO; writes to
    `stream` (default stdout). Later calls only change what they are given,
    so module-level get_logger() calls never undo an entrypoint's choices.
    """
    root = logging.getLogger()
    handler = _installed_handler(root)
    if handler is None or (stream and handler.stream_name != stream):
        if handler is None:
            level = level or os.environ.get("LOG_LEVEL") or "INFO"
            root.handlers.clear()
        else:
            service = service or handler.formatter.service  # type: ignore[union-attr]
            root.removeHandler(handler)
        handler = StdStreamHandler(stream or "stdout")
        handler.setFormatter(JsonFormatter(service or DEFAULT_SERVICE))
        setattr(handler, _HANDLER_FLAG, True)
        root.addHandler(handler)
    elif service:
        handler.formatter.service = service  # type: ignore[union-attr]

    if level:
        root.setLevel(_level_from_name(level))
    return handler


def _installed_handler(root: logging.Logger) -> Optional[StdStreamHandler]:
    return next((h for h in root.handlers if getattr(h, _HANDLER_FLAG, False)), None)


def _level_from_name(name: str) -> int:
    name = str(name).strip()
    if name.isdigit():
        return int(name)
    lvl = logging.getLevelName(name.upper())
    return lvl if isinstance(lvl, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Get a module logger; ensures root is configured."""
    setup_logging()
    return logging.getLogger(name)
