from __future__ import annotations

import json
import logging
import os
import sys
import time
from typing import Optional


class JsonFormatter(logging.Formatter):
    """
    Minimal JSON log formatter:
      { "t": 169, "lvl": "INFO", "name": "mod", "msg": "text", "tile": "y-x", "extra": {...} }
    """

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        tile = getattr(record, "tile", None)
        if tile:
            payload["tile"] = str(tile)
        # Include extra dict if present
        if hasattr(record, "extra") and isinstance(record.extra, dict):  # type: ignore[attr-defined]
            payload["extra"] = record.extra  # type: ignore[attr-defined]
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


class HumanFormatter(logging.Formatter):
    """Plain text with a [y-x] prefix when the record carries tile context."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        tile = getattr(record, "tile", None)
        if tile:
            return f"[{tile}] {message}"
        return message


def setup_logging(level: Optional[str] = None, *, json_console: bool = True) -> None:
    """
    Configure root logger once.
    Level precedence:
      - explicit `level` arg
      - env LOG_LEVEL (e.g., DEBUG/INFO/WARN/ERROR)
      - default INFO
    """
    root = logging.getLogger()
    if getattr(root, "_tiles_configured", False):  # idempotent
        return

    lvl_name = (level or os.environ.get("LOG_LEVEL") or "INFO").upper()
    lvl = getattr(logging, lvl_name, None)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    if json_console:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(HumanFormatter("%(levelname)s %(name)s: %(message)s"))

    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(lvl)
    # requests/urllib3 log every connection at DEBUG
    logging.getLogger("urllib3").setLevel(max(lvl, logging.WARNING))
    root._tiles_configured = True  # type: ignore[attr-defined]


def get_logger(name: str) -> logging.Logger:
    """Module logger; configuration is left to the entry point."""
    return logging.getLogger(name)
