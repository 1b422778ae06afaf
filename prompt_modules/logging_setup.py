"""
JSONL logging bootstrap.
Installs a single JSONL sink on the root logger.
"""

import json
import logging
import os
from datetime import UTC
from datetime import datetime
from pathlib import Path

DEFAULT_PATH = "./prompt-modules.log.jsonl"
DEFAULT_LEVEL = "INFO"

_RESERVED_ATTRS = frozenset(
    {
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "name",
    }
)


class JsonlHandler(logging.Handler):
    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def format_record(self, record: logging.LogRecord) -> dict:
        payload = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds"),
            "lvl": record.levelname,
            "schema": {"name": "prompt_modules.log", "ver": "1.0.0"},
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = repr(record.exc_info[1])
        # Fields passed through extra=
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                payload.setdefault(key, value)
        return payload

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.format_record(record), ensure_ascii=False, default=str)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except Exception:
            self.handleError(record)


def init_json_logging(path: str | Path | None = None, level: str | None = None) -> JsonlHandler:
    path = path or os.environ.get("PROMPT_MODULES_LOG_PATH", DEFAULT_PATH)
    level = (level or os.environ.get("PROMPT_MODULES_LOG_LEVEL", DEFAULT_LEVEL)).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    # Remove existing handlers of the same kind to avoid duplicates
    for h in list(root.handlers):
        if isinstance(h, JsonlHandler):
            root.removeHandler(h)
            h.close()
    handler = JsonlHandler(path)
    root.addHandler(handler)
    return handler
