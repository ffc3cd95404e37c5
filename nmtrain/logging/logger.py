# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Structured JSON logger for nmtrain.

Training runs are long and mostly unattended, so everything the trainer says
has to be machine-readable afterwards: progress lines, skipped steps,
checkpoint events, validation perplexity. Every record is one JSON object on
one line.

How this works:
  - Python's standard `logging` module does the routing; JsonFormatter turns
    each LogRecord into a JSON line.
  - stdout always gets a handler, a file handler is added when a path is given.
  - `get_logger` is the only factory. Modules call it once at import time.

A progress record looks like:
  {"ts": "...", "level": "INFO", "module": "nmtrain.training.metrics.core",
   "msg": "Training progress", "step": 100, "ppl": 812.4, ...}
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

# Attributes every LogRecord carries. Anything else on the record came in
# through `extra=` and belongs in the JSON payload.
_RECORD_ATTRS = frozenset({
    "name",
    "msg",
    "args",
    "created",
    "relativeCreated",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "pathname",
    "filename",
    "module",
    "levelno",
    "levelname",
    "processName",
    "process",
    "threadName",
    "thread",
    "message",
    "msecs",
    "taskName",
})


class JsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Mandatory fields:
      ts     — ISO 8601 UTC timestamp
      level  — log level name
      module — the logger name
      msg    — the formatted message string

    Fields passed through `extra` are merged in as-is. When the call carries
    exception info (``exc_info=True``), the formatted traceback is attached
    under ``exception`` so aborted runs leave a diagnostic behind.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "msg": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _resolve_log_level(level_name: str) -> int:
    """Turn a level name string into the corresponding logging constant."""
    upper = level_name.upper()
    if upper not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level '{level_name}'. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    return getattr(logging, upper)


def get_logger(
    name: str,
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Create (or fetch) a structured JSON logger.

    Args:
        name: Logger name, typically __name__ of the calling module.
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL.
        log_file: Optional path to a log file. If provided, logs go to both
                  stdout and the file.

    Returns:
        A configured logging.Logger that outputs structured JSON.
    """
    logger = logging.getLogger(name)
    level = _resolve_log_level(log_level)
    logger.setLevel(level)

    # Handlers are attached once per name; later calls only adjust the level.
    if logger.handlers:
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger

    formatter = JsonFormatter()

    stdout_handler = logging.StreamHandler(stream=sys.stdout)
    stdout_handler.setLevel(level)
    stdout_handler.setFormatter(formatter)
    logger.addHandler(stdout_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def configure_package_loggers(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
    prefix: str = "nmtrain",
) -> None:
    """
    Re-level every logger already created under `prefix`.

    Module loggers are created at import time with the default level, before
    any config has been read. Bootstrap calls this once the global config is
    known so that `log_level` and `log_file` apply to the whole package.
    """
    for name in list(logging.Logger.manager.loggerDict):
        if name != prefix and not name.startswith(prefix + "."):
            continue
        logger = get_logger(name, log_level=log_level)
        if log_file is None:
            continue
        target = str(log_file.resolve())
        has_file = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == target
            for h in logger.handlers
        )
        if not has_file:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(target, encoding="utf-8")
            file_handler.setLevel(_resolve_log_level(log_level))
            file_handler.setFormatter(JsonFormatter())
            logger.addHandler(file_handler)
