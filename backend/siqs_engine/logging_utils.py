from __future__ import annotations

import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings


LOGGER_NAME = "siqs_engine"
LOG_FILE_NAME = "siqs.log.jsonl"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _parse_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _is_writable(log_dir: Path) -> bool:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        marker = log_dir / ".writetest"
        marker.touch(exist_ok=True)
        marker.unlink(missing_ok=True)
    except OSError:
        return False
    return True


def _resolve_log_dir(configured_out_dir: str) -> Path | None:
    for log_dir in (
        Path(configured_out_dir) / "logs",
        Path(gettempdir()) / LOGGER_NAME / "logs",
    ):
        if _is_writable(log_dir):
            return log_dir
    return None


def json_formatter() -> logging.Formatter:
    # Records come out as {"ts", "level", "logger", "message", "event", ...fields}.
    return jsonlogger.JsonFormatter(
        LOG_FORMAT,
        rename_fields={"asctime": "ts", "levelname": "level", "name": "logger"},
        json_default=str,
    )


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers (common with reloaders)
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False
    formatter = json_formatter()

    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    logger.addHandler(stream)

    log_dir = _resolve_log_dir(settings.out_dir)
    if log_dir is not None:
        try:
            file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        except OSError:
            file_handler = None
        if file_handler is not None:
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def log_event(event: str, *, level: int = logging.INFO, **fields: Any) -> None:
    """Emit one structured record; `event` is both the message and a field.

    Fields set to None are left out so records only carry what is known.
    """
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    if not LOGGER.isEnabledFor(level):
        return
    payload = {key: value for key, value in fields.items() if value is not None}
    LOGGER.log(level, event, extra={"event": event, **payload})
