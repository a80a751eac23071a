from __future__ import annotations

import logging
from pathlib import Path
from tempfile import gettempdir
from typing import Any

from pythonjsonlogger import jsonlogger

from .settings import settings

LOGGER_NAME = "traffic_api"
LOG_FILE_NAME = "api.log.jsonl"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Attributes LogRecord already owns; passing them via ``extra`` raises KeyError.
_RESERVED_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def _parse_level(name: str) -> int:
    level = logging.getLevelName(str(name or "").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _resolve_log_dir(configured_out_dir: str) -> Path | None:
    """First writable candidate among OUT_DIR/logs, ./out/logs and the temp dir."""
    candidates = (
        Path(configured_out_dir) / "logs",
        Path.cwd() / "out" / "logs",
        Path(gettempdir()) / "traffic-api" / "logs",
    )
    for log_dir in candidates:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            probe = log_dir / ".writetest"
            probe.touch(exist_ok=True)
            probe.unlink(missing_ok=True)
        except OSError:
            continue
        return log_dir
    return None


def _formatter() -> jsonlogger.JsonFormatter:
    return jsonlogger.JsonFormatter(LOG_FORMAT, rename_fields={"asctime": "ts", "levelname": "level"})


def get_logger() -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    # Reloaders import the app twice; configure once.
    if getattr(logger, "_configured", False):
        return logger

    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False

    stream = logging.StreamHandler()
    stream.setFormatter(_formatter())
    logger.addHandler(stream)

    log_dir = _resolve_log_dir(settings.out_dir)
    if log_dir is not None:
        try:
            file_handler = logging.FileHandler(log_dir / LOG_FILE_NAME, encoding="utf-8")
        except OSError:
            file_handler = None
        if file_handler is not None:
            file_handler.setFormatter(_formatter())
            logger.addHandler(file_handler)

    logger._configured = True  # type: ignore[attr-defined]
    return logger


LOGGER: logging.Logger | None = None


def _logger() -> logging.Logger:
    global LOGGER
    if LOGGER is None:
        LOGGER = get_logger()
    return LOGGER


def _extra(event: str, fields: dict[str, Any]) -> dict[str, Any]:
    extra: dict[str, Any] = {"event": event}
    for key, value in fields.items():
        extra[f"field_{key}" if key in _RESERVED_KEYS else key] = value
    return extra


def log_event(event: str, **fields: Any) -> None:
    """One structured INFO line: ``message`` and ``event`` both carry the event name."""
    _logger().info(event, extra=_extra(event, fields))


def log_warning(event: str, **fields: Any) -> None:
    _logger().warning(event, extra=_extra(event, fields))


def log_debug(event: str, **fields: Any) -> None:
    logger = _logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(event, extra=_extra(event, fields))
