"""
Logging setup for URLBar LLM.

Records carry the id of the turn that produced them, so the interleaved
output of several conversations (and of the fetch and render tasks a turn
spawns) can be followed per turn. Console output is human-readable; the
rotating file holds one JSON object per line.
"""

import copy
import json
import logging
import logging.handlers
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

# Set for the duration of a turn; tasks created inside the turn inherit it
current_turn: ContextVar[Optional[str]] = ContextVar("current_turn", default=None)

SENSITIVE_KEYS = ('password', 'token', 'secret', 'authorization', 'api_key', 'api-key', 'cookie')
FILTERED = "***FILTERED***"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(turn_id)s | %(name)s | %(message)s"
PLAIN_FILE_FORMAT = "%(asctime)s | %(levelname)s | %(turn_id)s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


@contextmanager
def bind_turn(turn_id: str) -> Iterator[None]:
    """Tag every record logged inside the block with ``turn_id``."""
    reset_token = current_turn.set(turn_id)
    try:
        yield
    finally:
        current_turn.reset(reset_token)


class TurnContextFilter(logging.Filter):
    """Adds ``turn_id`` to each record ("-" outside a turn)."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "turn_id"):
            record.turn_id = current_turn.get() or "-"
        return True


class ColoredFormatter(logging.Formatter):
    """Colors the level name for terminals."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        # Records are shared between handlers; color a copy only
        record = copy.copy(record)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{record.levelname:8s}{self.RESET}"
        return super().format(record)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with ``extra_fields`` merged in."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        turn_id = getattr(record, "turn_id", None)
        if turn_id and turn_id != "-":
            log_data["turn_id"] = turn_id

        # Structured fields passed as extra={"extra_fields": {...}}
        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            log_data.update(filter_sensitive_data(extra_fields))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(TurnContextFilter())
    return handler


def _file_handler(config: Any, level: int) -> logging.Handler:
    log_path = Path(config.log_file_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        filename=log_path,
        maxBytes=config.log_file_max_bytes,
        backupCount=config.log_file_backup_count,
        encoding='utf-8'
    )
    handler.setLevel(level)
    if config.log_json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FILE_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(TurnContextFilter())
    return handler


def setup_logging(config: Any) -> None:
    """
    Configure the root logger from settings.

    Args:
        config: Settings object with the ``log_*`` options
    """
    root_logger = logging.getLogger()
    root_logger.handlers.clear()

    log_level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    if config.log_console_enabled:
        root_logger.addHandler(_console_handler(log_level))
    if config.log_file_enabled:
        root_logger.addHandler(_file_handler(config, log_level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(
        f"Logging initialized: level={config.log_level.upper()}, "
        f"console={config.log_console_enabled}, "
        f"file={config.log_file_enabled}"
    )


def filter_sensitive_data(data: Any, sensitive_keys: Optional[tuple] = None) -> Any:
    """
    Mask credential-like values in headers and payloads before they are logged.

    Matching is by substring of the lower-cased key, so ``X-Api-Key`` and
    ``search_api_key`` are both masked.
    """
    keys = sensitive_keys or SENSITIVE_KEYS

    if isinstance(data, dict):
        return {
            key: FILTERED if any(sensitive in str(key).lower() for sensitive in keys)
            else filter_sensitive_data(value, keys)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [filter_sensitive_data(item, keys) for item in data]
    return data


def truncate_large_data(data: str, max_length: int = 5000) -> str:
    if len(data) <= max_length:
        return data
    return data[:max_length] + f"... (truncated, total length: {len(data)})"
