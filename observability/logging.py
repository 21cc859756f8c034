from __future__ import annotations
import logging
import sys
import json
import time
import functools
from typing import Optional, Union
from datetime import datetime, timezone
from pathlib import Path

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Loggers of libraries that are noisy at INFO
_QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "fastapi", "markdown_it")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with ``extra=`` fields merged at the top level."""

    def __init__(self, service_name: str = "docatlas"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        entry.update((k, v) for k, v in vars(record).items() if k not in _RESERVED_ATTRS)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class ColoredFormatter(logging.Formatter):
    """Human-readable console lines, colored by level when attached to a terminal."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = True):
        super().__init__(fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                         datefmt="%Y-%m-%d %H:%M:%S")
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.COLORS.get(record.levelname)
        if self.use_colors and color:
            return f"{color}{line}{self.RESET}"
        return line


def setup_logging(
    level: str = "INFO",
    service_name: str = "docatlas",
    log_file: Optional[Union[str, Path]] = None,
    use_json: bool = False,
    use_colors: bool = True
) -> None:
    """Configure the root logger for the indexer CLI, MCP server or HTTP API.

    Console output always goes to stderr: the MCP server speaks JSON-RPC on
    stdout and a stray log line would corrupt the channel.

    Args:
        level: Log level name; unknown names fall back to INFO
        service_name: Value of the ``service`` field in JSON records
        log_file: Optional path that additionally receives JSON records
        use_json: Emit JSON on the console instead of text
        use_colors: Color console text when stderr is a terminal
    """
    numeric_level = getattr(logging, str(level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console = logging.StreamHandler(sys.stderr)
    if use_json:
        console.setFormatter(JSONFormatter(service_name))
    else:
        console.setFormatter(ColoredFormatter(use_colors and sys.stderr.isatty()))
    root_logger.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(JSONFormatter(service_name))
        root_logger.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def log_performance(logger_name: Optional[str] = None, threshold_ms: float = 1000.0):
    """Decorator logging the duration of a call.

    Calls slower than ``threshold_ms`` are logged as warnings, others at
    DEBUG. Failures are logged with their duration and re-raised.
    """
    def decorator(func):
        logger = logging.getLogger(logger_name or func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"{func.__name__} failed after {(time.time() - start_time) * 1000:.0f}ms: {e}",
                    extra={"function_name": func.__name__, "error_type": type(e).__name__},
                )
                raise

            duration_ms = (time.time() - start_time) * 1000
            extra = {"function_name": func.__name__, "duration_ms": round(duration_ms, 1)}
            if duration_ms > threshold_ms:
                logger.warning(f"{func.__name__} took {duration_ms:.0f}ms (threshold {threshold_ms:.0f}ms)",
                               extra=extra)
            else:
                logger.debug(f"{func.__name__} took {duration_ms:.0f}ms", extra=extra)
            return result

        return wrapper
    return decorator
