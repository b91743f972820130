"""
Logging setup for the feed service.

Console output is colored by level, or one JSON object per line when
structured logging is on. File logging adds a daily-rotated full log and a
separate errors.log under the configured directory.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

PLAIN_FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'
ERROR_FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(funcName)s:%(lineno)d | %(message)s'


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record):
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }
        extra = getattr(record, 'extra_data', None)
        if extra is not None:
            entry['extra'] = extra
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ColoredConsoleFormatter(logging.Formatter):
    """``[HH:MM:SS] LEVEL [logger] message`` colored by level."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        line = (
            f"{color}[{self.formatTime(record, '%H:%M:%S')}] {record.levelname:8} "
            f"[{record.name:20}] {record.getMessage()}{self.RESET}"
        )
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def _formatter(structured: bool, plain: logging.Formatter) -> logging.Formatter:
    return StructuredFormatter() if structured else plain


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    enable_file_logging: bool = False,
    enable_structured_logging: bool = False,
) -> None:
    """
    Configure the root logger. Replaces any handlers already installed.

    Args:
        log_level: Console threshold name; unknown names fall back to INFO
        log_dir: Where log files go when file logging is on (default ./logs)
        enable_file_logging: Add lobsters_rss.log (rotated at midnight) and errors.log
        enable_structured_logging: Emit JSON records instead of colored text
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(_formatter(enable_structured_logging, ColoredConsoleFormatter()))
    root.addHandler(console)

    if enable_file_logging:
        directory = Path(log_dir) if log_dir else Path.cwd() / "logs"
        directory.mkdir(parents=True, exist_ok=True)

        full_log = logging.handlers.TimedRotatingFileHandler(
            directory / "lobsters_rss.log", when='midnight', backupCount=7, encoding='utf-8'
        )
        full_log.setLevel(logging.DEBUG)
        full_log.setFormatter(
            _formatter(enable_structured_logging, logging.Formatter(PLAIN_FILE_FORMAT))
        )
        root.addHandler(full_log)

        error_log = logging.FileHandler(directory / "errors.log", encoding='utf-8')
        error_log.setLevel(logging.ERROR)
        error_log.setFormatter(logging.Formatter(ERROR_FILE_FORMAT))
        root.addHandler(error_log)

    # aiohttp's access log is noisy at DEBUG
    logging.getLogger('aiohttp.access').setLevel(max(level, logging.INFO))


class PerformanceTracker:
    """Times a block and logs its completion or failure."""

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None):
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger(__name__)
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.monotonic()
        self.logger.debug(f"Starting: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.monotonic() - self.start_time) * 1000
        if exc_type:
            self.logger.error(f"Failed: {self.operation_name} ({self.duration_ms:.1f}ms) - {exc_val}")
        else:
            self.logger.info(f"Completed: {self.operation_name} ({self.duration_ms:.1f}ms)")
        return False


def log_pipeline_metrics(
    logger: logging.Logger,
    stage: str,
    input_count: int,
    output_count: int,
    duration_ms: float,
    **extra_data
):
    """Log a stage summary, attaching the counts as ``extra_data`` for JSON output."""
    metrics = {
        'stage': stage,
        'input_count': input_count,
        'output_count': output_count,
        'duration_ms': duration_ms,
        'kept_ratio': output_count / input_count if input_count else 0,
        **extra_data
    }
    logger.info(
        f"{stage}: {input_count} -> {output_count} ({duration_ms:.1f}ms)",
        extra={'extra_data': metrics},
    )
