"""
Logging and Error Handling Module for LiTS Preprocess.

This module provides structured logging and the error taxonomy used by
the volume preprocessing core.

Logging features:
- Configurable log levels (debug, info, warning, error, critical)
- File and console logging
- Structured log messages
- Operation timing

Error handling strategy:
- Fail-fast: invalid configuration and invalid buffers raise immediately
- Errors are never coerced into NaN/Inf output or silently skipped
- Both execution paths validate through the same code, so they fail
  identically on the same input

Error classes:
- ConfigurationError: invalid window, kernel size, axis spec or path
- PreconditionViolation: caller bug (missing buffer, bad dimensions)
"""

from __future__ import annotations

import logging
import sys
import time
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    def to_logging_level(self) -> int:
        """Convert to logging module level."""
        mapping = {
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.INFO: logging.INFO,
            LogLevel.WARNING: logging.WARNING,
            LogLevel.ERROR: logging.ERROR,
            LogLevel.CRITICAL: logging.CRITICAL,
        }
        return mapping[self]


class ProcessingStage(str, Enum):
    """Processing stages a scan goes through."""

    CONFIGURATION = "configuration"
    VALIDATION = "validation"
    LOADING = "loading"
    NORMALIZATION = "normalization"
    REORIENTATION = "reorientation"
    FILTERING = "filtering"
    SAVING = "saving"
    UNKNOWN = "unknown"


# Custom exception classes


class LiTSPreprocessError(Exception):
    """Base exception for LiTS Preprocess."""

    def __init__(
        self,
        message: str,
        stage: ProcessingStage = ProcessingStage.UNKNOWN,
        cause: Optional[Exception] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.cause = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage != ProcessingStage.UNKNOWN:
            parts.append(f"Stage: {self.stage.value}")
        if self.cause:
            parts.append(f"Caused by: {type(self.cause).__name__}: {self.cause}")
        return " | ".join(parts)


class ConfigurationError(LiTSPreprocessError):
    """Invalid configuration: window, kernel size, axis spec or execution path."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(
            message,
            stage=ProcessingStage.CONFIGURATION,
            cause=cause,
        )


class PreconditionViolation(LiTSPreprocessError):
    """
    A caller handed the core data it cannot operate on.

    Signals a bug on the calling side (missing buffer, dimensions that do
    not match the array, wrong element type). Never retried.
    """

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(
            message,
            stage=ProcessingStage.VALIDATION,
            cause=cause,
        )


class ProcessingLogger:
    """
    Structured logger for scan processing operations.

    Example:
        >>> logger = ProcessingLogger("lits_preprocess")
        >>> logger.log_scan_start("volume-0", path="accelerated")
        >>> logger.info("Reoriented", permute=True, flip=False)
    """

    def __init__(
        self,
        name: str = "lits_preprocess",
        level: LogLevel = LogLevel.INFO,
    ) -> None:
        """
        Initialize the processing logger.

        Args:
            name: Logger name.
            level: Default log level.
        """
        self.logger = logging.getLogger(name)
        self._level = level

    def set_level(self, level: Union[LogLevel, str]) -> None:
        """Set log level."""
        if isinstance(level, str):
            level = LogLevel(level)
        self._level = level
        self.logger.setLevel(level.to_logging_level())

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message."""
        self.logger.debug(self._format_message(message, **kwargs))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        self.logger.info(self._format_message(message, **kwargs))

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        self.logger.warning(self._format_message(message, **kwargs))

    def error(self, message: str, **kwargs: Any) -> None:
        """Log error message."""
        self.logger.error(self._format_message(message, **kwargs))

    def _format_message(self, message: str, **kwargs: Any) -> str:
        """Format log message with additional context."""
        if not kwargs:
            return message

        context_parts = [f"{k}={v}" for k, v in kwargs.items()]
        return f"{message} | {' '.join(context_parts)}"

    def log_scan_start(self, scan_name: str, **kwargs: Any) -> None:
        """Log start of a scan operation."""
        self.debug(f"Processing scan: {scan_name}", **kwargs)

    def log_scan_complete(self, scan_name: str, duration: float) -> None:
        """Log completion of a scan operation."""
        self.info(f"Processed scan: {scan_name}", duration=f"{duration:.2f}s")

    def log_operation(self, operation: str, stage: ProcessingStage, **kwargs: Any) -> None:
        """Log a single operation applied to a buffer."""
        self.debug(f"Applying {operation}", stage=stage.value, **kwargs)


def setup_logging(
    level: Union[LogLevel, str] = LogLevel.INFO,
    log_file: Optional[Path] = None,
    log_to_console: bool = True,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Log level (string or LogLevel enum).
        log_file: Optional path to log file.
        log_to_console: Whether to log to console.
        log_format: Custom log format string.
        date_format: Custom date format string.

    Returns:
        Configured logger.
    """
    if isinstance(level, str):
        level = LogLevel(level)

    log_level = level.to_logging_level()

    if log_format is None:
        log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    if date_format is None:
        date_format = "%Y-%m-%d %H:%M:%S"

    formatter = logging.Formatter(log_format, datefmt=date_format)

    root_logger = logging.getLogger("lits_preprocess")
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    if log_to_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    return root_logger


@contextmanager
def timed_operation(operation_name: str, logger: Optional[logging.Logger] = None):
    """
    Context manager for timing operations.

    Args:
        operation_name: Name of the operation for logging.
        logger: Optional logger (uses default if not provided).

    Yields:
        Dict that will contain timing information.

    Example:
        >>> with timed_operation("median_filter") as timing:
        ...     processor.filter_median(scan, 3)
        >>> print(f"Took {timing['duration']:.2f}s")
    """
    if logger is None:
        logger = logging.getLogger("lits_preprocess")

    timing: Dict[str, Any] = {
        "operation": operation_name,
        "start_time": time.time(),
        "duration": 0.0,
    }

    logger.debug(f"Starting: {operation_name}")

    try:
        yield timing
    finally:
        timing["duration"] = time.time() - timing["start_time"]
        logger.debug(f"Completed: {operation_name} ({timing['duration']:.2f}s)")


def get_logger(name: str = "lits_preprocess") -> ProcessingLogger:
    """
    Get a ProcessingLogger instance.

    Args:
        name: Logger name.

    Returns:
        ProcessingLogger instance.
    """
    return ProcessingLogger(name)
