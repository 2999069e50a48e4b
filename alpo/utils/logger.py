"""
Centralized logging for the chat core.

`LoggerManager` hands out cached, preconfigured `logging.Logger` instances
with a console handler (colored when `colorlog` is installed) and a file
handler (plain text or JSON). `JsonLogFormatter` renders structured records,
and `with_context` binds fields such as `user_id` to every line a component
emits.
"""

import os
import sys
import json
import logging
from typing import Any, Dict, Optional

try:
    from colorlog import ColoredFormatter

    COLORLOG_AVAILABLE = True
except ImportError:
    COLORLOG_AVAILABLE = False


class LoggerManager:
    """
    Factory for named loggers shared across the chat core.

    The first call for a name configures the logger; later calls return the
    same instance so handlers are never attached twice. Propagation is
    disabled, so the host application's root logger does not print the same
    record again.

    Defaults can be changed once at startup with `configure()`, typically from
    `AlpoConfig.log_level` / `AlpoConfig.log_dir`.
    """

    _loggers: Dict[str, logging.Logger] = {}
    _default_log_dir = os.getenv("ALPO_LOG_DIR", "logs")
    _default_level = "INFO"
    _use_json_files = True

    @classmethod
    def configure(
        cls,
        level: Optional[str] = None,
        log_dir: Optional[str] = None,
        use_json: Optional[bool] = None,
    ) -> None:
        """
        Set defaults for loggers created after this call and re-level the
        existing ones.

        Args:
            level (Optional[str]): Threshold such as "DEBUG" or "INFO".
            log_dir (Optional[str]): Directory for per-logger log files.
            use_json (Optional[bool]): Write file logs as JSON lines.
        """
        if level:
            cls._default_level = level.upper()
            for logger in cls._loggers.values():
                logger.setLevel(cls._default_level)
                for handler in logger.handlers:
                    handler.setLevel(cls._default_level)
        if log_dir:
            cls._default_log_dir = log_dir
        if use_json is not None:
            cls._use_json_files = use_json

    @classmethod
    def get_logger(
        cls,
        name: str,
        log_file: Optional[str] = None,
        level: Optional[str] = None,
        use_json: Optional[bool] = None,
        use_color: bool = True,
    ) -> logging.Logger:
        """
        Retrieve or create a logger configured for console and file output.

        Args:
            name (str): Logger name, usually the module's `__name__`.
            log_file (Optional[str]): Explicit log file path. Defaults to
                `<log_dir>/alpo.log`, shared by every module.
            level (Optional[str]): Threshold; falls back to the configured
                default.
            use_json (Optional[bool]): JSON file output; falls back to the
                configured default.
            use_color (bool): Colored console output when colorlog is present.

        Returns:
            logging.Logger: A configured logger instance.
        """
        if name in cls._loggers:
            return cls._loggers[name]

        level = (level or cls._default_level).upper()
        use_json = cls._use_json_files if use_json is None else use_json

        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.propagate = False

        if not log_file:
            log_file = os.path.join(cls._default_log_dir, "alpo.log")
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        logger.addHandler(cls._setup_file_handler(log_file, level, use_json))
        logger.addHandler(cls._setup_console_handler(level, use_color))

        cls._loggers[name] = logger
        return logger

    @staticmethod
    def _setup_file_handler(
        filepath: str, level: str, use_json: bool
    ) -> logging.Handler:
        handler = logging.FileHandler(filepath, encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(LoggerManager._get_formatter(use_json=use_json, color=False))
        return handler

    @staticmethod
    def _setup_console_handler(level: str, use_color: bool) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(LoggerManager._get_formatter(use_json=False, color=use_color))
        return handler

    @staticmethod
    def _get_formatter(
        use_json: bool = False, color: bool = False
    ) -> logging.Formatter:
        """
        Build the formatter for a handler.

        Args:
            use_json (bool): Return a `JsonLogFormatter`.
            color (bool): Return a colored formatter when colorlog is present.

        Returns:
            logging.Formatter: A formatter instance.
        """
        if use_json:
            return JsonLogFormatter()

        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        datefmt = "%Y-%m-%d %H:%M:%S"

        if color and COLORLOG_AVAILABLE:
            return ColoredFormatter(
                fmt="%(log_color)s" + fmt,
                datefmt=datefmt,
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "bold_red",
                },
            )
        return logging.Formatter(fmt, datefmt)


class JsonLogFormatter(logging.Formatter):
    """
    Render a record as one JSON object per line.

    Example Output:
        {
            "timestamp": "2026-03-02 09:14:55",
            "level": "INFO",
            "logger": "alpo.chat.manager",
            "message": "chat.send.ok",
            "user_id": "u-1",
            "session_id": "s1"
        }

    Fields passed as `extra={"extra_data": {...}}` are merged into the object.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_record = {
            "timestamp": self.formatTime(record, "%Y-%m-%d %H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra_data"):
            log_record.update(record.extra_data)
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Adapter that merges bound context into `extra_data` of each record."""

    def process(self, msg, kwargs):
        kwargs.setdefault("extra", {})
        kwargs["extra"].setdefault("extra_data", {})
        kwargs["extra"]["extra_data"].update(self.extra)
        return msg, kwargs


def with_context(logger: logging.Logger, **ctx: Any) -> ContextLogger:
    """
    Return a LoggerAdapter that adds context fields (e.g. user_id) to every
    log line.
    """
    return ContextLogger(logger, ctx or {})
