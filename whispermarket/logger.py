"""
Whisper Market Logging
======================

Thread-safe logging setup for the client. Integrates the standard `logging`
library with `rich` so console output highlights program ids, transaction ids
and endpoints, while every handler strips terminal control sequences.

Usage:
    >>> from whispermarket.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("Registry refreshed")
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_LEVEL,
    LOG_FORMAT,
    LOG_DATE_FORMAT,
    LOG_FILE,
    LOG_MAX_FILE_SIZE,
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
)


class LogManager:
    """
    Manages logging configuration via the Singleton pattern.

    The client is a library, so file output is only enabled when ``LOG_FILE``
    names a path. Console output goes through a ``RichHandler``.
    """

    _instance: Optional["LogManager"] = None
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._configured = False
        self._initialized = True

    # A named specifier missing its leading '%'
    _BARE_SPECIFIER_RE = re.compile(r"(?<!%)\([a-zA-Z_][a-zA-Z0-9_]*\)[a-zA-Z]")

    @classmethod
    def validate_log_format(cls, log_format: str) -> str:
        """Returns ``log_format``, or the default `LOG_FORMAT` when it is malformed."""
        default = str(LOG_FORMAT.default())
        log_format = str(log_format or default)
        try:
            if cls._BARE_SPECIFIER_RE.search(log_format):
                raise ValueError("specifier without '%'")
            logging.Formatter(fmt=log_format).format(logging.makeLogRecord({"msg": "test"}))
        except (ValueError, KeyError, TypeError) as e:
            print(f"whispermarket.logger - Invalid LOG_FORMAT ({e}). Using default.", file=sys.stderr)
            return default
        return log_format

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
    ) -> None:
        """
        Configures the ``whispermarket`` logger with console and file handlers.

        Args:
            log_level: Logging level (DEBUG, INFO, etc.). Defaults to ``LOG_LEVEL``.
            log_file: Rotating log file path. Defaults to ``LOG_FILE``; empty disables it.
            console_output: Enable console logging.
        """
        with self._lock:
            if self._configured:
                return

            level_str = log_level or str(LOG_LEVEL)
            numeric_level = getattr(logging, level_str.upper(), logging.INFO)

            package_logger = logging.getLogger("whispermarket")
            package_logger.setLevel(numeric_level)
            package_logger.handlers.clear()

            for lib in ("httpx", "httpcore"):
                logging.getLogger(lib).setLevel(logging.WARNING)

            log_format = self.validate_log_format(LOG_FORMAT)
            date_format = str(LOG_DATE_FORMAT or LOG_DATE_FORMAT.default())

            formatter = TerminalSafeFormatter(fmt=log_format, datefmt=date_format + " UTC")
            formatter.converter = time.gmtime

            if console_output:
                if LOG_CONSOLE_HIGHLIGHTING:
                    theme = Theme(
                        {
                            "whisper.level_critical": "bold red reverse",
                            "whisper.level_debug":    "bold dim",
                            "whisper.level_error":    "bold red",
                            "whisper.level_info":     "bold green",
                            "whisper.level_warning":  "bold yellow",
                            "whisper.logger_name":    "magenta",
                            "whisper.network_error":  "bold red",
                            "whisper.program":        "bold cyan",
                            "whisper.tag":            "bold magenta",
                            "whisper.timestamp":      "bold cyan",
                            "whisper.tx_id":          "bold white",
                            "whisper.url":            "cyan",
                        }
                    )
                    console = Console(theme=theme, highlight=False, stderr=True)
                    handler = RichHandler(
                        console=console,
                        highlighter=WhisperLogHighlighter(),
                        keywords=[],
                        rich_tracebacks=True,
                        show_path=False,
                        show_time=False,
                        show_level=False,
                        markup=False,
                    )
                else:
                    handler = logging.StreamHandler(sys.stderr)
                handler.setLevel(numeric_level)
                handler.setFormatter(formatter)
                package_logger.addHandler(handler)

            log_file_path = log_file or (Path(str(LOG_FILE)) if str(LOG_FILE) else None)
            if log_file_path is not None:
                log_file_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.handlers.RotatingFileHandler(
                    filename=str(log_file_path),
                    maxBytes=LOG_MAX_FILE_SIZE,
                    backupCount=LOG_BACKUP_COUNT,
                    encoding="utf-8",
                )
                file_handler.setLevel(numeric_level)
                file_handler.setFormatter(formatter)
                package_logger.addHandler(file_handler)

            self._configured = True

    def set_level(self, log_level: str) -> None:
        """Change the level of the package logger and its handlers after configuration."""
        if not self._configured:
            self.configure(log_level=log_level)
            return
        numeric_level = getattr(logging, log_level.upper(), logging.INFO)
        package_logger = logging.getLogger("whispermarket")
        package_logger.setLevel(numeric_level)
        for handler in package_logger.handlers:
            handler.setLevel(numeric_level)

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)

    @property
    def is_configured(self) -> bool:
        return self._configured


class TerminalSafeFormatter(logging.Formatter):
    """
    Formatter that strips ANSI escape sequences and control characters, so
    wallet- or chain-supplied strings cannot manipulate the terminal.
    """

    _ansi_escape_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"
        r"|\x1b[@-Z\\-_]"
    )
    # Control chars (0x00-0x1F) excluding Tab and Newline
    _control_chars_re = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
    _carriage_return_re = re.compile(r"\r")

    @classmethod
    def sanitize(cls, text: str) -> str:
        if not text:
            return text
        text = cls._ansi_escape_re.sub("", text)
        text = cls._carriage_return_re.sub("", text)
        text = cls._control_chars_re.sub("", text)
        return text

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


class WhisperLogHighlighter(RegexHighlighter):
    """Regex highlighter for client logs."""

    base_style = "whisper."
    highlights = [
        r"(?P<level_critical>\bCRITICAL\b)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"\-\s+\w+\s+-\s+(?P<logger_name>[\w.]+)(?=\s-\s)",
        r"(?P<network_error>NETWORK_ERROR)",
        r"(?P<program>\b[a-z_][a-z0-9_]*\.aleo\b)",
        r"(?P<tx_id>\bat1[a-z0-9]{20,}\b)",
        r"(?P<tag>\[.*?\])",
        r"(?P<timestamp>^(.*?)UTC)",
        r"(?P<url>https?://\S+)",
    ]


_log_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """
    Returns a logger for ``name``, configuring the package logger on first use.

    Args:
        name: Usually ``__name__`` of the calling module.
    """
    return _log_manager.get_logger(name)
