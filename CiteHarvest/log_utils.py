from __future__ import annotations

import logging
import os
import sys
import threading
from typing import Optional


# Define custom log levels for scrape progress
STEP_LEVEL = 25  # Between INFO (20) and WARNING (30)
SUCCESS_LEVEL = 22  # Between INFO (20) and STEP (25)

# Register custom levels with the logging module
logging.addLevelName(STEP_LEVEL, "STEP")
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")


class LogSource:
    """
    Constants for the page families a message relates to, so tags are named
    and colored consistently.
    """
    SCHOLAR = "Scholar"
    PROFILE = "Profile"
    CITE = "Cite"
    DRIVER = "Driver"
    SYSTEM = "System"


class LogCategory:
    """
    Constants for log categories to replace indentation with semantic tagging.
    """
    QUERY = "QUERY"
    FETCH = "FETCH"
    EXTRACT = "EXTRACT"
    RETRY = "RETRY"
    BLOCK = "BLOCK"
    DONE = "DONE"
    SKIP = "SKIP"
    ERROR = "ERROR"
    DEBUG = "DEBUG"
    CANCEL = "CANCEL"


class ColoredFormatter(logging.Formatter):
    """
    Custom formatter that adds ANSI color codes to log messages for terminal output,
    making different log levels, sources, and categories easily distinguishable.
    """

    # ANSI Color Codes
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD_CYAN = "\033[1;36m"
    BOLD_GREEN = "\033[1;32m"
    YELLOW = "\033[33m"
    RED = "\033[31m"
    BOLD_RED = "\033[1;31m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    GREEN = "\033[32m"
    DARK_GRAY = "\033[90m"
    BOLD_MAGENTA = "\033[1;35m"
    RESET = "\033[0m"

    # Level colors
    LEVEL_COLORS = {
        "DEBUG": CYAN,
        "INFO": WHITE,
        "STEP": BOLD_CYAN,
        "SUCCESS": BOLD_GREEN,
        "WARNING": YELLOW,
        "ERROR": RED,
        "CRITICAL": BOLD_RED,
    }

    SOURCE_COLORS = {
        LogSource.SCHOLAR: BLUE,
        LogSource.PROFILE: CYAN,
        LogSource.CITE: MAGENTA,
        LogSource.DRIVER: GREEN,
        LogSource.SYSTEM: WHITE,
    }

    CATEGORY_COLORS = {
        LogCategory.QUERY: BOLD_MAGENTA,
        LogCategory.FETCH: CYAN,
        LogCategory.EXTRACT: BLUE,
        LogCategory.RETRY: YELLOW,
        LogCategory.BLOCK: BOLD_RED,
        LogCategory.DONE: BOLD_GREEN,
        LogCategory.SKIP: DARK_GRAY,
        LogCategory.ERROR: RED,
        LogCategory.DEBUG: DARK_GRAY,
        LogCategory.CANCEL: MAGENTA,
    }

    def __init__(self, fmt: str, use_color: bool = True):
        """
        Initialize the formatter with optional color support based on terminal capability.
        """
        super().__init__(fmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record with source and category tags, colored when the
        terminal supports it.
        """
        original_msg = record.msg
        original_levelname = record.levelname

        source = getattr(record, "source", None)
        category = getattr(record, "category", None)

        parts = []
        if source:
            color = self.SOURCE_COLORS.get(source) if self.use_color else None
            parts.append(f"{color}[{source}]{self.RESET}" if color else f"[{source}]")
        if category:
            color = self.CATEGORY_COLORS.get(category) if self.use_color else None
            parts.append(f"{color}[{category}]{self.RESET}" if color else f"[{category}]")

        if self.use_color and record.levelname in self.LEVEL_COLORS:
            record.levelname = f"{self.LEVEL_COLORS[record.levelname]}{record.levelname}{self.RESET}"
        if parts:
            record.msg = f"{' '.join(parts)} {record.msg}"

        formatted = super().format(record)

        # Restore the record for the other handlers
        record.msg = original_msg
        record.levelname = original_levelname

        return formatted


class CategoryAdapter(logging.LoggerAdapter):
    """
    Adapter that adds source and category support to log messages.
    """

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        """
        Pass source and category to extra dict.
        """
        extra = kwargs.get("extra", {})

        source = kwargs.pop("source", None)
        if source:
            extra["source"] = source

        category = kwargs.pop("category", None)
        if category:
            extra["category"] = category

        kwargs["extra"] = extra
        return msg, kwargs


class MainThreadFilter(logging.Filter):
    """
    Filter that only allows log records from the main thread.
    """
    def filter(self, record: logging.LogRecord) -> bool:
        return threading.current_thread() is threading.main_thread()


class ThreadLocalFileHandler(logging.Handler):
    """
    Handler that delegates to a thread-local file handler if one exists.
    """
    def __init__(self, thread_local_storage: threading.local):
        super().__init__()
        self._tls = thread_local_storage

    def emit(self, record: logging.LogRecord):
        handler = getattr(self._tls, "handler", None)
        if handler:
            handler.emit(record)


class Logger:
    """
    Package logger built on the standard logging module with colors, the
    custom STEP and SUCCESS levels, source/category tags and per-thread log
    files. Console output is restricted to the main thread so concurrent
    scrapes on worker threads only write to their own files.
    """

    LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(message)s"
    DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(self, name: str = "CiteHarvest"):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(logging.DEBUG)
        self._logger.propagate = False

        self._logger.handlers.clear()

        # Console handler - only for main thread
        self._console_handler = logging.StreamHandler(sys.stderr)
        self._console_handler.setLevel(logging.INFO)
        self._console_handler.addFilter(MainThreadFilter())

        console_formatter = ColoredFormatter(self.LOG_FORMAT, use_color=sys.stderr.isatty())
        console_formatter.datefmt = self.DATE_FORMAT
        self._console_handler.setFormatter(console_formatter)
        self._logger.addHandler(self._console_handler)

        # Thread-local storage for file handlers
        self._thread_local = threading.local()
        self._tl_handler = ThreadLocalFileHandler(self._thread_local)
        self._logger.addHandler(self._tl_handler)

        self._adapter = CategoryAdapter(self._logger, {})

    def set_level(self, level: int):
        """
        Change the console verbosity; files always receive everything.
        """
        self._console_handler.setLevel(level)

    def set_log_file(self, path: str):
        """
        Start mirroring all log messages to the specified file for the current thread.
        """
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        try:
            self.close()

            handler = logging.FileHandler(path, mode="w", encoding="utf-8")
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(ColoredFormatter(self.LOG_FORMAT, use_color=False))
            handler.formatter.datefmt = self.DATE_FORMAT

            self._thread_local.handler = handler
            self._thread_local.log_file_path = path
        except OSError as e:
            self._thread_local.handler = None
            self._thread_local.log_file_path = None
            self._logger.error(f"Failed to open log file {path}: {e}")

    def close(self):
        """
        Stop logging to file for the current thread.
        """
        handler = getattr(self._thread_local, "handler", None)
        if handler:
            handler.close()
            self._thread_local.handler = None
            self._thread_local.log_file_path = None

    def step(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        """
        Log a top-level workflow step.
        """
        self._adapter.log(STEP_LEVEL, msg, source=source, category=category)

    def debug(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        self._adapter.debug(msg, source=source, category=category)

    def info(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        self._adapter.info(msg, source=source, category=category)

    def warn(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        self._adapter.warning(msg, source=source, category=category)

    def error(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        self._adapter.error(msg, source=source, category=category)

    def success(self, msg: str, *, source: Optional[str] = None, category: Optional[str] = None):
        """
        Log successful operations.
        """
        self._adapter.log(SUCCESS_LEVEL, msg, source=source, category=category)

    @property
    def log_file_path(self) -> Optional[str]:
        """
        Get the log file path for the current thread.
        """
        return getattr(self._thread_local, "log_file_path", None)


# Global logger instance
logger = Logger()
