from __future__ import annotations

import json
import socket
from enum import Enum
from typing import Optional

import requests

__all__ = [
    "ErrorKind",
    "ScrapeError",
    "InvalidQuery",
    "TransientError",
    "RateLimited",
    "Blocked",
    "StructureChanged",
    "Cancelled",
    "TERMINAL_ERRORS",
    "HTTP_ERRORS",
    "TIMEOUT_ERRORS",
    "NETWORK_ERRORS",
    "DECODE_ERRORS",
    "PARSE_ERRORS",
    "NUMERIC_ERRORS",
    "JSON_ERRORS",
    "FILE_IO_ERRORS",
    "FILE_READ_ERRORS",
    "FIELD_ACCESS_ERRORS",
    "FILE_WRITE_ERRORS",
]


class ErrorKind(str, Enum):
    """
    Stable names for the ways a scrape can fail, so callers can branch on a
    value instead of an exception class.
    """
    INVALID_QUERY = "invalid_query"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    BLOCKED = "blocked"
    STRUCTURE_CHANGED = "structure_changed"
    CANCELLED = "cancelled"


class ScrapeError(Exception):
    """
    Base class for every failure raised by the retrieval pipeline. Carries the
    URL that was being processed when the failure happened, when there is one.
    """
    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url

    def __str__(self) -> str:
        msg = super().__str__()
        return f"{msg} ({self.url})" if self.url else msg


class InvalidQuery(ScrapeError, ValueError):
    """
    The caller built a query that cannot be turned into a URL. Never retried.
    """
    kind = ErrorKind.INVALID_QUERY


class TransientError(ScrapeError):
    """
    Network-level failure (timeout, reset, 5xx) that may succeed on a later attempt.
    """
    kind = ErrorKind.TRANSIENT


class Blocked(ScrapeError):
    """
    The service refused automated access (CAPTCHA page, 403, sorry redirect).
    """
    kind = ErrorKind.BLOCKED


class RateLimited(Blocked):
    """
    The service asked us to slow down (HTTP 429). Terminal like any block.
    """
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str, url: Optional[str] = None, retry_after: float = 0.0):
        super().__init__(message, url)
        self.retry_after = retry_after


class StructureChanged(ScrapeError):
    """
    The page lacks the markup the extractor relies on; the scraper needs
    updating rather than the results being exhausted.
    """
    kind = ErrorKind.STRUCTURE_CHANGED


class Cancelled(ScrapeError):
    """
    The caller cancelled the scrape or its deadline passed.
    """
    kind = ErrorKind.CANCELLED


# failures that end a scrape without any retry
TERMINAL_ERRORS = (Blocked, StructureChanged, Cancelled)

# errors raised by requests when an HTTP request fails or a URL cannot be reached
HTTP_ERRORS = (requests.exceptions.RequestException,)

# errors that signal an operation has taken too long and hit a timeout at the OS or socket level
TIMEOUT_ERRORS = (TimeoutError, socket.timeout)

# umbrella group for network-related failures, combining HTTP issues and timeouts
NETWORK_ERRORS = HTTP_ERRORS + TIMEOUT_ERRORS + (ConnectionError,)

# errors that occur when converting response bytes into text using a specific encoding
DECODE_ERRORS = (UnicodeDecodeError, UnicodeError)

# errors raised while interpreting markup fragments or response fields
PARSE_ERRORS = (ValueError, TypeError, KeyError)

# numeric conversion and arithmetic errors raised during year, count, or header parsing
NUMERIC_ERRORS = (TypeError, ValueError, OverflowError)

# JSON parsing errors when loading cookie files
JSON_ERRORS = (json.JSONDecodeError, ValueError, TypeError)

# file system operation errors when reading cookie or output files
# Note: FileNotFoundError is a subclass of OSError, so both are included for clarity
FILE_IO_ERRORS = (FileNotFoundError, OSError)

# combined file read errors including I/O failures, encoding issues, and malformed data
FILE_READ_ERRORS = FILE_IO_ERRORS + DECODE_ERRORS + PARSE_ERRORS

# field access and attribute lookup errors when navigating a parsed entry whose
# markup is missing or shaped differently than expected
FIELD_ACCESS_ERRORS = (TypeError, ValueError, KeyError, AttributeError, IndexError)

# file write operation errors including permissions, disk full, and encoding issues
FILE_WRITE_ERRORS = (OSError, TypeError, UnicodeEncodeError)
