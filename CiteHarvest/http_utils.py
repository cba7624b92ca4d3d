from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Dict, Optional, Tuple

from bs4 import BeautifulSoup
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .exceptions import DECODE_ERRORS, NUMERIC_ERRORS, NETWORK_ERRORS
from .log_utils import logger, LogSource, LogCategory
from .models import FetchOutcome, FetchStatus
from .config import (
    DEFAULT_REFERER,
    HTTP_TIMEOUT_DEFAULT,
    HTTP_POOL_MAXSIZE,
    RATE_LIMIT_STATUS_CODES,
    BLOCK_STATUS_CODES,
    NOT_FOUND_STATUS_CODES,
    TRANSIENT_STATUS_CODES,
    BLOCK_URL_MARKERS,
    BLOCK_PAGE_SELECTORS,
    BLOCK_PAGE_SIGNATURES,
    RESULT_CONTAINER_SELECTORS,
)

DEFAULT_BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/119.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Referer": DEFAULT_REFERER,
}

# only this many bytes of a body are searched for block-page phrases
_SIGNATURE_SCAN_BYTES = 65536


def create_session(
        headers: Optional[Dict[str, str]] = None,
        cookies: Optional[Dict[str, str]] = None,
        pool_maxsize: int = HTTP_POOL_MAXSIZE,
) -> requests.Session:
    """
    Build the shared HTTP session: browser-like headers, a cookie jar, and a
    connection pool large enough for concurrent scrapes. Transport-level
    retries are switched off because retry policy belongs to the pagination
    driver.
    """
    session = requests.Session()
    session.headers.update(DEFAULT_BROWSER_HEADERS)
    if headers:
        session.headers.update(headers)
    if cookies:
        session.cookies.update(cookies)

    adapter = HTTPAdapter(
        max_retries=Retry(total=0, raise_on_status=False),
        pool_connections=pool_maxsize,
        pool_maxsize=pool_maxsize,
    )
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


# Global session for connection pooling
_SESSION = create_session()


def default_session() -> requests.Session:
    return _SESSION


def _parse_retry_after(ra: Optional[str]) -> float:
    """
    Interpret a Retry-After header value and return how many seconds to wait,
    handling both numeric delays and HTTP date formats.
    """
    if not ra:
        return 0.0
    # try as a number first
    try:
        return max(0.0, float(ra))
    except NUMERIC_ERRORS:
        # maybe it's a date
        try:
            dt = parsedate_to_datetime(ra)
            if getattr(dt, "tzinfo", None) is None:
                dt = dt.replace(tzinfo=timezone.utc)
            return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())
        except NUMERIC_ERRORS:
            return 0.0


@dataclass(frozen=True)
class BlockPolicy:
    """
    Heuristic that decides how a response is classified. The anti-automation
    signals of the service are not documented, so every rule here is data that
    callers can replace.
    """
    rate_limit_status: Tuple[int, ...] = RATE_LIMIT_STATUS_CODES
    block_status: Tuple[int, ...] = BLOCK_STATUS_CODES
    not_found_status: Tuple[int, ...] = NOT_FOUND_STATUS_CODES
    transient_status: Tuple[int, ...] = TRANSIENT_STATUS_CODES
    block_url_markers: Tuple[str, ...] = BLOCK_URL_MARKERS
    block_selectors: Tuple[str, ...] = BLOCK_PAGE_SELECTORS
    block_signatures: Tuple[str, ...] = BLOCK_PAGE_SIGNATURES
    content_selectors: Tuple[str, ...] = RESULT_CONTAINER_SELECTORS

    def find_signature(self, body: bytes) -> Optional[str]:
        """
        Return the first sign of a block page in a body, if any.

        Interstitial markup is matched structurally. The plain-text phrases
        are only looked for when the body has none of the result or profile
        containers.
        """
        soup = BeautifulSoup(decode_document(body), "html.parser")
        for selector in self.block_selectors:
            if soup.select_one(selector) is not None:
                return selector
        if any(soup.select_one(selector) is not None for selector in self.content_selectors):
            return None

        head = body[:_SIGNATURE_SCAN_BYTES].decode("utf-8", errors="replace").lower()
        for sig in self.block_signatures:
            if sig in head:
                return sig
        return None

    def classify(
            self,
            url: str,
            status_code: int,
            body: bytes,
            final_url: Optional[str] = None,
            retry_after: float = 0.0,
    ) -> FetchOutcome:
        """
        Turn one HTTP response into a FetchOutcome.
        """
        landed = (final_url or url).lower()
        for marker in self.block_url_markers:
            if marker in landed:
                return FetchOutcome(FetchStatus.BLOCKED, url, status_code=status_code,
                                    reason=f"redirected to {final_url}")

        if status_code in self.rate_limit_status:
            return FetchOutcome(FetchStatus.RATE_LIMITED, url, status_code=status_code,
                                reason=f"HTTP {status_code}", retry_after=retry_after)

        if status_code in self.block_status:
            return FetchOutcome(FetchStatus.BLOCKED, url, status_code=status_code,
                                reason=f"HTTP {status_code}")

        signature = self.find_signature(body) if body else None
        if signature:
            return FetchOutcome(FetchStatus.BLOCKED, url, status_code=status_code,
                                reason=f"block page ({signature})")

        if status_code in self.not_found_status:
            return FetchOutcome(FetchStatus.EMPTY, url, status_code=status_code,
                                reason=f"HTTP {status_code}")

        if status_code in self.transient_status or status_code >= 500:
            return FetchOutcome(FetchStatus.TRANSIENT, url, status_code=status_code,
                                reason=f"HTTP {status_code}", retry_after=retry_after)

        if not 200 <= status_code < 300:
            return FetchOutcome(FetchStatus.BLOCKED, url, status_code=status_code,
                                reason=f"unexpected HTTP {status_code}")

        if not body or not body.strip():
            return FetchOutcome(FetchStatus.EMPTY, url, status_code=status_code, reason="empty body")

        return FetchOutcome(FetchStatus.OK, url, body=body, status_code=status_code)


DEFAULT_POLICY = BlockPolicy()


def fetch_page(
        url: str,
        session: Optional[requests.Session] = None,
        policy: Optional[BlockPolicy] = None,
        timeout: float = HTTP_TIMEOUT_DEFAULT,
) -> FetchOutcome:
    """
    Issue exactly one GET through the shared session and classify the
    response. Network failures come back as TRANSIENT outcomes instead of
    exceptions; nothing here retries.
    """
    session = session or _SESSION
    policy = policy or DEFAULT_POLICY

    logger.debug(f"GET {url}", source=LogSource.SYSTEM, category=LogCategory.FETCH)
    try:
        resp = session.get(url, timeout=timeout)
    except NETWORK_ERRORS as e:
        return FetchOutcome(FetchStatus.TRANSIENT, url, reason=f"{type(e).__name__}: {e}")

    retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
    return policy.classify(url, resp.status_code, resp.content or b"", final_url=resp.url,
                           retry_after=retry_after)


def decode_document(raw: bytes) -> str:
    """
    Choose a suitable decoding for an HTML page by inspecting byte order
    marks, trying UTF-8 first, and falling back to Latin-1 when needed.
    """
    # check for byte order marks
    if raw.startswith(b"\xef\xbb\xbf"):
        return raw.decode("utf-8-sig")
    if raw.startswith(b"\xff\xfe"):
        try:
            return raw.decode("utf-16le")
        except DECODE_ERRORS:
            pass
    if raw.startswith(b"\xfe\xff"):
        try:
            return raw.decode("utf-16be")
        except DECODE_ERRORS:
            pass
    # no BOM - try UTF-8, fall back to Latin-1
    try:
        return raw.decode("utf-8")
    except DECODE_ERRORS:
        return raw.decode("latin-1", errors="replace")
