from __future__ import annotations

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

import requests

from .config import (
    HTTP_BACKOFF_INITIAL,
    HTTP_BACKOFF_MAX,
    HTTP_MAX_RETRIES,
    REQUEST_DELAY_BETWEEN_PAGES,
    DEFAULT_WORKERS,
)
from .exceptions import (
    ScrapeError,
    TransientError,
    RateLimited,
    Blocked,
    StructureChanged,
    Cancelled,
)
from .extractors import ExtractionStrategy, extract_page, get_strategy
from .http_utils import BlockPolicy, fetch_page
from .log_utils import logger, LogSource, LogCategory
from .models import (
    FetchOutcome,
    FetchStatus,
    Query,
    ScrapeResult,
    ScrapeSession,
    ScrapeState,
)
from .url_builder import build_url_for, validate_query

Fetcher = Callable[..., FetchOutcome]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff for transient fetch failures. max_retries
    counts the extra attempts allowed for one page after its first fetch.
    """
    max_retries: int = HTTP_MAX_RETRIES
    backoff_initial: float = HTTP_BACKOFF_INITIAL
    backoff_max: float = HTTP_BACKOFF_MAX

    def delay(self, retry_number: int, retry_after: float = 0.0) -> float:
        """
        Seconds to wait before the given retry (1-based), never less than a
        Retry-After the server asked for and never more than backoff_max
        unless the server asked for more.
        """
        backoff = min(self.backoff_initial * (2 ** max(0, retry_number - 1)), self.backoff_max)
        return max(backoff, retry_after)


class PaginationDriver:
    """
    Walk the result pages of one query: build the URL for the current offset,
    fetch it, extract it, and advance by the page size until the results end,
    a bound is reached, or a terminal failure occurs.

    The HTTP session is shared and only read; everything that changes during a
    scrape lives in a ScrapeSession created per run, so one driver can serve
    several threads at once. Sleep and clock are injected so retries and
    deadlines can be tested without waiting.
    """

    def __init__(
            self,
            session: Optional[requests.Session] = None,
            fetcher: Fetcher = fetch_page,
            strategy: Optional[ExtractionStrategy] = None,
            retry: Optional[RetryPolicy] = None,
            policy: Optional[BlockPolicy] = None,
            page_delay: float = REQUEST_DELAY_BETWEEN_PAGES,
            sleep: Callable[[float], None] = time.sleep,
            clock: Callable[[], float] = time.monotonic,
            structure_version: Optional[str] = None,
    ):
        self.session = session
        self.fetcher = fetcher
        self.strategy = strategy
        self.retry = retry or RetryPolicy()
        self.policy = policy
        self.page_delay = page_delay
        self.sleep = sleep
        self.clock = clock
        self.structure_version = structure_version

    def run(
            self,
            query: Query,
            page_size: Optional[int] = None,
            max_pages: Optional[int] = None,
            max_results: Optional[int] = None,
            cancel_event=None,
            timeout: Optional[float] = None,
    ) -> ScrapeResult:
        """
        Scrape every page of a query and return the accumulated citations with
        the terminal state. InvalidQuery is raised before any request is made;
        every other failure is reported in the result next to the citations
        gathered until then.

        cancel_event is anything with an is_set() method (threading.Event);
        timeout is an overall budget in seconds measured with the injected clock.
        """
        size = page_size if page_size is not None else query.effective_page_size
        session = ScrapeSession(query=query, offset=query.offset, page_size=size)
        validate_query(session.current_query())
        if max_pages is not None and max_pages < 0:
            raise ValueError("max_pages must not be negative")
        if max_results is not None and max_results < 0:
            raise ValueError("max_results must not be negative")

        strategy = self.strategy or get_strategy(query.kind, self.structure_version)
        if timeout is not None:
            session.deadline = self.clock() + timeout

        logger.step(f"Scraping {query.describe()}", source=LogSource.DRIVER, category=LogCategory.QUERY)
        session.transition(ScrapeState.START)
        session.transition(ScrapeState.FETCHING)

        while not session.state.terminal:
            if session.state is ScrapeState.FETCHING:
                self._fetch(session, max_pages, max_results, cancel_event)
            elif session.state is ScrapeState.RETRYING:
                self._retry(session, cancel_event)
            elif session.state is ScrapeState.EXTRACTING:
                self._extract(session, strategy, max_pages, max_results)

        result = session.result()
        if result.ok:
            logger.success(
                f"{len(result.citations)} citation(s) from {result.pages} page(s) for {query.describe()}",
                source=LogSource.DRIVER, category=LogCategory.DONE,
            )
        else:
            logger.warn(
                f"Stopped after {len(result.citations)} citation(s): {result.error}",
                source=LogSource.DRIVER, category=LogCategory.ERROR,
            )
        return result

    # ----- state handlers -----

    def _fetch(self, session: ScrapeSession, max_pages, max_results, cancel_event) -> None:
        if self._interrupted(session, cancel_event):
            return
        if _bounds_reached(session, max_pages, max_results):
            session.transition(ScrapeState.DONE)
            return

        url = build_url_for(session.current_query())
        outcome = self._call_fetcher(url)
        session.fetches += 1
        session.outcome = outcome

        status = outcome.status
        if status is FetchStatus.OK:
            session.transition(ScrapeState.EXTRACTING)
        elif status is FetchStatus.EMPTY:
            logger.info(f"No content at offset {session.offset} ({outcome.reason})",
                        source=LogSource.DRIVER, category=LogCategory.DONE)
            session.transition(ScrapeState.DONE)
        elif status is FetchStatus.TRANSIENT:
            logger.warn(f"Transient failure at offset {session.offset}: {outcome.reason}",
                        source=LogSource.DRIVER, category=LogCategory.RETRY)
            session.transition(ScrapeState.RETRYING)
        elif status is FetchStatus.RATE_LIMITED:
            self._fail(session, RateLimited(f"rate limited: {outcome.reason}", url,
                                            retry_after=outcome.retry_after))
        else:
            self._fail(session, Blocked(f"blocked: {outcome.reason}", url))

    def _retry(self, session: ScrapeSession, cancel_event) -> None:
        session.retries += 1
        if session.retries > self.retry.max_retries:
            outcome = session.outcome
            self._fail(session, TransientError(
                f"gave up after {self.retry.max_retries} retries: {outcome.reason if outcome else 'unknown'}",
                outcome.url if outcome else None,
            ))
            return

        retry_after = session.outcome.retry_after if session.outcome else 0.0
        delay = self.retry.delay(session.retries, retry_after)
        if session.deadline is not None and self.clock() + delay > session.deadline:
            self._fail(session, Cancelled("deadline would pass while backing off"))
            return
        if self._interrupted(session, cancel_event):
            return

        logger.info(f"Retry {session.retries}/{self.retry.max_retries} in {delay:.1f}s",
                    source=LogSource.DRIVER, category=LogCategory.RETRY)
        session.total_retries += 1
        self.sleep(delay)
        session.transition(ScrapeState.FETCHING)

    def _extract(self, session: ScrapeSession, strategy: ExtractionStrategy, max_pages, max_results) -> None:
        outcome = session.outcome
        try:
            page = extract_page(outcome.body, strategy)
        except StructureChanged as e:
            e.url = outcome.url
            self._fail(session, e)
            return

        session.pages += 1
        session.retries = 0

        citations = list(page.citations)
        if max_results is not None:
            citations = citations[: max(0, max_results - len(session.citations))]
        session.citations.extend(citations)

        logger.info(
            f"Page {session.pages} (offset {session.offset}): {len(page.citations)} citation(s)"
            + (f", {page.skipped} skipped" if page.skipped else ""),
            source=strategy.source, category=LogCategory.EXTRACT,
        )

        if not page.citations:
            session.empty_pages += 1
            session.transition(ScrapeState.DONE)
            return
        if not page.has_next_page or _bounds_reached(session, max_pages, max_results):
            session.transition(ScrapeState.DONE)
            return

        session.offset += session.page_size
        if self.page_delay > 0:
            self.sleep(self.page_delay)
        session.transition(ScrapeState.FETCHING)

    # ----- helpers -----

    def _call_fetcher(self, url: str) -> FetchOutcome:
        kwargs = {}
        if self.policy is not None:
            kwargs["policy"] = self.policy
        return self.fetcher(url, self.session, **kwargs)

    def _interrupted(self, session: ScrapeSession, cancel_event) -> bool:
        if cancel_event is not None and cancel_event.is_set():
            self._fail(session, Cancelled("scrape cancelled by caller"))
            return True
        if session.deadline is not None and self.clock() >= session.deadline:
            self._fail(session, Cancelled("scrape deadline passed"))
            return True
        return False

    @staticmethod
    def _fail(session: ScrapeSession, error: ScrapeError) -> None:
        session.error = error
        category = LogCategory.CANCEL if isinstance(error, Cancelled) else (
            LogCategory.BLOCK if isinstance(error, Blocked) else LogCategory.ERROR)
        logger.warn(f"{error.kind.value}: {error}", source=LogSource.DRIVER, category=category)
        session.transition(ScrapeState.FAILED)


def _bounds_reached(session: ScrapeSession, max_pages: Optional[int], max_results: Optional[int]) -> bool:
    if max_pages is not None and session.pages >= max_pages:
        return True
    if max_results is not None and len(session.citations) >= max_results:
        return True
    return False


def scrape(query: Query, session: Optional[requests.Session] = None, **kwargs) -> ScrapeResult:
    """
    Convenience wrapper: run one query with a default driver over the shared session.
    """
    return PaginationDriver(session=session).run(query, **kwargs)


def _run_logged(driver: PaginationDriver, query: Query, log_file: Optional[str], **kwargs) -> ScrapeResult:
    # worker threads never reach the console; give each its own file when asked
    if log_file:
        logger.set_log_file(log_file)
    try:
        return driver.run(query, **kwargs)
    finally:
        if log_file:
            logger.close()


def scrape_many(
        queries: Sequence[Query],
        driver: Optional[PaginationDriver] = None,
        max_workers: int = DEFAULT_WORKERS,
        log_files: Optional[Sequence[Optional[str]]] = None,
        **kwargs,
) -> List[ScrapeResult]:
    """
    Run independent queries concurrently on worker threads through one
    driver (and therefore one shared HTTP session). Results come back in the
    order of the queries. Invalid queries are rejected before anything runs.

    log_files optionally names one log file per query; messages from worker
    threads are otherwise not written anywhere.
    """
    for query in queries:
        validate_query(query)
    driver = driver or PaginationDriver()
    if not queries:
        return []
    files = list(log_files) if log_files is not None else [None] * len(queries)
    if len(files) != len(queries):
        raise ValueError("log_files must name one file per query")

    workers = max(1, min(max_workers, len(queries)))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = [pool.submit(_run_logged, driver, query, log_file, **kwargs)
                   for query, log_file in zip(queries, files)]
        return [f.result() for f in futures]
