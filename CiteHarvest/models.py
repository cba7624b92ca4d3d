from __future__ import annotations

from dataclasses import dataclass, field, replace, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .config import SEARCH_PAGE_SIZE_DEFAULT, PROFILE_PAGE_SIZE_DEFAULT, DEFAULT_LANGUAGE
from .exceptions import ScrapeError, ErrorKind


class SortMode(str, Enum):
    """
    Result ordering requested from the service.
    """
    RELEVANCE = "relevance"
    DATE = "date"


class QueryKind(str, Enum):
    """
    Which Scholar page family a query is answered by.
    """
    SEARCH = "search"
    PROFILE = "profile"


class ReferenceFormat(str, Enum):
    """
    Export formats offered by Scholar's cite dialog. The value is the link
    text shown in the dialog.
    """
    BIBTEX = "BibTeX"
    ENDNOTE = "EndNote"
    REFMAN = "RefMan"
    REFWORKS = "RefWorks"


@dataclass(frozen=True)
class Query:
    """
    Describe what to retrieve: either a free-text search (optionally narrowed
    to works citing a cluster, or to a single cluster) or the publication list
    of one author profile. The offset is the zero-based index of the first
    result on the page to request.
    """
    query: str = ""
    author_id: str = ""
    cite_id: str = ""
    cluster_id: str = ""
    sort_by: SortMode = SortMode.RELEVANCE
    offset: int = 0
    page_size: Optional[int] = None
    from_year: Optional[int] = None
    to_year: Optional[int] = None
    lang: str = DEFAULT_LANGUAGE
    lang_limit: Tuple[str, ...] = ()
    adult_filtering: bool = False
    include_similar_results: bool = False
    include_citations: bool = True

    @property
    def kind(self) -> QueryKind:
        return QueryKind.PROFILE if self.author_id.strip() else QueryKind.SEARCH

    @property
    def effective_page_size(self) -> int:
        if self.page_size is not None:
            return self.page_size
        if self.kind is QueryKind.PROFILE:
            return PROFILE_PAGE_SIZE_DEFAULT
        return SEARCH_PAGE_SIZE_DEFAULT

    def with_offset(self, offset: int) -> Query:
        return replace(self, offset=offset)

    def describe(self) -> str:
        """
        Short human-readable label used in log lines.
        """
        if self.kind is QueryKind.PROFILE:
            return f"profile {self.author_id}"
        label = f'"{self.query}"' if self.query else "query"
        if self.cite_id:
            label += f" citing {self.cite_id}"
        if self.cluster_id:
            label += f" in cluster {self.cluster_id}"
        return label


@dataclass(frozen=True)
class Citation:
    """
    One publication record scraped from a result page. Value data: it keeps no
    reference to the page or scrape that produced it.
    """
    title: str
    authors: Tuple[str, ...] = ()
    venue: Optional[str] = None
    year: Optional[int] = None
    citation_count: int = 0
    citation_id: Optional[str] = None
    link: Optional[str] = None
    cited_by_url: Optional[str] = None
    cites_id: Optional[str] = None
    authors_truncated: bool = False
    source: QueryKind = QueryKind.SEARCH

    @property
    def is_profile_entry(self) -> bool:
        """
        True for rows of an author profile; their ids belong to the profile
        and cannot be used with the search result cite dialog.
        """
        return self.source is QueryKind.PROFILE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["authors"] = list(self.authors)
        data["source"] = self.source.value
        return data


@dataclass(frozen=True)
class PageResult:
    """
    Outcome of extracting one page: citations in document order, whether the
    page offers a next page, and how many entries were dropped for lacking a title.
    """
    citations: Tuple[Citation, ...] = ()
    has_next_page: bool = False
    skipped: int = 0


class FetchStatus(str, Enum):
    """
    Classification of a single fetch.
    """
    OK = "ok"
    EMPTY = "empty"
    RATE_LIMITED = "rate_limited"
    BLOCKED = "blocked"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class FetchOutcome:
    """
    Result of one GET. Only OK outcomes carry a body.
    """
    status: FetchStatus
    url: str
    body: Optional[bytes] = None
    status_code: Optional[int] = None
    reason: str = ""
    retry_after: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is FetchStatus.OK


class ScrapeState(str, Enum):
    """
    States of the pagination state machine. DONE and FAILED are terminal.
    """
    START = "start"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    RETRYING = "retrying"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ScrapeState.DONE, ScrapeState.FAILED)


@dataclass(frozen=True)
class ScrapeResult:
    """
    What a scrape hands back: the citations accumulated (always, even on
    failure), the terminal state, and the failure when there was one.
    """
    citations: Tuple[Citation, ...]
    state: ScrapeState
    error: Optional[ScrapeError] = None
    pages: int = 0
    fetches: int = 0
    retries: int = 0

    @property
    def ok(self) -> bool:
        return self.state is ScrapeState.DONE

    @property
    def failure_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error


@dataclass
class ScrapeSession:
    """
    Mutable state of one scrape, owned by a single driver run and discarded
    when it terminates.
    """
    query: Query
    offset: int
    page_size: int
    citations: List[Citation] = field(default_factory=list)
    state: ScrapeState = ScrapeState.START
    history: List[ScrapeState] = field(default_factory=list)
    pages: int = 0
    fetches: int = 0
    retries: int = 0
    total_retries: int = 0
    empty_pages: int = 0
    outcome: Optional[FetchOutcome] = None
    error: Optional[ScrapeError] = None
    deadline: Optional[float] = None

    def transition(self, state: ScrapeState) -> None:
        self.history.append(state)
        self.state = state

    def current_query(self) -> Query:
        return replace(self.query, offset=self.offset, page_size=self.page_size)

    def result(self) -> ScrapeResult:
        return ScrapeResult(
            citations=tuple(self.citations),
            state=self.state,
            error=self.error,
            pages=self.pages,
            fetches=self.fetches,
            retries=self.total_retries,
        )
