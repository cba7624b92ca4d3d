from .models import (
    SortMode,
    QueryKind,
    ReferenceFormat,
    Query,
    Citation,
    PageResult,
    FetchStatus,
    FetchOutcome,
    ScrapeState,
    ScrapeResult,
)
from .exceptions import (
    ErrorKind,
    ScrapeError,
    InvalidQuery,
    TransientError,
    RateLimited,
    Blocked,
    StructureChanged,
    Cancelled,
)
from .url_builder import build_url_for, build_search_url, build_profile_url, build_cite_url, validate_query
from .http_utils import BlockPolicy, create_session, fetch_page
from .extractors import get_strategy, iter_citations, extract_page
from .pagination import PaginationDriver, RetryPolicy, scrape, scrape_many
from .references import fetch_reference, iter_references, fetch_citation_details, enrich_citation
from .bibtex_utils import citation_to_bibtex, citations_to_bibtex

__version__ = "0.1.0"
