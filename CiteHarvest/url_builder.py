from __future__ import annotations

import urllib.parse
from typing import Any, List, Optional, Tuple

from .config import (
    SCHOLAR_BASE,
    SCHOLAR_SEARCH_URL,
    SCHOLAR_PROFILE_URL,
    SEARCH_AS_SDT,
    SEARCH_PAGE_SIZE_DEFAULT,
    SEARCH_PAGE_SIZE_MAX,
    PROFILE_PAGE_SIZE_DEFAULT,
    PROFILE_PAGE_SIZE_MAX,
)
from .exceptions import InvalidQuery
from .models import Query, QueryKind, SortMode
from .text_utils import build_url

__all__ = [
    "validate_query",
    "build_url_for",
    "build_search_url",
    "build_profile_url",
    "build_cite_url",
    "absolute_url",
]


def validate_query(query: Query) -> None:
    """
    Reject queries that cannot be expressed as a Scholar URL, raising
    InvalidQuery with the first problem found.
    """
    if not query.author_id.strip() and not query.query.strip():
        raise InvalidQuery("query needs an author id or search text")
    if query.offset < 0:
        raise InvalidQuery(f"offset must not be negative, got {query.offset}")

    limit = PROFILE_PAGE_SIZE_MAX if query.kind is QueryKind.PROFILE else SEARCH_PAGE_SIZE_MAX
    size = query.effective_page_size
    if not 1 <= size <= limit:
        raise InvalidQuery(f"page size must be between 1 and {limit}, got {size}")

    if query.kind is QueryKind.PROFILE:
        extras = [name for name, val in (
            ("query", query.query.strip()),
            ("cite_id", query.cite_id),
            ("cluster_id", query.cluster_id),
            ("from_year", query.from_year),
            ("to_year", query.to_year),
        ) if val]
        if extras:
            raise InvalidQuery(f"profile queries do not accept {', '.join(extras)}")
        return

    if query.from_year is not None and query.to_year is not None and query.from_year > query.to_year:
        raise InvalidQuery(f"from_year {query.from_year} is after to_year {query.to_year}")


def build_url_for(query: Query) -> str:
    """
    Build the page URL that answers a query at its current offset. Pure: the
    same query always produces the same string.
    """
    validate_query(query)
    if query.kind is QueryKind.PROFILE:
        return _profile_url(query)
    return _search_url(query)


def build_search_url(query: Query) -> str:
    """
    Build a results-page URL for a free-text query.
    """
    validate_query(query)
    if query.kind is not QueryKind.SEARCH:
        raise InvalidQuery("search URLs need a text query, not an author id")
    return _search_url(query)


def build_profile_url(query: Query) -> str:
    """
    Build the publication list URL of an author profile.
    """
    validate_query(query)
    if query.kind is not QueryKind.PROFILE:
        raise InvalidQuery("profile URLs need an author id")
    return _profile_url(query)


def _search_url(query: Query) -> str:
    # hl, as_sdt, q, btnG is the order Scholar's own search form submits
    params: List[Tuple[str, Any]] = [
        ("hl", query.lang),
        ("as_sdt", SEARCH_AS_SDT),
        ("q", query.query.strip()),
        ("btnG", ""),
    ]
    if query.cite_id:
        params.append(("cites", query.cite_id))
    if query.cluster_id:
        params.append(("cluster", query.cluster_id))
    if query.from_year is not None:
        params.append(("as_ylo", query.from_year))
    if query.to_year is not None:
        params.append(("as_yhi", query.to_year))
    if query.sort_by is SortMode.DATE:
        params.append(("scisbd", 1))
    if query.lang_limit:
        params.append(("lr", "|".join(f"lang_{code}" for code in query.lang_limit)))
    if query.adult_filtering:
        params.append(("safe", "active"))
    if query.include_similar_results:
        params.append(("filter", 0))
    if not query.include_citations:
        params.append(("as_vis", 1))
    if query.offset:
        params.append(("start", query.offset))
    if query.effective_page_size != SEARCH_PAGE_SIZE_DEFAULT:
        params.append(("num", query.effective_page_size))
    return build_url(SCHOLAR_SEARCH_URL, params)


def _profile_url(query: Query) -> str:
    params: List[Tuple[str, Any]] = [
        ("hl", query.lang),
        ("user", query.author_id.strip()),
        ("view_op", "list_works"),
    ]
    if query.sort_by is SortMode.DATE:
        params.append(("sortby", "pubdate"))
    if query.offset:
        params.append(("cstart", query.offset))
    if query.effective_page_size != PROFILE_PAGE_SIZE_DEFAULT:
        params.append(("pagesize", query.effective_page_size))
    return build_url(SCHOLAR_PROFILE_URL, params)


def build_cite_url(citation_id: str, lang: str = "en") -> str:
    """
    Build the cite-dialog URL for a search result id; the dialog lists the
    export links (BibTeX, EndNote, ...).
    """
    if not citation_id or not citation_id.strip():
        raise InvalidQuery("citation id must not be empty")
    params = [
        ("hl", lang),
        ("q", f"info:{citation_id.strip()}:scholar.google.com/"),
        ("output", "cite"),
        ("scirp", 0),
    ]
    return build_url(SCHOLAR_SEARCH_URL, params)


def absolute_url(href: Optional[str]) -> Optional[str]:
    """
    Resolve a link found in a Scholar page against the Scholar host.
    """
    if not href:
        return None
    return urllib.parse.urljoin(SCHOLAR_BASE + "/", href.strip())
