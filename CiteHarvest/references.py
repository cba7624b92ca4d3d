from __future__ import annotations

from dataclasses import replace
from typing import Dict, Iterable, Iterator, Optional, Tuple, Union

import requests

from .bibtex_utils import parse_bibtex_entry
from .config import DEFAULT_LANGUAGE, HTTP_TIMEOUT_SHORT
from .exceptions import InvalidQuery, TransientError, RateLimited, Blocked, StructureChanged
from .extractors import parse_document
from .http_utils import BlockPolicy, decode_document, fetch_page
from .log_utils import logger, LogSource, LogCategory
from .models import Citation, FetchOutcome, FetchStatus, ReferenceFormat
from .text_utils import (
    normalize_whitespace,
    parse_author_line,
    parse_count,
    extract_year_from_any,
)
from .url_builder import absolute_url, build_cite_url

__all__ = [
    "fetch_reference",
    "iter_references",
    "parse_citation_details",
    "fetch_citation_details",
    "enrich_citation",
]

# detail page labels that name the publication venue, most specific first
_VENUE_FIELDS = ("journal", "conference", "book", "source", "publisher")


def _require_body(outcome: FetchOutcome) -> bytes:
    """
    Return the body of an OK outcome or raise the typed error matching its
    classification.
    """
    if outcome.status is FetchStatus.OK:
        return outcome.body
    if outcome.status is FetchStatus.TRANSIENT:
        raise TransientError(outcome.reason, outcome.url)
    if outcome.status is FetchStatus.RATE_LIMITED:
        raise RateLimited(outcome.reason, outcome.url, retry_after=outcome.retry_after)
    if outcome.status is FetchStatus.BLOCKED:
        raise Blocked(outcome.reason, outcome.url)
    raise StructureChanged(f"expected content, got nothing ({outcome.reason})", outcome.url)


def fetch_reference(
        citation: Union[Citation, str],
        fmt: ReferenceFormat = ReferenceFormat.BIBTEX,
        session: Optional[requests.Session] = None,
        policy: Optional[BlockPolicy] = None,
        lang: str = DEFAULT_LANGUAGE,
) -> str:
    """
    Download the export text of one search result in a reference manager
    format. Two requests are made: the cite dialog, then the export link it
    offers for the requested format. Nothing is retried.
    """
    if isinstance(citation, Citation) and citation.is_profile_entry:
        raise InvalidQuery(f"'{citation.title}' comes from an author profile; only search results can be exported")
    citation_id = citation.citation_id if isinstance(citation, Citation) else citation
    if not citation_id:
        raise InvalidQuery("citation has no search result id; only search results can be exported")
    fmt = ReferenceFormat(fmt)

    cite_url = build_cite_url(citation_id, lang)
    logger.debug(f"Cite dialog for {citation_id}", source=LogSource.CITE, category=LogCategory.FETCH)
    soup = parse_document(_require_body(fetch_page(cite_url, session, policy=policy, timeout=HTTP_TIMEOUT_SHORT)))

    dialog = soup.select_one("#gs_citi")
    if dialog is None:
        raise StructureChanged("cite dialog has no export links", cite_url)
    href = None
    for a in dialog.select("a"):
        if normalize_whitespace(a.get_text()).lower() == fmt.value.lower():
            href = a.get("href")
            break
    if not href:
        raise StructureChanged(f"cite dialog offers no {fmt.value} export", cite_url)

    export_url = absolute_url(href)
    raw = _require_body(fetch_page(export_url, session, policy=policy, timeout=HTTP_TIMEOUT_SHORT))
    text = decode_document(raw).strip()
    if fmt is ReferenceFormat.BIBTEX and parse_bibtex_entry(text) is None:
        raise StructureChanged("BibTeX export is not a BibTeX entry", export_url)
    logger.debug(f"{fmt.value} export for {citation_id}: {len(text)} chars",
                 source=LogSource.CITE, category=LogCategory.EXTRACT)
    return text + "\n"


def iter_references(
        citations: Iterable[Citation],
        fmt: ReferenceFormat = ReferenceFormat.BIBTEX,
        session: Optional[requests.Session] = None,
        policy: Optional[BlockPolicy] = None,
) -> Iterator[Tuple[Citation, str]]:
    """
    Lazily pair each citation with its exported reference, one request pair
    at a time. Profile rows and citations without a search result id are
    skipped; the first fetch failure propagates and ends the iteration.
    """
    for citation in citations:
        if citation.is_profile_entry or not citation.citation_id:
            logger.debug(f"'{citation.title}' is not an exportable search result",
                         source=LogSource.CITE, category=LogCategory.SKIP)
            continue
        yield citation, fetch_reference(citation, fmt, session=session, policy=policy)


def parse_citation_details(document) -> Dict[str, str]:
    """
    Read the field table of a profile citation page ("view_citation") into a
    dict keyed by lowercased label, plus "title" and "link" when present.
    """
    soup = parse_document(document)
    title_node = soup.select_one("#gsc_oci_title")
    if title_node is None:
        raise StructureChanged("citation detail page has no title block")

    details: Dict[str, str] = {"title": normalize_whitespace(title_node.get_text(" "))}
    anchor = title_node.find("a")
    if anchor is not None and anchor.get("href"):
        details["link"] = anchor.get("href")

    for label in soup.select(".gsc_oci_field"):
        value = label.find_next_sibling(class_="gsc_oci_value")
        if value is None:
            continue
        key = normalize_whitespace(label.get_text(" ")).lower()
        if key:
            details[key] = normalize_whitespace(value.get_text(" "))
    return details


def fetch_citation_details(
        citation: Citation,
        session: Optional[requests.Session] = None,
        policy: Optional[BlockPolicy] = None,
) -> Citation:
    """
    Fetch the detail page of a profile citation and return the citation with
    the fuller record merged in.
    """
    if not citation.link or "citation_for_view" not in citation.link:
        raise InvalidQuery(f"'{citation.title}' has no profile detail link")
    body = _require_body(fetch_page(citation.link, session, policy=policy, timeout=HTTP_TIMEOUT_SHORT))
    try:
        fields = parse_citation_details(body)
    except StructureChanged as e:
        e.url = citation.link
        raise
    logger.debug(f"Details for '{citation.title}': {', '.join(sorted(fields))}",
                 source=LogSource.PROFILE, category=LogCategory.EXTRACT)
    return enrich_citation(citation, fields)


def enrich_citation(citation: Citation, fields: Dict[str, str]) -> Citation:
    """
    Fill what the list page left out: the full author list when it was
    truncated, and venue, year and count when they were missing.
    """
    updates = {}

    authors, truncated = parse_author_line(fields.get("authors") or fields.get("inventors"))
    if authors and (citation.authors_truncated or not citation.authors):
        updates["authors"] = tuple(authors)
        updates["authors_truncated"] = truncated

    if not citation.venue:
        for name in _VENUE_FIELDS:
            if fields.get(name):
                updates["venue"] = fields[name]
                break

    if citation.year is None:
        year = extract_year_from_any(fields.get("publication date", ""))
        if year is not None:
            updates["year"] = year

    if not citation.citation_count and fields.get("total citations"):
        count = parse_count(fields["total citations"])
        if count:
            updates["citation_count"] = count

    return replace(citation, **updates) if updates else citation
