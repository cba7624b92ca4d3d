"""
Extraction of citation records from Scholar result pages.

Each page family is read by an ExtractionStrategy registered under a
(kind, version) key. When Scholar changes its markup, a new strategy is added
under a new version instead of rewriting the pipeline; a page that lacks the
entry container of the selected strategy raises StructureChanged so that drift
is never mistaken for the end of the results.
"""
from __future__ import annotations

import re
import urllib.parse
from typing import Callable, Dict, Iterator, List, Optional, Tuple, Type, Union

from bs4 import BeautifulSoup
from bs4.element import Tag

from .config import DEFAULT_STRUCTURE_VERSION
from .exceptions import StructureChanged, FIELD_ACCESS_ERRORS
from .http_utils import decode_document
from .log_utils import logger, LogSource, LogCategory
from .models import Citation, PageResult, QueryKind
from .text_utils import (
    normalize_whitespace,
    parse_author_line,
    parse_count,
    split_byline,
    split_venue_year,
    extract_year_from_any,
)
from .url_builder import absolute_url

__all__ = [
    "ExtractionStrategy",
    "SearchResultsStrategy",
    "ProfileStrategy",
    "register_strategy",
    "get_strategy",
    "available_strategies",
    "parse_document",
    "iter_citations",
    "extract_page",
]

Document = Union[bytes, str, BeautifulSoup]

_CITED_BY = re.compile(r"cited\s+by\s+(\d[\d,]*)", re.IGNORECASE)

_STRATEGIES: Dict[Tuple[QueryKind, str], Type["ExtractionStrategy"]] = {}


def register_strategy(cls: Type["ExtractionStrategy"]) -> Type["ExtractionStrategy"]:
    """
    Class decorator adding a strategy to the registry under its kind and version.
    """
    _STRATEGIES[(cls.kind, cls.version)] = cls
    return cls


def get_strategy(kind: QueryKind, version: Optional[str] = None) -> "ExtractionStrategy":
    """
    Instantiate the strategy for a page family, using the default structure
    version when none is given.
    """
    key = (QueryKind(kind), version or DEFAULT_STRUCTURE_VERSION)
    try:
        return _STRATEGIES[key]()
    except KeyError:
        known = ", ".join(f"{k.value}/{v}" for k, v in sorted(_STRATEGIES, key=str))
        raise KeyError(f"no extraction strategy for {key[0].value}/{key[1]} (known: {known})") from None


def available_strategies() -> List[Tuple[QueryKind, str]]:
    return sorted(_STRATEGIES, key=lambda k: (k[0].value, k[1]))


def parse_document(document: Document) -> BeautifulSoup:
    """
    Parse raw page bytes (or already decoded text) into a document tree.
    """
    if isinstance(document, BeautifulSoup):
        return document
    if isinstance(document, bytes):
        document = decode_document(document)
    return BeautifulSoup(document, "html.parser")


def _text(node: Optional[Tag]) -> str:
    if node is None:
        return ""
    return normalize_whitespace(node.get_text(" "))


class ExtractionStrategy:
    """
    Reads one page family at one markup version. Subclasses name the entry
    container, the repeating entry element, and how to read a single entry.
    """
    kind: QueryKind = QueryKind.SEARCH
    version: str = DEFAULT_STRUCTURE_VERSION
    source: str = LogSource.SCHOLAR
    container_selectors: Tuple[str, ...] = ()
    entry_selector: str = ""

    def find_container(self, soup: BeautifulSoup) -> Tag:
        for selector in self.container_selectors:
            node = soup.select_one(selector)
            if node is not None:
                return node
        raise StructureChanged(
            f"entry container not found for {self.kind.value}/{self.version} "
            f"(looked for {', '.join(self.container_selectors)})"
        )

    def entries(self, container: Tag) -> List[Tag]:
        return container.select(self.entry_selector)

    def parse_entry(self, entry: Tag) -> Optional[Citation]:
        raise NotImplementedError

    def has_next_page(self, soup: BeautifulSoup) -> bool:
        raise NotImplementedError


@register_strategy
class SearchResultsStrategy(ExtractionStrategy):
    """
    Scholar search results: one div.gs_ri per hit inside #gs_res_ccl_mid.
    """
    kind = QueryKind.SEARCH
    version = "2023"
    source = LogSource.SCHOLAR
    container_selectors = ("#gs_res_ccl_mid", "#gs_res_ccl")
    entry_selector = "div.gs_ri"

    # [PDF], [HTML], [CITATION][C], [BOOK][B] badges inside the title
    _BADGES = "span.gs_ctc, span.gs_ctg2, span.gs_ct1, span.gs_ct2, span.gs_ctu"

    def parse_entry(self, entry: Tag) -> Optional[Citation]:
        heading = entry.select_one("h3.gs_rt")
        if heading is None:
            return None
        heading = _copy(heading)
        for badge in heading.select(self._BADGES):
            badge.extract()
        title = _text(heading)
        if not title:
            return None

        anchor = heading.find("a")
        link = anchor.get("href") if anchor is not None else None

        citation_id = None
        wrapper = entry.find_parent("div", class_="gs_r")
        if wrapper is not None and wrapper.get("data-cid"):
            citation_id = wrapper.get("data-cid")
        elif anchor is not None and anchor.get("id"):
            citation_id = anchor.get("id")

        author_part, venue_part, _host = split_byline(_text(entry.select_one("div.gs_a")))
        authors, truncated = parse_author_line(author_part)
        venue_year = split_venue_year(venue_part)

        count, cited_by_url, cites_id = 0, None, None
        for a in entry.select("div.gs_fl a"):
            m = _CITED_BY.search(_text(a))
            if m:
                count = parse_count(m.group(1))
                cited_by_url = absolute_url(a.get("href"))
                cites_id = _query_param(cited_by_url, "cites")
                break

        return Citation(
            title=title,
            authors=tuple(authors),
            venue=venue_year.venue,
            year=venue_year.year,
            citation_count=count,
            citation_id=citation_id,
            link=absolute_url(link),
            cited_by_url=cited_by_url,
            cites_id=cites_id,
            authors_truncated=truncated,
        )

    def has_next_page(self, soup: BeautifulSoup) -> bool:
        icon = soup.select_one(".gs_ico_nav_next")
        if icon is None:
            return False
        link = icon.find_parent("a")
        return link is not None and bool(link.get("href"))


@register_strategy
class ProfileStrategy(ExtractionStrategy):
    """
    Author profile publication table: one tr.gsc_a_tr per work inside #gsc_a_b.
    """
    kind = QueryKind.PROFILE
    version = "2023"
    source = LogSource.PROFILE
    container_selectors = ("#gsc_a_b", "#gsc_a_t")
    entry_selector = "tr.gsc_a_tr"

    def parse_entry(self, entry: Tag) -> Optional[Citation]:
        anchor = entry.select_one("a.gsc_a_at")
        title = _text(anchor)
        if not title:
            return None
        href = anchor.get("href") or anchor.get("data-href")
        link = absolute_url(href)

        grays = entry.select("div.gs_gray")
        authors, truncated = parse_author_line(_text(grays[0]) if grays else "")
        venue_year = split_venue_year(_text(grays[1]) if len(grays) > 1 else "")

        year = extract_year_from_any(_text(entry.select_one("span.gsc_a_h")))
        if year is None:
            year = venue_year.year

        count_link = entry.select_one("a.gsc_a_ac")
        cited_by_url = absolute_url(count_link.get("href")) if count_link is not None else None

        return Citation(
            title=title,
            authors=tuple(authors),
            venue=venue_year.venue,
            year=year,
            citation_count=parse_count(_text(count_link)),
            citation_id=_profile_citation_id(link),
            link=link,
            cited_by_url=cited_by_url,
            cites_id=_query_param(cited_by_url, "cites"),
            authors_truncated=truncated,
            source=QueryKind.PROFILE,
        )

    def has_next_page(self, soup: BeautifulSoup) -> bool:
        button = soup.select_one("#gsc_bpf_more")
        return button is not None and not button.has_attr("disabled")


def _copy(node: Tag) -> Tag:
    # badges are removed from a private copy so the caller's tree stays intact
    return BeautifulSoup(str(node), "html.parser").find(node.name)


def _query_param(url: Optional[str], name: str) -> Optional[str]:
    if not url:
        return None
    values = urllib.parse.parse_qs(urllib.parse.urlparse(url).query).get(name)
    if not values:
        return None
    # "cites" may list several cluster ids separated by commas
    return values[0].split(",")[0] or None


def _profile_citation_id(link: Optional[str]) -> Optional[str]:
    value = _query_param(link, "citation_for_view")
    if not value:
        return None
    return value.split(":", 1)[-1] or None


def _entries_of(soup: BeautifulSoup, strategy: ExtractionStrategy) -> List[Tag]:
    container = strategy.find_container(soup)
    return strategy.entries(container)


def _iter_parsed(
        entries: List[Tag],
        strategy: ExtractionStrategy,
        on_skip: Optional[Callable[[int], None]] = None,
) -> Iterator[Citation]:
    for idx, entry in enumerate(entries):
        try:
            citation = strategy.parse_entry(entry)
        except FIELD_ACCESS_ERRORS as e:
            logger.debug(f"Entry {idx} unreadable: {e}", source=strategy.source, category=LogCategory.SKIP)
            citation = None
        if citation is None or not citation.title:
            logger.debug(f"Entry {idx} has no title; skipped", source=strategy.source, category=LogCategory.SKIP)
            if on_skip is not None:
                on_skip(idx)
            continue
        yield citation


def iter_citations(document: Document, strategy: ExtractionStrategy) -> Iterator[Citation]:
    """
    Lazily yield the citations of one page in document order. The container
    is located before the iterator is returned, so a missing container raises
    StructureChanged right away. The iterator cannot be restarted; parse the
    document again to read it twice.
    """
    soup = parse_document(document)
    entries = _entries_of(soup, strategy)
    return _iter_parsed(entries, strategy)


def extract_page(document: Document, strategy: ExtractionStrategy) -> PageResult:
    """
    Extract every citation of one page plus the next-page signal.
    """
    soup = parse_document(document)
    entries = _entries_of(soup, strategy)

    skipped: List[int] = []
    citations = tuple(_iter_parsed(entries, strategy, on_skip=skipped.append))
    has_next = strategy.has_next_page(soup)
    logger.debug(
        f"Extracted {len(citations)} of {len(entries)} entries (next page: {has_next})",
        source=strategy.source, category=LogCategory.EXTRACT,
    )
    return PageResult(citations=citations, has_next_page=has_next, skipped=len(skipped))
