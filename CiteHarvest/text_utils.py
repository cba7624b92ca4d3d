from __future__ import annotations

import re
import urllib.parse
from typing import Any, List, NamedTuple, Optional, Sequence, Tuple, Union

from unidecode import unidecode

from .exceptions import PARSE_ERRORS, DECODE_ERRORS, NUMERIC_ERRORS
from .config import VALID_YEAR_MIN, VALID_YEAR_MAX


__all__ = [
    "build_url",
    "normalize_whitespace",
    "strip_accents",
    "extract_year_from_any",
    "parse_count",
    "parse_author_line",
    "split_byline",
    "split_venue_year",
    "VenueYear",
    "TRUNCATION_MARKERS",
]

# Scholar elides long author lists with a trailing ellipsis (either the
# unicode character or three dots)
TRUNCATION_MARKERS = ("…", "...")

_YEAR_TAIL = re.compile(r"^(?P<venue>.*?)(?P<sep>[\s,]*)(?P<year>(?:19|20)\d{2})$")
_BYLINE_SEP = re.compile(r"\s+-\s+")
_HOST_LIKE = re.compile(r"^[\w.-]+\.[a-z]{2,}$", re.IGNORECASE)


def build_url(base: str, params: Union[Sequence[Tuple[str, Any]], dict]) -> str:
    """
    Attach query parameters to a base URL and return the fully encoded address
    as a string. Parameter order is preserved, so equal inputs always produce
    byte-identical URLs.
    """
    q = urllib.parse.urlencode(params)
    return f"{base}?{q}"


def normalize_whitespace(s: Optional[str]) -> str:
    """
    Collapse every run of whitespace, non-breaking spaces included, into a
    single space and trim the ends.
    """
    if not s:
        return ""
    return " ".join(str(s).replace("\xa0", " ").split())


def strip_accents(s: str) -> str:
    """
    Remove accents and diacritics from a string so it can be used in ASCII-only
    places such as BibTeX keys.

    Uses unidecode library for comprehensive Unicode to ASCII transliteration.
    """
    try:
        return unidecode(s)
    except PARSE_ERRORS + DECODE_ERRORS:
        return s


def extract_year_from_any(obj: Any, fallback: Optional[int] = None) -> Optional[int]:
    """
    Recover a four-digit publication year from an integer or from free text,
    returning the fallback when no plausible year is present.
    """
    if isinstance(obj, bool):
        return fallback

    if isinstance(obj, int):
        if VALID_YEAR_MIN <= obj <= VALID_YEAR_MAX:
            return obj
        return fallback

    if isinstance(obj, str):
        m = re.search(r"\b(?:19|20)\d{2}\b", obj)
        if m:
            try:
                year = int(m.group(0))
            except NUMERIC_ERRORS:
                return fallback
            if VALID_YEAR_MIN <= year <= VALID_YEAR_MAX:
                return year
    return fallback


def parse_count(text: Optional[str], default: int = 0) -> int:
    """
    Read the first integer in a label such as "Cited by 1,234" or "57*",
    ignoring thousands separators.
    """
    if not text:
        return default
    m = re.search(r"\d[\d,.]*", text)
    if not m:
        return default
    digits = re.sub(r"\D", "", m.group(0))
    try:
        return int(digits)
    except NUMERIC_ERRORS:
        return default


def parse_author_line(text: Optional[str]) -> Tuple[List[str], bool]:
    """
    Split a comma-separated author line into names. Returns the names and
    whether the service truncated the list with an ellipsis.
    """
    line = normalize_whitespace(text)
    if not line:
        return [], False

    truncated = False
    authors: List[str] = []
    for part in line.split(","):
        name = part.strip()
        for marker in TRUNCATION_MARKERS:
            if name.endswith(marker):
                truncated = True
                name = name[: -len(marker)].strip()
        if name:
            authors.append(name)
    return authors, truncated


def split_byline(text: Optional[str]) -> Tuple[str, str, str]:
    """
    Split a search result byline ("A Smith, B Jones - Nature, 2019 -
    nature.com") on its " - " separators into (authors, venue/year, host).
    Missing parts come back as empty strings. The first separator always
    ends the author part and the last one starts the host; with a single
    separator the trailing segment is the host only when it looks like one.
    """
    line = normalize_whitespace(text)
    if not line:
        return "", "", ""

    parts = _BYLINE_SEP.split(line, maxsplit=1)
    authors = parts[0].strip()
    if len(parts) == 1:
        return authors, "", ""

    remainder = parts[1].strip()
    # the host or publisher is always the last segment
    venue_year, sep, host = remainder.rpartition(" - ")
    if not sep:
        if _HOST_LIKE.match(remainder):
            return authors, "", remainder
        return authors, remainder, ""
    return authors, venue_year.strip(), host.strip()


class VenueYear(NamedTuple):
    """
    A venue line split into venue text and trailing year. The separator that
    sat between them is kept so the line can be put back together.
    """
    venue: Optional[str]
    year: Optional[int]
    separator: str = ""

    def join(self) -> str:
        if self.venue and self.year is not None:
            return f"{self.venue}{self.separator}{self.year}"
        if self.year is not None:
            return str(self.year)
        return self.venue or ""


def split_venue_year(line: Optional[str]) -> VenueYear:
    """
    Separate a trailing publication year from a venue line, e.g.
    "Journal of Things 12 (3), 45-67, 2019" becomes venue "Journal of Things
    12 (3), 45-67" and year 2019. Lines without a trailing year are all venue;
    a line that is only a year has no venue.
    """
    text = normalize_whitespace(line)
    if not text:
        return VenueYear(None, None)

    m = _YEAR_TAIL.match(text)
    if not m:
        return VenueYear(text, None)

    year = extract_year_from_any(int(m.group("year")))
    if year is None:
        return VenueYear(text, None)

    venue = m.group("venue").strip()
    sep = m.group("sep")
    if not venue:
        return VenueYear(None, year)
    # a year glued to the previous word ("Proc2019") is not a separate field
    if not sep:
        return VenueYear(text, None)
    return VenueYear(venue, year, sep)
