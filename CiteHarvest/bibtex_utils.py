from __future__ import annotations

import re
from typing import Dict, Iterable, List, Optional

from .config import BIBTEX_KEY_MAX_WORDS
from .models import Citation
from .text_utils import strip_accents

# characters that must be escaped inside a braced BibTeX value; braces are
# spelled out because BibTeX counts escaped braces too
_BIBTEX_SPECIALS = {
    "\\": r"\textbackslash{}",
    "{": r"\textbraceleft{}",
    "}": r"\textbraceright{}",
    "&": r"\&",
    "%": r"\%",
    "#": r"\#",
    "_": r"\_",
    "$": r"\$",
}


def make_bibkey(title: str, authors: List[str], year: Optional[int], fallback: str = "entry") -> str:
    """
    Build a compact BibTeX citation key from the first author's surname, the
    publication year, and the first word(s) of the title. Accented letters
    are transliterated so the key stays ASCII.
    """
    last = ""
    if authors and authors[0].strip():
        last = re.sub(r"[^A-Za-z0-9]", "", strip_accents(authors[0].split()[-1]))
    words = [re.sub(r"[^A-Za-z0-9]", "", strip_accents(w)) for w in (title or "").split()]
    word = "".join([w for w in words if w][:BIBTEX_KEY_MAX_WORDS])
    y = str(year) if year else ""
    base = "".join(p for p in (last, y, word) if p)
    base = re.sub(r"[^A-Za-z0-9_]+", "", base)
    return base or fallback


def escape_value(value: str) -> str:
    """
    Escape the LaTeX specials that would break a braced BibTeX field, so a
    scraped value with stray braces still yields a balanced entry.
    """
    return "".join(_BIBTEX_SPECIALS.get(ch, ch) for ch in value)


def citation_to_bibtex(citation: Citation, key: Optional[str] = None) -> str:
    """
    Render one citation as a BibTeX entry: @article when the venue is known,
    @misc otherwise.
    """
    key = key or make_bibkey(citation.title, list(citation.authors), citation.year)
    entry_type = "article" if citation.venue else "misc"
    lines = [f"@{entry_type}{{{key},", f"  title = {{{escape_value(citation.title)}}},"]
    if citation.authors:
        names = " and ".join(escape_value(a) for a in citation.authors)
        if citation.authors_truncated:
            names += " and others"
        lines.append(f"  author = {{{names}}},")
    if citation.year:
        lines.append(f"  year = {{{citation.year}}},")
    if citation.venue:
        lines.append(f"  journal = {{{escape_value(citation.venue)}}},")
    if citation.link:
        url = citation.link.replace("{", "%7B").replace("}", "%7D")
        lines.append(f"  url = {{{url}}},")
    if lines[-1].endswith(","):
        lines[-1] = lines[-1][:-1]
    lines.append("}")
    return "\n".join(lines) + "\n"


def citations_to_bibtex(citations: Iterable[Citation]) -> str:
    """
    Render many citations, suffixing repeated keys with b, c, ... so every
    key in the output is unique.
    """
    seen: Dict[str, int] = {}
    entries = []
    for citation in citations:
        key = make_bibkey(citation.title, list(citation.authors), citation.year)
        n = seen.get(key, 0)
        seen[key] = n + 1
        if n:
            key = f"{key}{chr(ord('a') + n)}" if n < 26 else f"{key}_{n}"
        entries.append(citation_to_bibtex(citation, key=key))
    return "\n".join(entries)


def _extract_balanced_braces(text: str, start: int) -> Optional[str]:
    """
    Extract the text inside a balanced pair of braces starting at the given
    position, keeping nested braces intact.
    """
    if start >= len(text) or text[start] != "{":
        return None
    depth = 0
    result = []
    for ch in text[start:]:
        if ch == "{":
            depth += 1
            if depth > 1:
                result.append(ch)
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return "".join(result)
            result.append(ch)
        else:
            result.append(ch)
    return None  # unbalanced


def parse_bibtex_entry(bibtex: str) -> Optional[Dict[str, object]]:
    """
    Read a single BibTeX entry, such as the one Scholar's export link
    returns, into {"type", "key", "fields"}. Returns None when the text does
    not start like a BibTeX entry.
    """
    head = re.search(r"(?is)@\s*([a-zA-Z]+)\s*\{\s*([^,\s]+)\s*,", bibtex or "")
    if not head:
        return None
    fields: Dict[str, str] = {}
    pos = head.end()
    field_re = re.compile(r"\s*([a-zA-Z][a-zA-Z0-9_\-]*)\s*=\s*")
    while True:
        m = field_re.match(bibtex, pos)
        if not m:
            break
        name = m.group(1).lower()
        pos = m.end()
        if pos < len(bibtex) and bibtex[pos] == "{":
            value = _extract_balanced_braces(bibtex, pos)
            if value is None:
                break
            pos += len(value) + 2
        elif pos < len(bibtex) and bibtex[pos] == '"':
            end = bibtex.find('"', pos + 1)
            if end < 0:
                break
            value = bibtex[pos + 1:end]
            pos = end + 1
        else:
            m2 = re.match(r"[^,}\s]+", bibtex[pos:])
            if not m2:
                break
            value = m2.group(0)
            pos += len(value)
        fields[name] = " ".join(value.split())
        comma = re.match(r"\s*,", bibtex[pos:])
        if not comma:
            break
        pos += comma.end()
    return {"type": head.group(1).lower(), "key": head.group(2), "fields": fields}
