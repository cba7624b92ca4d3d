from __future__ import annotations

import csv
import io
import json
import os
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import FILE_READ_ERRORS, FILE_WRITE_ERRORS, JSON_ERRORS
from .models import Citation, ScrapeResult

# column order of the CSV export
CSV_FIELDNAMES = [
    "title",
    "authors",
    "venue",
    "year",
    "citation_count",
    "citation_id",
    "link",
    "cited_by_url",
    "cites_id",
    "authors_truncated",
    "source",
]


def safe_read_file(path: str, encoding: str = "utf-8") -> Optional[str]:
    """
    Read a text file, returning None when it is missing or unreadable.
    """
    try:
        with open(path, "r", encoding=encoding) as f:
            return f.read()
    except FILE_READ_ERRORS:
        return None


def safe_read_json(path: str, default: Any = None) -> Any:
    """
    Read and parse a JSON file, returning the default on any read or parse error.
    """
    content = safe_read_file(path)
    if content is None:
        return default
    try:
        return json.loads(content)
    except JSON_ERRORS:
        return default


def safe_write_file(path: str, content: str, encoding: str = "utf-8", makedirs: bool = True) -> bool:
    """
    Write text to a file, optionally creating parent directories. Returns
    False instead of raising when the file cannot be written.
    """
    if makedirs:
        parent_dir = os.path.dirname(path)
        if parent_dir:
            try:
                os.makedirs(parent_dir, exist_ok=True)
            except OSError:
                return False

    try:
        with open(path, "w", encoding=encoding) as f:
            f.write(content)
        return True
    except FILE_WRITE_ERRORS:
        return False


def load_cookies(path: str) -> Dict[str, str]:
    """
    Load a cookie jar exported from a browser session. Accepts either a flat
    {"name": "value"} object or a list of {"name": ..., "value": ...} records
    (the format most cookie export extensions produce). Raises ValueError
    when the file cannot be read or has neither shape.
    """
    data = safe_read_json(path)
    if data is None:
        raise ValueError(f"cannot read cookies from '{path}'")

    if isinstance(data, dict):
        return {str(k): str(v) for k, v in data.items()}
    if isinstance(data, list):
        cookies = {}
        for item in data:
            if isinstance(item, dict) and "name" in item and "value" in item:
                cookies[str(item["name"])] = str(item["value"])
        return cookies
    raise ValueError(f"unsupported cookie file format in '{path}'")


def results_to_json(results: Iterable[ScrapeResult], labels: List[str]) -> str:
    """
    Serialize one or more scrape results, each tagged with the label of the
    query that produced it.
    """
    payload = []
    for label, result in zip(labels, results):
        payload.append({
            "query": label,
            "state": result.state.value,
            "error": str(result.error) if result.error else None,
            "error_kind": result.failure_kind.value if result.failure_kind else None,
            "pages": result.pages,
            "citations": [c.to_dict() for c in result.citations],
        })
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def citations_to_csv(citations: Iterable[Citation]) -> str:
    """
    Render citations as CSV with authors joined by "; ".
    """
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_FIELDNAMES)
    writer.writeheader()
    for c in citations:
        row = c.to_dict()
        row["authors"] = "; ".join(c.authors)
        writer.writerow(row)
    return buf.getvalue()
