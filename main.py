from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from typing import List, Optional

from CiteHarvest.bibtex_utils import citations_to_bibtex
from CiteHarvest.config import DEFAULT_LANGUAGE, DEFAULT_WORKERS
from CiteHarvest.exceptions import InvalidQuery, ScrapeError, TERMINAL_ERRORS
from CiteHarvest.http_utils import create_session
from CiteHarvest.io_utils import load_cookies, safe_write_file, results_to_json, citations_to_csv
from CiteHarvest.log_utils import logger, LogSource, LogCategory
from CiteHarvest.models import Query, QueryKind, ReferenceFormat, ScrapeResult, SortMode
from CiteHarvest.pagination import PaginationDriver, scrape_many
from CiteHarvest.references import fetch_citation_details, iter_references


def _non_negative_int(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"must not be negative: {value}")
    return number


def _positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1: {value}")
    return number


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="citeharvest",
        description="Scrape publication records from Google Scholar searches and author profiles",
    )
    parser.add_argument("--query", action="append", default=[],
                        help="Free-text search; repeat to run several searches concurrently")
    parser.add_argument("--author", help="Scholar profile id whose publication list is scraped")
    parser.add_argument("--cites", default="", help="Restrict a search to works citing this cluster id")
    parser.add_argument("--sort", choices=[m.value for m in SortMode], default=SortMode.RELEVANCE.value)
    parser.add_argument("--page-size", type=int, help="Results requested per page")
    parser.add_argument("--max-pages", type=_non_negative_int, help="Stop after this many pages per query")
    parser.add_argument("--max-results", type=_non_negative_int, help="Stop after this many citations per query")
    parser.add_argument("--from-year", type=int)
    parser.add_argument("--to-year", type=int)
    parser.add_argument("--lang", default=DEFAULT_LANGUAGE, help="Interface language (hl parameter)")
    parser.add_argument("--format", choices=["json", "bibtex", "csv"], default="json", dest="fmt")
    parser.add_argument("--references", choices=[f.value for f in ReferenceFormat],
                        help="Download each search result's export in this format instead")
    parser.add_argument("--details", action="store_true",
                        help="Fetch each profile publication's detail page to complete its record")
    parser.add_argument("--cookies", help="JSON file with browser cookies for scholar.google.com")
    parser.add_argument("--output", help="Write output here instead of stdout")
    parser.add_argument("--log-file", help="Mirror log messages to this file")
    parser.add_argument("--workers", type=_positive_int, default=DEFAULT_WORKERS)
    parser.add_argument("--verbose", action="store_true", help="Show debug messages on the console")
    return parser


def build_queries(args: argparse.Namespace) -> List[Query]:
    """
    Turn command-line arguments into queries; validation happens later, in
    the driver.
    """
    sort_by = SortMode(args.sort)
    queries = [
        Query(
            query=text,
            cite_id=args.cites,
            sort_by=sort_by,
            page_size=args.page_size,
            from_year=args.from_year,
            to_year=args.to_year,
            lang=args.lang,
        )
        for text in args.query
    ]
    if args.author:
        # profiles take no year bounds; validation reports them
        queries.append(Query(author_id=args.author, sort_by=sort_by, page_size=args.page_size,
                             from_year=args.from_year, to_year=args.to_year, lang=args.lang))
    return queries


def _worker_log_files(log_file: Optional[str], count: int) -> Optional[List[str]]:
    if not log_file:
        return None
    root, ext = os.path.splitext(log_file)
    return [f"{root}.{idx}{ext or '.log'}" for idx in range(1, count + 1)]


def _with_details(result: ScrapeResult, session) -> ScrapeResult:
    enriched = []
    citations = list(result.citations)
    for idx, citation in enumerate(citations):
        try:
            enriched.append(fetch_citation_details(citation, session))
        except TERMINAL_ERRORS as e:
            logger.warn(f"Stopping detail lookups: {e}", source=LogSource.PROFILE, category=LogCategory.BLOCK)
            enriched.extend(citations[idx:])
            break
        except ScrapeError as e:
            logger.warn(f"Details unavailable for '{citation.title}': {e}",
                        source=LogSource.PROFILE, category=LogCategory.SKIP)
            enriched.append(citation)
    return replace(result, citations=tuple(enriched))


def main(argv: Optional[List[str]] = None) -> int:
    """
    Run the scrapes described on the command line and write the results.

    Returns 0 when every scrape finished, 1 when at least one failed (partial
    results are still written), and 2 for unusable input.
    """
    args = create_parser().parse_args(argv)
    if args.verbose:
        logger.set_level(logging.DEBUG)
    if args.log_file:
        logger.set_log_file(args.log_file)

    try:
        return _run(args)
    finally:
        logger.close()


def _run(args: argparse.Namespace) -> int:
    queries = build_queries(args)
    if not queries:
        logger.error("Nothing to do: give --query and/or --author", category=LogCategory.ERROR)
        return 2

    cookies = None
    if args.cookies:
        try:
            cookies = load_cookies(args.cookies)
        except ValueError as e:
            logger.error(str(e), category=LogCategory.ERROR)
            return 2
        logger.success(f"Loaded {len(cookies)} cookie(s)", category=LogCategory.QUERY)

    session = create_session(cookies=cookies, pool_maxsize=max(args.workers, 1))
    driver = PaginationDriver(session=session)
    bounds = dict(max_pages=args.max_pages, max_results=args.max_results)

    try:
        if len(queries) == 1:
            results = [driver.run(queries[0], **bounds)]
        else:
            logger.step(f"Running {len(queries)} queries with {args.workers} workers", category=LogCategory.QUERY)
            results = scrape_many(queries, driver=driver, max_workers=args.workers,
                                  log_files=_worker_log_files(args.log_file, len(queries)), **bounds)
    except InvalidQuery as e:
        logger.error(f"Invalid query: {e}", category=LogCategory.ERROR)
        return 2

    if args.details:
        results = [_with_details(r, session) if q.kind is QueryKind.PROFILE else r
                   for q, r in zip(queries, results)]

    failed = False
    for query, result in zip(queries, results):
        if not result.ok:
            failed = True
            logger.error(f"{query.describe()}: {result.failure_kind.value} after "
                         f"{len(result.citations)} citation(s)", category=LogCategory.ERROR)

    citations = [c for r in results for c in r.citations]
    if args.references:
        profile_rows = sum(1 for c in citations if c.is_profile_entry)
        if profile_rows:
            logger.warn(f"Skipping {profile_rows} profile publication(s); only search results have a cite dialog",
                        source=LogSource.CITE, category=LogCategory.SKIP)
        chunks = []
        try:
            for _, text in iter_references(citations, ReferenceFormat(args.references), session=session):
                chunks.append(text)
        except ScrapeError as e:
            failed = True
            logger.error(f"Reference export stopped after {len(chunks)} item(s): {e}",
                         source=LogSource.CITE, category=LogCategory.ERROR)
        output = "\n".join(chunks)
    elif args.fmt == "bibtex":
        output = citations_to_bibtex(citations)
    elif args.fmt == "csv":
        output = citations_to_csv(citations)
    else:
        output = results_to_json(results, [q.describe() for q in queries])

    if args.output:
        if not safe_write_file(args.output, output):
            logger.error(f"Cannot write '{args.output}'", category=LogCategory.ERROR)
            return 2
        logger.success(f"Wrote {len(citations)} citation(s) to {args.output}", category=LogCategory.DONE)
    else:
        sys.stdout.write(output)

    if logger.log_file_path:
        logger.info(f"Log file: {logger.log_file_path}", category=LogCategory.DONE)
    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
