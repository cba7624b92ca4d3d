import json
from unittest.mock import patch

import pytest

import main
from CiteHarvest import io_utils
from CiteHarvest.models import Citation, FetchOutcome, FetchStatus, ScrapeResult, ScrapeState
from CiteHarvest.pagination import PaginationDriver
from tests.test_data import SEARCH_PAGE, SEARCH_LAST_PAGE, CAPTCHA_PAGE, PROFILE_LAST_PAGE


def _serving(*bodies, status=FetchStatus.OK):
    """
    Patch target for main.PaginationDriver that answers from fixed pages.
    """
    queue = list(bodies)

    def fetcher(url, session=None, **kwargs):
        body = queue.pop(0)
        if status is not FetchStatus.OK:
            return FetchOutcome(status, url, reason=status.value)
        return FetchOutcome(FetchStatus.OK, url, body=body.encode("utf-8"))

    def factory(session=None):
        return PaginationDriver(session=session, fetcher=fetcher, page_delay=0.0, sleep=lambda s: None)
    return factory


# ===== COMMAND LINE =====

def test_cli_json_output(tmp_path):
    """
    Test a two-page search written as JSON.
    """
    out = tmp_path / "out.json"
    with patch("main.PaginationDriver", _serving(SEARCH_PAGE, SEARCH_LAST_PAGE)):
        code = main.main(["--query", "security assurance", "--output", str(out)])
    assert code == 0
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload[0]["state"] == "done"
    assert payload[0]["error"] is None
    assert len(payload[0]["citations"]) == 4
    assert payload[0]["citations"][0]["citation_id"] == "oRnsanDfyFAJ"


def test_cli_bibtex_to_stdout(capsys):
    """
    Test BibTeX rendering on stdout.
    """
    with patch("main.PaginationDriver", _serving(SEARCH_LAST_PAGE)):
        code = main.main(["--query", "cloud", "--format", "bibtex"])
    assert code == 0
    assert capsys.readouterr().out.startswith("@article{Lee2021Security,")


def test_cli_csv_output(tmp_path):
    """
    Test CSV rendering.
    """
    out = tmp_path / "out.csv"
    with patch("main.PaginationDriver", _serving(SEARCH_LAST_PAGE)):
        assert main.main(["--query", "cloud", "--format", "csv", "--output", str(out)]) == 0
    lines = out.read_text(encoding="utf-8").splitlines()
    assert lines[0].startswith("title,authors,venue,year")
    assert len(lines) == 2


def test_cli_failed_scrape_exit_code(tmp_path):
    """
    Test that a blocked scrape exits with 1 and still writes its (empty) results.
    """
    out = tmp_path / "out.json"
    with patch("main.PaginationDriver", _serving(CAPTCHA_PAGE, status=FetchStatus.BLOCKED)):
        code = main.main(["--query", "x", "--output", str(out)])
    assert code == 1
    payload = json.loads(out.read_text(encoding="utf-8"))
    assert payload[0]["state"] == "failed"
    assert payload[0]["error_kind"] == "blocked"


@pytest.mark.parametrize("argv", [
    [],
    ["--query", "x", "--page-size", "50"],
    ["--author", "abc", "--from-year", "2000"],
])
def test_cli_invalid_input_exit_code(argv):
    """
    Test that unusable input exits with 2 before any request.
    """
    with patch("main.PaginationDriver", _serving()):
        assert main.main(argv) == 2


@pytest.mark.parametrize("argv", [
    ["--query", "x", "--max-pages", "-1"],
    ["--query", "x", "--max-results", "-5"],
    ["--query", "x", "--query", "y", "--workers", "0"],
])
def test_cli_rejects_bad_bounds(argv):
    """
    Test that negative page or result bounds and an empty worker pool end
    with exit code 2 from argument parsing.
    """
    with patch("main.PaginationDriver", _serving()):
        with pytest.raises(SystemExit) as exc:
            main.main(argv)
    assert exc.value.code == 2


def test_cli_references_skip_profile_rows(capsys):
    """
    Test that exporting references for an author profile sends no cite
    dialog requests for the profile's publications.
    """
    with patch("main.PaginationDriver", _serving(PROFILE_LAST_PAGE)):
        with patch("CiteHarvest.references.fetch_page") as mock_fetch:
            code = main.main(["--author", "qc6CJjYAAAAJ", "--references", "BibTeX"])
    assert code == 0
    assert mock_fetch.call_count == 0
    assert capsys.readouterr().out == ""


def test_cli_unreadable_cookies(tmp_path):
    """
    Test that a broken cookie file exits with 2.
    """
    bad = tmp_path / "cookies.json"
    bad.write_text("not json", encoding="utf-8")
    assert main.main(["--query", "x", "--cookies", str(bad)]) == 2


def test_cli_writes_log_file(tmp_path):
    """
    Test that --log-file mirrors the run's messages.
    """
    log = tmp_path / "run.log"
    with patch("main.PaginationDriver", _serving(SEARCH_LAST_PAGE)):
        main.main(["--query", "cloud", "--output", str(tmp_path / "o.json"), "--log-file", str(log)])
    assert "Scraping" in log.read_text(encoding="utf-8")


def test_build_queries():
    """
    Test translating arguments into queries.
    """
    args = main.create_parser().parse_args(
        ["--query", "a", "--query", "b", "--author", "xyz", "--sort", "date", "--cites", "42"])
    queries = main.build_queries(args)
    assert [q.query for q in queries] == ["a", "b", ""]
    assert queries[0].cite_id == "42"
    assert queries[2].author_id == "xyz"
    assert queries[2].cite_id == ""


def test_worker_log_files():
    """
    Test per-query log file names derived from --log-file.
    """
    assert main._worker_log_files("logs/run.log", 2) == ["logs/run.1.log", "logs/run.2.log"]
    assert main._worker_log_files(None, 2) is None


# ===== FILE HELPERS =====

def test_load_cookies_formats(tmp_path):
    """
    Test flat and list-of-records cookie exports.
    """
    flat = tmp_path / "flat.json"
    flat.write_text(json.dumps({"GSP": "a", "NID": 1}), encoding="utf-8")
    assert io_utils.load_cookies(str(flat)) == {"GSP": "a", "NID": "1"}

    records = tmp_path / "records.json"
    records.write_text(json.dumps([{"name": "GSP", "value": "a", "domain": ".google.com"}, {"bogus": 1}]),
                       encoding="utf-8")
    assert io_utils.load_cookies(str(records)) == {"GSP": "a"}

    with pytest.raises(ValueError):
        io_utils.load_cookies(str(tmp_path / "missing.json"))


def test_results_to_json_and_csv():
    """
    Test serialization helpers on a partial result.
    """
    citation = Citation(title="T", authors=("A", "B"), year=2020)
    result = ScrapeResult(citations=(citation,), state=ScrapeState.DONE, pages=1)
    payload = json.loads(io_utils.results_to_json([result], ['"t"']))
    assert payload[0]["citations"][0]["authors"] == ["A", "B"]
    assert payload[0]["pages"] == 1

    csv_text = io_utils.citations_to_csv([citation])
    assert "A; B" in csv_text


def test_safe_write_file(tmp_path):
    """
    Test writing into a directory that does not exist yet.
    """
    target = tmp_path / "nested" / "out.txt"
    assert io_utils.safe_write_file(str(target), "hello")
    assert target.read_text(encoding="utf-8") == "hello"
