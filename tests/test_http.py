from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

from CiteHarvest import http_utils
from CiteHarvest.extractors import SearchResultsStrategy, extract_page
from CiteHarvest.http_utils import BlockPolicy, fetch_page, decode_document
from CiteHarvest.models import FetchStatus
from tests.test_data import SEARCH_PAGE, CAPTCHA_PAGE

URL = "https://scholar.google.com/scholar?hl=en&q=x"


def _response(status=200, body=b"", url=URL, headers=None):
    return SimpleNamespace(status_code=status, content=body, url=url, headers=headers or {})


def _session_returning(resp):
    session = MagicMock(spec=requests.Session)
    session.get.return_value = resp
    return session


# ===== CLASSIFICATION =====

@pytest.mark.parametrize("status,body,final_url,expected", [
    (200, SEARCH_PAGE.encode(), URL, FetchStatus.OK),
    (200, CAPTCHA_PAGE.encode(), URL, FetchStatus.BLOCKED),
    (200, b"<html>fine</html>", "https://www.google.com/sorry/index?continue=x", FetchStatus.BLOCKED),
    (429, b"", URL, FetchStatus.RATE_LIMITED),
    (403, b"", URL, FetchStatus.BLOCKED),
    (503, b"<html>oops</html>", URL, FetchStatus.TRANSIENT),
    (503, CAPTCHA_PAGE.encode(), URL, FetchStatus.BLOCKED),
    (500, b"", URL, FetchStatus.TRANSIENT),
    (404, b"not here", URL, FetchStatus.EMPTY),
    (200, b"   \n", URL, FetchStatus.EMPTY),
    (200, b"", URL, FetchStatus.EMPTY),
    (302, b"", URL, FetchStatus.BLOCKED),
])
def test_classify(status, body, final_url, expected):
    """
    Test that responses are classified in the documented order.
    """
    outcome = BlockPolicy().classify(URL, status, body, final_url=final_url)
    assert outcome.status is expected
    assert outcome.url == URL
    assert (outcome.body is not None) == (expected is FetchStatus.OK)


def test_classify_keeps_retry_after_for_rate_limit():
    """
    Test that a 429 outcome carries the server's Retry-After.
    """
    outcome = BlockPolicy().classify(URL, 429, b"", retry_after=30.0)
    assert outcome.retry_after == 30.0


def test_policy_is_replaceable():
    """
    Test that callers can swap the block selectors and phrases.
    """
    policy = BlockPolicy(block_selectors=(), block_signatures=("access denied",))
    assert policy.classify(URL, 200, b"<p>Access Denied</p>").status is FetchStatus.BLOCKED
    assert policy.classify(URL, 200, CAPTCHA_PAGE.encode()).status is FetchStatus.OK


def test_find_signature():
    """
    Test that a block page is recognized by its markup.
    """
    assert BlockPolicy().find_signature(CAPTCHA_PAGE.encode()) == "form#gs_captcha_f"
    assert BlockPolicy().find_signature(SEARCH_PAGE.encode()) is None


def test_result_quoting_block_phrases_is_ok():
    """
    Test that a genuine results page whose titles and snippets mention CAPTCHAs
    is classified OK and still extracts every entry.
    """
    page = SEARCH_PAGE.replace(
        "Security assurance cases:\n   motivation and the state of the art",
        "I am not a robot: a usability study of CAPTCHAs",
    ).replace(
        "Assurance cases are a method for providing assurance for a system",
        "Detecting unusual traffic from your computer network via /sorry/index redirects",
    ).encode("utf-8")
    assert b"not a robot" in page and b"unusual traffic" in page
    outcome = BlockPolicy().classify(URL, 200, page)
    assert outcome.status is FetchStatus.OK
    titles = [c.title for c in extract_page(outcome.body, SearchResultsStrategy()).citations]
    assert titles[0] == "I am not a robot: a usability study of CAPTCHAs"
    assert len(titles) == 3


def test_text_only_interstitial_is_blocked():
    """
    Test that the "unusual traffic" text still marks a page without any
    result container as blocked.
    """
    body = (b"<html><body><h1>Sorry...</h1><p>Our systems have detected unusual traffic "
            b"from your computer network.</p></body></html>")
    outcome = BlockPolicy().classify(URL, 200, body)
    assert outcome.status is FetchStatus.BLOCKED
    assert "unusual traffic" in outcome.reason


# ===== FETCHING =====

def test_fetch_page_ok():
    """
    Test a single successful GET through an injected session.
    """
    session = _session_returning(_response(200, SEARCH_PAGE.encode()))
    outcome = fetch_page(URL, session)
    assert outcome.ok
    assert outcome.body == SEARCH_PAGE.encode()
    session.get.assert_called_once()
    assert session.get.call_args.args[0] == URL


def test_fetch_page_network_error_is_transient():
    """
    Test that a connection failure becomes a TRANSIENT outcome, not an exception.
    """
    session = MagicMock(spec=requests.Session)
    session.get.side_effect = requests.ConnectionError("reset by peer")
    outcome = fetch_page(URL, session)
    assert outcome.status is FetchStatus.TRANSIENT
    assert "ConnectionError" in outcome.reason
    assert session.get.call_count == 1


def test_fetch_page_timeout_is_transient():
    """
    Test that a read timeout becomes a TRANSIENT outcome.
    """
    session = MagicMock(spec=requests.Session)
    session.get.side_effect = requests.Timeout("slow")
    assert fetch_page(URL, session).status is FetchStatus.TRANSIENT


def test_fetch_page_reads_retry_after():
    """
    Test that the Retry-After header reaches the outcome.
    """
    session = _session_returning(_response(429, b"", headers={"Retry-After": "12"}))
    outcome = fetch_page(URL, session)
    assert outcome.status is FetchStatus.RATE_LIMITED
    assert outcome.retry_after == 12.0


def test_parse_retry_after():
    """
    Test numeric and invalid Retry-After values.
    """
    assert http_utils._parse_retry_after("5") == 5.0
    assert http_utils._parse_retry_after("-3") == 0.0
    assert http_utils._parse_retry_after(None) == 0.0
    assert http_utils._parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT") == 0.0
    assert http_utils._parse_retry_after("soon") == 0.0


def test_create_session_headers_and_cookies():
    """
    Test that the shared session carries browser headers and caller cookies.
    """
    session = http_utils.create_session(headers={"X-Test": "1"}, cookies={"GSP": "abc"})
    assert "Mozilla" in session.headers["User-Agent"]
    assert session.headers["X-Test"] == "1"
    assert session.cookies.get("GSP") == "abc"


def test_decode_document():
    """
    Test decoding with BOM, UTF-8 and Latin-1 fallback.
    """
    assert decode_document("Özdemir".encode("utf-8")) == "Özdemir"
    assert decode_document(b"\xef\xbb\xbfabc") == "abc"
    assert decode_document("Café".encode("latin-1")) == "Café"
