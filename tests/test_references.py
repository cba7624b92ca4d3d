from unittest.mock import patch

import pytest

from CiteHarvest.exceptions import InvalidQuery, Blocked, RateLimited, TransientError, StructureChanged
from CiteHarvest.extractors import ProfileStrategy, extract_page
from CiteHarvest.models import Citation, FetchOutcome, FetchStatus, ReferenceFormat
from CiteHarvest.references import (
    fetch_reference,
    iter_references,
    parse_citation_details,
    fetch_citation_details,
    enrich_citation,
)
from tests.test_data import (
    CITE_DIALOG,
    CITE_URL,
    CITE_BIBTEX_URL,
    BIBTEX_EXPORT,
    ENDNOTE_EXPORT,
    DETAIL_PAGE,
    PROFILE_PAGE,
)

CITATION = Citation(title="Security assurance cases", citation_id="oRnsanDfyFAJ")

PROFILE_CITATION = Citation(
    title="Deep learning for citation graphs",
    authors=("J Researcher", "M Other", "P Third"),
    authors_truncated=True,
    venue=None,
    year=None,
    citation_count=0,
    link=("https://scholar.google.com/citations?view_op=view_citation&hl=en"
          "&user=qc6CJjYAAAAJ&citation_for_view=qc6CJjYAAAAJ:u5HHmVD_uO8C"),
)


def _serve(pages):
    """
    Build a fetch_page replacement answering from a URL -> body (or status) map.
    """
    def fake_fetch(url, session=None, **kwargs):
        value = pages.get(url)
        if value is None:
            return FetchOutcome(FetchStatus.EMPTY, url, reason="HTTP 404")
        if isinstance(value, FetchStatus):
            return FetchOutcome(value, url, reason=value.value)
        return FetchOutcome(FetchStatus.OK, url, body=value.encode("utf-8"))
    return fake_fetch


# ===== REFERENCE EXPORT =====

def test_fetch_bibtex_reference():
    """
    Verify that the cite dialog is followed to the BibTeX export.
    """
    pages = {CITE_URL: CITE_DIALOG, CITE_BIBTEX_URL: BIBTEX_EXPORT}
    with patch("CiteHarvest.references.fetch_page", side_effect=_serve(pages)) as mock_fetch:
        text = fetch_reference(CITATION, ReferenceFormat.BIBTEX)
    assert text.startswith("@article{bloomfield2006security,")
    assert [c.args[0] for c in mock_fetch.call_args_list] == [CITE_URL, CITE_BIBTEX_URL]


def test_fetch_endnote_reference_by_id():
    """
    Verify export in another format, addressed by bare result id.
    """
    endnote_url = CITE_BIBTEX_URL.replace("scholar.bib", "scholar.enw").replace(
        "&scisdr=x&scisf=4&ct=citation&cd=-1", "&scisf=3")
    pages = {CITE_URL: CITE_DIALOG, endnote_url: ENDNOTE_EXPORT}
    with patch("CiteHarvest.references.fetch_page", side_effect=_serve(pages)):
        text = fetch_reference("oRnsanDfyFAJ", "EndNote")
    assert text.startswith("%0 Journal Article")


def test_reference_requires_result_id():
    """
    Verify that citations without a search result id cannot be exported.
    """
    with pytest.raises(InvalidQuery):
        fetch_reference(Citation(title="no id"))


@pytest.mark.parametrize("status,error", [
    (FetchStatus.BLOCKED, Blocked),
    (FetchStatus.RATE_LIMITED, RateLimited),
    (FetchStatus.TRANSIENT, TransientError),
])
def test_reference_fetch_failures_raise_typed_errors(status, error):
    """
    Verify that a failed cite dialog fetch raises the matching error and is not retried.
    """
    with patch("CiteHarvest.references.fetch_page", side_effect=_serve({CITE_URL: status})) as mock_fetch:
        with pytest.raises(error):
            fetch_reference(CITATION)
    assert mock_fetch.call_count == 1


def test_reference_missing_format_link():
    """
    Verify that a dialog without the requested export link is a structure change.
    """
    dialog = CITE_DIALOG.replace(">RefWorks<", ">Other<")
    with patch("CiteHarvest.references.fetch_page", side_effect=_serve({CITE_URL: dialog})):
        with pytest.raises(StructureChanged):
            fetch_reference(CITATION, ReferenceFormat.REFWORKS)


def test_reference_bad_bibtex_export():
    """
    Verify that a BibTeX link returning something else is reported.
    """
    pages = {CITE_URL: CITE_DIALOG, CITE_BIBTEX_URL: "<html>sign in</html>"}
    with patch("CiteHarvest.references.fetch_page", side_effect=_serve(pages)):
        with pytest.raises(StructureChanged):
            fetch_reference(CITATION)


def test_iter_references_is_lazy_and_skips_unexportable():
    """
    Verify that references are fetched one citation at a time and citations
    without an id are skipped.
    """
    pages = {CITE_URL: CITE_DIALOG, CITE_BIBTEX_URL: BIBTEX_EXPORT}
    citations = [Citation(title="profile only"), CITATION]
    with patch("CiteHarvest.references.fetch_page", side_effect=_serve(pages)) as mock_fetch:
        it = iter_references(citations)
        assert mock_fetch.call_count == 0
        citation, text = next(it)
        assert citation is CITATION
        assert "bloomfield2006security" in text
        assert list(it) == []


def test_profile_citation_is_not_sent_to_cite_dialog():
    """
    Verify that a profile row, whose id belongs to the profile and not to a
    search result, is rejected without any request.
    """
    profile_row = extract_page(PROFILE_PAGE, ProfileStrategy()).citations[0]
    assert profile_row.citation_id == "u5HHmVD_uO8C"
    assert profile_row.is_profile_entry
    with patch("CiteHarvest.references.fetch_page") as mock_fetch:
        with pytest.raises(InvalidQuery):
            fetch_reference(profile_row)
    assert mock_fetch.call_count == 0


def test_iter_references_skips_profile_rows():
    """
    Verify that exporting a mix of profile rows and search results only
    requests the search results.
    """
    profile_rows = list(extract_page(PROFILE_PAGE, ProfileStrategy()).citations)
    pages = {CITE_URL: CITE_DIALOG, CITE_BIBTEX_URL: BIBTEX_EXPORT}
    with patch("CiteHarvest.references.fetch_page", side_effect=_serve(pages)) as mock_fetch:
        exported = list(iter_references(profile_rows + [CITATION]))
    assert [c for c, _ in exported] == [CITATION]
    assert [c.args[0] for c in mock_fetch.call_args_list] == [CITE_URL, CITE_BIBTEX_URL]


# ===== CITATION DETAILS =====

def test_parse_citation_details():
    """
    Verify that the field table of a detail page is read by label.
    """
    details = parse_citation_details(DETAIL_PAGE)
    assert details["title"] == "Deep learning for citation graphs"
    assert details["link"] == "https://www.nature.com/articles/s42256-021-00001"
    assert details["authors"] == "Jane Researcher, Mark Other, Pat Third, Quinn Fourth"
    assert details["journal"] == "Nature Machine Intelligence"
    assert details["publication date"] == "2021/1/15"
    assert details["total citations"].startswith("Cited by 312")


def test_parse_citation_details_without_title():
    """
    Verify that a page without the title block is a structure change.
    """
    with pytest.raises(StructureChanged):
        parse_citation_details("<html><body><p>nothing</p></body></html>")


def test_enrich_citation_fills_missing_fields():
    """
    Verify that truncated authors and missing venue, year and count are filled.
    """
    enriched = enrich_citation(PROFILE_CITATION, parse_citation_details(DETAIL_PAGE))
    assert enriched.authors == ("Jane Researcher", "Mark Other", "Pat Third", "Quinn Fourth")
    assert enriched.authors_truncated is False
    assert enriched.venue == "Nature Machine Intelligence"
    assert enriched.year == 2021
    assert enriched.citation_count == 312
    assert enriched.title == PROFILE_CITATION.title


def test_enrich_citation_keeps_known_fields():
    """
    Verify that values already on the citation are not overwritten.
    """
    known = Citation(title="t", authors=("A B",), venue="Known venue", year=2000, citation_count=3)
    fields = {"authors": "X Y", "journal": "Other", "publication date": "2021", "total citations": "Cited by 9"}
    assert enrich_citation(known, fields) == known


def test_fetch_citation_details():
    """
    Verify fetching and merging a detail page.
    """
    pages = {PROFILE_CITATION.link: DETAIL_PAGE}
    with patch("CiteHarvest.references.fetch_page", side_effect=_serve(pages)):
        enriched = fetch_citation_details(PROFILE_CITATION)
    assert enriched.year == 2021
    assert len(enriched.authors) == 4


def test_fetch_citation_details_requires_detail_link():
    """
    Verify that search results without a profile link are rejected.
    """
    with pytest.raises(InvalidQuery):
        fetch_citation_details(CITATION)
