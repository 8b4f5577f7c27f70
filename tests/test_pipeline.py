"""Test the add-paper pipeline end to end against fake remote APIs."""

import asyncio
from pathlib import Path

import httpx
import pytest

from helpers import (
    ARXIV_ENTRY,
    BIORXIV_DETAILS,
    PAPER_LINES,
    PAPER_PDF,
    PUBMED_SUMMARY,
    SHORT_PDF,
    arxiv_feed,
    json_response,
    pdf_response,
    timeout,
)
from skim.errors import (
    AcquisitionFailed,
    BadIdentifier,
    BadRequest,
    BadUpload,
    ExtractionFailed,
    InsufficientText,
    NoPdfFound,
)
from skim.models import SourceKind
from skim.pipeline import UNTITLED, fallback_title

ARXIV_URL = "https://arxiv.org/abs/1706.03762"


def _serve_arxiv(web, pdf=PAPER_PDF):
    web.add("export.arxiv.org/api/query", httpx.Response(200, text=arxiv_feed(ARXIV_ENTRY)))
    web.add("arxiv.org/pdf/1706.03762v7.pdf", pdf_response(pdf))


def _paper_count(store, owner):
    return len(store.list_papers(owner))


# ---------------------------------------------------------------------------
# By URL
# ---------------------------------------------------------------------------

async def test_arxiv_paper_is_ingested_and_analyzed(web, services, assistant, owner):
    _serve_arxiv(web)

    result = await services.pipeline.add_by_url(ARXIV_URL, owner)
    paper = result.paper

    assert result.created
    assert paper.source_kind == SourceKind.ARXIV
    assert paper.source_url == ARXIV_URL
    assert paper.title == "Attention Is All You Need"
    assert "Ashish Vaswani" in paper.authors
    assert paper.pdf_url == "http://arxiv.org/pdf/1706.03762v7.pdf"
    assert paper.published_date == "2017-06-12"
    assert "Transformer" in paper.extracted_markdown
    assert paper.rating == 9
    assert paper.category == "Computer Science"
    assert sorted(paper.tags) == ["attention", "transformer"]
    assert paper.summary.startswith("Introduces the Transformer.")
    assert "- Attention alone suffices" in paper.summary
    assert paper.is_read is False
    assert len(assistant.analyze_calls) == 1
    assert services.store.get_paper(paper.id, owner) == paper


async def test_resubmitting_same_url_returns_existing_paper(web, services, assistant, owner):
    _serve_arxiv(web)

    first = await services.pipeline.add_by_url(ARXIV_URL, owner)
    second = await services.pipeline.add_by_url(ARXIV_URL, owner)

    assert second.created is False
    assert second.paper.id == first.paper.id
    assert _paper_count(services.store, owner) == 1
    # The second submission never reached the network or the model.
    assert web.hits("export.arxiv.org/api/query") == 1
    assert len(assistant.analyze_calls) == 1


async def test_same_url_for_different_owners_is_two_papers(web, services):
    _serve_arxiv(web)

    a = await services.pipeline.add_by_url(ARXIV_URL, "alice")
    b = await services.pipeline.add_by_url(ARXIV_URL, "bob")

    assert a.created and b.created
    assert a.paper.id != b.paper.id


async def test_concurrent_submissions_persist_one_paper(web, services, owner):
    _serve_arxiv(web)

    results = await asyncio.gather(
        services.pipeline.add_by_url(ARXIV_URL, owner),
        services.pipeline.add_by_url(ARXIV_URL, owner),
    )

    assert {r.paper.id for r in results} == {results[0].paper.id}
    assert sorted(r.created for r in results) == [False, True]
    assert _paper_count(services.store, owner) == 1


async def test_analysis_failure_still_saves_paper(web, services, assistant, owner):
    assistant.fail = True
    _serve_arxiv(web)

    result = await services.pipeline.add_by_url(ARXIV_URL, owner)

    assert result.created
    assert result.paper.summary is None
    assert result.paper.rating is None
    assert result.paper.category == "Other"
    assert result.paper.tags == []
    assert services.store.usage_totals(owner) == (0, 0.0)


async def test_unknown_arxiv_id_is_bad_identifier(web, services, owner):
    web.add("export.arxiv.org/api/query", httpx.Response(200, text=arxiv_feed()))

    with pytest.raises(BadIdentifier) as exc_info:
        await services.pipeline.add_by_url("https://arxiv.org/abs/9999.99999", owner)

    assert exc_info.value.stage == "fetching_metadata"
    assert _paper_count(services.store, owner) == 0


async def test_pubmed_with_pmc_pdf(web, services, owner):
    web.add("eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi", json_response(PUBMED_SUMMARY))
    web.add("eutils.ncbi.nlm.nih.gov/entrez/eutils/efetch.fcgi", httpx.Response(200, text="Abstract."))
    web.add("www.ncbi.nlm.nih.gov/pmc/articles/PMC7010134/pdf/", pdf_response())

    result = await services.pipeline.add_by_url("https://pubmed.ncbi.nlm.nih.gov/31452104/", owner)

    assert result.paper.source_kind == SourceKind.PUBMED
    assert result.paper.title == "Deep learning for cell segmentation."
    assert result.paper.pdf_url.endswith("/pdf/")


async def test_pubmed_outage_falls_back_to_page_scan(web, services, owner):
    url = "https://pubmed.ncbi.nlm.nih.gov/31452104/"
    web.add("eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi", timeout)
    web.add("pubmed.ncbi.nlm.nih.gov/31452104/", httpx.Response(200, text='<a href="/files/paper.pdf">Full text</a>'))
    web.add("pubmed.ncbi.nlm.nih.gov/files/paper.pdf", pdf_response())

    result = await services.pipeline.add_by_url(url, owner)

    assert result.paper.pdf_url == "https://pubmed.ncbi.nlm.nih.gov/files/paper.pdf"
    # No metadata: the title comes from the extracted text.
    assert result.paper.title == PAPER_LINES[0]
    assert result.paper.authors == []


async def test_pubmed_without_pmc_scans_page_for_pdf(web, services, owner):
    summary = {"result": {"555": {"uid": "555", "title": "Closed access", "pubdate": "2021", "authors": []}}}
    web.add("eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi", json_response(summary))
    web.add("pubmed.ncbi.nlm.nih.gov/555", httpx.Response(200, text="<p>Subscribe to read</p>"))

    with pytest.raises(NoPdfFound) as exc_info:
        await services.pipeline.add_by_url("https://pubmed.ncbi.nlm.nih.gov/555", owner)

    assert exc_info.value.stage == "locating_pdf"
    assert _paper_count(services.store, owner) == 0


async def test_biorxiv_paper(web, services, owner):
    web.add("api.biorxiv.org/details/biorxiv/10.1101/2020.03.01.972935/na/json", json_response(BIORXIV_DETAILS))
    web.add("www.biorxiv.org/content/10.1101/2020.03.01.972935v2.full.pdf", pdf_response())

    result = await services.pipeline.add_by_url(
        "https://www.biorxiv.org/content/10.1101/2020.03.01.972935v2", owner
    )

    assert result.paper.source_kind == SourceKind.BIORXIV
    assert result.paper.title == "A SARS-CoV-2 protein interaction map"
    assert result.paper.pdf_url.endswith("v2.full.pdf")


async def test_generic_page_with_pdf_link(web, services, owner):
    web.add("lab.example.org/pubs/transformer", httpx.Response(200, text='<a href="/pubs/t.pdf">PDF</a>'))
    web.add("lab.example.org/pubs/t.pdf", pdf_response())

    result = await services.pipeline.add_by_url("https://lab.example.org/pubs/transformer", owner)

    assert result.paper.source_kind == SourceKind.OTHER
    assert result.paper.pdf_url == "https://lab.example.org/pubs/t.pdf"


async def test_unresolvable_arxiv_url_scans_page(web, services, owner):
    web.add("arxiv.org/list/cs.CL/recent", httpx.Response(200, text='<a href="/pdf/1706.03762v7">pdf</a>'))
    web.add("arxiv.org/pdf/1706.03762v7", pdf_response())

    result = await services.pipeline.add_by_url("https://arxiv.org/list/cs.CL/recent", owner)

    assert web.hits("export.arxiv.org/api/query") == 0
    assert result.paper.pdf_url == "https://arxiv.org/pdf/1706.03762v7"
    assert result.paper.source_kind == SourceKind.ARXIV


async def test_page_without_pdf_is_no_pdf_found(web, services, owner):
    web.add("example.com/blog", httpx.Response(200, text="<p>just words</p>"))
    with pytest.raises(NoPdfFound):
        await services.pipeline.add_by_url("https://example.com/blog", owner)


async def test_pdf_host_error_is_acquisition_failed(web, services, owner):
    web.add("export.arxiv.org/api/query", httpx.Response(200, text=arxiv_feed(ARXIV_ENTRY)))
    web.add("arxiv.org/pdf/1706.03762v7.pdf", httpx.Response(503))

    with pytest.raises(AcquisitionFailed) as exc_info:
        await services.pipeline.add_by_url(ARXIV_URL, owner)

    assert exc_info.value.stage == "downloading"
    assert _paper_count(services.store, owner) == 0


async def test_scanned_pdf_is_insufficient_text(web, services, assistant, owner):
    _serve_arxiv(web, pdf=SHORT_PDF)

    with pytest.raises(InsufficientText) as exc_info:
        await services.pipeline.add_by_url(ARXIV_URL, owner)

    assert exc_info.value.stage == "extracting"
    assert assistant.analyze_calls == []
    assert _paper_count(services.store, owner) == 0


async def test_corrupt_pdf_is_extraction_failed(web, services, owner):
    _serve_arxiv(web, pdf=b"<html>not a pdf</html>")
    with pytest.raises(ExtractionFailed):
        await services.pipeline.add_by_url(ARXIV_URL, owner)


@pytest.mark.parametrize("url", ["", "not a url", "ftp://example.com/a.pdf"])
async def test_invalid_urls_are_rejected(services, owner, url):
    with pytest.raises(BadRequest):
        await services.pipeline.add_by_url(url, owner)


# ---------------------------------------------------------------------------
# By upload
# ---------------------------------------------------------------------------

async def test_upload_skips_analysis_and_titles_from_text(services, assistant, owner):
    result = await services.pipeline.add_by_upload(PAPER_PDF, "transformer.pdf", owner)
    paper = result.paper

    assert result.created
    assert assistant.analyze_calls == []
    assert paper.source_kind == SourceKind.UPLOAD
    assert paper.source_url is None
    assert paper.title == PAPER_LINES[0]
    assert paper.summary is None
    assert paper.rating is None
    assert paper.category == "Other"
    assert paper.tags == []
    assert Path(paper.pdf_url).read_bytes() == PAPER_PDF


async def test_upload_uses_supplied_title(services, owner):
    result = await services.pipeline.add_by_upload(PAPER_PDF, "x.pdf", owner, title="  My Title ")
    assert result.paper.title == "My Title"


async def test_same_upload_twice_is_two_papers(services, owner):
    await services.pipeline.add_by_upload(PAPER_PDF, "x.pdf", owner)
    await services.pipeline.add_by_upload(PAPER_PDF, "x.pdf", owner)
    assert _paper_count(services.store, owner) == 2


async def test_short_upload_is_insufficient_text(services, settings, owner):
    with pytest.raises(InsufficientText):
        await services.pipeline.add_by_upload(SHORT_PDF, "scan.pdf", owner)

    assert _paper_count(services.store, owner) == 0
    pdf_dir = Path(settings.pdf_dir)
    assert not pdf_dir.exists() or not any(pdf_dir.iterdir())


async def test_non_pdf_upload_is_rejected(services, owner):
    with pytest.raises(BadUpload) as exc_info:
        await services.pipeline.add_by_upload(b"hello", "notes.txt", owner, content_type="text/plain")
    assert exc_info.value.stage == "extracting"


def test_fallback_title():
    assert fallback_title("\n# Heading One\nbody") == "Heading One"
    assert fallback_title("   \n  ") == UNTITLED
