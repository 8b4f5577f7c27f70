"""
Free-text paper search across arXiv and PubMed.

arXiv:   Atom search API, relevance-sorted.
PubMed:  esearch (ids + total) then esummary (titles, authors, dates).

Both run concurrently; a provider that fails or times out just contributes
nothing. Results are merged newest-first and truncated to the requested size.
"""

from __future__ import annotations

import asyncio
import logging
import re
import xml.etree.ElementTree as ET
from typing import Optional

import httpx

from skim.models import PaperSummary, SearchResponse
from skim.paper_sources import (
    ARXIV_API,
    ATOM_NS,
    PUBMED_ESUMMARY,
    ncbi_params,
    normalize_pubdate,
    parse_arxiv_entry,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PUBMED_ESEARCH = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esearch.fcgi"

DEFAULT_LIMIT = 10
MAX_LIMIT = 20
SOURCES = ("all", "arxiv", "pubmed")

_TAG_RE = re.compile(r"<[^>]+>")


def _to_int(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# arXiv
# ---------------------------------------------------------------------------

def _parse_arxiv_feed(xml_text: str) -> tuple[list[PaperSummary], int]:
    root = ET.fromstring(xml_text)
    total = _to_int(root.findtext("opensearch:totalResults", "0", ATOM_NS))

    results = []
    for entry in root.findall("atom:entry", ATOM_NS):
        data = parse_arxiv_entry(entry)
        if not data["title"] or "/api/errors" in data["id"]:
            continue
        results.append(PaperSummary(
            title=data["title"],
            authors=data["authors"],
            abstract=data["abstract"] or None,
            url=data["id"],
            pdf_url=data["pdf_url"],
            published_date=data["published_date"],
            source="arxiv",
        ))
    return results, total


async def search_arxiv(
    query: str,
    client: httpx.AsyncClient,
    offset: int = 0,
    limit: int = DEFAULT_LIMIT,
    timeout: float = 15.0,
) -> tuple[list[PaperSummary], int]:
    params = {
        "search_query": f"all:{query}",
        "start": offset,
        "max_results": limit,
        "sortBy": "relevance",
        "sortOrder": "descending",
    }
    resp = await client.get(ARXIV_API, params=params, timeout=httpx.Timeout(timeout))
    resp.raise_for_status()
    return _parse_arxiv_feed(resp.text)


# ---------------------------------------------------------------------------
# PubMed
# ---------------------------------------------------------------------------

def _parse_pubmed_summaries(ids: list[str], data: dict) -> list[PaperSummary]:
    result = data.get("result") or {}
    papers = []
    for pmid in ids:
        doc = result.get(pmid)
        if not doc or "error" in doc:
            continue
        title = _TAG_RE.sub("", doc.get("title") or "").strip()
        if not title:
            continue
        papers.append(PaperSummary(
            title=title,
            authors=[a["name"] for a in doc.get("authors", []) if a.get("name")],
            # esummary has no abstract; search hits go without one.
            abstract=None,
            url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
            pdf_url=None,
            published_date=normalize_pubdate(doc.get("pubdate")),
            source="pubmed",
        ))
    return papers


async def search_pubmed(
    query: str,
    client: httpx.AsyncClient,
    offset: int = 0,
    limit: int = DEFAULT_LIMIT,
    timeout: float = 15.0,
    api_key: Optional[str] = None,
) -> tuple[list[PaperSummary], int]:
    base = ncbi_params(api_key)
    timeout_ = httpx.Timeout(timeout)

    search_params = {
        **base,
        "db": "pubmed",
        "term": query,
        "retstart": offset,
        "retmax": limit,
        "sort": "relevance",
        "retmode": "json",
    }
    resp = await client.get(PUBMED_ESEARCH, params=search_params, timeout=timeout_)
    resp.raise_for_status()
    found = resp.json().get("esearchresult", {})
    ids = found.get("idlist", [])
    total = _to_int(found.get("count"))

    if not ids:
        return [], total

    summary_params = {**base, "db": "pubmed", "id": ",".join(ids), "retmode": "json"}
    resp = await client.get(PUBMED_ESUMMARY, params=summary_params, timeout=timeout_)
    resp.raise_for_status()
    return _parse_pubmed_summaries(ids, resp.json()), total


# ---------------------------------------------------------------------------
# Combined search
# ---------------------------------------------------------------------------

def merge_results(batches: list[list[PaperSummary]], limit: int) -> list[PaperSummary]:
    """
    Concatenate in provider order, dated entries newest first, undated ones
    after them in their original order, then truncate.
    """
    combined = [p for batch in batches for p in batch]
    dated = [p for p in combined if p.published_date]
    undated = [p for p in combined if not p.published_date]
    # sort() is stable, so equal dates keep provider order
    dated.sort(key=lambda p: p.published_date, reverse=True)
    return (dated + undated)[:limit]


class SearchFederator:
    def __init__(self, client: httpx.AsyncClient, timeout: float = 15.0, ncbi_api_key: Optional[str] = None):
        self.client = client
        self.timeout = timeout
        self.ncbi_api_key = ncbi_api_key

    async def search(
        self,
        query: str,
        offset: int = 0,
        limit: int = DEFAULT_LIMIT,
        source: str = "all",
    ) -> SearchResponse:
        limit = min(max(limit or DEFAULT_LIMIT, 1), MAX_LIMIT)
        offset = max(offset, 0)

        names: list[str] = []
        calls = []
        if source in ("all", "arxiv"):
            names.append("arxiv")
            calls.append(search_arxiv(query, self.client, offset, limit, self.timeout))
        if source in ("all", "pubmed"):
            names.append("pubmed")
            calls.append(search_pubmed(query, self.client, offset, limit, self.timeout, self.ncbi_api_key))

        settled = await asyncio.gather(*calls, return_exceptions=True)

        batches: list[list[PaperSummary]] = []
        total = 0
        for name, outcome in zip(names, settled):
            if isinstance(outcome, BaseException):
                logger.warning("%s search failed for query=%r: %s", name, query, outcome)
                continue
            results, provider_total = outcome
            batches.append(results)
            total += provider_total

        return SearchResponse(results=merge_results(batches, limit), total=total)
