"""
Metadata providers: one adapter per academic API.

arXiv:            Atom feed from export.arxiv.org, keyed by arXiv id.
PubMed:           NCBI E-utilities (esummary JSON + efetch text abstract), keyed by PMID or PMCID.
bioRxiv/medRxiv:  api.biorxiv.org details endpoint, keyed by DOI.

Every failure inside a provider surfaces as MetadataUnavailable; the pipeline
decides per provider whether that means "fall back to page scraping" or "bad input".
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from typing import Optional

import httpx

from skim.errors import MetadataUnavailable
from skim.models import PaperMetadata, SourceKind

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ARXIV_API = "https://export.arxiv.org/api/query"
ATOM_NS = {
    "atom": "http://www.w3.org/2005/Atom",
    "opensearch": "http://a9.com/-/spec/opensearch/1.1/",
}

PUBMED_ESUMMARY = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/esummary.fcgi"
PUBMED_EFETCH = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/efetch.fcgi"
PMC_PDF_URL = "https://www.ncbi.nlm.nih.gov/pmc/articles/{pmcid}/pdf/"

BIORXIV_DETAILS = "https://api.biorxiv.org/details/{server}/{doi}/na/json"
RXIV_PDF_URL = "https://www.{server}.org/content/{doi}v{version}.full.pdf"

_MONTHS = {
    m: i for i, m in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], 1
    )
}
_TAG_RE = re.compile(r"<[^>]+>")


def _squash(text: Optional[str]) -> str:
    return " ".join((text or "").split())


def normalize_pubdate(raw: Optional[str]) -> Optional[str]:
    """'2023 Jan 15' -> '2023-01-15', '2023 Jan' -> '2023-01', '2023' -> '2023'."""
    if not raw:
        return None
    parts = raw.replace("-", " ").split()
    if not parts or not parts[0].isdigit():
        return raw.strip() or None
    out = parts[0]
    if len(parts) > 1:
        month = _MONTHS.get(parts[1][:3].lower())
        if month is None and parts[1].isdigit():
            month = int(parts[1])
        if month is None:
            return out
        out += f"-{month:02d}"
        if len(parts) > 2 and parts[2].isdigit():
            out += f"-{int(parts[2]):02d}"
    return out


def ncbi_params(api_key: Optional[str]) -> dict:
    return {"api_key": api_key} if api_key else {}


class MetadataProvider:
    """Common shape of every provider adapter."""

    kind: SourceKind
    # Whether the pipeline may scrape the submitted page when this provider fails.
    fallback_to_locator: bool = True

    def __init__(self, client: httpx.AsyncClient, timeout: float = 15.0):
        self.client = client
        self.timeout = httpx.Timeout(timeout)

    async def fetch(self, identifier: str) -> PaperMetadata:
        raise NotImplementedError

    async def _get(self, url: str, **kwargs) -> httpx.Response:
        try:
            resp = await self.client.get(url, timeout=self.timeout, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise MetadataUnavailable(f"{self.kind.value}: {exc}") from exc
        return resp


# ---------------------------------------------------------------------------
# arXiv
# ---------------------------------------------------------------------------

def parse_arxiv_entry(entry: ET.Element) -> dict:
    """Pull the fields we use out of one Atom <entry>."""
    authors = [
        _squash(a.findtext("atom:name", "", ATOM_NS))
        for a in entry.findall("atom:author", ATOM_NS)
    ]

    pdf_url = None
    for link in entry.findall("atom:link", ATOM_NS):
        if link.get("title") == "pdf" and link.get("href"):
            pdf_url = link.get("href")
            if not pdf_url.endswith(".pdf"):
                pdf_url += ".pdf"
            break

    published = entry.findtext("atom:published", "", ATOM_NS) or entry.findtext("atom:updated", "", ATOM_NS)

    return {
        "id": entry.findtext("atom:id", "", ATOM_NS),
        "title": _squash(entry.findtext("atom:title", "", ATOM_NS)),
        "authors": [a for a in authors if a],
        "abstract": _squash(entry.findtext("atom:summary", "", ATOM_NS)),
        "pdf_url": pdf_url,
        "published_date": published.split("T")[0] if published else None,
    }


class ArxivProvider(MetadataProvider):
    kind = SourceKind.ARXIV
    # An arXiv id that the API cannot resolve is itself bad input.
    fallback_to_locator = False

    async def fetch(self, identifier: str) -> PaperMetadata:
        resp = await self._get(ARXIV_API, params={"id_list": identifier})
        try:
            root = ET.fromstring(resp.text)
        except ET.ParseError as exc:
            raise MetadataUnavailable(f"arxiv: unparseable feed for {identifier!r}") from exc

        entry = root.find("atom:entry", ATOM_NS)
        if entry is None:
            raise MetadataUnavailable(f"arxiv: paper {identifier!r} not found")
        data = parse_arxiv_entry(entry)
        # arXiv reports unknown ids as an entry whose id points at its error docs
        if "/api/errors" in data["id"] or not data["title"]:
            raise MetadataUnavailable(f"arxiv: paper {identifier!r} not found")

        return PaperMetadata(
            title=data["title"],
            authors=data["authors"],
            abstract=data["abstract"] or None,
            pdf_url=data["pdf_url"] or f"https://arxiv.org/pdf/{identifier}.pdf",
            published_date=data["published_date"],
        )


# ---------------------------------------------------------------------------
# PubMed
# ---------------------------------------------------------------------------

class PubmedProvider(MetadataProvider):
    kind = SourceKind.PUBMED

    def __init__(self, client: httpx.AsyncClient, timeout: float = 15.0, api_key: Optional[str] = None):
        super().__init__(client, timeout)
        self.api_key = api_key

    async def _summary(self, db: str, uid: str) -> dict:
        params = {**ncbi_params(self.api_key), "db": db, "id": uid, "retmode": "json"}
        resp = await self._get(PUBMED_ESUMMARY, params=params)
        try:
            doc = (resp.json().get("result") or {}).get(uid)
        except ValueError as exc:
            raise MetadataUnavailable(f"pubmed: unparseable summary for {uid!r}") from exc
        if not doc or "error" in doc:
            raise MetadataUnavailable(f"pubmed: paper {uid!r} not found")
        return doc

    async def _abstract(self, pmid: str) -> Optional[str]:
        params = {**ncbi_params(self.api_key), "db": "pubmed", "id": pmid, "rettype": "abstract", "retmode": "text"}
        try:
            resp = await self._get(PUBMED_EFETCH, params=params)
        except MetadataUnavailable as exc:
            logger.info("abstract fetch skipped for pmid=%s: %s", pmid, exc)
            return None
        return resp.text.strip() or None

    async def fetch(self, identifier: str) -> PaperMetadata:
        if identifier.upper().startswith("PMC"):
            pmcid = identifier.upper()
            doc = await self._summary("pmc", pmcid[3:])
            pmid = next(
                (a.get("value") for a in doc.get("articleids", []) if a.get("idtype") == "pmid"),
                None,
            )
        else:
            doc = await self._summary("pubmed", identifier)
            pmid = identifier
            pmcid = next(
                (a.get("value") for a in doc.get("articleids", []) if a.get("idtype") == "pmc"),
                None,
            )

        abstract = await self._abstract(pmid) if pmid else None

        return PaperMetadata(
            title=_TAG_RE.sub("", doc.get("title") or "").strip(),
            authors=[a["name"] for a in doc.get("authors", []) if a.get("name")],
            abstract=abstract,
            pdf_url=PMC_PDF_URL.format(pmcid=pmcid) if pmcid else None,
            published_date=normalize_pubdate(doc.get("pubdate")),
        )


# ---------------------------------------------------------------------------
# bioRxiv / medRxiv
# ---------------------------------------------------------------------------

class BiorxivProvider(MetadataProvider):
    def __init__(self, client: httpx.AsyncClient, timeout: float = 15.0, server: str = "biorxiv"):
        super().__init__(client, timeout)
        self.server = server
        self.kind = SourceKind(server)

    async def fetch(self, identifier: str) -> PaperMetadata:
        resp = await self._get(BIORXIV_DETAILS.format(server=self.server, doi=identifier))
        try:
            collection = resp.json().get("collection") or []
        except ValueError as exc:
            raise MetadataUnavailable(f"{self.server}: unparseable details for {identifier!r}") from exc
        if not collection:
            raise MetadataUnavailable(f"{self.server}: paper {identifier!r} not found")

        # Versions are listed oldest first.
        doc = collection[-1]
        authors = [a.strip() for a in (doc.get("authors") or "").split(";") if a.strip()]
        version = doc.get("version") or 1

        return PaperMetadata(
            title=_squash(doc.get("title")),
            authors=authors,
            abstract=_squash(doc.get("abstract")) or None,
            pdf_url=RXIV_PDF_URL.format(server=self.server, doi=identifier, version=version),
            published_date=doc.get("date") or None,
        )


def build_providers(
    client: httpx.AsyncClient,
    timeout: float = 15.0,
    ncbi_api_key: Optional[str] = None,
) -> dict[SourceKind, MetadataProvider]:
    return {
        SourceKind.ARXIV: ArxivProvider(client, timeout),
        SourceKind.PUBMED: PubmedProvider(client, timeout, api_key=ncbi_api_key),
        SourceKind.BIORXIV: BiorxivProvider(client, timeout, server="biorxiv"),
        SourceKind.MEDRXIV: BiorxivProvider(client, timeout, server="medrxiv"),
    }
