"""
Getting from "a URL someone pasted" to "the text of a PDF".

  1. GenericPdfLocator: find a PDF link on an arbitrary page
  2. PdfAcquirer: download (capped, streamed) or validate an upload
  3. TextExtractor: pypdf page text, plus the sufficiency gate

The locator reports "nothing found" as None; acquisition and extraction
failures raise, since they end the ingestion attempt.
"""

from __future__ import annotations

import io
import logging
import re
from typing import Optional
from urllib.parse import urlsplit

import httpx
from pypdf import PdfReader

from skim.errors import AcquisitionFailed, BadUpload, ExtractionFailed, InsufficientText

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"

# Tried in order; first hit wins.
_PDF_LINK_PATTERNS = [
    re.compile(r"""href=["']([^"']*\.pdf)["']""", re.IGNORECASE),
    re.compile(r"""href=["']([^"']*/pdf/[^"']*)["']""", re.IGNORECASE),
    re.compile(r"""href=["']([^"']*download[^"']*\.pdf)["']""", re.IGNORECASE),
]


def looks_like_pdf_url(url: str) -> bool:
    return urlsplit(url).path.lower().endswith(".pdf")


def absolutize(href: str, page_url: str) -> str:
    """Resolve a scraped href against the origin of the page it came from."""
    if href.startswith(("http://", "https://")):
        return href
    parts = urlsplit(page_url)
    if href.startswith("//"):
        return f"{parts.scheme}:{href}"
    origin = f"{parts.scheme}://{parts.netloc}"
    if href.startswith("/"):
        return f"{origin}{href}"
    return f"{origin}/{href}"


# ---------------------------------------------------------------------------
# Locating
# ---------------------------------------------------------------------------

class GenericPdfLocator:
    """
    Scrape a web page for a PDF link.

    Redirects are followed up to the client's max_redirects (the app builds
    its client with 5).
    """

    def __init__(self, client: httpx.AsyncClient, timeout: float = 15.0, user_agent: str = "Skim-Research-Reader/1.0"):
        self.client = client
        self.timeout = httpx.Timeout(timeout)
        self.headers = {"User-Agent": user_agent}

    async def locate(self, url: str) -> Optional[str]:
        if looks_like_pdf_url(url):
            return url

        try:
            resp = await self.client.get(url, headers=self.headers, timeout=self.timeout, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("could not fetch %r to look for a PDF link: %s", url, exc)
            return None

        if PDF_CONTENT_TYPE in resp.headers.get("content-type", ""):
            return url

        html = resp.text
        page_url = str(resp.url)
        for pattern in _PDF_LINK_PATTERNS:
            match = pattern.search(html)
            if match:
                return absolutize(match.group(1), page_url)

        logger.info("no PDF link found on %r", url)
        return None


# ---------------------------------------------------------------------------
# Acquiring
# ---------------------------------------------------------------------------

class PdfAcquirer:
    def __init__(
        self,
        client: httpx.AsyncClient,
        timeout: float = 60.0,
        max_bytes: int = 100 * 1024 * 1024,
        user_agent: str = "Skim-Research-Reader/1.0",
    ):
        self.client = client
        self.timeout = httpx.Timeout(timeout)
        self.max_bytes = max_bytes
        self.headers = {"User-Agent": user_agent, "Accept": "application/pdf,*/*"}

    async def download(self, url: str) -> bytes:
        try:
            async with self.client.stream(
                "GET", url, headers=self.headers, timeout=self.timeout, follow_redirects=True
            ) as resp:
                if not resp.is_success:
                    raise AcquisitionFailed(f"PDF download returned HTTP {resp.status_code}", stage="downloading")

                declared = resp.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise AcquisitionFailed("PDF exceeds the maximum size", stage="downloading")

                buf = bytearray()
                async for chunk in resp.aiter_bytes():
                    buf.extend(chunk)
                    if len(buf) > self.max_bytes:
                        raise AcquisitionFailed("PDF exceeds the maximum size", stage="downloading")
        except httpx.HTTPError as exc:
            raise AcquisitionFailed(f"PDF download failed: {exc}", stage="downloading") from exc

        return bytes(buf)

    def accept_upload(self, data: bytes, content_type: Optional[str]) -> bytes:
        if (content_type or "").split(";")[0].strip().lower() != PDF_CONTENT_TYPE:
            raise BadUpload("Only PDF files are allowed")
        if not data:
            raise BadUpload("Uploaded file is empty")
        if len(data) > self.max_bytes:
            raise BadUpload("File too large", too_large=True)
        return data


# ---------------------------------------------------------------------------
# Extracting
# ---------------------------------------------------------------------------

class TextExtractor:
    def __init__(self, min_chars: int = 100):
        self.min_chars = min_chars

    def extract(self, pdf_bytes: bytes) -> str:
        try:
            reader = PdfReader(io.BytesIO(pdf_bytes))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as exc:
            raise ExtractionFailed(f"Failed to process PDF: {exc}", stage="extracting") from exc
        return "\n\n".join(p.strip() for p in pages if p.strip())

    def check_sufficient(self, text: str) -> str:
        if len(text.strip()) < self.min_chars:
            raise InsufficientText(
                "Could not extract sufficient text from the PDF. The file may be scanned or image-based.",
                stage="extracting",
            )
        return text
