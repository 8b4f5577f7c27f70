"""
The "add paper" operation.

  resolving -> fetching_metadata -> locating_pdf -> downloading
            -> extracting -> analyzing -> saving -> done

Any stage but analyzing can end the run by raising a SkimError tagged with
the stage name. Nothing is written before saving, so a failed run leaves no
paper behind. Uploads enter at extracting and skip analysis.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from skim.analysis import AnalysisEngine, degraded_analysis
from skim.errors import (
    BadIdentifier,
    BadRequest,
    MetadataUnavailable,
    NoPdfFound,
    SkimError,
    UnresolvableIdentifier,
)
from skim.markdown import first_content_line
from skim.models import Analysis, Paper, PaperMetadata, SourceKind
from skim.paper_sources import MetadataProvider
from skim.pdf_fetcher import GenericPdfLocator, PdfAcquirer, TextExtractor
from skim.source_resolver import resolve
from skim.store import PaperStore, new_id, utcnow

logger = logging.getLogger(__name__)

UNTITLED = "Untitled Paper"


class Stage(str, Enum):
    RESOLVING = "resolving"
    FETCHING_METADATA = "fetching_metadata"
    LOCATING_PDF = "locating_pdf"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    SAVING = "saving"
    DONE = "done"


@dataclass
class IngestionResult:
    paper: Paper
    created: bool


@dataclass
class _Run:
    """State owned by one in-flight ingestion."""

    owner_id: str
    source_url: Optional[str]
    stage: Stage = Stage.RESOLVING
    kind: SourceKind = SourceKind.OTHER
    provider_id: Optional[str] = None
    metadata: PaperMetadata = field(default_factory=PaperMetadata)
    pdf_bytes: bytes = b""
    text: str = ""

    def enter(self, stage: Stage) -> None:
        logger.debug("ingest owner=%s url=%r: %s -> %s", self.owner_id, self.source_url, self.stage.value, stage.value)
        self.stage = stage


def fallback_title(text: str) -> str:
    return first_content_line(text) or UNTITLED


def validate_url(url: str) -> str:
    url = (url or "").strip()
    if not url:
        raise BadRequest("URL is required", stage=Stage.RESOLVING.value)
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise BadRequest("Invalid URL format", stage=Stage.RESOLVING.value)
    return url


class IngestionPipeline:
    def __init__(
        self,
        store: PaperStore,
        providers: dict[SourceKind, MetadataProvider],
        locator: GenericPdfLocator,
        acquirer: PdfAcquirer,
        extractor: TextExtractor,
        analysis: AnalysisEngine,
    ):
        self.store = store
        self.providers = providers
        self.locator = locator
        self.acquirer = acquirer
        self.extractor = extractor
        self.analysis = analysis

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def add_by_url(self, url: str, owner_id: str) -> IngestionResult:
        url = validate_url(url)

        existing = self.store.find_by_owner_and_url(owner_id, url)
        if existing is not None:
            logger.info("paper already added owner=%s url=%r id=%s", owner_id, url, existing.id)
            return IngestionResult(existing, created=False)

        run = _Run(owner_id=owner_id, source_url=url)
        try:
            self._resolve(run)
            if run.provider_id is not None:
                await self._fetch_metadata(run)
            await self._locate_pdf(run)
            await self._download(run)
            await self._extract(run)
            run.enter(Stage.ANALYZING)
            analysis = await self.analysis.analyze(run.text, owner_id)
            return self._save(run, analysis)
        except SkimError as exc:
            exc.stage = exc.stage or run.stage.value
            logger.warning("ingest failed owner=%s url=%r stage=%s: %s", owner_id, url, exc.stage, exc.message)
            raise

    async def add_by_upload(
        self,
        data: bytes,
        filename: str,
        owner_id: str,
        title: Optional[str] = None,
        content_type: Optional[str] = "application/pdf",
    ) -> IngestionResult:
        run = _Run(owner_id=owner_id, source_url=None, stage=Stage.EXTRACTING, kind=SourceKind.UPLOAD)
        try:
            run.pdf_bytes = self.acquirer.accept_upload(data, content_type)
            await self._extract(run)
        except SkimError as exc:
            exc.stage = exc.stage or run.stage.value
            logger.warning("upload failed owner=%s file=%r stage=%s: %s", owner_id, filename, exc.stage, exc.message)
            raise

        if title and title.strip():
            run.metadata.title = title.strip()

        # Uploads are never analyzed; the degraded analysis supplies the empty enrichment.
        paper_id = new_id()
        run.metadata.pdf_url = self.store.save_upload(paper_id, run.pdf_bytes)
        try:
            return self._save(run, degraded_analysis(), paper_id=paper_id)
        except Exception:
            self.store.discard_upload(run.metadata.pdf_url)
            raise

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _resolve(self, run: _Run) -> None:
        run.enter(Stage.RESOLVING)
        try:
            run.kind, run.provider_id = resolve(run.source_url)
        except UnresolvableIdentifier as exc:
            logger.info("%s; looking for a PDF link instead", exc)
            run.kind, run.provider_id = exc.kind, None
        if run.kind not in self.providers:
            run.provider_id = None

    async def _fetch_metadata(self, run: _Run) -> None:
        run.enter(Stage.FETCHING_METADATA)
        provider = self.providers[run.kind]
        try:
            run.metadata = await provider.fetch(run.provider_id)
        except MetadataUnavailable as exc:
            if not provider.fallback_to_locator:
                raise BadIdentifier(
                    f"Could not resolve {run.kind.value} paper {run.provider_id!r}: {exc}",
                    stage=run.stage.value,
                ) from exc
            logger.warning("metadata unavailable for %s %r, falling back to page scan: %s",
                           run.kind.value, run.provider_id, exc)

    async def _locate_pdf(self, run: _Run) -> None:
        run.enter(Stage.LOCATING_PDF)
        if run.metadata.pdf_url:
            return
        pdf_url = await self.locator.locate(run.source_url)
        if not pdf_url:
            raise NoPdfFound(
                "Could not find a PDF link on this page. Try providing a direct PDF URL.",
                stage=run.stage.value,
            )
        run.metadata.pdf_url = pdf_url

    async def _download(self, run: _Run) -> None:
        run.enter(Stage.DOWNLOADING)
        run.pdf_bytes = await self.acquirer.download(run.metadata.pdf_url)

    async def _extract(self, run: _Run) -> None:
        run.enter(Stage.EXTRACTING)
        text = await asyncio.to_thread(self.extractor.extract, run.pdf_bytes)
        run.text = self.extractor.check_sufficient(text)

    def _save(self, run: _Run, analysis: Analysis, paper_id: Optional[str] = None) -> IngestionResult:
        run.enter(Stage.SAVING)
        meta = run.metadata
        paper = Paper(
            id=paper_id or new_id(),
            owner_id=run.owner_id,
            source_url=run.source_url,
            source_kind=run.kind,
            pdf_url=meta.pdf_url,
            title=meta.title or fallback_title(run.text),
            authors=meta.authors,
            abstract=meta.abstract,
            extracted_markdown=run.text,
            summary=analysis.merged_summary(),
            rating=analysis.rating,
            category=analysis.category or "Other",
            tags=list(dict.fromkeys(analysis.tags)),
            published_date=meta.published_date,
            added_date=utcnow(),
        )
        stored, created = self.store.insert_paper(paper)
        run.enter(Stage.DONE)
        if created:
            logger.info("added paper id=%s owner=%s kind=%s title=%r",
                        stored.id, run.owner_id, run.kind.value, stored.title)
        else:
            logger.info("concurrent duplicate for owner=%s url=%r, returning id=%s",
                        run.owner_id, run.source_url, stored.id)
        return IngestionResult(stored, created)
