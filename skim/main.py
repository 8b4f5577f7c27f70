"""
FastAPI application: builds the services and mounts the paper routes.

Endpoints (owner id from the X-User-Id header, set by the auth gateway):
  POST   /api/papers                    add a paper by URL (full pipeline)
  POST   /api/papers/upload             add a paper from an uploaded PDF
  GET    /api/papers                    list papers
  GET    /api/papers/search             arXiv + PubMed search
  GET    /api/papers/usage              AI usage for a billing period
  GET    /api/papers/{id}               one paper with its full text
  PATCH  /api/papers/{id}               mark read / unread
  DELETE /api/papers/{id}               delete (annotations and memberships go too)
  GET    /api/papers/{id}/markdown      extracted text rendered as markdown
  GET    /api/papers/{id}/pdf           stored upload, or redirect to the source PDF
  POST   /api/papers/{id}/chat          grounded multi-turn chat
  GET    /api/papers/{id}/annotations   list annotations
  POST   /api/papers/{id}/annotations   create an annotation (auto-answers notes)
  GET    /health                        liveness check
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, File, Form, Header, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, RedirectResponse

from skim.analysis import AnalysisEngine
from skim.assistant import Assistant
from skim.chat import AnnotationChatEngine
from skim.config import Settings
from skim.errors import AlreadyExists, BadRequest, NotFound, SkimError
from skim.markdown import format_markdown
from skim.models import (
    AddPaperRequest,
    Annotation,
    AnnotationRequest,
    ChatRequest,
    ChatResponse,
    Paper,
    PaperListItem,
    PaperUpdateRequest,
    SearchResponse,
    SourceKind,
    UsageSummary,
)
from skim.paper_search import SOURCES, SearchFederator
from skim.paper_sources import build_providers
from skim.pdf_fetcher import GenericPdfLocator, PdfAcquirer, TextExtractor
from skim.pipeline import IngestionPipeline
from skim.store import PaperStore
from skim.usage import UsageLedger

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    store: PaperStore
    ledger: UsageLedger
    pipeline: IngestionPipeline
    search: SearchFederator
    chat: AnnotationChatEngine


def build_services(settings: Settings, client: httpx.AsyncClient, assistant: Optional[Assistant] = None) -> Services:
    store = PaperStore(settings.database_path, settings.pdf_dir)
    ledger = UsageLedger(store)
    assistant = assistant or Assistant(settings)
    pipeline = IngestionPipeline(
        store=store,
        providers=build_providers(client, settings.provider_timeout, settings.ncbi_api_key),
        locator=GenericPdfLocator(client, settings.provider_timeout, settings.user_agent),
        acquirer=PdfAcquirer(client, settings.download_timeout, settings.max_pdf_bytes, settings.user_agent),
        extractor=TextExtractor(settings.min_text_chars),
        analysis=AnalysisEngine(assistant, ledger),
    )
    return Services(
        settings=settings,
        store=store,
        ledger=ledger,
        pipeline=pipeline,
        search=SearchFederator(client, settings.provider_timeout, settings.ncbi_api_key),
        chat=AnnotationChatEngine(store, assistant, ledger),
    )


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_services(request: Request) -> Services:
    return request.app.state.services


def current_owner(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Authentication required.")
    return x_user_id.strip()


def _owned_paper(services: Services, paper_id: str, owner_id: str) -> Paper:
    paper = services.store.get_paper(paper_id, owner_id)
    if paper is None:
        raise NotFound("Paper not found")
    return paper


# ---------------------------------------------------------------------------
# Paper routes (fixed paths must come BEFORE /{paper_id})
# ---------------------------------------------------------------------------

router = APIRouter(prefix="/api/papers")


@router.get("/usage", response_model=UsageSummary)
async def get_usage(
    period: Optional[str] = Query(default=None, description="YYYY-MM, 'all', or omitted for the current month"),
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    return services.ledger.summary(owner_id, period)


@router.get("/search", response_model=SearchResponse)
async def search_papers(
    q: str = Query(default=""),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10),
    source: str = Query(default="all"),
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    if not q.strip():
        raise BadRequest('Query parameter "q" is required')
    if source not in SOURCES:
        raise BadRequest(f"source must be one of: {', '.join(SOURCES)}")
    return await services.search.search(q.strip(), offset=offset, limit=limit, source=source)


@router.get("", response_model=list[PaperListItem])
async def list_papers(owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    return [PaperListItem(**p.model_dump(exclude={"extracted_markdown"})) for p in services.store.list_papers(owner_id)]


@router.post("", response_model=Paper, status_code=201)
async def add_paper(
    req: AddPaperRequest,
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    result = await services.pipeline.add_by_url(req.url, owner_id)
    if not result.created:
        raise AlreadyExists(result.paper.id)
    return result.paper


@router.post("/upload", response_model=Paper, status_code=201)
async def upload_paper(
    file: UploadFile = File(...),
    title: Optional[str] = Form(default=None),
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    # One byte past the cap is enough to tell that it is over.
    data = await file.read(services.settings.max_pdf_bytes + 1)
    result = await services.pipeline.add_by_upload(
        data,
        file.filename or "upload.pdf",
        owner_id,
        title=title,
        content_type=file.content_type,
    )
    return result.paper


@router.get("/{paper_id}", response_model=Paper)
async def get_paper(paper_id: str, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    return _owned_paper(services, paper_id, owner_id)


@router.patch("/{paper_id}", response_model=Paper)
async def update_paper(
    paper_id: str,
    req: PaperUpdateRequest,
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    paper = services.store.set_read(paper_id, owner_id, req.is_read)
    if paper is None:
        raise NotFound("Paper not found")
    return paper


@router.delete("/{paper_id}")
async def delete_paper(paper_id: str, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    if not services.store.delete_paper(paper_id, owner_id):
        raise NotFound("Paper not found")
    return {"success": True}


@router.get("/{paper_id}/markdown")
async def get_markdown(paper_id: str, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    paper = _owned_paper(services, paper_id, owner_id)
    return {"id": paper.id, "markdown": format_markdown(paper.extracted_markdown)}


@router.get("/{paper_id}/pdf")
async def get_pdf(paper_id: str, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    paper = _owned_paper(services, paper_id, owner_id)
    if not paper.pdf_url:
        raise NotFound("No PDF available for this paper")
    if paper.source_kind == SourceKind.UPLOAD:
        path = Path(paper.pdf_url)
        if not path.is_file():
            raise NotFound("PDF file not found on disk")
        return FileResponse(path, media_type="application/pdf")
    return RedirectResponse(paper.pdf_url)


@router.post("/{paper_id}/chat", response_model=ChatResponse)
async def chat_about_paper(
    paper_id: str,
    req: ChatRequest,
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    reply = await services.chat.chat(paper_id, owner_id, req.messages)
    return ChatResponse(reply=reply)


@router.get("/{paper_id}/annotations", response_model=list[Annotation])
async def list_annotations(paper_id: str, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    return services.chat.list_annotations(paper_id, owner_id)


@router.post("/{paper_id}/annotations", response_model=Annotation, status_code=201)
async def create_annotation(
    paper_id: str,
    req: AnnotationRequest,
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    return await services.chat.create_annotation(
        paper_id,
        owner_id,
        selected_text=req.selected_text,
        note=req.note,
        page_number=req.page_number,
        ai_response=req.ai_response,
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

async def _skim_error_handler(request: Request, exc: SkimError) -> JSONResponse:
    body = {"detail": exc.message, "code": exc.code, "stage": exc.stage}
    if isinstance(exc, AlreadyExists):
        body["paper_id"] = exc.paper_id
    return JSONResponse(status_code=exc.status_code, content=body)


def create_app(
    settings: Optional[Settings] = None,
    assistant: Optional[Assistant] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with httpx.AsyncClient(transport=transport, max_redirects=5) as client:
            app.state.services = build_services(settings, client, assistant)
            yield

    app = FastAPI(title="Skim", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(SkimError, _skim_error_handler)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    app.include_router(router)
    return app


app = create_app()
