from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class SourceKind(str, Enum):
    ARXIV = "arxiv"
    PUBMED = "pubmed"
    BIORXIV = "biorxiv"
    MEDRXIV = "medrxiv"
    ARCHIVE = "archive"
    SCHOLAR = "scholar"
    UPLOAD = "upload"
    OTHER = "other"


class UsageAction(str, Enum):
    INGESTION_ANALYSIS = "ingestion-analysis"
    CHAT = "chat"
    ANNOTATION_ANSWER = "annotation-answer"


class PaperMetadata(BaseModel):
    title: str = ""
    authors: list[str] = []
    abstract: Optional[str] = None
    pdf_url: Optional[str] = None
    published_date: Optional[str] = None


class Analysis(BaseModel):
    summary: Optional[str] = None
    rating: Optional[int] = Field(default=None, ge=1, le=10)
    category: str = "Other"
    tags: list[str] = []
    key_findings: list[str] = []
    cost_estimate: float = 0.0

    def merged_summary(self) -> Optional[str]:
        """Summary with key findings appended as a bulleted list; None when both are empty."""
        summary = self.summary or ""
        if self.key_findings:
            bullets = "\n".join(f"- {f}" for f in self.key_findings)
            summary = f"{summary}\n\n**Key Findings:**\n{bullets}".lstrip()
        return summary or None


class Paper(BaseModel):
    id: str
    owner_id: str
    source_url: Optional[str] = None  # None for uploads
    source_kind: SourceKind
    pdf_url: Optional[str] = None  # external URL or local path of an uploaded file
    title: str
    authors: list[str] = []
    abstract: Optional[str] = None
    extracted_markdown: Optional[str] = None
    summary: Optional[str] = None
    rating: Optional[int] = None
    category: str = "Other"
    tags: list[str] = []
    published_date: Optional[str] = None
    added_date: str
    is_read: bool = False


class PaperListItem(BaseModel):
    """Paper without its full text, for list responses."""

    id: str
    owner_id: str
    source_url: Optional[str] = None
    source_kind: SourceKind
    pdf_url: Optional[str] = None
    title: str
    authors: list[str] = []
    abstract: Optional[str] = None
    summary: Optional[str] = None
    rating: Optional[int] = None
    category: str = "Other"
    tags: list[str] = []
    published_date: Optional[str] = None
    added_date: str
    is_read: bool = False


class Annotation(BaseModel):
    id: str
    paper_id: str
    owner_id: str
    selected_text: Optional[str] = None
    note: Optional[str] = None
    ai_response: Optional[str] = None
    page_number: Optional[int] = None
    created_at: str


class UsageRecord(BaseModel):
    id: str
    owner_id: str
    action: UsageAction
    cost_estimate: float = Field(default=0.0, ge=0)
    created_at: str


class UsageSummary(BaseModel):
    total_papers: int
    total_queries: int
    cost_estimate: float
    period_start: str
    period_end: str


class PaperSummary(BaseModel):
    title: str
    authors: list[str] = []
    abstract: Optional[str] = None  # best-effort; PubMed search hits carry none
    url: str
    pdf_url: Optional[str] = None
    published_date: Optional[str] = None
    source: str  # "arxiv" or "pubmed"


class SearchResponse(BaseModel):
    results: list[PaperSummary]
    total: int


class ChatMessage(BaseModel):
    role: str  # "user" or "assistant"
    content: str


# ---------------------------------------------------------------------------
# Request / response bodies
# ---------------------------------------------------------------------------

class AddPaperRequest(BaseModel):
    url: str


class ChatRequest(BaseModel):
    messages: list[ChatMessage]


class ChatResponse(BaseModel):
    reply: str


class AnnotationRequest(BaseModel):
    selected_text: Optional[str] = None
    note: Optional[str] = None
    ai_response: Optional[str] = None
    page_number: Optional[int] = None


class PaperUpdateRequest(BaseModel):
    is_read: bool
