"""
Questions about a stored paper, answered from its extracted text.

Chat failures reach the caller; annotation auto-answers are best-effort and
never stop the annotation from being saved.
"""

from __future__ import annotations

import logging
from typing import Optional

from skim.assistant import Assistant
from skim.errors import BadRequest, NoContent, NotFound
from skim.models import Annotation, ChatMessage, Paper, UsageAction
from skim.store import PaperStore, new_id, utcnow
from skim.usage import UsageLedger

logger = logging.getLogger(__name__)

_ROLES = {"user", "assistant"}


class AnnotationChatEngine:
    def __init__(self, store: PaperStore, assistant: Assistant, ledger: UsageLedger):
        self.store = store
        self.assistant = assistant
        self.ledger = ledger

    def _paper(self, paper_id: str, owner_id: str) -> Paper:
        paper = self.store.get_paper(paper_id, owner_id)
        if paper is None:
            raise NotFound("Paper not found")
        return paper

    async def chat(self, paper_id: str, owner_id: str, messages: list[ChatMessage]) -> str:
        paper = self._paper(paper_id, owner_id)
        if not paper.extracted_markdown:
            raise NoContent("Paper has no content to chat about")
        if not messages:
            raise BadRequest("Messages array is required")
        bad_roles = {m.role for m in messages} - _ROLES
        if bad_roles:
            raise BadRequest(f"Unsupported message role(s): {', '.join(sorted(bad_roles))}")

        reply = await self.assistant.chat(paper.extracted_markdown, messages)
        self.ledger.record(owner_id, UsageAction.CHAT, reply.cost_estimate)
        return reply.text

    async def auto_answer(
        self,
        paper: Paper,
        owner_id: str,
        selected_text: Optional[str],
        note: str,
    ) -> Optional[str]:
        """AI answer for an annotation's note, or None if it could not be produced."""
        if not paper.extracted_markdown:
            return None
        try:
            reply = await self.assistant.answer(paper.extracted_markdown, selected_text or "", note)
        except Exception as exc:
            logger.warning("annotation auto-answer failed for paper=%s: %s", paper.id, exc)
            return None

        try:
            self.ledger.record(owner_id, UsageAction.ANNOTATION_ANSWER, reply.cost_estimate)
        except Exception as exc:
            logger.error("could not record annotation-answer usage for owner=%s: %s", owner_id, exc)
        return reply.text or None

    async def create_annotation(
        self,
        paper_id: str,
        owner_id: str,
        selected_text: Optional[str] = None,
        note: Optional[str] = None,
        page_number: Optional[int] = None,
        ai_response: Optional[str] = None,
    ) -> Annotation:
        paper = self._paper(paper_id, owner_id)
        selected_text = selected_text or None
        note = note or None
        if not selected_text and not note:
            raise BadRequest("Either selected_text or note is required")

        if note and not ai_response:
            ai_response = await self.auto_answer(paper, owner_id, selected_text, note)

        annotation = Annotation(
            id=new_id(),
            paper_id=paper.id,
            owner_id=owner_id,
            selected_text=selected_text,
            note=note,
            ai_response=ai_response or None,
            page_number=page_number,
            created_at=utcnow(),
        )
        return self.store.insert_annotation(annotation)

    def list_annotations(self, paper_id: str, owner_id: str) -> list[Annotation]:
        self._paper(paper_id, owner_id)
        return self.store.list_annotations(paper_id, owner_id)
