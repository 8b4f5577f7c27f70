"""
The AI capability: structured paper analysis, grounded chat and annotation
answers, each returned together with an estimated cost in USD.

Analysis uses a forced tool call so the model has to return the analysis
schema as JSON arguments. Callers decide what a failure means; this module
only raises (UpstreamError for the API, ValueError for malformed output).
"""

from __future__ import annotations

import json
import re
from typing import Optional

import groq
from groq import AsyncGroq
from pydantic import BaseModel

from skim.config import Settings
from skim.errors import UpstreamError
from skim.models import Analysis, ChatMessage


class Reply(BaseModel):
    text: str
    cost_estimate: float = 0.0


_ANALYSIS_TOOL = {
    "type": "function",
    "function": {
        "name": "record_paper_analysis",
        "description": "Record a structured analysis of a research paper.",
        "parameters": {
            "type": "object",
            "properties": {
                "summary": {
                    "type": "string",
                    "description": "2-3 paragraphs covering objectives, methods and conclusions.",
                },
                "rating": {
                    "type": "integer",
                    "description": "1-10, judged on methodology quality, novelty and significance.",
                },
                "categories": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": (
                        "Research fields, most relevant first. Use: Neuroscience, Computer Science, "
                        "Biology, Physics, Mathematics, Medicine, Chemistry, Engineering, Psychology, "
                        "Economics, Other."
                    ),
                },
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "3-5 keywords.",
                },
                "keyFindings": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "3-5 key findings, one concise sentence each.",
                },
            },
            "required": ["summary", "rating", "categories", "tags", "keyFindings"],
        },
    },
}

_ANALYSIS_SYSTEM_PROMPT = (
    "You are an expert peer reviewer. Read the paper you are given and record an "
    "honest, specific analysis of it."
)

_CHAT_SYSTEM_PROMPT = (
    "You are a research assistant helping a user understand a research paper. "
    "Be concise, accurate, and helpful. Ground your answers in the paper.\n\n"
    "Paper content:\n{paper}"
)

_ANNOTATION_TEMPLATE = """\
A user is reading a research paper and has a question.

Paper context (may be truncated):
{paper}

The user highlighted this text:
"{selected}"

Their question/note:
{note}

Give a helpful, concise response that draws on the paper content. Keep it to 2-3 paragraphs at most.\
"""

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _truncate(text: str, limit: int, marker: str = "[Content truncated...]") -> str:
    if len(text) <= limit:
        return text
    return f"{text[:limit]}\n\n{marker}"


def _parse_json_object(raw: str) -> dict:
    """Accept bare JSON, a fenced ```json block, or the outermost {...} span."""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        pass
    match = _FENCED_JSON.search(raw)
    if match:
        return json.loads(match.group(1).strip())
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        return json.loads(raw[start:end + 1])
    raise ValueError("model response is not JSON")


def _clamp_rating(value) -> int:
    try:
        rating = int(value)
    except (TypeError, ValueError):
        rating = 5
    return min(10, max(1, rating))


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def analysis_from_payload(payload: dict, cost_estimate: float = 0.0) -> Analysis:
    if not isinstance(payload, dict):
        raise ValueError("analysis payload must be an object")
    categories = _string_list(payload.get("categories"))
    if not categories and isinstance(payload.get("category"), str):
        categories = [payload["category"]]
    tags = list(dict.fromkeys(_string_list(payload.get("tags"))))
    return Analysis(
        summary=(payload.get("summary") or "").strip() or None,
        rating=_clamp_rating(payload.get("rating")),
        category=categories[0] if categories else "Other",
        tags=tags,
        key_findings=_string_list(payload.get("keyFindings")),
        cost_estimate=cost_estimate,
    )


class Assistant:
    """Groq-backed implementation of the AI capability."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client: Optional[AsyncGroq] = None

    def _get_client(self) -> AsyncGroq:
        if self._client is None:
            if not self.settings.groq_api_key:
                raise UpstreamError("GROQ_API_KEY is not configured")
            # No automatic retries: a failed call fails the request.
            self._client = AsyncGroq(
                api_key=self.settings.groq_api_key,
                timeout=self.settings.ai_timeout,
                max_retries=0,
            )
        return self._client

    def _cost(self, response) -> float:
        usage = getattr(response, "usage", None)
        if usage is None:
            return 0.0
        prompt = getattr(usage, "prompt_tokens", 0) or 0
        completion = getattr(usage, "completion_tokens", 0) or 0
        return prompt * self.settings.input_cost_per_token + completion * self.settings.output_cost_per_token

    async def _complete(self, **kwargs):
        try:
            return await self._get_client().chat.completions.create(model=self.settings.model, **kwargs)
        except groq.APIError as exc:
            raise UpstreamError(f"AI request failed: {exc}") from exc

    async def analyze(self, text: str) -> Analysis:
        paper = _truncate(text, self.settings.analysis_max_chars, "[Content truncated due to length...]")
        response = await self._complete(
            max_tokens=2000,
            tools=[_ANALYSIS_TOOL],
            tool_choice={"type": "function", "function": {"name": "record_paper_analysis"}},
            messages=[
                {"role": "system", "content": _ANALYSIS_SYSTEM_PROMPT},
                {"role": "user", "content": f"Paper content:\n\n{paper}"},
            ],
        )
        cost = self._cost(response)

        msg = response.choices[0].message
        if msg.tool_calls:
            payload = _parse_json_object(msg.tool_calls[0].function.arguments)
        else:
            payload = _parse_json_object(msg.content or "")
        return analysis_from_payload(payload, cost)

    async def chat(self, text: str, history: list[ChatMessage]) -> Reply:
        paper = _truncate(text, self.settings.chat_max_chars)
        response = await self._complete(
            max_tokens=1500,
            messages=[
                {"role": "system", "content": _CHAT_SYSTEM_PROMPT.format(paper=paper)},
                *({"role": m.role, "content": m.content} for m in history),
            ],
        )
        return Reply(text=response.choices[0].message.content or "", cost_estimate=self._cost(response))

    async def answer(self, text: str, selected_text: str, note: str) -> Reply:
        prompt = _ANNOTATION_TEMPLATE.format(
            paper=_truncate(text, self.settings.chat_max_chars),
            selected=selected_text,
            note=note,
        )
        response = await self._complete(
            max_tokens=1000,
            messages=[{"role": "user", "content": prompt}],
        )
        return Reply(text=response.choices[0].message.content or "", cost_estimate=self._cost(response))
