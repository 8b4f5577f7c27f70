"""
Paper analysis with graceful degradation.

AnalysisEngine.analyze never raises: a paper whose AI enrichment failed is
still a successfully ingested paper, saved with the degraded analysis.
"""

from __future__ import annotations

import logging

from skim.assistant import Assistant
from skim.models import Analysis, UsageAction
from skim.usage import UsageLedger

logger = logging.getLogger(__name__)


def degraded_analysis() -> Analysis:
    return Analysis(summary=None, rating=None, category="Other", tags=[], key_findings=[], cost_estimate=0.0)


class AnalysisEngine:
    def __init__(self, assistant: Assistant, ledger: UsageLedger):
        self.assistant = assistant
        self.ledger = ledger

    async def analyze(self, text: str, owner_id: str) -> Analysis:
        try:
            analysis = await self.assistant.analyze(text)
        except Exception as exc:
            logger.warning("analysis failed for owner=%s, saving without enrichment: %s", owner_id, exc)
            return degraded_analysis()

        try:
            self.ledger.record(owner_id, UsageAction.INGESTION_ANALYSIS, analysis.cost_estimate)
        except Exception as exc:
            logger.error("could not record analysis usage for owner=%s: %s", owner_id, exc)
        return analysis
