"""
Cost accounting for AI calls: one UsageRecord appended per call, totals
aggregated per owner per billing period (a calendar month, UTC).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from skim.errors import BadRequest
from skim.models import UsageAction, UsageRecord, UsageSummary
from skim.store import PaperStore, new_id, utcnow

logger = logging.getLogger(__name__)

ALL_TIME = "all"


def period_bounds(period: Optional[str], now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    [start, end) of a billing period.

    period: "YYYY-MM", or None for the month containing `now`.
    """
    if period:
        try:
            start = datetime.strptime(period, "%Y-%m").replace(tzinfo=timezone.utc)
        except ValueError as exc:
            raise BadRequest(f"Invalid period {period!r}; expected YYYY-MM or 'all'") from exc
    else:
        now = now or datetime.now(timezone.utc)
        start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)

    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


class UsageLedger:
    def __init__(self, store: PaperStore):
        self.store = store

    def record(self, owner_id: str, action: UsageAction, cost_estimate: float) -> UsageRecord:
        record = UsageRecord(
            id=new_id(),
            owner_id=owner_id,
            action=action,
            cost_estimate=max(0.0, cost_estimate or 0.0),
            created_at=utcnow(),
        )
        self.store.insert_usage(record)
        logger.debug("usage owner=%s action=%s cost=%.6f", owner_id, action.value, record.cost_estimate)
        return record

    def summary(self, owner_id: str, period: Optional[str] = None) -> UsageSummary:
        if period == ALL_TIME:
            queries, cost = self.store.usage_totals(owner_id)
            return UsageSummary(
                total_papers=self.store.count_papers(owner_id),
                total_queries=queries,
                cost_estimate=round(cost, 4),
                period_start="",
                period_end=utcnow(),
            )

        start, end = period_bounds(period)
        start_s, end_s = start.isoformat(), end.isoformat()
        queries, cost = self.store.usage_totals(owner_id, start_s, end_s)
        return UsageSummary(
            total_papers=self.store.count_papers(owner_id, start_s, end_s),
            total_queries=queries,
            cost_estimate=round(cost, 4),
            period_start=start_s,
            period_end=end_s,
        )
