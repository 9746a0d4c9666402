"""Per-representative performance rollup."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal

from pipeline_forecast.analytics.common import ZERO, DateRange, ratio, safe_decimal
from pipeline_forecast.store.opportunity_store import (
    OPEN_STAGES,
    OpportunityFilter,
    OpportunityReader,
)

logger = logging.getLogger(__name__)


@dataclass
class RepIdentity:
    id: str
    name: str | None
    email: str | None


@dataclass
class RepPerformance:
    """Revenue, win rate and open pipeline for one owner."""
    rep: RepIdentity
    revenue: Decimal
    deals_won: int
    deals_lost: int
    win_rate: float
    avg_deal_size: Decimal
    pipeline_value: Decimal
    open_deals: int


def summarize_rep(rep, won: list, lost: list, open_deals: list) -> RepPerformance:
    revenue = sum((safe_decimal(o.amount) for o in won), ZERO)
    return RepPerformance(
        rep=RepIdentity(id=rep.id, name=rep.name, email=rep.email),
        revenue=revenue,
        deals_won=len(won),
        deals_lost=len(lost),
        win_rate=ratio(len(won), len(won) + len(lost)),
        avg_deal_size=revenue / len(won) if won else ZERO,
        pipeline_value=sum((safe_decimal(o.amount) for o in open_deals), ZERO),
        open_deals=len(open_deals),
    )


async def _rep_performance(store: OpportunityReader, rep, date_range: DateRange) -> RepPerformance:
    won, lost, open_deals = await asyncio.gather(
        store.get_opportunities(OpportunityFilter(
            stages=("closed_won",),
            owner_id=rep.id,
            updated_from=date_range.start,
            updated_to=date_range.end,
        )),
        store.get_opportunities(OpportunityFilter(
            stages=("closed_lost",),
            owner_id=rep.id,
            updated_from=date_range.start,
            updated_to=date_range.end,
        )),
        # Open pipeline is a current-state figure, not scoped by date
        store.get_opportunities(OpportunityFilter(stages=OPEN_STAGES, owner_id=rep.id)),
    )
    return summarize_rep(rep, list(won), list(lost), list(open_deals))


async def get_rep_performance(
    store: OpportunityReader,
    date_range: DateRange,
) -> list[RepPerformance]:
    """Roll up every user's results for *date_range*, best revenue first.

    Each rep's reads are independent, so all of them are dispatched
    together and only sorted once every result is in.
    """
    reps = await store.get_users()
    performance = await asyncio.gather(
        *[_rep_performance(store, rep, date_range) for rep in reps]
    )
    logger.debug("Rep performance computed for %d reps", len(performance))
    return sorted(performance, key=lambda p: p.revenue, reverse=True)
