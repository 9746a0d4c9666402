"""Historical win/loss performance over a closed-deal window."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from pipeline_forecast.analytics.common import (
    ZERO,
    DateRange,
    days_between,
    ratio,
    safe_decimal,
)
from pipeline_forecast.store.opportunity_store import (
    CLOSED_STAGES,
    OpportunityFilter,
    OpportunityReader,
)

logger = logging.getLogger(__name__)


@dataclass
class HistoricalMetrics:
    """Win/loss aggregates for deals closed inside a date range."""
    won_count: int
    lost_count: int
    total_closed: int
    win_rate: float
    total_revenue: Decimal
    avg_deal_size: Decimal
    avg_sales_cycle: float


def compute_historical_metrics(
    opportunities: Iterable,
    date_range: DateRange,
) -> HistoricalMetrics:
    """Aggregate closed deals whose ``updated_at`` falls inside *date_range*.

    ``updated_at`` stands in for the close timestamp.  Revenue, deal size and
    sales cycle only consider won deals; every ratio is 0 for an empty set.
    """
    won = []
    lost_count = 0
    for opp in opportunities:
        if not date_range.contains(opp.updated_at):
            continue
        if opp.stage == "closed_won":
            won.append(opp)
        elif opp.stage == "closed_lost":
            lost_count += 1

    won_count = len(won)
    total_closed = won_count + lost_count
    total_revenue = sum((safe_decimal(o.amount) for o in won), ZERO)
    avg_deal_size = total_revenue / won_count if won_count else ZERO

    cycles = [
        days_between(o.created_at, o.updated_at)
        for o in won
        if o.created_at is not None
    ]
    avg_sales_cycle = sum(cycles) / len(cycles) if cycles else 0.0

    return HistoricalMetrics(
        won_count=won_count,
        lost_count=lost_count,
        total_closed=total_closed,
        win_rate=ratio(won_count, total_closed),
        total_revenue=total_revenue,
        avg_deal_size=avg_deal_size,
        avg_sales_cycle=avg_sales_cycle,
    )


async def get_historical_metrics(
    store: OpportunityReader,
    date_range: DateRange,
) -> HistoricalMetrics:
    """Fetch closed deals for *date_range* and aggregate them."""
    closed = await store.get_opportunities(OpportunityFilter(
        stages=CLOSED_STAGES,
        updated_from=date_range.start,
        updated_to=date_range.end,
    ))
    metrics = compute_historical_metrics(closed, date_range)
    logger.debug(
        "Historical metrics: %d won / %d lost between %s and %s",
        metrics.won_count, metrics.lost_count, date_range.start, date_range.end,
    )
    return metrics
