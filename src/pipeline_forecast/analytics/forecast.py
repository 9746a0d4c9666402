"""Forecast ensemble: six revenue forecasts for a target date.

Models:
    most_likely          stage/override-weighted open pipeline
    best_case            unweighted open pipeline
    optimistic           commit deals only (effective probability >= 0.8)
    time_decay_adjusted  weighted pipeline discounted by deal age
    conservative         open pipeline x trailing win rate
    velocity_based       trailing velocity x days to target x win rate

Only open deals with a close date on or before the target take part.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable

from pipeline_forecast.analytics.common import (
    ZERO,
    DateRange,
    as_utc,
    days_between,
    safe_decimal,
    utcnow,
    weighted,
)
from pipeline_forecast.analytics.historical import HistoricalMetrics, compute_historical_metrics
from pipeline_forecast.analytics.tables import (
    DEFAULT_DECAY_TABLE,
    DEFAULT_STAGE_TABLE,
    StageProbabilityTable,
    TimeDecayTable,
)
from pipeline_forecast.analytics.velocity import PipelineVelocity, compute_pipeline_velocity
from pipeline_forecast.store.opportunity_store import (
    CLOSED_STAGES,
    OPEN_STAGES,
    OpportunityFilter,
    OpportunityReader,
)

logger = logging.getLogger(__name__)

COMMIT_THRESHOLD = 0.8
HISTORY_WINDOW_DAYS = 90


@dataclass
class ForecastModels:
    conservative: Decimal
    most_likely: Decimal
    optimistic: Decimal
    best_case: Decimal
    velocity_based: Decimal
    time_decay_adjusted: Decimal


@dataclass
class ForecastResult:
    """Forecast bundle for a target date."""
    target_date: datetime
    closed_revenue: Decimal
    open_pipeline: Decimal
    opportunity_count: int
    forecasts: ForecastModels
    historical_metrics: HistoricalMetrics
    velocity: PipelineVelocity


@dataclass
class _PipelineTotals:
    stage_weighted: Decimal = ZERO
    best_case: Decimal = ZERO
    commit: Decimal = ZERO
    time_decay: Decimal = ZERO
    count: int = 0


def end_of_month(moment: datetime) -> datetime:
    """Last microsecond of *moment*'s calendar month (UTC)."""
    moment = as_utc(moment)
    first = moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if first.month == 12:
        next_first = first.replace(year=first.year + 1, month=1)
    else:
        next_first = first.replace(month=first.month + 1)
    return next_first - timedelta(microseconds=1)


def start_of_month(moment: datetime) -> datetime:
    return as_utc(moment).replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _weigh_pipeline(
    open_opps: Iterable,
    now: datetime,
    stage_table: StageProbabilityTable,
    decay_table: TimeDecayTable,
) -> _PipelineTotals:
    totals = _PipelineTotals()
    for opp in open_opps:
        amount = safe_decimal(opp.amount)
        probability = stage_table.effective(opp.stage, opp.probability)
        age_days = days_between(opp.created_at, now) if opp.created_at else 0.0

        totals.count += 1
        totals.best_case += amount
        totals.stage_weighted += weighted(amount, probability)
        if probability >= COMMIT_THRESHOLD:
            totals.commit += amount
        totals.time_decay += weighted(amount, probability * decay_table.factor(age_days))
    return totals


def compute_forecasts(
    open_opps: Iterable,
    closed_in_window: Iterable,
    target_date: datetime,
    now: datetime,
    stage_table: StageProbabilityTable = DEFAULT_STAGE_TABLE,
    decay_table: TimeDecayTable = DEFAULT_DECAY_TABLE,
    history_window_days: int = HISTORY_WINDOW_DAYS,
) -> ForecastResult:
    """Combine open pipeline and trailing closed deals into the six models.

    Args:
        open_opps: Open deals closing on or before *target_date*.
        closed_in_window: Closed deals; only those updated inside the
            trailing window (and, for actuals, this month) are used.
        target_date: Forecast horizon.
        now: Reference "current" instant.
    """
    target_date = as_utc(target_date)
    now = as_utc(now)
    closed = list(closed_in_window)

    totals = _weigh_pipeline(open_opps, now, stage_table, decay_table)

    window = DateRange(now - timedelta(days=history_window_days), now)
    history = compute_historical_metrics(closed, window)
    velocity = compute_pipeline_velocity(closed, window)

    days_to_target = max(0.0, days_between(now, target_date))
    velocity_forecast = weighted(
        velocity.velocity_per_day,
        days_to_target * history.win_rate,
    )

    month_to_date = DateRange(start_of_month(now), now)
    closed_revenue = sum(
        (
            safe_decimal(o.amount) for o in closed
            if o.stage == "closed_won" and month_to_date.contains(o.updated_at)
        ),
        ZERO,
    )

    return ForecastResult(
        target_date=target_date,
        closed_revenue=closed_revenue,
        open_pipeline=totals.best_case,
        opportunity_count=totals.count,
        forecasts=ForecastModels(
            conservative=weighted(totals.best_case, history.win_rate),
            most_likely=totals.stage_weighted,
            optimistic=totals.commit,
            best_case=totals.best_case,
            velocity_based=velocity_forecast,
            time_decay_adjusted=totals.time_decay,
        ),
        historical_metrics=history,
        velocity=velocity,
    )


async def calculate_forecasts(
    store: OpportunityReader,
    target_date: datetime | None = None,
    *,
    now: datetime | None = None,
    stage_table: StageProbabilityTable = DEFAULT_STAGE_TABLE,
    decay_table: TimeDecayTable = DEFAULT_DECAY_TABLE,
    history_window_days: int = HISTORY_WINDOW_DAYS,
) -> ForecastResult:
    """Run the forecast ensemble; *target_date* defaults to end of this month."""
    now = as_utc(now) if now else utcnow()
    target = as_utc(target_date) if target_date else end_of_month(now)

    # The trailing window and month-to-date actuals both come from closed
    # deals, so one read covers whichever of the two starts earlier.
    closed_from = min(now - timedelta(days=history_window_days), start_of_month(now))
    open_opps, closed = await asyncio.gather(
        store.get_opportunities(OpportunityFilter(
            stages=OPEN_STAGES,
            has_close_date=True,
            close_to=target,
        )),
        store.get_opportunities(OpportunityFilter(
            stages=CLOSED_STAGES,
            updated_from=closed_from,
            updated_to=now,
        )),
    )

    result = compute_forecasts(
        open_opps,
        closed,
        target,
        now,
        stage_table=stage_table,
        decay_table=decay_table,
        history_window_days=history_window_days,
    )
    logger.info(
        "Forecast to %s: %d open deals, most likely %s, best case %s",
        target.date(), result.opportunity_count,
        result.forecasts.most_likely, result.forecasts.best_case,
    )
    return result
