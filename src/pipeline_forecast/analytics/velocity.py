"""Pipeline velocity: closed deal value moved per day."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from pipeline_forecast.analytics.common import ZERO, DateRange, safe_decimal
from pipeline_forecast.store.opportunity_store import (
    CLOSED_STAGES,
    OpportunityFilter,
    OpportunityReader,
)


@dataclass
class PipelineVelocity:
    total_value: Decimal
    days: float
    velocity_per_day: Decimal
    opportunities_moved: int


def compute_pipeline_velocity(opportunities: Iterable, date_range: DateRange) -> PipelineVelocity:
    """Sum won *and* lost deals closed inside *date_range*.

    A zero-length (or inverted) range yields a velocity of 0.
    """
    moved = [
        o for o in opportunities
        if o.stage in CLOSED_STAGES and date_range.contains(o.updated_at)
    ]
    total_value = sum((safe_decimal(o.amount) for o in moved), ZERO)
    days = date_range.days
    velocity = total_value / Decimal(repr(days)) if days > 0 else ZERO
    return PipelineVelocity(
        total_value=total_value,
        days=days,
        velocity_per_day=velocity,
        opportunities_moved=len(moved),
    )


async def get_pipeline_velocity(store: OpportunityReader, date_range: DateRange) -> PipelineVelocity:
    moved = await store.get_opportunities(OpportunityFilter(
        stages=CLOSED_STAGES,
        updated_from=date_range.start,
        updated_to=date_range.end,
    ))
    return compute_pipeline_velocity(moved, date_range)
