"""Pipeline health score: a 0-100 composite with recommendations.

Components and weights:
    coverage            0.30  open value vs. 3x the monthly target
    stage distribution  0.30  early/mid/late mix vs. an ideal 40/30/30
    velocity            0.20  share of deals touched in the last 30 days
    freshness           0.20  average deal age vs. a 90-day horizon
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Sequence

from pipeline_forecast.analytics.common import (
    ZERO,
    as_utc,
    days_between,
    safe_decimal,
    utcnow,
)
from pipeline_forecast.store.opportunity_store import (
    OPEN_STAGES,
    OpportunityFilter,
    OpportunityReader,
)

logger = logging.getLogger(__name__)

DEFAULT_MONTHLY_TARGET = Decimal("100000")
TARGET_COVERAGE_MULTIPLE = 3
IDEAL_DISTRIBUTION = {"early": 0.4, "mid": 0.3, "late": 0.3}
FRESHNESS_HORIZON_DAYS = 90
STALLED_AFTER_DAYS = 30
STALLED_DEALS_LIMIT = 10
RECOMMENDATION_THRESHOLD = 50

_WEIGHTS = {
    "pipeline_coverage": 0.3,
    "stage_distribution": 0.3,
    "velocity": 0.2,
    "freshness": 0.2,
}

_STAGE_BUCKETS = {
    "prospecting": "early",
    "qualification": "early",
    "proposal": "mid",
    "negotiation": "late",
}


@dataclass
class HealthComponents:
    pipeline_coverage: int = 0
    stage_distribution: int = 0
    velocity: int = 0
    freshness: int = 0


@dataclass
class HealthMetrics:
    total_pipeline_value: Decimal = ZERO
    coverage: float = 0.0
    avg_age: int = 0
    stalled_count: int = 0


@dataclass
class PipelineHealth:
    score: int
    components: HealthComponents
    stalled_deals: list
    recommendations: list[str]
    metrics: HealthMetrics = field(default_factory=HealthMetrics)


def score_pipeline_health(
    open_opps: Sequence,
    now: datetime,
    monthly_target: Decimal = DEFAULT_MONTHLY_TARGET,
    stalled_after_days: int = STALLED_AFTER_DAYS,
) -> PipelineHealth:
    """Score the open pipeline.

    An empty pipeline short-circuits to a score of 0 with a single
    "build pipeline" recommendation.
    """
    if not open_opps:
        return PipelineHealth(
            score=0,
            components=HealthComponents(),
            stalled_deals=[],
            recommendations=["Build pipeline - no active opportunities"],
        )

    now = as_utc(now)
    total = len(open_opps)

    # 1. Coverage
    total_value = sum((safe_decimal(o.amount) for o in open_opps), ZERO)
    coverage = float(total_value / monthly_target) if monthly_target > 0 else 0.0
    coverage_score = max(0.0, min(coverage / TARGET_COVERAGE_MULTIPLE, 1.0)) * 100

    # 2. Stage distribution
    buckets = Counter(_STAGE_BUCKETS.get(o.stage) for o in open_opps)
    deviation = sum(
        abs(buckets[bucket] / total - ideal)
        for bucket, ideal in IDEAL_DISTRIBUTION.items()
    )
    distribution_score = max(0.0, (1 - deviation) * 100)

    # 3. Velocity
    recent_cutoff = now - timedelta(days=stalled_after_days)
    recently_updated = sum(
        1 for o in open_opps
        if o.updated_at is not None and as_utc(o.updated_at) >= recent_cutoff
    )
    velocity_score = recently_updated / total * 100

    # 4. Freshness
    ages = [days_between(o.created_at, now) if o.created_at else 0.0 for o in open_opps]
    avg_age = sum(ages) / len(ages)
    freshness_score = max(0.0, min(100.0, (1 - avg_age / FRESHNESS_HORIZON_DAYS) * 100))

    # Stalled deals, stalest first
    stalled = [
        o for o in open_opps
        if o.updated_at is None or days_between(o.updated_at, now) > stalled_after_days
    ]
    stalled.sort(key=lambda o: as_utc(o.updated_at) or datetime.min.replace(tzinfo=now.tzinfo))

    overall = (
        coverage_score * _WEIGHTS["pipeline_coverage"]
        + distribution_score * _WEIGHTS["stage_distribution"]
        + velocity_score * _WEIGHTS["velocity"]
        + freshness_score * _WEIGHTS["freshness"]
    )

    recommendations: list[str] = []
    if coverage_score < RECOMMENDATION_THRESHOLD:
        recommendations.append("Increase pipeline - low coverage")
    if distribution_score < RECOMMENDATION_THRESHOLD:
        recommendations.append("Rebalance stage distribution")
    if velocity_score < RECOMMENDATION_THRESHOLD:
        recommendations.append("Accelerate deal movement")
    if freshness_score < RECOMMENDATION_THRESHOLD:
        recommendations.append("Refresh old opportunities")
    if stalled:
        recommendations.append(f"Follow up on {len(stalled)} stalled deals")

    return PipelineHealth(
        score=round(overall),
        components=HealthComponents(
            pipeline_coverage=round(coverage_score),
            stage_distribution=round(distribution_score),
            velocity=round(velocity_score),
            freshness=round(freshness_score),
        ),
        stalled_deals=stalled[:STALLED_DEALS_LIMIT],
        recommendations=recommendations,
        metrics=HealthMetrics(
            total_pipeline_value=total_value,
            coverage=coverage,
            avg_age=round(avg_age),
            stalled_count=len(stalled),
        ),
    )


async def calculate_pipeline_health(
    store: OpportunityReader,
    *,
    now: datetime | None = None,
    monthly_target: Decimal = DEFAULT_MONTHLY_TARGET,
    stalled_after_days: int = STALLED_AFTER_DAYS,
) -> PipelineHealth:
    now = as_utc(now) if now else utcnow()
    open_opps = list(await store.get_opportunities(OpportunityFilter(stages=OPEN_STAGES)))
    health = score_pipeline_health(
        open_opps, now,
        monthly_target=monthly_target,
        stalled_after_days=stalled_after_days,
    )
    logger.info(
        "Pipeline health %d/100 over %d open deals (%d stalled)",
        health.score, len(open_opps), health.metrics.stalled_count,
    )
    return health
