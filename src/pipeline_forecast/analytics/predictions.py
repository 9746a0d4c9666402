"""Deal closing predictor: which late-stage deals are likely to close soon."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Mapping

from pipeline_forecast.analytics.common import (
    ZERO,
    as_utc,
    days_between,
    parse_probability,
    safe_decimal,
    utcnow,
    weighted,
)
from pipeline_forecast.analytics.tables import (
    DEFAULT_DECAY_TABLE,
    DEFAULT_STAGE_TABLE,
    StageProbabilityTable,
    TimeDecayTable,
)
from pipeline_forecast.store.opportunity_store import OpportunityFilter, OpportunityReader

PREDICTED_STAGES = ("proposal", "negotiation")
LIKELY_CLOSER_THRESHOLD = 0.7
AT_RISK_AGE_DAYS = 45
AT_RISK_PROBABILITY = 0.5


@dataclass
class DealOwner:
    id: str
    name: str | None = None
    email: str | None = None


@dataclass
class DealPrediction:
    """One upcoming deal with its decayed close probability."""
    id: str
    name: str | None
    account_name: str | None
    amount: Decimal
    stage: str
    close_date: datetime | None
    days_until_close: int | None
    probability: float
    stage_probability: float
    age_days: int
    decay_factor: float
    owner: DealOwner | None = None


@dataclass
class PredictionSummary:
    total_deals: int
    expected_revenue: Decimal
    likely_closers: int
    at_risk_deals: int


@dataclass
class DealClosingForecast:
    predictions: list[DealPrediction]
    summary: PredictionSummary
    likely_closers: list[DealPrediction] = field(default_factory=list)
    at_risk: list[DealPrediction] = field(default_factory=list)


def _predict(
    opp,
    now: datetime,
    accounts: Mapping[str, object],
    users: Mapping[str, object],
    stage_table: StageProbabilityTable,
    decay_table: TimeDecayTable,
) -> DealPrediction:
    stage_probability = stage_table.probability(opp.stage)
    custom = parse_probability(opp.probability)
    age = days_between(opp.created_at, now) if opp.created_at else 0.0
    decay = decay_table.factor(age)
    base = custom if custom is not None else stage_probability

    close_date = as_utc(opp.close_date)
    days_until_close = math.ceil(days_between(now, close_date)) if close_date else None

    account = accounts.get(opp.account_id)
    user = users.get(opp.owner_id)
    owner = DealOwner(id=user.id, name=user.name, email=user.email) if user else None

    return DealPrediction(
        id=opp.id,
        name=opp.name,
        account_name=account.name if account else None,
        amount=safe_decimal(opp.amount),
        stage=opp.stage,
        close_date=close_date,
        days_until_close=days_until_close,
        probability=base * decay,
        stage_probability=stage_probability,
        age_days=math.floor(age),
        decay_factor=decay,
        owner=owner,
    )


def rank_deal_predictions(
    upcoming: Iterable,
    now: datetime,
    accounts: Iterable = (),
    users: Iterable = (),
    stage_table: StageProbabilityTable = DEFAULT_STAGE_TABLE,
    decay_table: TimeDecayTable = DEFAULT_DECAY_TABLE,
) -> DealClosingForecast:
    """Score and rank *upcoming* deals by decayed probability.

    Args:
        upcoming: Open proposal/negotiation deals inside the horizon.
        now: Reference instant for ages and days-until-close.
        accounts: Accounts used to resolve ``account_name``.
        users: Users used to resolve ``owner``.

    Returns:
        DealClosingForecast with predictions sorted by probability
        descending (ties keep earliest close date first).
    """
    now = as_utc(now)
    account_map = {a.id: a for a in accounts}
    user_map = {u.id: u for u in users}

    ordered = sorted(
        upcoming,
        key=lambda o: as_utc(o.close_date) or datetime.max.replace(tzinfo=now.tzinfo),
    )
    predictions = [
        _predict(o, now, account_map, user_map, stage_table, decay_table)
        for o in ordered
    ]
    predictions.sort(key=lambda p: p.probability, reverse=True)

    expected_revenue = sum(
        (weighted(p.amount, p.probability) for p in predictions), ZERO
    )
    likely = [p for p in predictions if p.probability >= LIKELY_CLOSER_THRESHOLD]
    at_risk = [
        p for p in predictions
        if p.age_days > AT_RISK_AGE_DAYS and p.probability < AT_RISK_PROBABILITY
    ]

    return DealClosingForecast(
        predictions=predictions,
        summary=PredictionSummary(
            total_deals=len(predictions),
            expected_revenue=expected_revenue,
            likely_closers=len(likely),
            at_risk_deals=len(at_risk),
        ),
        likely_closers=likely,
        at_risk=at_risk,
    )


async def predict_deal_closing(
    store: OpportunityReader,
    days_ahead: int = 30,
    *,
    now: datetime | None = None,
    stage_table: StageProbabilityTable = DEFAULT_STAGE_TABLE,
    decay_table: TimeDecayTable = DEFAULT_DECAY_TABLE,
) -> DealClosingForecast:
    """Rank proposal/negotiation deals expected to close within *days_ahead*."""
    now = as_utc(now) if now else utcnow()
    horizon = now + timedelta(days=days_ahead)

    upcoming, accounts, users = await asyncio.gather(
        store.get_opportunities(OpportunityFilter(
            stages=PREDICTED_STAGES,
            has_close_date=True,
            close_from=now,
            close_to=horizon,
        )),
        store.get_accounts(),
        store.get_users(),
    )
    return rank_deal_predictions(
        upcoming, now, accounts, users,
        stage_table=stage_table, decay_table=decay_table,
    )
