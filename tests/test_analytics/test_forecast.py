"""Tests for the forecast ensemble."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from pipeline_forecast.analytics.forecast import (
    calculate_forecasts,
    compute_forecasts,
    end_of_month,
    start_of_month,
)
from pipeline_forecast.analytics.tables import StageProbabilityTable, TimeDecayTable
from pipeline_forecast.db.models import Opportunity
from pipeline_forecast.store.opportunity_store import SnapshotStore

NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)
TARGET = NOW + timedelta(days=30)


def _make_opp(
    id: str,
    stage: str = "proposal",
    amount: str | None = "10000",
    probability: int | None = None,
    created_days_ago: float = 10,
    updated_days_ago: float = 1,
    close_in_days: float | None = 1,
) -> Opportunity:
    return Opportunity(
        id=id,
        account_id="ACCT-1",
        owner_id="u1",
        name=f"Deal {id}",
        stage=stage,
        amount=amount,
        probability=probability,
        close_date=NOW + timedelta(days=close_in_days) if close_in_days is not None else None,
        created_at=NOW - timedelta(days=created_days_ago),
        updated_at=NOW - timedelta(days=updated_days_ago),
    )


class TestMonthBoundaries:
    def test_end_of_month(self):
        eom = end_of_month(NOW)
        assert (eom.year, eom.month, eom.day) == (2026, 10, 31)
        assert eom + timedelta(microseconds=1) == datetime(2026, 11, 1, tzinfo=timezone.utc)

    def test_end_of_december(self):
        eom = end_of_month(datetime(2026, 12, 3, tzinfo=timezone.utc))
        assert eom + timedelta(microseconds=1) == datetime(2027, 1, 1, tzinfo=timezone.utc)

    def test_start_of_month(self):
        assert start_of_month(NOW) == datetime(2026, 10, 1, tzinfo=timezone.utc)


class TestComputeForecasts:
    def test_fresh_proposal(self):
        result = compute_forecasts([_make_opp("p")], [], TARGET, NOW)
        assert result.forecasts.most_likely == 6000
        assert result.forecasts.time_decay_adjusted == 6000
        assert result.forecasts.best_case == 10000
        assert result.open_pipeline == 10000
        assert result.opportunity_count == 1

    def test_aged_proposal_decays(self):
        result = compute_forecasts([_make_opp("p", created_days_ago=75)], [], TARGET, NOW)
        assert result.forecasts.time_decay_adjusted == 3000
        assert result.forecasts.most_likely == 6000

    def test_commit_only_high_probability(self):
        opps = [
            _make_opp("neg", stage="negotiation", amount="20000"),
            _make_opp("prop", stage="proposal", amount="10000"),
            _make_opp("custom", stage="prospecting", amount="5000", probability=90),
        ]
        result = compute_forecasts(opps, [], TARGET, NOW)
        assert result.forecasts.optimistic == 25000
        assert result.forecasts.best_case == 35000

    def test_custom_probability_overrides_stage(self):
        result = compute_forecasts([_make_opp("p", probability=20)], [], TARGET, NOW)
        assert result.forecasts.most_likely == 2000

    def test_zero_probability_override_respected(self):
        result = compute_forecasts([_make_opp("p", probability=0)], [], TARGET, NOW)
        assert result.forecasts.most_likely == 0
        assert result.forecasts.best_case == 10000

    def test_malformed_amount_is_zero(self):
        result = compute_forecasts([_make_opp("p", amount="n/a")], [], TARGET, NOW)
        assert result.forecasts.best_case == 0
        assert result.opportunity_count == 1

    def test_out_of_range_amount_is_zero(self):
        opps = [_make_opp("huge", amount="1e999999999"), _make_opp("p")]
        result = compute_forecasts(opps, [], TARGET, NOW)
        assert result.forecasts.best_case == 10000
        assert result.forecasts.most_likely == 6000
        assert result.opportunity_count == 2

    def test_unconvertible_probability_uses_stage_default(self):
        result = compute_forecasts([_make_opp("p", probability=10**400)], [], TARGET, NOW)
        assert result.forecasts.most_likely == 6000

    def test_conservative_uses_trailing_win_rate(self):
        closed = [
            _make_opp("w", stage="closed_won", amount="5000", updated_days_ago=10),
            _make_opp("l", stage="closed_lost", amount="3000", updated_days_ago=10),
        ]
        result = compute_forecasts([_make_opp("p")], closed, TARGET, NOW)
        assert result.historical_metrics.win_rate == 0.5
        assert result.forecasts.conservative == 5000

    def test_velocity_based(self):
        closed = [
            _make_opp("w", stage="closed_won", amount="5000", updated_days_ago=10),
            _make_opp("l", stage="closed_lost", amount="4000", updated_days_ago=10),
        ]
        result = compute_forecasts([], closed, TARGET, NOW)
        # 9000 over 90 days = 100/day, x 30 days x 0.5 win rate
        assert result.velocity.velocity_per_day == 100
        assert float(result.forecasts.velocity_based) == pytest.approx(1500.0)

    def test_velocity_based_past_target_is_zero(self):
        closed = [_make_opp("w", stage="closed_won", amount="5000", updated_days_ago=10)]
        result = compute_forecasts([], closed, NOW - timedelta(days=5), NOW)
        assert result.forecasts.velocity_based == 0

    def test_closed_revenue_month_to_date(self):
        closed = [
            _make_opp("this_month", stage="closed_won", amount="5000", updated_days_ago=10),
            _make_opp("last_month", stage="closed_won", amount="7000", updated_days_ago=20),
            _make_opp("lost", stage="closed_lost", amount="9000", updated_days_ago=2),
        ]
        result = compute_forecasts([], closed, TARGET, NOW)
        assert result.closed_revenue == 5000

    def test_empty(self):
        result = compute_forecasts([], [], TARGET, NOW)
        f = result.forecasts
        assert (f.conservative, f.most_likely, f.optimistic, f.best_case,
                f.velocity_based, f.time_decay_adjusted) == (0, 0, 0, 0, 0, 0)
        assert result.opportunity_count == 0

    def test_most_likely_and_optimistic_bounded_by_best_case(self):
        opps = [
            _make_opp(str(i), stage=stage, amount=str(1000 * (i + 1)), probability=prob,
                      created_days_ago=age)
            for i, (stage, prob, age) in enumerate([
                ("prospecting", None, 5), ("qualification", 100, 40),
                ("proposal", None, 70), ("negotiation", 95, 120),
                ("negotiation", None, 10), ("proposal", 250, 3),
            ])
        ]
        f = compute_forecasts(opps, [], TARGET, NOW).forecasts
        assert f.optimistic <= f.best_case
        assert f.most_likely <= f.best_case
        assert f.time_decay_adjusted <= f.most_likely

    def test_injected_tables(self):
        result = compute_forecasts(
            [_make_opp("p", created_days_ago=5)], [], TARGET, NOW,
            stage_table=StageProbabilityTable({"proposal": 0.5}),
            decay_table=TimeDecayTable(((1, 1.0),), floor=0.5),
        )
        assert result.forecasts.most_likely == 5000
        assert result.forecasts.time_decay_adjusted == 2500


class TestCalculateForecasts:
    @pytest.mark.asyncio
    async def test_filters_open_deals_by_target(self):
        store = SnapshotStore([
            _make_opp("soon", close_in_days=1),
            _make_opp("late", close_in_days=60),
            _make_opp("undated", close_in_days=None),
            _make_opp("won", stage="closed_won", close_in_days=-5),
        ])
        result = await calculate_forecasts(store, TARGET, now=NOW)
        assert result.opportunity_count == 1
        assert result.forecasts.most_likely == 6000

    @pytest.mark.asyncio
    async def test_default_target_is_end_of_month(self):
        store = SnapshotStore([
            _make_opp("this_month", close_in_days=10),
            _make_opp("next_month", close_in_days=20),
        ])
        result = await calculate_forecasts(store, now=NOW)
        assert result.target_date == end_of_month(NOW)
        assert result.opportunity_count == 1

    @pytest.mark.asyncio
    async def test_history_and_actuals_from_store(self):
        store = SnapshotStore([
            _make_opp("p"),
            _make_opp("w", stage="closed_won", amount="5000", updated_days_ago=3),
            _make_opp("l", stage="closed_lost", amount="3000", updated_days_ago=3),
            _make_opp("ancient", stage="closed_won", amount="1", updated_days_ago=400),
        ])
        result = await calculate_forecasts(store, TARGET, now=NOW)
        assert result.historical_metrics.win_rate == 0.5
        assert result.closed_revenue == Decimal("5000")
        assert result.forecasts.conservative == 5000

    @pytest.mark.asyncio
    async def test_empty_store(self):
        result = await calculate_forecasts(SnapshotStore(), TARGET, now=NOW)
        assert result.forecasts.best_case == 0
