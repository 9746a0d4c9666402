"""Tests for snapshot-based stage conversion rates."""

from types import SimpleNamespace

import pytest

from pipeline_forecast.analytics.conversion import (
    compute_stage_conversion_rates,
    get_stage_conversion_rates,
)
from pipeline_forecast.store.opportunity_store import SnapshotStore


def _opps(**counts) -> list:
    return [
        SimpleNamespace(stage=stage)
        for stage, n in counts.items()
        for _ in range(n)
    ]


class TestComputeStageConversionRates:
    def test_ratios(self):
        result = compute_stage_conversion_rates(_opps(
            prospecting=4, qualification=2, proposal=2, negotiation=1, closed_won=1,
        ))
        assert result.total == 10
        assert result.conversions == {
            "prospecting_to_qualification": 0.2,
            "qualification_to_proposal": 1.0,
            "proposal_to_negotiation": 0.5,
            "negotiation_to_won": 1.0,
        }

    def test_empty(self):
        result = compute_stage_conversion_rates([])
        assert result.total == 0
        assert all(v == 0.0 for v in result.conversions.values())
        assert result.stage_count["proposal"] == 0

    def test_zero_denominators(self):
        result = compute_stage_conversion_rates(_opps(prospecting=3, closed_won=2))
        assert result.conversions["qualification_to_proposal"] == 0.0
        assert result.conversions["negotiation_to_won"] == 0.0

    def test_all_stages_present_in_counts(self):
        result = compute_stage_conversion_rates(_opps(proposal=1))
        assert set(result.stage_count) >= {
            "prospecting", "qualification", "proposal",
            "negotiation", "closed_won", "closed_lost",
        }

    def test_unknown_stage_counted_separately(self):
        result = compute_stage_conversion_rates(_opps(discovery=1, qualification=1))
        assert result.stage_count["discovery"] == 1
        assert result.conversions["prospecting_to_qualification"] == 0.5


class TestGetStageConversionRates:
    @pytest.mark.asyncio
    async def test_uses_every_opportunity(self):
        store = SnapshotStore(_opps(qualification=1, proposal=1, closed_lost=2))
        result = await get_stage_conversion_rates(store)
        assert result.total == 4
        assert result.stage_count["closed_lost"] == 2
