"""Stage conversion rates from the current pipeline snapshot.

This is an approximation: conversion is inferred from how many deals sit in
each stage *now*, not from stage-transition history.  A transition log
would be needed for true funnel rates.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from pipeline_forecast.analytics.common import ratio
from pipeline_forecast.store.opportunity_store import OpportunityReader

_FUNNEL_STAGES = (
    "prospecting",
    "qualification",
    "proposal",
    "negotiation",
    "closed_won",
    "closed_lost",
)


@dataclass
class StageConversionRates:
    """Per-stage counts and adjacent-stage conversion ratios (0-1).

    ``conversions`` keys: prospecting_to_qualification,
    qualification_to_proposal, proposal_to_negotiation, negotiation_to_won.
    """
    stage_count: dict[str, int]
    total: int
    conversions: dict[str, float]


def compute_stage_conversion_rates(opportunities: Iterable) -> StageConversionRates:
    counts: Counter[str] = Counter({stage: 0 for stage in _FUNNEL_STAGES})
    total = 0
    for opp in opportunities:
        counts[opp.stage] += 1
        total += 1

    # First step has no "entered prospecting" count, so it is measured
    # against the whole pipeline.
    conversions = {
        "prospecting_to_qualification": ratio(counts["qualification"], total),
        "qualification_to_proposal": ratio(counts["proposal"], counts["qualification"]),
        "proposal_to_negotiation": ratio(counts["negotiation"], counts["proposal"]),
        "negotiation_to_won": ratio(counts["closed_won"], counts["negotiation"]),
    }
    return StageConversionRates(stage_count=dict(counts), total=total, conversions=conversions)


async def get_stage_conversion_rates(store: OpportunityReader) -> StageConversionRates:
    """Stage counts across every opportunity, regardless of dates."""
    return compute_stage_conversion_rates(await store.get_opportunities())
