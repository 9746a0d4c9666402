"""Probability and time-decay tables shared by every forecast model.

Both tables are plain immutable values.  Callers pass them in explicitly
(or build them from settings), so alternative tables never require
patching module state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping

from pipeline_forecast.analytics.common import parse_probability

_DEFAULT_STAGE_PROBABILITIES = {
    "prospecting": 0.10,
    "qualification": 0.25,
    "proposal": 0.60,
    "negotiation": 0.80,
    "closed_won": 1.00,
    "closed_lost": 0.00,
}

_DEFAULT_DECAY_TIERS = ((30.0, 1.00), (60.0, 0.80), (90.0, 0.50))


@dataclass(frozen=True)
class StageProbabilityTable:
    """Default close probability per pipeline stage."""
    probabilities: Mapping[str, float] = field(
        default_factory=lambda: MappingProxyType(dict(_DEFAULT_STAGE_PROBABILITIES))
    )

    def __post_init__(self):
        for stage, prob in self.probabilities.items():
            if not 0.0 <= prob <= 1.0:
                raise ValueError(f"Probability for stage {stage!r} must be within [0, 1], got {prob}")
        object.__setattr__(self, "probabilities", MappingProxyType(dict(self.probabilities)))

    def probability(self, stage: str | None) -> float:
        """Stage default; unknown stages get 0."""
        if stage is None:
            return 0.0
        return self.probabilities.get(stage, 0.0)

    def effective(self, stage: str | None, override) -> float:
        """Override (0-100) when usable, else the stage default."""
        custom = parse_probability(override)
        return custom if custom is not None else self.probability(stage)


@dataclass(frozen=True)
class TimeDecayTable:
    """Age-based multipliers; the first tier whose bound covers the age wins."""
    tiers: tuple[tuple[float, float], ...] = _DEFAULT_DECAY_TIERS
    floor: float = 0.25

    def __post_init__(self):
        tiers = tuple((float(max_days), float(mult)) for max_days, mult in self.tiers)
        bounds = [t[0] for t in tiers]
        if bounds != sorted(bounds):
            raise ValueError("Time decay tiers must be ordered by ascending max age")
        for _, mult in tiers + ((0.0, self.floor),):
            if not 0.0 <= mult <= 1.0:
                raise ValueError(f"Decay multiplier must be within [0, 1], got {mult}")
        object.__setattr__(self, "tiers", tiers)

    def factor(self, age_days: float) -> float:
        for max_days, multiplier in self.tiers:
            if age_days <= max_days:
                return multiplier
        return self.floor


DEFAULT_STAGE_TABLE = StageProbabilityTable()
DEFAULT_DECAY_TABLE = TimeDecayTable()


def tables_from_settings(settings) -> tuple[StageProbabilityTable, TimeDecayTable]:
    """Build both tables from a :class:`config.settings.Settings` instance."""
    tiers: Iterable = settings.time_decay_tiers
    return (
        StageProbabilityTable(dict(settings.stage_probabilities)),
        TimeDecayTable(tuple(tuple(t) for t in tiers), settings.time_decay_floor),
    )
