"""ForecastingService: stateless facade over the analytics functions.

Holds only immutable configuration (tables, targets) and a store reader;
every call reads fresh data, so one instance can serve concurrent requests.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from pipeline_forecast.analytics.common import DateRange, as_utc, utcnow
from pipeline_forecast.analytics.conversion import StageConversionRates, get_stage_conversion_rates
from pipeline_forecast.analytics.forecast import ForecastResult, calculate_forecasts
from pipeline_forecast.analytics.health import (
    DEFAULT_MONTHLY_TARGET,
    STALLED_AFTER_DAYS,
    PipelineHealth,
    calculate_pipeline_health,
)
from pipeline_forecast.analytics.historical import HistoricalMetrics, get_historical_metrics
from pipeline_forecast.analytics.predictions import DealClosingForecast, predict_deal_closing
from pipeline_forecast.analytics.rep_performance import RepPerformance, get_rep_performance
from pipeline_forecast.analytics.tables import (
    DEFAULT_DECAY_TABLE,
    DEFAULT_STAGE_TABLE,
    StageProbabilityTable,
    TimeDecayTable,
    tables_from_settings,
)
from pipeline_forecast.analytics.velocity import PipelineVelocity, get_pipeline_velocity
from pipeline_forecast.store.opportunity_store import OpportunityReader, SqlOpportunityStore

logger = logging.getLogger(__name__)


@dataclass
class AnalyticsDashboard:
    """Everything the analytics page shows, computed in one pass."""
    forecast: ForecastResult
    historical: HistoricalMetrics
    velocity: PipelineVelocity
    conversions: StageConversionRates
    predictions: DealClosingForecast
    rep_performance: list[RepPerformance]
    pipeline_health: PipelineHealth


class ForecastingService:
    def __init__(
        self,
        store: OpportunityReader,
        stage_table: StageProbabilityTable = DEFAULT_STAGE_TABLE,
        decay_table: TimeDecayTable = DEFAULT_DECAY_TABLE,
        monthly_target: Decimal = DEFAULT_MONTHLY_TARGET,
        history_window_days: int = 90,
        prediction_horizon_days: int = 30,
        stalled_after_days: int = STALLED_AFTER_DAYS,
    ):
        if monthly_target <= 0:
            raise ValueError(f"monthly_target must be positive, got {monthly_target}")
        self.store = store
        self.stage_table = stage_table
        self.decay_table = decay_table
        self.monthly_target = Decimal(monthly_target)
        self.history_window_days = history_window_days
        self.prediction_horizon_days = prediction_horizon_days
        self.stalled_after_days = stalled_after_days

    @classmethod
    def from_settings(cls, store: OpportunityReader, settings=None) -> "ForecastingService":
        """Build a service whose tables and targets come from configuration."""
        if settings is None:
            from config.settings import settings
        stage_table, decay_table = tables_from_settings(settings)
        return cls(
            store,
            stage_table=stage_table,
            decay_table=decay_table,
            monthly_target=settings.monthly_target,
            history_window_days=settings.history_window_days,
            prediction_horizon_days=settings.prediction_horizon_days,
            stalled_after_days=settings.stalled_after_days,
        )

    @classmethod
    def for_database(cls, url: str | None = None) -> "ForecastingService":
        """Service reading from the configured CRM database."""
        from pipeline_forecast.db.connection import create_session_factory

        return cls.from_settings(SqlOpportunityStore(create_session_factory(url)))

    def default_range(self, now: datetime | None = None) -> DateRange:
        """Trailing history window ending now."""
        end = as_utc(now) if now else utcnow()
        return DateRange(end - timedelta(days=self.history_window_days), end)

    async def historical_metrics(self, date_range: DateRange) -> HistoricalMetrics:
        return await get_historical_metrics(self.store, date_range)

    async def stage_conversions(self) -> StageConversionRates:
        return await get_stage_conversion_rates(self.store)

    async def pipeline_velocity(self, date_range: DateRange) -> PipelineVelocity:
        return await get_pipeline_velocity(self.store, date_range)

    async def forecast(
        self, target_date: datetime | None = None, *, now: datetime | None = None,
    ) -> ForecastResult:
        return await calculate_forecasts(
            self.store,
            target_date,
            now=now,
            stage_table=self.stage_table,
            decay_table=self.decay_table,
            history_window_days=self.history_window_days,
        )

    async def deal_predictions(
        self, days_ahead: int | None = None, *, now: datetime | None = None,
    ) -> DealClosingForecast:
        return await predict_deal_closing(
            self.store,
            days_ahead if days_ahead is not None else self.prediction_horizon_days,
            now=now,
            stage_table=self.stage_table,
            decay_table=self.decay_table,
        )

    async def rep_performance(self, date_range: DateRange) -> list[RepPerformance]:
        return await get_rep_performance(self.store, date_range)

    async def pipeline_health(self, *, now: datetime | None = None) -> PipelineHealth:
        return await calculate_pipeline_health(
            self.store,
            now=now,
            monthly_target=self.monthly_target,
            stalled_after_days=self.stalled_after_days,
        )

    async def dashboard(
        self,
        date_range: DateRange | None = None,
        *,
        now: datetime | None = None,
    ) -> AnalyticsDashboard:
        """Run every view concurrently; *date_range* defaults to the history window."""
        now = as_utc(now) if now else utcnow()
        date_range = date_range or self.default_range(now)
        (
            forecast, historical, velocity, conversions,
            predictions, reps, health,
        ) = await asyncio.gather(
            self.forecast(now=now),
            self.historical_metrics(date_range),
            self.pipeline_velocity(date_range),
            self.stage_conversions(),
            self.deal_predictions(now=now),
            self.rep_performance(date_range),
            self.pipeline_health(now=now),
        )
        logger.info(
            "Dashboard built: health %d/100, %d predictions, %d reps",
            health.score, predictions.summary.total_deals, len(reps),
        )
        return AnalyticsDashboard(
            forecast=forecast,
            historical=historical,
            velocity=velocity,
            conversions=conversions,
            predictions=predictions,
            rep_performance=reps,
            pipeline_health=health,
        )
