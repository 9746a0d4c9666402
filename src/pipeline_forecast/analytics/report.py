"""Presentation helpers: dashboard payloads and plain-text reports."""

from __future__ import annotations

import dataclasses
from datetime import date, datetime
from decimal import Decimal

from pipeline_forecast.analytics.forecast import ForecastResult
from pipeline_forecast.analytics.health import PipelineHealth


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def to_payload(value):
    """Convert an analytics result into JSON-safe primitives.

    Dataclass fields become camelCase keys (``most_likely`` ->
    ``mostLikely``); plain dict keys such as stage names are kept as-is.
    Money becomes float and timestamps ISO-8601 strings.
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            _camel(f.name): to_payload(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    if hasattr(value, "__table__"):
        # ORM row (e.g. a stalled opportunity)
        return {
            _camel(column.key): to_payload(getattr(value, column.key))
            for column in value.__table__.columns
        }
    return value


def format_forecast_report(
    forecast: ForecastResult | None = None,
    health: PipelineHealth | None = None,
) -> str:
    """Combine forecast and health results into a text report."""
    sections: list[str] = []
    sections.append("PIPELINE FORECAST REPORT")
    sections.append("=" * 60)

    if forecast:
        f = forecast.forecasts
        h = forecast.historical_metrics
        lines = [
            "",
            f"FORECAST TO {forecast.target_date:%Y-%m-%d}",
            "-" * 40,
            f"  Closed (MTD):    {forecast.closed_revenue:>15,.2f}",
            f"  Open Pipeline:   {forecast.open_pipeline:>15,.2f}  ({forecast.opportunity_count} deals)",
            "",
            f"  Conservative:    {f.conservative:>15,.2f}",
            f"  Most Likely:     {f.most_likely:>15,.2f}",
            f"  Optimistic:      {f.optimistic:>15,.2f}",
            f"  Best Case:       {f.best_case:>15,.2f}",
            f"  Velocity-Based:  {f.velocity_based:>15,.2f}",
            f"  Time-Decayed:    {f.time_decay_adjusted:>15,.2f}",
            "",
            f"  Win Rate:        {h.win_rate:>14.1%}  ({h.won_count}W/{h.lost_count}L)",
            f"  Avg Deal Size:   {h.avg_deal_size:>15,.2f}",
            f"  Avg Cycle:       {h.avg_sales_cycle:>12.1f} days",
        ]
        sections.append("\n".join(lines))

    if health:
        c = health.components
        lines = [
            "",
            f"PIPELINE HEALTH: {health.score}/100",
            "-" * 40,
            f"  Coverage:        {c.pipeline_coverage:>15}",
            f"  Distribution:    {c.stage_distribution:>15}",
            f"  Velocity:        {c.velocity:>15}",
            f"  Freshness:       {c.freshness:>15}",
        ]
        if health.recommendations:
            lines.append("")
            lines.append("  Recommendations:")
            for rec in health.recommendations:
                lines.append(f"    - {rec}")
        sections.append("\n".join(lines))

    if not any([forecast, health]):
        sections.append("\nNo data available for report.")

    sections.append("\n" + "=" * 60)
    return "\n".join(sections)
