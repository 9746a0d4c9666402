"""Tests for environment-driven settings."""

from decimal import Decimal

from config.settings import Settings
from pipeline_forecast.analytics.tables import tables_from_settings


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.monthly_target == Decimal("100000")
        assert s.stage_probabilities["negotiation"] == 0.80
        assert s.history_window_days == 90

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("MONTHLY_TARGET", "250000")
        monkeypatch.setenv("STAGE_PROBABILITIES", '{"proposal": 0.5, "negotiation": 0.9}')
        monkeypatch.setenv("TIME_DECAY_TIERS", "[[14, 1.0], [45, 0.6]]")
        monkeypatch.setenv("TIME_DECAY_FLOOR", "0.2")
        s = Settings(_env_file=None)
        assert s.monthly_target == Decimal("250000")

        stage_table, decay_table = tables_from_settings(s)
        assert stage_table.probability("proposal") == 0.5
        assert stage_table.probability("prospecting") == 0.0
        assert decay_table.factor(30) == 0.6
        assert decay_table.factor(60) == 0.2

    def test_default_tables_match_builtin(self):
        stage_table, decay_table = tables_from_settings(Settings(_env_file=None))
        assert stage_table.probability("proposal") == 0.60
        assert decay_table.factor(75) == 0.50
        assert decay_table.factor(120) == 0.25
