"""Tests for Kelly stake sizing and risk overrides."""

import pytest

from app.config import Settings
from app.trading.kelly import (
    KellySizing,
    apply_risk_overrides,
    fractional_kelly,
    kelly_stake,
    recommend_stake,
)


class TestKellyStake:

    def test_even_money_edge(self):
        assert kelly_stake(0.6, 2.0) == pytest.approx(0.2)

    def test_no_edge_no_stake(self):
        assert kelly_stake(0.4, 2.0) == 0.0

    def test_invalid_inputs(self):
        assert kelly_stake(0.6, 1.0) == 0.0
        assert kelly_stake(0.0, 2.0) == 0.0
        assert kelly_stake(1.0, 2.0) == 0.0

    def test_fractional(self):
        assert fractional_kelly(0.6, 2.0) == pytest.approx(0.025)
        assert fractional_kelly(0.6, 2.0, fraction=0.5) == pytest.approx(0.1)


class TestRiskOverrides:

    def test_min_ev_rejects(self):
        assert apply_risk_overrides(0.03, 0.01, 2.0) == (0.0, ["MIN_EV_REJECTED"])

    def test_high_odds_penalty(self):
        stake, flags = apply_risk_overrides(0.04, 0.10, 6.0)
        assert stake == pytest.approx(0.02)
        assert flags == ["HIGH_ODDS_PENALTY"]

    def test_cap(self):
        stake, flags = apply_risk_overrides(0.20, 0.10, 2.0)
        assert stake == 0.05
        assert flags == ["MAX_STAKE_CAP_APPLIED"]

    def test_flags_accumulate(self):
        stake, flags = apply_risk_overrides(0.30, 0.10, 8.0)
        assert stake == 0.05
        assert flags == ["HIGH_ODDS_PENALTY", "MAX_STAKE_CAP_APPLIED"]

    def test_clean(self):
        assert apply_risk_overrides(0.02, 0.10, 2.0) == (0.02, None)


class TestRecommendStake:

    def test_recommendation(self):
        rec = recommend_stake(0.6, 2.0, 0.2)
        assert rec.kelly_raw == 0.2
        assert rec.kelly_fraction == 0.025
        assert rec.suggested_stake == 0.025
        assert rec.stake_units == 25.0
        assert rec.flags == ()

    def test_rejected_recommendation(self):
        rec = recommend_stake(0.6, 2.0, 0.01)
        assert rec.stake_units == 0.0
        assert rec.to_dict()["stake_flags"] == ["MIN_EV_REJECTED"]

    def test_sizing_from_settings(self):
        sizing = KellySizing.from_settings(Settings(TRADING_KELLY_FRACTION=0.25, TRADING_BANKROLL_UNITS=200))
        rec = recommend_stake(0.6, 2.0, 0.2, sizing)
        assert rec.suggested_stake == 0.05
        assert rec.stake_units == 10.0
