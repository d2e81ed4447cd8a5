"""
Tests for de-vig methods.

Three-way (1X2) and two-way (over/under, BTTS) markets share one API.
"""

import pytest
from app.ml.devig import devig_power, devig_proportional, devig_shin, get_devig_function


class TestDevigProportional:
    """Test baseline de-vig method."""

    def test_fair_odds_unchanged(self):
        """Fair odds (sum to 1) should be unchanged."""
        result = devig_proportional(2.0, 4.0, 4.0)
        assert abs(sum(result) - 1.0) < 1e-10
        assert abs(result[0] - 0.5) < 1e-10
        assert abs(result[1] - 0.25) < 1e-10
        assert abs(result[2] - 0.25) < 1e-10

    def test_reference_ladder(self):
        """2.0 / 3.0 / 4.0 de-margins to 46.15 / 30.77 / 23.08 percent."""
        result = devig_proportional(2.0, 3.0, 4.0)
        assert [round(p * 100, 2) for p in result] == [46.15, 30.77, 23.08]

    def test_typical_market_odds(self):
        """Typical market odds with ~5% overround."""
        result = devig_proportional(2.10, 3.50, 3.40)
        assert abs(sum(result) - 1.0) < 1e-10
        assert 0.4 < result[0] < 0.5  # home
        assert 0.25 < result[1] < 0.30  # draw
        assert 0.25 < result[2] < 0.30  # away

    def test_two_way_market(self):
        """Over/under with margin splits to a fair pair."""
        over, under = devig_proportional(1.90, 1.90)
        assert over == pytest.approx(0.5)
        assert under == pytest.approx(0.5)

    def test_invalid_odds_returns_uniform(self):
        """Invalid odds should return uniform distribution."""
        result = devig_proportional(0.5, 1.0, 1.0)
        assert result == (1/3, 1/3, 1/3)

    def test_missing_price_returns_uniform(self):
        assert devig_proportional(1.8, None) == (0.5, 0.5)

    def test_sums_to_one(self):
        """Result should always sum to 1."""
        test_cases = [
            (1.80, 3.60, 4.50),
            (2.50, 3.20, 2.90),
            (1.20, 6.00, 12.00),
            (1.65, 2.20),
        ]
        for odds in test_cases:
            result = devig_proportional(*odds)
            assert abs(sum(result) - 1.0) < 1e-10


class TestDevigPower:
    """Test power/multiplicative de-vig method."""

    def test_fair_odds_unchanged(self):
        result = devig_power(2.0, 4.0, 4.0)
        assert abs(sum(result) - 1.0) < 1e-10
        assert abs(result[0] - 0.5) < 1e-10

    def test_typical_market_odds(self):
        result = devig_power(2.10, 3.50, 3.40)
        assert abs(sum(result) - 1.0) < 1e-10
        assert 0.4 < result[0] < 0.5

    def test_favourite_gets_more_than_proportional(self):
        """Power method shades longshots, so the favourite gains probability."""
        power = devig_power(1.20, 6.00, 12.00)
        proportional = devig_proportional(1.20, 6.00, 12.00)
        assert power[0] > proportional[0]

    def test_invalid_odds_returns_uniform(self):
        result = devig_power(0.5, 1.0, 1.0)
        assert result == (1/3, 1/3, 1/3)


class TestDevigShin:
    def test_sums_to_one(self):
        for odds in [(1.80, 3.60, 4.50), (2.50, 3.20, 2.90), (1.90, 1.90)]:
            assert abs(sum(devig_shin(*odds)) - 1.0) < 1e-8


class TestGetDevigFunction:
    def test_lookup(self):
        assert get_devig_function("power") is devig_power
        assert get_devig_function("shin") is devig_shin
        assert get_devig_function("proportional") is devig_proportional

    def test_unknown_defaults_to_proportional(self):
        assert get_devig_function("bogus") is devig_proportional
