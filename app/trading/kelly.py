"""
Kelly Criterion stake sizing for final betting decisions.

Functions:
- kelly_stake: Full Kelly f* = (bp - q) / b
- fractional_kelly: Conservative sizing (default Eighth-Kelly)
- apply_risk_overrides: EV floor, high-odds penalty, max-stake cap
- recommend_stake: Entry point used by the meta-learner
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KellySizing:
    fraction: float = 0.125
    bankroll_units: float = 1000.0
    min_ev: float = 0.05
    high_odds_threshold: float = 5.0
    high_odds_factor: float = 0.5
    max_stake_pct: float = 0.05

    @classmethod
    def from_settings(cls, settings) -> KellySizing:
        return cls(
            fraction=settings.TRADING_KELLY_FRACTION,
            bankroll_units=settings.TRADING_BANKROLL_UNITS,
            min_ev=settings.TRADING_MIN_EV,
            high_odds_threshold=settings.TRADING_MAX_ODDS_PENALTY_THRESHOLD,
            high_odds_factor=settings.TRADING_MAX_ODDS_PENALTY_FACTOR,
            max_stake_pct=settings.TRADING_MAX_STAKE_PCT,
        )


@dataclass(frozen=True)
class StakeRecommendation:
    kelly_raw: float
    kelly_fraction: float
    suggested_stake: float      # Fraction of bankroll
    stake_units: float
    flags: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "kelly_raw": self.kelly_raw,
            "kelly_fraction": self.kelly_fraction,
            "suggested_stake": self.suggested_stake,
            "stake_units": self.stake_units,
            "stake_flags": list(self.flags) or None,
        }


NO_STAKE = StakeRecommendation(0.0, 0.0, 0.0, 0.0)


def kelly_stake(prob: float, odds: float) -> float:
    """
    Full Kelly stake fraction: f* = (bp - q) / b

    - b = odds - 1.0. If odds <= 1.0, return 0.0
    - No shorting: max(0.0, f*)
    - prob must be in (0, 1)
    """
    if not (0 < prob < 1) or odds <= 1.0:
        return 0.0

    b = odds - 1.0
    q = 1.0 - prob
    f_star = (b * prob - q) / b
    return max(0.0, f_star)


def fractional_kelly(prob: float, odds: float, fraction: float = 0.125) -> float:
    """Returns fraction x kelly_stake."""
    return kelly_stake(prob, odds) * fraction


def apply_risk_overrides(
    stake: float,
    ev: float,
    odds: float,
    *,
    min_ev: float = 0.05,
    high_odds_threshold: float = 5.0,
    high_odds_factor: float = 0.5,
    max_stake_pct: float = 0.05,
) -> tuple[float, list[str] | None]:
    """
    Apply risk filters to a Kelly stake. Returns (adjusted_stake, flags).

    - EV < min_ev -> stake = 0, flag MIN_EV_REJECTED
    - Odds > threshold -> stake x factor, flag HIGH_ODDS_PENALTY
    - Stake > max_stake_pct -> cap, flag MAX_STAKE_CAP_APPLIED

    Flags are cumulative. Returns None if no flags applied.
    """
    flags: list[str] = []

    if ev < min_ev:
        return 0.0, ["MIN_EV_REJECTED"]

    if odds > high_odds_threshold:
        stake *= high_odds_factor
        flags.append("HIGH_ODDS_PENALTY")

    if stake > max_stake_pct:
        stake = max_stake_pct
        flags.append("MAX_STAKE_CAP_APPLIED")

    return stake, flags if flags else None


def recommend_stake(prob: float, odds: float, ev: float, sizing: KellySizing = KellySizing()) -> StakeRecommendation:
    """
    Fractional Kelly stake with risk overrides.

    prob is a fraction (0-1), ev a fraction (0.08 = +8%).
    Rounding: kelly_raw/kelly_fraction/suggested_stake to 4 decimals, stake_units to 2.
    """
    raw = kelly_stake(prob, odds)
    frac = raw * sizing.fraction

    adjusted, flags = apply_risk_overrides(
        frac, ev, odds,
        min_ev=sizing.min_ev,
        high_odds_threshold=sizing.high_odds_threshold,
        high_odds_factor=sizing.high_odds_factor,
        max_stake_pct=sizing.max_stake_pct,
    )

    return StakeRecommendation(
        kelly_raw=round(raw, 4),
        kelly_fraction=round(frac, 4),
        suggested_stake=round(adjusted, 4),
        stake_units=round(adjusted * sizing.bankroll_units, 2),
        flags=tuple(flags or ()),
    )
