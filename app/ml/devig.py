"""
De-vig methods for removing bookmaker margin from odds.

Works for any n-way market (1X2, over/under, BTTS):
- devig_proportional: Baseline (normalize 1/odds). Default.
- devig_power: Alternative (multiplicative method).
- devig_shin: Shin's insider-trading model.

Every method returns probabilities as fractions summing to 1.0, or a uniform
split when any price is invalid (<= 1.0).
"""

from typing import Tuple


def _uniform(n: int) -> Tuple[float, ...]:
    return tuple(1 / n for _ in range(n))


def devig_proportional(*odds: float) -> Tuple[float, ...]:
    """
    Proportional/additive de-vig (BASELINE method).

    Simply normalizes 1/odds to sum to 1.

    >>> [round(p * 100, 2) for p in devig_proportional(2.0, 3.0, 4.0)]
    [46.15, 30.77, 23.08]
    """
    if not odds:
        return ()
    if any(o is None or o <= 1 for o in odds):
        return _uniform(len(odds))

    implied = [1 / o for o in odds]
    total = sum(implied)

    if total < 0.001:
        return _uniform(len(odds))

    return tuple(p / total for p in implied)


def devig_power(*odds: float) -> Tuple[float, ...]:
    """
    Power method (multiplicative) de-vig.

    Solves for k such that sum((1/o_i)^k) = 1 using bisection. Assumes the
    bookmaker applies margin multiplicatively, which shades longshots more
    than favourites.
    """
    if not odds:
        return ()
    if any(o is None or o <= 1 for o in odds):
        return _uniform(len(odds))

    implied = [1 / o for o in odds]
    overround = sum(implied)

    # Already fair odds (no margin)
    if abs(overround - 1.0) < 0.001:
        return tuple(implied)

    def f(k: float) -> float:
        return sum(p**k for p in implied) - 1.0

    # k > 1 if overround > 1 (typical), k < 1 if underround
    k_low, k_high = 0.1, 3.0

    # 50 iterations gives precision < 1e-15
    for _ in range(50):
        k_mid = (k_low + k_high) / 2
        if f(k_mid) > 0:
            k_low = k_mid
        else:
            k_high = k_mid

    k = (k_low + k_high) / 2
    true_probs = [p**k for p in implied]

    total = sum(true_probs)
    if total < 0.001:
        return _uniform(len(odds))

    return tuple(p / total for p in true_probs)


def devig_shin(*odds: float, max_iter: int = 100, tol: float = 1e-10) -> Tuple[float, ...]:
    """
    Shin's method (Shin 1991, 1993) de-vig.

    Accounts for insider trading / favorite-longshot bias by solving
    for z (bookmaker's information parameter). Each true probability is:
      p_i = (sqrt(z^2 + 4*(1-z)*(q_i^2)/q_total) - z) / (2*(1-z))
    where q_i = 1/odds_i and q_total = sum(q_i).
    """
    if not odds:
        return ()
    if any(o is None or o <= 1 for o in odds):
        return _uniform(len(odds))

    q = [1 / o for o in odds]
    q_total = sum(q)

    if abs(q_total - 1.0) < 0.001:
        return tuple(q)

    def shin_probs(z):
        probs = []
        for qi in q:
            inner = z**2 + 4 * (1 - z) * (qi**2) / q_total
            if inner < 0:
                inner = 0.0
            pi = (inner**0.5 - z) / (2 * (1 - z))
            probs.append(max(pi, 1e-10))
        return probs

    # Bisection for z where sum(probs) = 1; z is typically small (0.01-0.05)
    z_lo, z_hi = 0.0, 0.5
    z = 0.0
    for _ in range(max_iter):
        z = (z_lo + z_hi) / 2
        s = sum(shin_probs(z))
        if abs(s - 1.0) < tol:
            break
        if s > 1.0:
            z_lo = z
        else:
            z_hi = z

    probs = shin_probs(z)
    total = sum(probs)
    if total < 0.001:
        return _uniform(len(odds))
    return tuple(p / total for p in probs)


def get_devig_function(method: str = "proportional"):
    """
    Get the de-vig function by name.

    Args:
        method: "proportional" (default/baseline), "power", or "shin"
    """
    if method == "power":
        return devig_power
    elif method == "shin":
        return devig_shin
    else:
        return devig_proportional
