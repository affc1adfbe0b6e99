"""
Volatility calculation utilities.
Pure functions for annualized volatility and Sharpe ratio of daily returns.
"""

import math
import numpy as np
from typing import Optional, Sequence

TRADING_DAYS_PER_YEAR = 252

# Standard deviations below this are treated as zero
STD_EPSILON = 1e-12


class VolatilityError(Exception):
    """Raised when volatility calculation fails."""
    pass


def _as_returns(daily_returns: Sequence[float]) -> np.ndarray:
    returns = np.asarray(daily_returns, dtype=float)
    if np.any(~np.isfinite(returns)):
        raise VolatilityError("Non-finite values not allowed in daily returns")
    return returns


def annualized_volatility_pct(
    daily_returns: Sequence[float],
    annualize: int = TRADING_DAYS_PER_YEAR
) -> float:
    """
    Annualized volatility in percent.

    Formula: σ = std(returns, ddof=0) × √annualize × 100

    Population standard deviation is used. An empty series has no dispersion
    and reads 0.

    Raises:
        VolatilityError: If a return is non-finite
    """
    returns = _as_returns(daily_returns)
    if returns.size == 0:
        return 0.0
    return float(np.std(returns, ddof=0) * math.sqrt(annualize) * 100)


def sharpe_ratio(
    daily_returns: Sequence[float],
    annualize: int = TRADING_DAYS_PER_YEAR
) -> Optional[float]:
    """
    Annualized Sharpe ratio with a zero risk-free rate.

    Formula: mean(returns) / std(returns, ddof=0) × √annualize

    Returns:
        Ratio, or None when there are no returns or the deviation is zero

    Raises:
        VolatilityError: If a return is non-finite
    """
    returns = _as_returns(daily_returns)
    if returns.size == 0:
        return None

    std = float(np.std(returns, ddof=0))
    if std < STD_EPSILON:
        return None

    return float(np.mean(returns) / std * math.sqrt(annualize))
