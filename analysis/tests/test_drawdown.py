"""
Tests for drawdown and recovery calculation utilities.
Uses crafted series with known drawdown patterns for verification.
"""

import pytest
import numpy as np
from datetime import date, timedelta

from analysis.calculations.drawdown import (
    drawdown_curve,
    max_drawdown,
    recovery_stats,
    DrawdownError,
    RECOVERED,
    NO_DRAWDOWN,
    UNRESOLVED,
    INSUFFICIENT_DATA,
)


def daily_dates(n, start=date(2024, 1, 1)):
    return [start + timedelta(days=i) for i in range(n)]


class TestDrawdownCurve:
    """Tests for drawdown_curve."""

    def test_never_positive_and_zero_at_running_max(self):
        navs = [1.0, 1.2, 1.1, 0.9, 1.3, 1.25, 1.3]
        curve = drawdown_curve(navs)

        assert np.all(curve <= 0)
        running_max = np.maximum.accumulate(navs)
        for nav, peak, dd in zip(navs, running_max, curve):
            if nav == peak:
                assert dd == 0.0

    def test_values(self):
        curve = drawdown_curve([100.0, 120.0, 90.0])
        np.testing.assert_allclose(curve, [0.0, 0.0, -0.25])

    def test_empty(self):
        assert drawdown_curve([]).size == 0

    def test_non_positive_nav(self):
        with pytest.raises(DrawdownError, match="Zero or negative"):
            drawdown_curve([1.0, 0.0])


class TestMaxDrawdown:
    """Tests for max_drawdown."""

    def test_simple_pattern(self):
        # 100 -> 120 (peak) -> 90 (trough) -> 125
        assert max_drawdown([100.0, 110.0, 120.0, 110.0, 90.0, 100.0, 125.0]) == pytest.approx(-0.25)

    def test_monotonic_rise(self):
        assert max_drawdown([1.0, 1.1, 1.2]) == 0.0


class TestRecoveryStats:
    """Tests for recovery_stats."""

    def test_recovered(self):
        navs = [100.0, 110.0, 120.0, 110.0, 90.0, 100.0, 115.0, 120.0]
        dates = daily_dates(len(navs))

        result = recovery_stats(navs, dates)

        assert result['recovery_status'] == RECOVERED
        assert result['trough_date'] == dates[4]
        # Equal to the prior peak counts as recovered
        assert result['recovery_date'] == dates[7]
        assert result['recovery_days'] == 3

    def test_uses_calendar_days(self):
        navs = [1.0, 0.9, 1.0]
        dates = [date(2024, 1, 5), date(2024, 1, 8), date(2024, 1, 15)]
        assert recovery_stats(navs, dates)['recovery_days'] == 7

    def test_unresolved(self):
        navs = [100.0, 120.0, 80.0, 85.0, 90.0]
        result = recovery_stats(navs, daily_dates(len(navs)))

        assert result['recovery_days'] is None
        assert result['recovery_status'] == UNRESOLVED
        assert result['trough_date'] == date(2024, 1, 3)

    def test_no_drawdown(self):
        navs = [1.0, 1.0, 1.1, 1.2]
        result = recovery_stats(navs, daily_dates(len(navs)))

        assert result['recovery_days'] == 0
        assert result['recovery_status'] == NO_DRAWDOWN

    def test_insufficient_data(self):
        result = recovery_stats([1.0], [date(2024, 1, 1)])

        assert result['recovery_days'] is None
        assert result['recovery_status'] == INSUFFICIENT_DATA

    def test_first_deepest_trough_is_used(self):
        # Two equal troughs; the first one recovers later than the second would
        navs = [1.0, 0.8, 0.9, 0.8, 1.0]
        result = recovery_stats(navs, daily_dates(len(navs)))
        assert result['trough_date'] == date(2024, 1, 2)
        assert result['recovery_days'] == 3

    def test_length_mismatch(self):
        with pytest.raises(DrawdownError, match="same length"):
            recovery_stats([1.0, 2.0], [date(2024, 1, 1)])
