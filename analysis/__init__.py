"""
Analysis Engine Module

Calculates fund metrics from NAV series:
- Per-point and cumulative returns over range windows
- Volatility (annualized) and Sharpe ratio
- Maximum drawdown and recovery days
- Monthly return decomposition
- Top holdings quarter-over-quarter changes
"""

__version__ = "0.0.1"
