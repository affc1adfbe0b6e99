"""
Data Ingestion Module

Handles fetching and parsing fund data from external sources:
- Eastmoney JS data files (NAV trend, ranking, allocation, grand total)
- 1234567 JSONP intraday estimates
- Eastmoney F10 pages and APIs (profile, industry mix, top holdings)
"""

__version__ = "0.0.1"
