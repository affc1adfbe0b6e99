"""
Test Suite for the Fund Market Data Engine

Includes:
- Unit tests for extractors, normalizers and calculations
- Cache and dedupe concurrency tests
- Service tests with a fake upstream fetcher
"""
