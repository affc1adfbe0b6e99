"""
Error kinds shared by the ingestion, analysis and query layers.

Every error carries a stable ``kind`` string so batch callers can report
per-item failures without matching on exception classes.
"""

from typing import Optional


class FundDataError(Exception):
    """Base class for all fund data errors."""
    kind = 'fund_data_error'


class InvalidParams(FundDataError):
    """Raised when a fund code, range or date is missing or malformed."""
    kind = 'invalid_params'


class UpstreamError(FundDataError):
    """Raised when the upstream site cannot be reached or answers badly."""
    kind = 'upstream_error'


class UpstreamHttpError(UpstreamError):
    """Raised on a non-success HTTP status. Carries status code and body."""
    kind = 'upstream_http_error'

    def __init__(self, message: str, status: Optional[int] = None, body: str = ''):
        super().__init__(message)
        self.status = status
        self.body = body


class UpstreamTimeout(UpstreamError):
    """Raised when a fetch exceeds its time bound."""
    kind = 'upstream_timeout'


class UpstreamConnectionError(UpstreamError):
    """Raised when the connection fails before any response arrives."""
    kind = 'upstream_connection_error'


class UpstreamFormatError(FundDataError):
    """Raised when an expected literal, table or field is missing."""
    kind = 'upstream_format_error'


class InsufficientData(FundDataError):
    """Raised when a computation needs more history points than exist."""
    kind = 'insufficient_data'


def error_kind(exc: BaseException) -> str:
    """Map any exception to its error kind string."""
    if isinstance(exc, FundDataError):
        return exc.kind
    return 'unexpected_error'
