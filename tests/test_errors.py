"""
Tests for the shared error kinds.
"""

import pytest

from errors import (
    FundDataError,
    InvalidParams,
    UpstreamError,
    UpstreamHttpError,
    UpstreamTimeout,
    UpstreamConnectionError,
    UpstreamFormatError,
    InsufficientData,
    error_kind,
)
from ingestion.transforms.validators import ValidationError


@pytest.mark.parametrize('exc,kind', [
    (InvalidParams('x'), 'invalid_params'),
    (UpstreamHttpError('x', status=502), 'upstream_http_error'),
    (UpstreamTimeout('x'), 'upstream_timeout'),
    (UpstreamConnectionError('x'), 'upstream_connection_error'),
    (UpstreamFormatError('x'), 'upstream_format_error'),
    (InsufficientData('x'), 'insufficient_data'),
    (ValueError('x'), 'unexpected_error'),
])
def test_error_kind(exc, kind):
    assert error_kind(exc) == kind


def test_hierarchy():
    assert issubclass(UpstreamTimeout, UpstreamError)
    assert issubclass(UpstreamHttpError, FundDataError)
    # Row validation failures surface as upstream format problems
    assert issubclass(ValidationError, UpstreamFormatError)
    assert error_kind(ValidationError('x')) == 'upstream_format_error'


def test_http_error_details():
    err = UpstreamHttpError('HTTP 503', status=503, body='busy')
    assert err.status == 503
    assert err.body == 'busy'
    assert str(err) == 'HTTP 503'
