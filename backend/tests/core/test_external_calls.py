# backend/tests/core/test_external_calls.py
import time

import pytest

from sessionbook.core.exceptions import ExternalServiceException, NotFoundException
from sessionbook.core.external_calls import call_with_timeout


def test_returns_result():
    assert call_with_timeout("adder", lambda a, b=0: a + b, 2, b=3) == 5


def test_timeout_raises_external_service_exception():
    with pytest.raises(ExternalServiceException) as exc_info:
        call_with_timeout("slow", time.sleep, 0.5, timeout=0.05)

    assert exc_info.value.timed_out is True
    assert exc_info.value.details == {"service": "slow", "timed_out": True}


def test_unexpected_error_is_wrapped():
    def broken():
        raise RuntimeError("socket closed")

    with pytest.raises(ExternalServiceException) as exc_info:
        call_with_timeout("notifier", broken)

    assert exc_info.value.timed_out is False
    assert "socket closed" in exc_info.value.message
    assert isinstance(exc_info.value.__cause__, RuntimeError)


def test_domain_errors_pass_through():
    def missing():
        raise NotFoundException("no such room")

    with pytest.raises(NotFoundException):
        call_with_timeout("room_provisioning", missing)
