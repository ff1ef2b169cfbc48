"""
Bounded calls to external collaborators.

Room provisioning and notification dispatch run on a small worker pool so a
hung collaborator can never block the caller past the configured timeout.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
import logging
import threading
import time
from typing import Any, Callable, Optional, TypeVar

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings
from .exceptions import DomainException, ExternalServiceException

logger = logging.getLogger(__name__)

T = TypeVar("T")

_EXECUTOR: Optional[ThreadPoolExecutor] = None
_EXECUTOR_LOCK = threading.Lock()


def _get_executor() -> ThreadPoolExecutor:
    global _EXECUTOR
    if _EXECUTOR is not None:
        return _EXECUTOR
    with _EXECUTOR_LOCK:
        if _EXECUTOR is None:
            _EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="external-call")
        return _EXECUTOR


def call_with_timeout(
    service: str,
    fn: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> T:
    """
    Run ``fn`` and wait at most ``timeout`` seconds for its result.

    Raises:
        ExternalServiceException: On timeout or any non-domain failure
    """
    limit = settings.external_call_timeout_seconds if timeout is None else timeout
    started = time.monotonic()
    future = _get_executor().submit(fn, *args, **kwargs)
    try:
        result = future.result(timeout=limit)
    except FutureTimeoutError:
        future.cancel()
        prometheus_metrics.observe_external_call(service, "timeout", time.monotonic() - started)
        logger.warning(
            "external_call_timed_out",
            extra={"service": service, "timeout_seconds": limit},
        )
        raise ExternalServiceException(
            service, f"{service} did not respond within {limit:g}s", timed_out=True
        )
    except DomainException:
        prometheus_metrics.observe_external_call(service, "error", time.monotonic() - started)
        raise
    except Exception as exc:
        prometheus_metrics.observe_external_call(service, "error", time.monotonic() - started)
        logger.warning(
            "external_call_failed",
            extra={"service": service, "error": str(exc), "error_type": type(exc).__name__},
        )
        raise ExternalServiceException(service, f"{service} failed: {exc}") from exc

    prometheus_metrics.observe_external_call(service, "success", time.monotonic() - started)
    return result
