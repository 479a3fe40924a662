"""
Run a blocking upstream call on a worker thread with a hard deadline.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, TypeVar

from packages.shared.errors import UpstreamTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


def call_with_deadline(fn: Callable[..., T], *args: Any, timeout: float, label: str) -> T:
    """
    Return fn(*args) or raise UpstreamTimeout("timeout") after *timeout* seconds.

    The worker thread is not interrupted: the call runs to completion in the
    background and its result is discarded.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=label)
    try:
        future = executor.submit(fn, *args)
        try:
            return future.result(timeout=timeout)
        except FutureTimeout as exc:
            logger.error(f"{label}: exceeded {timeout}s deadline")
            raise UpstreamTimeout("timeout") from exc
    finally:
        executor.shutdown(wait=False)
