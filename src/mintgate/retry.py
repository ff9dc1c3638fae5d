"""Retry policy for transient storage and network failures.

Only errors flagged retryable (StorageUploadError, NetworkError) are
retried. Ledger, signature and state errors mean the caller has to
change something, so they are raised on the first attempt.

Example:
    policy = create_retry_policy(max_attempts=5, max_delay_seconds=30)
    for attempt in policy:
        with attempt:
            ref = store.upload(package)
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_random_exponential,
)

from mintgate.errors import MintgateError

logger = logging.getLogger(__name__)


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, MintgateError) and error.retryable


def create_retry_policy(
    max_attempts: int = 5,
    max_delay_seconds: float = 30.0,
    sleep: Optional[Callable[[float], None]] = None,
) -> Retrying:
    """Full-jitter exponential backoff over the retryable error types.

    The last error is re-raised once the attempt budget is spent.
    sleep replaces time.sleep, which tests use to skip the waits.
    """
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return Retrying(
        retry=retry_if_exception(is_retryable),
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=0.5, max=max_delay_seconds),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
        **kwargs,
    )
