# teardown/retry.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_fixed,
)

from k8s import is_conflict, is_not_found, status_of

log = logging.getLogger("retry")

T = TypeVar("T")

# permission / validation failures never improve with another attempt
PERMANENT_STATUSES = frozenset({400, 401, 403, 422})


class RetryTimeout(Exception):
    """A bounded-duration retry ran out of time; ``last_error`` is the final failure."""

    def __init__(self, timeout: float, last_error: Optional[BaseException]):
        self.timeout = timeout
        self.last_error = last_error
        super().__init__(f"timed out after {timeout:.0f}s, please try again: {last_error}")


def is_retryable(err: BaseException) -> bool:
    return status_of(err) not in PERMANENT_STATUSES


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 3
    interval: float = 2.0
    timeout: Optional[float] = None
    retryable: Callable[[BaseException], bool] = is_retryable

    def __post_init__(self):
        if self.attempts < 1:
            raise ValueError(f"retry attempts must be at least 1, got {self.attempts}")


def retry_with_count(
    fn: Callable[[], T],
    attempts: int = 3,
    interval: float = 2.0,
    retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[T]:
    """Call ``fn`` up to ``attempts`` times.

    Not-found counts as success. Errors rejected by ``retryable`` are raised
    at once; otherwise the last error is raised when attempts run out.
    """
    if attempts < 1:
        raise ValueError(f"retry attempts must be at least 1, got {attempts}")

    def call():
        try:
            return fn()
        except Exception as e:
            if is_not_found(e):
                log.debug("not found, treating as done: %s", e)
                return None
            raise

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_fixed(interval),
        retry=retry_if_exception(retryable),
        before_sleep=before_sleep_log(log, logging.INFO),
        sleep=sleep,
        reraise=True,
    )
    return retrying(call)


def retry_until(
    fn: Callable[[], T],
    timeout: float = 60.0,
    interval: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``fn`` every ``interval`` seconds while it raises a conflict.

    Any other error is raised immediately. Past ``timeout`` a RetryTimeout
    wrapping the last conflict is raised.
    """
    retrying = Retrying(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception(is_conflict),
        before_sleep=before_sleep_log(log, logging.DEBUG),
        sleep=sleep,
    )
    try:
        return retrying(fn)
    except RetryError as e:
        last = e.last_attempt.exception()
        raise RetryTimeout(timeout, last) from last


def run_with_policy(fn: Callable[[], T], policy: RetryPolicy, sleep: Callable[[float], None] = time.sleep):
    if policy.timeout is not None:
        return retry_until(fn, timeout=policy.timeout, interval=policy.interval, sleep=sleep)
    return retry_with_count(fn, attempts=policy.attempts, interval=policy.interval, retryable=policy.retryable, sleep=sleep)
