"""Timeout race and bounded retry around a single LLM call.

The call runs on a worker thread and is raced against a timer. When the
timer wins, the call is abandoned and an LLMTimeoutError is raised. Only
timeouts are retried; rate-limit, auth and every other error propagate on
the first attempt.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from studysetup.llm import LLMTimeoutError

logger = logging.getLogger(__name__)


class TurnCancelledError(Exception):
    """Raised when the caller cancels a call before it could complete."""


class wait_capped_backoff(wait_base):
    """Exponential backoff with additive jitter, capped.

    Delay before retry n is ``min(initial * 2**(n-1) + random() * jitter, cap)``.
    """

    def __init__(self, initial: float = 1.0, cap: float = 10.0, jitter: float = 1.0):
        self.initial = initial
        self.cap = cap
        self.jitter = jitter

    def __call__(self, retry_state) -> float:
        exp = self.initial * 2 ** (retry_state.attempt_number - 1)
        return min(exp + random.random() * self.jitter, self.cap)


def call_with_timeout(fn, timeout: float):
    """Run ``fn()`` and return its result, or raise LLMTimeoutError.

    The worker thread is not joined on timeout; the in-flight call is left
    to finish on its own.
    """
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llm-call")
    future = executor.submit(fn)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        future.cancel()
        raise LLMTimeoutError(
            f"LLM request timed out after {timeout:.0f} seconds"
        ) from None
    finally:
        executor.shutdown(wait=False)


def _sleeper(cancel: threading.Event | None):
    if cancel is None:
        return time.sleep
    return cancel.wait


def call_with_resilience(
    fn,
    *,
    timeout: float = 120.0,
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 10.0,
    jitter: float = 1.0,
    cancel: threading.Event | None = None,
    sleep=None,
):
    """Call ``fn()`` with a per-attempt timeout and retry on timeouts.

    Args:
        fn: Zero-argument callable performing one LLM request.
        timeout: Seconds each attempt may take before it is abandoned.
        max_attempts: Total attempts, including the first.
        initial_delay: Backoff before the first retry, in seconds.
        max_delay: Upper bound on any single backoff.
        jitter: Upper bound of the random component added to each backoff.
        cancel: Optional event; once set no further attempt starts.
        sleep: Override for the backoff sleep (tests).

    Raises:
        LLMTimeoutError: If every attempt timed out.
        TurnCancelledError: If ``cancel`` was set before an attempt started.
    """
    def _log_retry(retry_state):
        logger.warning(
            f"LLM call timed out: {retry_state.outcome.exception()!r}. "
            f"Retrying in {retry_state.next_action.sleep:.1f}s "
            f"(attempt {retry_state.attempt_number}/{max_attempts})"
        )

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_capped_backoff(initial_delay, max_delay, jitter),
        retry=retry_if_exception_type(TimeoutError),
        reraise=True,
        sleep=sleep or _sleeper(cancel),
        before_sleep=_log_retry,
    )

    for attempt in retrying:
        with attempt:
            if cancel is not None and cancel.is_set():
                raise TurnCancelledError("LLM call cancelled by caller")
            started = time.monotonic()
            try:
                result = call_with_timeout(fn, timeout)
            except Exception:
                elapsed = (time.monotonic() - started) * 1000
                logger.error(
                    f"LLM call failed after {elapsed:.0f}ms "
                    f"(attempt {attempt.retry_state.attempt_number})"
                )
                raise
            elapsed = (time.monotonic() - started) * 1000
            logger.info(f"LLM call completed in {elapsed:.0f}ms")
    return result
