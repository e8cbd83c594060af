"""
Retrying transport.

Wraps a single provider call with classification-driven retries:
429 honors ``Retry-After`` (or a fixed provider wait, or backoff), 5xx and
network failures back off exponentially, everything else is fatal.
"""

import enum
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from marketsync.errors import (
    RateLimited,
    RetriesExhausted,
    TransientServerError,
)
from marketsync.extract.rate_limiter import RateLimiter
from marketsync.utils.logging_utils import log_error, log_progress

T = TypeVar("T")


class Disposition(enum.Enum):
    RATE_LIMITED = "rate_limited"
    RETRYABLE = "retryable"
    FATAL = "fatal"


def default_classify(error: Exception) -> Disposition:
    """Map an exception raised by a request to a retry disposition."""
    if isinstance(error, RateLimited):
        return Disposition.RATE_LIMITED
    if isinstance(error, TransientServerError):
        return Disposition.RETRYABLE
    return Disposition.FATAL


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry budget and delays for one provider (or one endpoint).

    Attributes:
        max_retries: Total attempts per call, shared by 429 and 5xx failures
        base_delay: Backoff base in seconds, doubled per retry
        max_delay: Backoff cap in seconds
        rate_limit_wait: Fixed wait after a 429 without ``Retry-After``;
            None falls back to exponential backoff
        honor_retry_after: Use the ``Retry-After`` header when present
        classify: Maps an error to a Disposition
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    rate_limit_wait: Optional[float] = None
    honor_retry_after: bool = True
    classify: Callable[[Exception], Disposition] = default_classify

    def backoff(self, retry_count: int) -> float:
        """Delay before retry number ``retry_count`` (1-based)."""
        return min(self.base_delay * (2 ** (retry_count - 1)), self.max_delay)

    def rate_limit_delay(self, error: Exception, retry_count: int) -> float:
        if self.honor_retry_after and isinstance(error, RateLimited):
            retry_after = error.retry_after
            if retry_after is not None:
                return retry_after
        if self.rate_limit_wait is not None:
            return self.rate_limit_wait
        return self.backoff(retry_count)


class RetryingTransport:
    """
    Executes request thunks under a retry policy and an optional limiter.

    Args:
        policy: Retry budget and delays
        rate_limiter: Optional sliding-window limiter consulted before every attempt
        sleep: Sleep function, injectable for tests
        label: Section name used in log lines
    """

    def __init__(
        self,
        policy: RetryPolicy,
        rate_limiter: Optional[RateLimiter] = None,
        sleep: Callable[[float], None] = time.sleep,
        label: str = "Transport",
    ):
        self.policy = policy
        self.rate_limiter = rate_limiter
        self.sleep = sleep
        self.label = label

    def execute(
        self,
        request: Callable[[], T],
        request_class: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """
        Run ``request`` until it succeeds, fails fatally or the budget runs out.

        Args:
            request: Zero-argument callable performing the HTTP call
            request_class: Limiter class tag ('normal', 'heavy')
            policy: Per-call override of the transport policy

        Returns:
            Whatever ``request`` returns

        Raises:
            PermanentRequestError: Non-retryable failure, raised immediately
            RetriesExhausted: Budget used up by 429/5xx/network failures
        """
        policy = policy or self.policy
        retries = 0

        while True:
            if self.rate_limiter is not None:
                waited = self.rate_limiter.wait_for_slot(request_class, sleep=self.sleep)
                if waited:
                    log_progress(
                        self.label,
                        f"Rate window full for '{request_class or 'normal'}' requests, "
                        f"waited {waited:.1f}s",
                    )

            try:
                return request()
            except Exception as e:
                disposition = policy.classify(e)
                if disposition is Disposition.FATAL:
                    log_error(self.label, e)
                    raise

                retries += 1
                if retries >= policy.max_retries:
                    log_error(
                        self.label, f"Giving up after {retries} attempts: {e}"
                    )
                    raise RetriesExhausted(
                        f"Request failed after {retries} attempts: {e}",
                        attempts=retries,
                        last_error=e,
                    ) from e

                if disposition is Disposition.RATE_LIMITED:
                    delay = policy.rate_limit_delay(e, retries)
                    reason = "Rate limited (429)"
                else:
                    delay = policy.backoff(retries)
                    reason = f"Transient failure ({e})"

                log_progress(
                    self.label,
                    f"{reason}, retrying in {delay:.1f}s "
                    f"(attempt {retries}/{policy.max_retries})",
                )
                self.sleep(delay)
