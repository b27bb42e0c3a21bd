"""Retry decisions with capped exponential backoff.

Only rate-limit errors are retried by default. The delay before retry `n`
(counting from 0) is `min(base * 2**n, cap)`, so with the defaults the
schedule is 1, 2, 4, 8, 16 seconds. Once `max_retries` retries have been
spent the error becomes terminal.
"""

import logging
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional

from apiorch.domain.models.errors import ErrorKind

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY_S = 1.0
DEFAULT_MAX_DELAY_S = 16.0

@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay: float = 0.0

class RetryPolicy:
    """Decides whether and when a failed call is attempted again."""

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay_s: float = DEFAULT_BASE_DELAY_S,
        max_delay_s: float = DEFAULT_MAX_DELAY_S,
        retryable_kinds: Optional[Iterable[ErrorKind]] = None,
        retry_transient: bool = False,
    ):
        """Initializes the policy.

        Args:
            max_retries: Maximum number of retries after the first attempt.
            base_delay_s: Delay before the first retry.
            max_delay_s: Ceiling for any single delay.
            retryable_kinds: Error kinds eligible for retry (rate limits by default).
            retry_transient: Also retry transient network errors.
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if base_delay_s <= 0 or max_delay_s < base_delay_s:
            raise ValueError("delays must satisfy 0 < base_delay_s <= max_delay_s")
        kinds = set(retryable_kinds) if retryable_kinds is not None else {ErrorKind.RATE_LIMITED}
        if retry_transient:
            kinds.add(ErrorKind.TRANSIENT_NETWORK)
        self.max_retries = max_retries
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.retryable_kinds: FrozenSet[ErrorKind] = frozenset(kinds)
        logger.info(
            f"RetryPolicy initialized: max_retries={max_retries}, base={base_delay_s}s, "
            f"cap={max_delay_s}s, kinds={sorted(k.value for k in self.retryable_kinds)}"
        )

    def delay_for(self, attempt_count: int) -> float:
        """Backoff delay before retry number `attempt_count` (0-based)."""
        return min(self.base_delay_s * (2 ** attempt_count), self.max_delay_s)

    def should_retry(self, error_kind: ErrorKind, attempt_count: int) -> RetryDecision:
        """Args:
            error_kind: Category of the failure just observed.
            attempt_count: Retries already performed for this call.
        """
        if error_kind not in self.retryable_kinds:
            return RetryDecision(retry=False)
        if attempt_count >= self.max_retries:
            logger.debug(f"Retry budget exhausted after {attempt_count} retries")
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay=self.delay_for(attempt_count))
