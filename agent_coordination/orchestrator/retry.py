"""Retry-with-backoff for fallible operations, with per-kind escalation."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
import time
from typing import Callable, Dict, Optional, Set, TypeVar

from agent_coordination.core.config import Settings
from agent_coordination.core.errors import error_kind_of, is_retryable_error
from agent_coordination.core.logger import get_logger
from agent_coordination.core.metrics import record_retry_attempt, record_retry_escalation


T = TypeVar("T")

BackoffFn = Callable[[int], float]
RetryableFn = Callable[[BaseException], bool]
OnRetryFn = Callable[[int, BaseException, float], None]
OnEscalateFn = Callable[[str, int, BaseException], None]

logger = get_logger("agent_coordination.orchestrator.retry")


def exponential_backoff(
    base_delay_seconds: float = 1.0,
    multiplier: float = 2.0,
    max_delay_seconds: float = 30.0,
) -> BackoffFn:
    """Return ``attempt -> min(base * multiplier ** (attempt - 1), max)``."""

    if base_delay_seconds < 0:
        raise ValueError("base_delay_seconds must be zero or positive")
    if multiplier < 1:
        raise ValueError("multiplier must be at least 1")

    def _delay(attempt: int) -> float:
        if attempt < 1:
            raise ValueError("attempt numbers start at 1")
        return min(base_delay_seconds * multiplier ** (attempt - 1), max_delay_seconds)

    return _delay


def retry(
    operation: Callable[[], T],
    *,
    max_retries: int = 3,
    backoff: Optional[BackoffFn] = None,
    is_retryable: RetryableFn = is_retryable_error,
    on_retry: Optional[OnRetryFn] = None,
    escalation_threshold: Optional[int] = None,
    on_escalate: Optional[OnEscalateFn] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call operation up to ``1 + max_retries`` times and re-raise the last error."""

    if max_retries < 0:
        raise ValueError("max_retries must be zero or positive")
    delay_for = backoff or exponential_backoff()
    failures_by_kind: Dict[str, int] = defaultdict(int)
    escalated: Set[str] = set()

    attempt = 0
    while True:
        attempt += 1
        try:
            return operation()
        except Exception as exc:
            kind = error_kind_of(exc)
            failures_by_kind[kind] += 1

            if (
                escalation_threshold
                and failures_by_kind[kind] >= escalation_threshold
                and kind not in escalated
            ):
                escalated.add(kind)
                record_retry_escalation(kind=kind)
                logger.warning("retry_escalated", kind=kind, failures=failures_by_kind[kind], error=str(exc))
                if on_escalate is not None:
                    on_escalate(kind, failures_by_kind[kind], exc)

            if not is_retryable(exc):
                logger.warning("retry_aborted_non_retryable", kind=kind, attempt=attempt, error=str(exc))
                raise
            if attempt > max_retries:
                logger.error("retry_exhausted", kind=kind, attempts=attempt, error=str(exc))
                raise

            delay = delay_for(attempt)
            record_retry_attempt(kind=kind)
            logger.info("retry_scheduled", kind=kind, attempt=attempt, delay_seconds=delay)
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            if delay > 0:
                sleep(delay)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0
    escalation_threshold: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be zero or positive")
        if self.escalation_threshold is not None and self.escalation_threshold <= 0:
            raise ValueError("escalation_threshold must be positive when set")

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay_seconds=settings.retry_base_delay_seconds,
            multiplier=settings.retry_multiplier,
            max_delay_seconds=settings.retry_max_delay_seconds,
            escalation_threshold=settings.retry_escalation_threshold or None,
        )

    def backoff(self, attempt: int) -> float:
        return exponential_backoff(self.base_delay_seconds, self.multiplier, self.max_delay_seconds)(attempt)

    def run(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: RetryableFn = is_retryable_error,
        on_retry: Optional[OnRetryFn] = None,
        on_escalate: Optional[OnEscalateFn] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> T:
        return retry(
            operation,
            max_retries=self.max_retries,
            backoff=self.backoff,
            is_retryable=is_retryable,
            on_retry=on_retry,
            escalation_threshold=self.escalation_threshold,
            on_escalate=on_escalate,
            sleep=sleep,
        )
