"""Bounded retry with exponential backoff around a single invocation.

Kept separate from the fallback contract: wrap a capability with ``with_retry``
and hand the wrapped callable to the fallback orchestrator if both are wanted.
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from agent_orchestrator.orchestrator.failure_classifier import classify_provider_failure

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True)
class RetryPolicy:
    """Attempts include the first call; ``max_attempts=1`` disables retry."""

    max_attempts: int = 1
    base_seconds: float = 1.0
    max_seconds: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_seconds < 0 or self.max_seconds < 0:
            raise ValueError("backoff seconds must be >= 0")

    def delay_for(self, retry_number: int) -> float:
        """Full-jitter delay before retry ``retry_number`` (1-based)."""

        max_delay = min(
            self.max_seconds,
            self.base_seconds * (2 ** max(retry_number - 1, 0)),
        )
        return self.rng.uniform(0, max_delay)


def call_with_retry(fn: Callable[[], T], policy: RetryPolicy, *, label: str = "call") -> T:
    """Call ``fn``, retrying only failures classified as transient."""

    attempt = 1
    while True:
        try:
            return fn()
        except Exception as error:
            classification = classify_provider_failure(error)
            if not classification.retryable or attempt >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (%s, attempt %d/%d); retrying in %.2fs",
                label,
                classification.reason_code,
                attempt,
                policy.max_attempts,
                delay,
            )
            policy.sleep(delay)
            attempt += 1


def with_retry(
    fn: Callable[..., T],
    policy: RetryPolicy,
    *,
    label: str = "call",
) -> Callable[..., T]:
    """Wrap ``fn`` so each call goes through ``call_with_retry``."""

    def _wrapped(*args: object, **kwargs: object) -> T:
        return call_with_retry(lambda: fn(*args, **kwargs), policy, label=label)

    return _wrapped
