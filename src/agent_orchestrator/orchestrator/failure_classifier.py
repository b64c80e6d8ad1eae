"""Deterministic provider failure classification for retry policy."""

from __future__ import annotations

from dataclasses import dataclass

from agent_orchestrator.orchestrator.errors import ProviderError
from agent_orchestrator.orchestrator.models import FailureClass

PROVIDER_FAILURE_CLASSIFIER_VERSION = 1

_BILLING_OR_QUOTA_PATTERNS: tuple[str, ...] = (
    "quota",
    "resource_exhausted",
    "insufficient",
    "billing",
    "payment",
    "credits",
    "usage limit",
)
_ACCESS_OR_AUTH_PATTERNS: tuple[str, ...] = (
    "unauthorized",
    "forbidden",
    "permission denied",
    "invalid api key",
    "authentication",
    "401",
    "403",
)
_MODEL_NOT_AVAILABLE_PATTERNS: tuple[str, ...] = (
    "model not found",
    "unknown model",
    "unsupported model",
    "invalid model",
    "model is not available",
)
_RATE_LIMIT_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "too many requests",
    "rate limit",
    "429",
    "please retry",
    "try again later",
)
_GENERIC_TRANSIENT_PATTERNS: tuple[str, ...] = (
    "timed out",
    "timeout",
    "temporarily unavailable",
    "temporary failure",
    "connection reset",
    "connection refused",
    "network error",
    "502",
    "503",
    "504",
)


@dataclass(slots=True)
class ProviderFailureClassification:
    """Normalized failure classification result."""

    failure_class: FailureClass
    reason_code: str
    matched_rule: str
    matched_pattern: str | None

    @property
    def retryable(self) -> bool:
        return self.failure_class in {FailureClass.PROVIDER_TRANSIENT, FailureClass.TIMEOUT}

    def to_event_details(self, *, provider: str) -> dict[str, object]:
        return {
            "classifier_version": PROVIDER_FAILURE_CLASSIFIER_VERSION,
            "provider": provider,
            "reason_code": self.reason_code,
            "matched_rule": self.matched_rule,
            "matched_pattern": self.matched_pattern,
        }


def classify_provider_failure(error: BaseException) -> ProviderFailureClassification:
    """Classify an invocation failure into a deterministic retry class.

    Quota, auth, and model errors win over the ``transient`` hint; an
    unrecognized non-provider exception is non-retryable.
    """

    provider = error.provider if isinstance(error, ProviderError) else "unknown"
    haystack = str(error).lower()

    for patterns, failure_class, rule in (
        (_BILLING_OR_QUOTA_PATTERNS, FailureClass.BILLING_OR_QUOTA, "billing_or_quota"),
        (_ACCESS_OR_AUTH_PATTERNS, FailureClass.ACCESS_OR_AUTH, "access_or_auth"),
        (_MODEL_NOT_AVAILABLE_PATTERNS, FailureClass.MODEL_NOT_AVAILABLE, "model_not_available"),
        (_RATE_LIMIT_TRANSIENT_PATTERNS, FailureClass.PROVIDER_TRANSIENT, "rate_limit_transient"),
    ):
        pattern = _first_match(haystack, patterns)
        if pattern is not None:
            return ProviderFailureClassification(
                failure_class=failure_class,
                reason_code=f"{provider}_{rule}",
                matched_rule=rule,
                matched_pattern=pattern,
            )

    if isinstance(error, TimeoutError):
        return ProviderFailureClassification(
            failure_class=FailureClass.TIMEOUT,
            reason_code=f"{provider}_timeout",
            matched_rule="timeout_exception",
            matched_pattern=None,
        )

    pattern = _first_match(haystack, _GENERIC_TRANSIENT_PATTERNS)
    hinted = isinstance(error, ProviderError) and error.transient
    if pattern is not None or hinted:
        return ProviderFailureClassification(
            failure_class=FailureClass.PROVIDER_TRANSIENT,
            reason_code=f"{provider}_provider_transient",
            matched_rule="transient_hint" if hinted and pattern is None else "generic_transient",
            matched_pattern=pattern,
        )

    return ProviderFailureClassification(
        failure_class=FailureClass.PROVIDER_NON_RETRYABLE,
        reason_code=f"{provider}_provider_non_retryable",
        matched_rule="fallback_non_retryable",
        matched_pattern=None,
    )


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
