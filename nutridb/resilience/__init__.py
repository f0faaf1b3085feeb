"""
Resilience package: Retry mit Exponential Backoff, Fallback-Ketten.
"""

from nutridb.resilience.alternatives import try_alternatives
from nutridb.resilience.retry import (
    Attempt,
    FailureClassification,
    RetryExecutor,
    RetryPolicy,
    classify_failure,
    is_retryable,
    with_database_retry,
)

__all__ = [
    "Attempt",
    "FailureClassification",
    "RetryExecutor",
    "RetryPolicy",
    "classify_failure",
    "is_retryable",
    "try_alternatives",
    "with_database_retry",
]
