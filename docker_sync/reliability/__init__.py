"""
Reliability Module — Bounded retries for transient network failures.
"""

from .backoff import RetriesExhausted, RetryPolicy, call_with_retry, is_transient

__all__ = [
    "RetryPolicy",
    "RetriesExhausted",
    "call_with_retry",
    "is_transient",
]
