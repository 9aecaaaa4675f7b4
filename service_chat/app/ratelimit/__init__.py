"""
Rate limiting package for the Chat service.

Holds the sliding-window limiter that enforces a per-subject request budget
shared across every service instance through Redis.
"""

from .sliding_window import AdmissionDecision, SlidingWindowRateLimiter

__all__ = [
    "AdmissionDecision",
    "SlidingWindowRateLimiter",
]
