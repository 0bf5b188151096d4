"""Cancellation domain exports."""
from .entity import AttemptType, CancellationAttempt, UserReliability, MAX_RELIABILITY
from .policy import (
    CancellationActor,
    CancellationBucket,
    CancellationDecision,
    CancellationPolicy,
    classify,
)
from .repository import CancellationAttemptRepository, ReliabilityRepository

__all__ = [
    "AttemptType",
    "CancellationAttempt",
    "UserReliability",
    "MAX_RELIABILITY",
    "CancellationActor",
    "CancellationBucket",
    "CancellationDecision",
    "CancellationPolicy",
    "classify",
    "CancellationAttemptRepository",
    "ReliabilityRepository",
]
