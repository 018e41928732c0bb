"""Domain models for shellrelay.

All models use Pydantic v2 for validation and serialization.
"""

from shellrelay.domain.models import CommandOutcome, SessionState, SessionStatus

__all__ = [
    "CommandOutcome",
    "SessionState",
    "SessionStatus",
]
