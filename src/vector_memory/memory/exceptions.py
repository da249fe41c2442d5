"""Exceptions raised by the memory engine."""

from typing import Optional


class MemoryEngineError(Exception):
    """Base exception for all memory engine errors."""

    pass


class InvalidInputError(MemoryEngineError, ValueError):
    """A required input is empty or out of range."""

    pass


class CollaboratorError(MemoryEngineError):
    """The summarization or embedding service failed."""

    pass


class QuotaExceededError(MemoryEngineError):
    """An operation was refused by the tier policy."""

    def __init__(self, reason: str, limit_check: Optional[object] = None):
        super().__init__(reason)
        self.reason = reason
        self.limit_check = limit_check
