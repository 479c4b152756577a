"""Exception taxonomy for counter operations."""

from __future__ import annotations


class CounterError(RuntimeError):
    """Base exception raised for counter-related failures."""


class StoreUnavailableError(CounterError):
    """Raised when the counter store cannot be reached.

    The operation was not applied; callers decide whether to retry.
    """


class CommitConflictError(CounterError):
    """Raised when a conditional commit lost the race against another commit.

    Expected under contention and retried internally with a fresh read.
    """


class ContentionExceededError(CounterError):
    """Raised when a read-modify-commit loop exhausts its retry budget."""

    def __init__(self, action: str, attempts: int) -> None:
        super().__init__(f"{action} gave up after {attempts} conflicting attempts")
        self.action = action
        self.attempts = attempts
