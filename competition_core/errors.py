"""Error taxonomy for the competition engine.

Every operation raises one of these; nothing is retried or buffered.
Callers surface the error to the invoking user and may retry manually.
"""
from __future__ import annotations

from typing import List, Tuple


class CompetitionError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(CompetitionError, ValueError):
    """Input is missing required fields or carries invalid values.

    `details` holds (field, message) pairs, one per failing field.
    """

    def __init__(
        self, message: str | None = None, details: List[Tuple[str, str]] | None = None
    ) -> None:
        super().__init__(message or "invalid input")
        self.details: List[Tuple[str, str]] = list(details or [])

    @property
    def fields(self) -> List[str]:
        return [field for field, _ in self.details]


class WindowClosedError(CompetitionError):
    """Registration or participation attempted outside its open window."""


class SelfRegistrationError(CompetitionError):
    """The organizer tried to register for their own competition."""


class NotFoundError(CompetitionError):
    """The competition, quiz or registration does not exist."""


class NotAuthorizedError(CompetitionError):
    """The actor is not allowed to perform the operation."""


class DuplicateSubmissionError(CompetitionError):
    """A score was already submitted for this user and competition."""


class StoreError(CompetitionError):
    """Underlying persistence or network failure."""


class DocumentExistsError(StoreError):
    """Create-if-absent hit an existing document."""


__all__ = [
    "CompetitionError",
    "ValidationError",
    "WindowClosedError",
    "SelfRegistrationError",
    "NotFoundError",
    "NotAuthorizedError",
    "DuplicateSubmissionError",
    "StoreError",
    "DocumentExistsError",
]
