"""Type definitions for stored competition documents."""
from __future__ import annotations

from typing import List, Optional, TypedDict


class QuestionDoc(TypedDict, total=False):
    """A single multiple-choice question inside a quiz."""
    id: str
    question: str
    options: List[str]
    answer: str


class QuizDoc(TypedDict, total=False):
    """Document stored at quizzes/{id}."""
    title: str
    organizerId: str
    questions: List[QuestionDoc]
    createdAt: int
    updatedAt: int


class ParticipantDoc(TypedDict, total=False):
    """An entry of Competition.participants (set semantics keyed by userId)."""
    userId: str
    name: str
    fbProfile: Optional[str]


class CompetitionDoc(TypedDict, total=False):
    """
    Document stored at competitions/{id}.

    Timestamps are epoch milliseconds. Legacy documents may still carry
    ISO-8601 strings; readers coerce them with `to_epoch_ms`.
    """
    quizId: str
    title: Optional[str]
    organizerId: str

    # Time window
    startAt: int
    endAt: int
    registrationStartsAt: Optional[int]
    registrationEndsAt: Optional[int]

    # Access gate
    isPaid: bool
    fee: Optional[float]
    organizerPhone: Optional[str]

    # Publication
    visible: bool
    draft: bool

    # Append-only via add_to_set keyed by userId
    participants: List[ParticipantDoc]

    # Embedded quiz (drafts) or read-joined quiz
    quiz: Optional[QuizDoc]

    createdAt: int
    updatedAt: int


class RegistrationDoc(TypedDict, total=False):
    """Document stored at competitions/{id}/registrations/{autoId}."""
    userId: str
    name: str
    paymentTxn: Optional[str]
    payerPhone: Optional[str]
    fbProfile: str
    verified: bool
    registeredAt: int
    # Set when the organizer (or auto-verification) decided.
    reviewedAt: Optional[int]


class AttemptDoc(TypedDict, total=False):
    """Document stored at competitions/{id}/attempts/{userId}."""
    userId: str
    name: Optional[str]
    startedAt: int
    finishedAt: Optional[int]
    elapsedMs: Optional[int]
    status: str  # 'started' | 'finished'


class ScoreDoc(TypedDict, total=False):
    """Document stored at competitions/{id}/scores/{userId}."""
    userId: str
    name: str
    score: int
    elapsedMs: Optional[int]
    timestamp: int
