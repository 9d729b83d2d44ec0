"""Read models for competition documents.

Documents come back from the store as plain dicts; these frozen dataclasses
normalize them once (timestamps to epoch ms, missing lists to empty tuples)
so the pure logic never has to second-guess field shapes.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Tuple

from .types import ParticipantDoc, QuestionDoc, QuizDoc, ScoreDoc

AttemptStatus = Literal["started", "finished"]
RegistrationStatus = Literal["pending", "verified", "rejected"]


def to_epoch_ms(value: Any) -> int | None:
    """Coerce a stored timestamp to epoch milliseconds.

    Accepts ints/floats (already ms), aware or naive (UTC) datetimes and
    ISO-8601 strings. Returns None for anything that cannot be read, so an
    unavailable time is never replaced by a wrong one.

    Examples:
        - 1700000000000 → 1700000000000
        - "2024-01-01T00:00:00Z" → 1704067200000
        - "" → None
        - True → None
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        if stripped.lstrip("-").isdigit():
            return int(stripped)
        try:
            parsed = datetime.fromisoformat(stripped.replace("Z", "+00:00"))
        except ValueError:
            return None
        return to_epoch_ms(parsed)
    return None


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True)
class Question:
    id: str
    question: str
    options: Tuple[str, ...]
    answer: str

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "Question":
        return cls(
            id=str(doc.get("id") or ""),
            question=str(doc.get("question") or ""),
            options=tuple(str(o) for o in (doc.get("options") or [])),
            answer=str(doc.get("answer") or ""),
        )

    def to_doc(self) -> QuestionDoc:
        return {
            "id": self.id,
            "question": self.question,
            "options": list(self.options),
            "answer": self.answer,
        }


@dataclass(frozen=True)
class Quiz:
    id: str
    title: str
    organizer_id: str
    questions: Tuple[Question, ...]
    created_at: int | None = None

    @classmethod
    def from_doc(cls, quiz_id: str, doc: Mapping[str, Any]) -> "Quiz":
        return cls(
            id=quiz_id,
            title=str(doc.get("title") or ""),
            organizer_id=str(doc.get("organizerId") or ""),
            questions=tuple(Question.from_doc(q) for q in (doc.get("questions") or [])),
            created_at=to_epoch_ms(doc.get("createdAt")),
        )

    def to_doc(self) -> QuizDoc:
        doc: QuizDoc = {
            "title": self.title,
            "organizerId": self.organizer_id,
            "questions": [q.to_doc() for q in self.questions],
        }
        if self.created_at is not None:
            doc["createdAt"] = self.created_at
        return doc


@dataclass(frozen=True)
class Participant:
    user_id: str
    name: str
    fb_profile: str | None = None

    @classmethod
    def from_doc(cls, doc: Mapping[str, Any]) -> "Participant":
        return cls(
            user_id=str(doc.get("userId") or ""),
            name=str(doc.get("name") or ""),
            fb_profile=_opt_str(doc.get("fbProfile")),
        )

    def to_doc(self) -> ParticipantDoc:
        doc: ParticipantDoc = {"userId": self.user_id, "name": self.name}
        if self.fb_profile:
            doc["fbProfile"] = self.fb_profile
        return doc


@dataclass(frozen=True)
class Competition:
    id: str
    quiz_id: str
    organizer_id: str
    start_at: int | None
    end_at: int | None
    registration_starts_at: int | None = None
    registration_ends_at: int | None = None
    is_paid: bool = False
    fee: float | None = None
    organizer_phone: str | None = None
    visible: bool = True
    draft: bool = False
    title: str | None = None
    participants: Tuple[Participant, ...] = ()
    quiz: Quiz | None = None
    created_at: int | None = None

    @classmethod
    def from_doc(cls, competition_id: str, doc: Mapping[str, Any]) -> "Competition":
        quiz_doc = doc.get("quiz")
        quiz = None
        if isinstance(quiz_doc, Mapping):
            quiz = Quiz.from_doc(str(quiz_doc.get("id") or doc.get("quizId") or ""), quiz_doc)

        # Older documents only carry the organizer on the quiz.
        organizer_id = doc.get("organizerId") or (quiz.organizer_id if quiz else "")

        fee = doc.get("fee")
        return cls(
            id=competition_id,
            quiz_id=str(doc.get("quizId") or ""),
            organizer_id=str(organizer_id or ""),
            start_at=to_epoch_ms(doc.get("startAt")),
            end_at=to_epoch_ms(doc.get("endAt")),
            registration_starts_at=to_epoch_ms(doc.get("registrationStartsAt")),
            registration_ends_at=to_epoch_ms(doc.get("registrationEndsAt")),
            is_paid=bool(doc.get("isPaid", False)),
            fee=float(fee) if isinstance(fee, (int, float)) and not isinstance(fee, bool) else None,
            organizer_phone=_opt_str(doc.get("organizerPhone")),
            # Missing flag means visible; only an explicit False hides.
            visible=doc.get("visible") is not False,
            draft=bool(doc.get("draft", False)),
            title=_opt_str(doc.get("title")) or (quiz.title if quiz else None),
            participants=tuple(
                Participant.from_doc(p) for p in (doc.get("participants") or []) if isinstance(p, Mapping)
            ),
            quiz=quiz,
            created_at=to_epoch_ms(doc.get("createdAt")),
        )

    def has_participant(self, user_id: str | None) -> bool:
        if not user_id:
            return False
        return any(p.user_id == user_id for p in self.participants)

    def participant(self, user_id: str) -> Participant | None:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None


@dataclass(frozen=True)
class Registration:
    id: str
    user_id: str
    name: str
    fb_profile: str | None
    verified: bool
    registered_at: int | None
    payment_txn: str | None = None
    payer_phone: str | None = None
    reviewed_at: int | None = None

    @classmethod
    def from_doc(cls, registration_id: str, doc: Mapping[str, Any]) -> "Registration":
        return cls(
            id=registration_id,
            user_id=str(doc.get("userId") or ""),
            name=str(doc.get("name") or ""),
            fb_profile=_opt_str(doc.get("fbProfile")),
            verified=bool(doc.get("verified", False)),
            registered_at=to_epoch_ms(doc.get("registeredAt")),
            payment_txn=_opt_str(doc.get("paymentTxn")),
            payer_phone=_opt_str(doc.get("payerPhone")),
            reviewed_at=to_epoch_ms(doc.get("reviewedAt")),
        )

    @property
    def status(self) -> RegistrationStatus:
        if self.verified:
            return "verified"
        if self.reviewed_at is not None:
            return "rejected"
        return "pending"

    def to_participant(self) -> Participant:
        return Participant(user_id=self.user_id, name=self.name, fb_profile=self.fb_profile)


@dataclass(frozen=True)
class Attempt:
    user_id: str
    status: AttemptStatus
    started_at: int | None
    name: str | None = None
    finished_at: int | None = None
    elapsed_ms: int | None = None

    @classmethod
    def from_doc(cls, user_id: str, doc: Mapping[str, Any]) -> "Attempt":
        status = doc.get("status")
        elapsed = doc.get("elapsedMs")
        return cls(
            user_id=str(doc.get("userId") or user_id),
            status="finished" if status == "finished" else "started",
            started_at=to_epoch_ms(doc.get("startedAt")),
            name=_opt_str(doc.get("name")),
            finished_at=to_epoch_ms(doc.get("finishedAt")),
            elapsed_ms=to_epoch_ms(elapsed),
        )

    @property
    def finished(self) -> bool:
        return self.status == "finished"


@dataclass(frozen=True)
class Score:
    user_id: str
    score: int
    name: str = ""
    elapsed_ms: int | None = None
    timestamp: int | None = None
    id: str = ""

    @classmethod
    def from_doc(cls, score_id: str, doc: Mapping[str, Any]) -> "Score":
        raw_score = doc.get("score")
        if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
            raw_score = 0
        return cls(
            id=score_id,
            user_id=str(doc.get("userId") or ""),
            name=str(doc.get("name") or ""),
            score=int(raw_score),
            elapsed_ms=to_epoch_ms(doc.get("elapsedMs")),
            timestamp=to_epoch_ms(doc.get("timestamp")),
        )

    def to_doc(self) -> ScoreDoc:
        doc: ScoreDoc = {"userId": self.user_id, "name": self.name, "score": self.score}
        if self.elapsed_ms is not None:
            doc["elapsedMs"] = self.elapsed_ms
        if self.timestamp is not None:
            doc["timestamp"] = self.timestamp
        return doc


@dataclass(frozen=True)
class ScoreStatistics:
    count: int
    top: int
    mean: float
    histogram: Tuple[int, ...] = field(default_factory=tuple)
    bucket_width: int = 1

