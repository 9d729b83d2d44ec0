"""Scoring and ranking.

Comparator (the tiebreak chain), applied after every fetch because the
store can only order by score:
1. score, descending
2. elapsedMs, ascending; missing sorts last
3. timestamp, ascending; missing sorts last
4. user id then record id, so the order is total and re-ranking is a no-op

Submissions are keyed by user id and written with create-if-absent, so a
second submission for the same user is rejected instead of appended.
"""
from __future__ import annotations

import logging
import math
from typing import Callable, Iterable, List, Mapping, Optional, Sequence

from .attempts import AttemptTracker
from .clock import Clock, SystemClock
from .config import DEFAULT_CONFIG, EngineConfig
from .documents import load_competition, scores_path
from .errors import (
    DocumentExistsError,
    DuplicateSubmissionError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from .models import Question, Score
from .store import DocumentStore, IdentityDirectory, Unsubscribe

logger = logging.getLogger(__name__)

Answers = Sequence[Optional[str]] | Mapping[str, Optional[str]]


def compute_score(answers: Sequence[Optional[str]], questions: Sequence[Question]) -> int:
    """Count positions where the answer equals the question's answer.

    Unanswered (None) never matches. Both sequences must have equal length.
    """
    if len(answers) != len(questions):
        raise ValueError(
            f"answers ({len(answers)}) and questions ({len(questions)}) differ in length"
        )
    return sum(
        1
        for answer, question in zip(answers, questions)
        if answer is not None and answer == question.answer
    )


def answers_in_quiz_order(answers: Answers, questions: Sequence[Question]) -> List[Optional[str]]:
    """Align answers keyed by question id with the quiz's question order."""
    if isinstance(answers, Mapping):
        return [answers.get(q.id) for q in questions]
    return list(answers)


def effective_elapsed_ms(score: Score, start_at: int | None = None) -> int | None:
    """Stored elapsedMs, else timestamp - start when submitted after the start, else None."""
    if score.elapsed_ms is not None:
        return score.elapsed_ms
    if score.timestamp is not None and start_at is not None and score.timestamp >= start_at:
        return score.timestamp - start_at
    return None


def _rank_key(score: Score, start_at: int | None) -> tuple:
    elapsed = effective_elapsed_ms(score, start_at)
    return (
        -score.score,
        math.inf if elapsed is None else elapsed,
        math.inf if score.timestamp is None else score.timestamp,
        score.user_id,
        score.id,
    )


def rank_scores(scores: Iterable[Score], start_at: int | None = None) -> List[Score]:
    """Total order over submitted scores (see module docstring).

    With `start_at`, a score missing elapsedMs falls back to its timestamp
    relative to the competition start.
    """
    return sorted(scores, key=lambda s: _rank_key(s, start_at))


def _validate_score(score) -> int:
    if isinstance(score, bool) or not isinstance(score, int) or score < 0:
        raise ValidationError("score must be a non-negative integer", [("score", "invalid")])
    return score


class ScoringEngine:
    def __init__(
        self,
        store: DocumentStore,
        identity: IdentityDirectory | None = None,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._store = store
        self._identity = identity
        self._clock = clock or SystemClock()
        self._config = config or DEFAULT_CONFIG
        self._attempts = AttemptTracker(store, self._clock)

    def resolve_name(self, user_id: str, name: str | None) -> str:
        """Passed name unless absent or anonymous; then the profile display name."""
        anonymous = self._config.anonymous_name
        if name and name != anonymous:
            return name[: self._config.max_name_length]
        if self._identity is not None:
            try:
                display = self._identity.display_name(user_id)
            except StoreError as e:
                logger.warning(f"Failed to lookup displayName for {user_id}: {e}")
                display = None
            if display:
                return display[: self._config.max_name_length]
        return name or anonymous

    def submit_score(
        self, competition_id: str, user_id: str, name: str | None, score: int
    ) -> Score:
        """Record the final score of `user_id`.

        Raises:
            ValidationError: score is not a non-negative integer
            NotFoundError: competition does not exist
            DuplicateSubmissionError: the user already has a score
            StoreError: the score could not be written
        """
        score = _validate_score(score)
        competition = load_competition(self._store, competition_id)
        resolved = self.resolve_name(user_id, name)

        now = self._clock.now_ms()
        elapsed: int | None = None
        if competition.start_at is not None and now >= competition.start_at:
            elapsed = now - competition.start_at

        record = Score(
            id=user_id,
            user_id=user_id,
            name=resolved,
            score=score,
            elapsed_ms=elapsed,
            timestamp=now,
        )
        try:
            self._store.create(scores_path(competition_id, user_id), record.to_doc())
        except DocumentExistsError:
            raise DuplicateSubmissionError(
                f"user {user_id} already submitted a score for {competition_id}"
            )
        logger.info(f"Score {score} submitted by {user_id} in {competition_id} (elapsed={elapsed})")

        # The score is authoritative; a failed mirror is reconciled later.
        try:
            self._attempts.mark_finished(competition_id, user_id, elapsed)
        except StoreError as e:
            logger.warning(f"Failed to update attempt of {user_id} in {competition_id}: {e}")
        return record

    def submit_answers(
        self, competition_id: str, user_id: str, name: str | None, answers: Answers
    ) -> Score:
        """Score `answers` against the competition's quiz, then submit."""
        competition = load_competition(self._store, competition_id, with_quiz=True)
        if competition.quiz is None:
            raise NotFoundError(f"quiz for competition {competition_id} not found")
        questions = competition.quiz.questions
        aligned = answers_in_quiz_order(answers, questions)
        try:
            score = compute_score(aligned, questions)
        except ValueError as e:
            raise ValidationError(str(e), [("answers", "length mismatch")])
        return self.submit_score(competition_id, user_id, name, score)

    def get_score(self, competition_id: str, user_id: str) -> Score | None:
        doc = self._store.get(scores_path(competition_id, user_id))
        if doc is None:
            return None
        return Score.from_doc(user_id, doc)

    def has_submitted(self, competition_id: str, user_id: str) -> bool:
        return self.get_score(competition_id, user_id) is not None

    def list_scores(self, competition_id: str) -> List[Score]:
        """All scores, fully ranked (the store only orders by score)."""
        items = self._store.query(scores_path(competition_id), order_by="score", descending=True)
        start_at = self._start_at(competition_id)
        return rank_scores((Score.from_doc(i, d) for i, d in items), start_at)

    def subscribe_scores(
        self, competition_id: str, on_update: Callable[[List[Score]], None]
    ) -> Unsubscribe:
        start_at = self._start_at(competition_id)

        def deliver(items):
            on_update(rank_scores((Score.from_doc(i, d) for i, d in items), start_at))

        return self._store.subscribe(
            scores_path(competition_id), deliver, order_by="score", descending=True
        )

    def _start_at(self, competition_id: str) -> int | None:
        try:
            return load_competition(self._store, competition_id).start_at
        except NotFoundError:
            return None
