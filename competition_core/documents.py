"""Document paths and shared loaders."""
from __future__ import annotations

import logging

from .errors import NotFoundError, StoreError
from .models import Competition, Quiz
from .store import DocumentStore, doc_path

logger = logging.getLogger(__name__)

COMPETITIONS = "competitions"
QUIZZES = "quizzes"
REGISTRATIONS = "registrations"
ATTEMPTS = "attempts"
SCORES = "scores"


def competition_path(competition_id: str) -> str:
    return doc_path(COMPETITIONS, competition_id)


def registrations_path(competition_id: str, registration_id: str | None = None) -> str:
    if registration_id is None:
        return doc_path(COMPETITIONS, competition_id, REGISTRATIONS)
    return doc_path(COMPETITIONS, competition_id, REGISTRATIONS, registration_id)


def attempt_path(competition_id: str, user_id: str) -> str:
    return doc_path(COMPETITIONS, competition_id, ATTEMPTS, user_id)


def scores_path(competition_id: str, user_id: str | None = None) -> str:
    if user_id is None:
        return doc_path(COMPETITIONS, competition_id, SCORES)
    return doc_path(COMPETITIONS, competition_id, SCORES, user_id)


def quiz_path(quiz_id: str) -> str:
    return doc_path(QUIZZES, quiz_id)


def join_quiz(store: DocumentStore, competition_id: str, doc: dict) -> dict:
    """Embed quizzes/{quizId} into a competition doc that only stores the id.

    A failed or missing quiz lookup leaves the doc as it is.
    """
    if doc.get("quiz") or not doc.get("quizId"):
        return doc
    try:
        quiz = store.get(quiz_path(str(doc["quizId"])))
    except StoreError as e:
        logger.warning(f"Failed to fetch quiz for competition {competition_id}: {e}")
        return doc
    if quiz is not None:
        doc = dict(doc)
        doc["quiz"] = {"id": str(doc["quizId"]), **quiz}
    return doc


def load_competition(
    store: DocumentStore, competition_id: str, *, with_quiz: bool = False
) -> Competition:
    """Read a competition or raise NotFoundError."""
    doc = store.get(competition_path(competition_id))
    if doc is None:
        raise NotFoundError(f"competition {competition_id} not found")
    if with_quiz:
        doc = join_quiz(store, competition_id, doc)
    return Competition.from_doc(competition_id, doc)


def load_quiz(store: DocumentStore, quiz_id: str) -> Quiz:
    doc = store.get(quiz_path(quiz_id))
    if doc is None:
        raise NotFoundError(f"quiz {quiz_id} not found")
    return Quiz.from_doc(quiz_id, doc)
