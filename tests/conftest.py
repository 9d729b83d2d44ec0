from __future__ import annotations

import pytest

from competition_core import (
    EngineConfig,
    InMemoryDocumentStore,
    ManualClock,
    StoreIdentityDirectory,
)

T0 = 1_700_000_000_000
HOUR = 3_600_000
MINUTE = 60_000

ORGANIZER = "org-1"
ADMIN = "admin-1"

QUESTIONS = [
    {"id": "q1", "question": "2 + 2?", "options": ["3", "4"], "answer": "4"},
    {"id": "q2", "question": "Capital of France?", "options": ["Paris", "Rome"], "answer": "Paris"},
    {"id": "q3", "question": "H2O is?", "options": ["Water", "Salt"], "answer": "Water"},
]


@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def identity(store):
    store.set("users/u-alice", {"displayName": "Alice Profile"})
    store.set("users/u-bob", {"displayName": "Bob Profile"})
    return StoreIdentityDirectory(store)


@pytest.fixture
def config():
    return EngineConfig(admin_user_ids={ADMIN})


@pytest.fixture
def make_competition(store):
    """Write a competition document directly and return its id.

    Defaults: quiz with QUESTIONS, registration open now, starts in one hour,
    lasts one hour, free and visible.
    """
    counter = {"n": 0}

    def factory(**overrides):
        counter["n"] += 1
        quiz_id = f"quiz-{counter['n']}"
        store.set(
            f"quizzes/{quiz_id}",
            {"title": "General knowledge", "organizerId": ORGANIZER, "questions": QUESTIONS},
        )
        doc = {
            "quizId": quiz_id,
            "organizerId": ORGANIZER,
            "startAt": T0 + HOUR,
            "endAt": T0 + 2 * HOUR,
            "isPaid": False,
            "visible": True,
            "draft": False,
            "participants": [],
        }
        doc.update(overrides)
        competition_id = f"comp-{counter['n']}"
        store.set(f"competitions/{competition_id}", doc)
        return competition_id

    return factory
