from __future__ import annotations

import pytest

from competition_core import (
    AttemptTracker,
    DuplicateSubmissionError,
    NotFoundError,
    Question,
    Score,
    ScoringEngine,
    StoreError,
    ValidationError,
    compute_score,
    effective_elapsed_ms,
    rank_scores,
)
from competition_core.scoring import answers_in_quiz_order

from conftest import HOUR, MINUTE, T0


def _questions(*answers):
    return [
        Question(id=f"q{i}", question=f"Q{i}", options=("A", "B", "C", "X"), answer=a)
        for i, a in enumerate(answers, start=1)
    ]


def test_compute_score_counts_matching_answers():
    assert compute_score(["A", "X", "C"], _questions("A", "B", "C")) == 2


def test_compute_score_empty_quiz_is_zero():
    assert compute_score([], []) == 0


def test_unanswered_questions_never_match():
    assert compute_score([None, None, None], _questions("A", "B", "C")) == 0


def test_compute_score_rejects_length_mismatch():
    with pytest.raises(ValueError):
        compute_score(["A"], _questions("A", "B"))


def test_answers_keyed_by_question_id_follow_quiz_order():
    questions = _questions("A", "B", "C")
    aligned = answers_in_quiz_order({"q3": "C", "q1": "A"}, questions)
    assert aligned == ["A", None, "C"]
    assert compute_score(aligned, questions) == 2


def test_rank_by_score_then_elapsed():
    slow = Score(user_id="slow", score=5, elapsed_ms=100)
    fast = Score(user_id="fast", score=5, elapsed_ms=50)
    best = Score(user_id="best", score=7, elapsed_ms=9999)
    ranked = rank_scores([slow, fast, best])
    assert [s.user_id for s in ranked] == ["best", "fast", "slow"]


def test_ranking_is_idempotent():
    scores = [
        Score(user_id="a", score=3, elapsed_ms=10, timestamp=T0),
        Score(user_id="b", score=3, elapsed_ms=10, timestamp=T0),
        Score(user_id="c", score=3),
        Score(user_id="d", score=9, timestamp=T0 + 5),
    ]
    once = rank_scores(scores)
    assert rank_scores(once) == once
    assert rank_scores(list(reversed(scores))) == once


def test_missing_elapsed_sorts_after_known_elapsed():
    known = Score(user_id="known", score=4, elapsed_ms=HOUR)
    unknown = Score(user_id="unknown", score=4)
    assert [s.user_id for s in rank_scores([unknown, known])] == ["known", "unknown"]


def test_timestamp_breaks_equal_elapsed():
    early = Score(user_id="z-early", score=4, elapsed_ms=500, timestamp=T0)
    late = Score(user_id="a-late", score=4, elapsed_ms=500, timestamp=T0 + 1)
    assert [s.user_id for s in rank_scores([late, early])] == ["z-early", "a-late"]


def test_elapsed_falls_back_to_timestamp_minus_start():
    legacy = Score(user_id="legacy", score=2, timestamp=T0 + 90_000)
    assert effective_elapsed_ms(legacy) is None
    assert effective_elapsed_ms(legacy, start_at=T0) == 90_000
    assert effective_elapsed_ms(legacy, start_at=T0 + HOUR) is None

    modern = Score(user_id="modern", score=2, elapsed_ms=120_000)
    ranked = rank_scores([modern, legacy], start_at=T0)
    assert [s.user_id for s in ranked] == ["legacy", "modern"]


# ==================== ScoringEngine ====================


@pytest.fixture
def engine(store, identity, clock, config):
    return ScoringEngine(store, identity, clock, config)


def test_submit_score_records_elapsed_since_start(engine, make_competition, clock):
    cid = make_competition()
    clock.set(T0 + HOUR + 3 * MINUTE)

    record = engine.submit_score(cid, "u-alice", "Alice", 2)

    assert record.score == 2
    assert record.name == "Alice"
    assert record.elapsed_ms == 3 * MINUTE
    assert record.timestamp == T0 + HOUR + 3 * MINUTE
    assert engine.get_score(cid, "u-alice") == record
    assert engine.has_submitted(cid, "u-alice")


def test_second_submission_is_rejected(engine, make_competition, clock):
    cid = make_competition()
    clock.set(T0 + HOUR + MINUTE)
    engine.submit_score(cid, "u-alice", "Alice", 1)

    with pytest.raises(DuplicateSubmissionError):
        engine.submit_score(cid, "u-alice", "Alice", 3)

    scores = engine.list_scores(cid)
    assert [(s.user_id, s.score) for s in scores] == [("u-alice", 1)]


def test_submit_before_start_has_no_elapsed(engine, make_competition):
    cid = make_competition()
    record = engine.submit_score(cid, "u-bob", "Bob", 1)
    assert record.elapsed_ms is None


def test_anonymous_name_resolves_to_profile(engine, make_competition, clock):
    cid = make_competition()
    clock.set(T0 + HOUR + MINUTE)
    assert engine.submit_score(cid, "u-alice", "Anonymous", 1).name == "Alice Profile"
    assert engine.submit_score(cid, "u-bob", None, 1).name == "Bob Profile"
    assert engine.submit_score(cid, "u-nobody", None, 1).name == "Anonymous"


def test_name_lookup_failure_keeps_submission(store, clock, config, make_competition):
    class BrokenIdentity:
        def display_name(self, user_id):
            raise StoreError("users offline")

    cid = make_competition()
    clock.set(T0 + HOUR + MINUTE)
    engine = ScoringEngine(store, BrokenIdentity(), clock, config)
    assert engine.submit_score(cid, "u-x", None, 0).name == "Anonymous"


@pytest.mark.parametrize("bad", [-1, 1.5, "3", True, None])
def test_invalid_score_values_are_rejected(engine, make_competition, bad):
    cid = make_competition()
    with pytest.raises(ValidationError):
        engine.submit_score(cid, "u-alice", "Alice", bad)


def test_submit_to_missing_competition(engine):
    with pytest.raises(NotFoundError):
        engine.submit_score("missing", "u-alice", "Alice", 1)


def test_submission_finishes_started_attempt(engine, store, clock, make_competition):
    cid = make_competition()
    attempts = AttemptTracker(store, clock)
    clock.set(T0 + HOUR)
    attempts.start_attempt(cid, "u-alice", "Alice")
    clock.set(T0 + HOUR + 2 * MINUTE)

    engine.submit_score(cid, "u-alice", "Alice", 3)

    attempt = attempts.get_attempt(cid, "u-alice")
    assert attempt.finished
    assert attempt.elapsed_ms == 2 * MINUTE
    assert attempt.finished_at == T0 + HOUR + 2 * MINUTE


def test_submission_without_attempt_creates_none(engine, store, clock, make_competition):
    cid = make_competition()
    clock.set(T0 + HOUR + MINUTE)
    engine.submit_score(cid, "u-alice", "Alice", 3)
    assert AttemptTracker(store, clock).get_attempt(cid, "u-alice") is None


def test_submit_answers_scores_against_quiz(engine, make_competition, clock):
    cid = make_competition()
    clock.set(T0 + HOUR + MINUTE)

    record = engine.submit_answers(cid, "u-alice", "Alice", {"q1": "4", "q2": "Rome", "q3": "Water"})

    assert record.score == 2


def test_submit_answers_length_mismatch(engine, make_competition, clock):
    cid = make_competition()
    clock.set(T0 + HOUR + MINUTE)
    with pytest.raises(ValidationError):
        engine.submit_answers(cid, "u-alice", "Alice", ["4"])
    assert not engine.has_submitted(cid, "u-alice")


def test_submit_answers_without_quiz(engine, store, make_competition, clock):
    cid = make_competition(quizId="gone")
    with pytest.raises(NotFoundError):
        engine.submit_answers(cid, "u-alice", "Alice", [])


def test_list_scores_is_fully_ranked(engine, make_competition, clock):
    cid = make_competition()
    clock.set(T0 + HOUR + 5 * MINUTE)
    engine.submit_score(cid, "u-slow", "Slow", 2)
    clock.set(T0 + HOUR + 6 * MINUTE)
    engine.submit_score(cid, "u-top", "Top", 3)
    clock.set(T0 + HOUR + MINUTE * 7)
    engine.submit_score(cid, "u-late", "Late", 2)

    assert [s.user_id for s in engine.list_scores(cid)] == ["u-top", "u-slow", "u-late"]


def test_subscribe_scores_delivers_ranked_snapshots(engine, store, make_competition, clock):
    cid = make_competition()
    snapshots = []
    unsubscribe = engine.subscribe_scores(cid, snapshots.append)

    clock.set(T0 + HOUR + 2 * MINUTE)
    engine.submit_score(cid, "u-a", "A", 1)
    clock.set(T0 + HOUR + 3 * MINUTE)
    engine.submit_score(cid, "u-b", "B", 2)
    unsubscribe()
    engine.submit_score(cid, "u-c", "C", 3)

    assert snapshots[0] == []
    assert [s.user_id for s in snapshots[-1]] == ["u-b", "u-a"]
    assert len(snapshots) == 3


def test_submission_before_start_ranks_after_timed_scores(engine, make_competition, clock):
    cid = make_competition()
    engine.submit_score(cid, "u-early", "Early", 2)
    clock.set(T0 + HOUR + 10 * MINUTE)
    engine.submit_score(cid, "u-timed", "Timed", 2)

    assert [s.user_id for s in engine.list_scores(cid)] == ["u-timed", "u-early"]
