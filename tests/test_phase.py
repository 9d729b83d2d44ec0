from __future__ import annotations

import threading

import pytest

from competition_core import (
    Competition,
    ManualClock,
    Phase,
    PhaseTicker,
    StoreError,
    categorize,
    is_accessible,
    is_registration_open,
    registration_deadline,
    resolve_phase,
)

from conftest import HOUR, MINUTE, T0


def _competition(**fields) -> Competition:
    doc = {"quizId": "qz", "organizerId": "org", "startAt": T0 + HOUR, "endAt": T0 + 2 * HOUR}
    doc.update(fields)
    return Competition.from_doc("c1", doc)


def test_phase_order_is_lifecycle_order():
    assert (
        Phase.DRAFT
        < Phase.UPCOMING
        < Phase.REGISTRATION_OPEN
        < Phase.REGISTRATION_CLOSED
        < Phase.ONGOING
        < Phase.ENDED
    )
    assert Phase.REGISTRATION_OPEN.label == "registration_open"


def test_registration_open_then_ongoing_then_ended():
    comp = _competition()
    assert resolve_phase(comp, T0) == Phase.REGISTRATION_OPEN
    assert resolve_phase(comp, T0 + HOUR - 1) == Phase.REGISTRATION_OPEN
    assert resolve_phase(comp, T0 + HOUR) == Phase.ONGOING
    assert resolve_phase(comp, T0 + 2 * HOUR - 1) == Phase.ONGOING
    assert resolve_phase(comp, T0 + 2 * HOUR) == Phase.ENDED


def test_registration_closes_at_explicit_deadline():
    comp = _competition(registrationEndsAt=T0 + 30 * MINUTE)
    assert registration_deadline(comp) == T0 + 30 * MINUTE
    assert resolve_phase(comp, T0 + 29 * MINUTE) == Phase.REGISTRATION_OPEN
    assert resolve_phase(comp, T0 + 30 * MINUTE) == Phase.REGISTRATION_CLOSED
    assert not is_registration_open(comp, T0 + 45 * MINUTE)
    assert resolve_phase(comp, T0 + HOUR) == Phase.ONGOING


def test_registration_deadline_after_start_is_capped_at_start():
    comp = _competition(registrationEndsAt=T0 + 3 * HOUR)
    assert registration_deadline(comp) == T0 + HOUR
    assert resolve_phase(comp, T0 + HOUR - 1) == Phase.REGISTRATION_OPEN
    assert resolve_phase(comp, T0 + HOUR + 1) == Phase.ONGOING


def test_upcoming_before_registration_opens():
    comp = _competition(registrationStartsAt=T0 + 10 * MINUTE)
    assert resolve_phase(comp, T0) == Phase.UPCOMING
    assert resolve_phase(comp, T0 + 10 * MINUTE) == Phase.REGISTRATION_OPEN


def test_draft_wins_over_timestamps():
    comp = _competition(draft=True)
    assert resolve_phase(comp, T0) == Phase.DRAFT
    assert resolve_phase(comp, T0 + 10 * HOUR) == Phase.DRAFT


def test_phase_never_moves_backwards_as_time_advances():
    variants = [
        _competition(),
        _competition(registrationEndsAt=T0 + 20 * MINUTE),
        _competition(registrationEndsAt=T0 + 5 * HOUR),
        _competition(registrationStartsAt=T0 + 10 * MINUTE, registrationEndsAt=T0 + 40 * MINUTE),
    ]
    for comp in variants:
        previous = Phase.DRAFT
        for t in range(T0 - HOUR, T0 + 3 * HOUR, 5 * MINUTE):
            phase = resolve_phase(comp, t)
            assert phase >= previous
            previous = phase


def test_timestamps_accept_iso_strings():
    comp = Competition.from_doc(
        "c1",
        {
            "quizId": "qz",
            "organizerId": "org",
            "startAt": "2024-01-01T10:00:00Z",
            "endAt": "2024-01-01T11:00:00Z",
        },
    )
    assert comp.start_at == 1704103200000
    assert resolve_phase(comp, 1704103200000 + 1) == Phase.ONGOING


def test_hidden_competition_is_accessible_to_organizer_and_admins_only():
    comp = _competition(visible=False)
    assert is_accessible(comp, "org")
    assert is_accessible(comp, "admin", admin_ids={"admin"})
    assert not is_accessible(comp, "someone", admin_ids={"admin"})
    assert not is_accessible(comp, None)
    assert is_accessible(_competition(), None)


def test_missing_visible_flag_means_visible():
    comp = Competition.from_doc("c1", {"quizId": "qz", "startAt": T0, "endAt": T0 + HOUR})
    assert comp.visible is True


def test_categorize_buckets_and_skips_drafts_and_hidden():
    upcoming = Competition.from_doc("up", {"startAt": T0 + HOUR, "endAt": T0 + 2 * HOUR})
    ongoing = Competition.from_doc("on", {"startAt": T0 - HOUR, "endAt": T0 + HOUR})
    past = Competition.from_doc("past", {"startAt": T0 - 2 * HOUR, "endAt": T0 - HOUR})
    draft = Competition.from_doc("draft", {"startAt": T0 + HOUR, "endAt": T0 + 2 * HOUR, "draft": True})
    hidden = Competition.from_doc(
        "hidden", {"organizerId": "org", "startAt": T0 + HOUR, "endAt": T0 + 2 * HOUR, "visible": False}
    )

    out = categorize([upcoming, ongoing, past, draft, hidden], T0)
    assert [c.id for c in out["upcoming"]] == ["up"]
    assert [c.id for c in out["ongoing"]] == ["on"]
    assert [c.id for c in out["past"]] == ["past"]

    as_organizer = categorize([upcoming, hidden], T0, viewer_id="org")
    assert [c.id for c in as_organizer["upcoming"]] == ["up", "hidden"]


def test_ticker_reports_first_phase_and_changes_only():
    clock = ManualClock(T0)
    comp = _competition()
    seen = []
    ticker = PhaseTicker(lambda: comp, seen.append, clock=clock)

    assert ticker.tick() == Phase.REGISTRATION_OPEN
    ticker.tick()
    clock.set(T0 + HOUR)
    ticker.tick()
    ticker.tick()
    clock.set(T0 + 2 * HOUR)
    ticker.tick()

    assert seen == [Phase.REGISTRATION_OPEN, Phase.ONGOING, Phase.ENDED]
    assert ticker.current == Phase.ENDED


def test_ticker_reports_missing_competition_as_none():
    seen = []
    ticker = PhaseTicker(lambda: None, seen.append, clock=ManualClock(T0))
    assert ticker.tick() is None
    ticker.tick()
    assert seen == [None]


def test_ticker_keeps_last_phase_when_load_fails():
    clock = ManualClock(T0)
    comp = _competition()
    calls = {"n": 0}

    def load():
        calls["n"] += 1
        if calls["n"] == 2:
            raise StoreError("offline")
        return comp

    seen = []
    ticker = PhaseTicker(load, seen.append, clock=clock)
    ticker.tick()
    assert ticker.tick() == Phase.REGISTRATION_OPEN
    ticker.tick()
    assert seen == [Phase.REGISTRATION_OPEN]


def test_ticker_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        PhaseTicker(lambda: None, lambda phase: None, interval=0)


def test_ticker_thread_stops_cleanly():
    fired = threading.Event()
    comp = _competition()
    with PhaseTicker(lambda: comp, lambda phase: fired.set(), clock=ManualClock(T0), interval=0.01) as ticker:
        assert fired.wait(2.0)
        assert ticker.running
    assert not ticker.running


def test_ticker_stopped_mid_load_reports_nothing():
    entered = threading.Event()
    release = threading.Event()
    comp = _competition()
    seen = []

    def load():
        entered.set()
        release.wait(2.0)
        return comp

    ticker = PhaseTicker(load, seen.append, clock=ManualClock(T0), interval=0.01).start()
    assert entered.wait(2.0)
    thread = ticker._thread
    ticker.stop(timeout=0.05)
    release.set()
    thread.join(2.0)

    assert not thread.is_alive()
    assert seen == []


def test_registration_deadline_one_minute_before_start():
    comp = _competition(startAt=T0, endAt=T0 + HOUR, registrationEndsAt=T0 - MINUTE)
    assert resolve_phase(comp, T0 - 2 * MINUTE) == Phase.REGISTRATION_OPEN
    assert resolve_phase(comp, T0 - 30_000) == Phase.REGISTRATION_CLOSED
    assert resolve_phase(comp, T0 + 10) == Phase.ONGOING
