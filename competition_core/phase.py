"""Competition lifecycle phases (pure, recomputed on every read).

Phases are never persisted. Every client derives the phase from the stored
timestamps and its own clock, so there is no stored state machine that can
drift between clients with skewed clocks.

Ordering (lifecycle, totally ordered):
    DRAFT < UPCOMING < REGISTRATION_OPEN < REGISTRATION_CLOSED < ONGOING < ENDED

Resolution rules, first match wins:
1. draft flag set                                → DRAFT
2. now >= endAt                                  → ENDED
3. now >= startAt                                → ONGOING
4. registrationStartsAt set and now before it    → UPCOMING
5. now < registration deadline                   → REGISTRATION_OPEN
6. otherwise                                     → REGISTRATION_CLOSED

The registration deadline is min(registrationEndsAt, startAt). A
registrationEndsAt later than startAt therefore never extends the window for
new registrants past the start; already registered users simply join.
"""
from __future__ import annotations

import logging
import threading
from enum import IntEnum
from typing import Callable, Dict, Iterable, List

from .clock import Clock, SystemClock
from .errors import StoreError
from .models import Competition

logger = logging.getLogger(__name__)


class Phase(IntEnum):
    DRAFT = 0
    UPCOMING = 1
    REGISTRATION_OPEN = 2
    REGISTRATION_CLOSED = 3
    ONGOING = 4
    ENDED = 5

    @property
    def label(self) -> str:
        return self.name.lower()


def registration_deadline(competition: Competition) -> int | None:
    """Instant after which new registrations are rejected (epoch ms)."""
    start = competition.start_at
    ends = competition.registration_ends_at
    if ends is None:
        return start
    if start is None:
        return ends
    return min(ends, start)


def resolve_phase(competition: Competition, now_ms: int) -> Phase:
    """Map a competition's timestamps and the current time to a Phase."""
    if competition.draft:
        return Phase.DRAFT
    if competition.end_at is not None and now_ms >= competition.end_at:
        return Phase.ENDED
    if competition.start_at is not None and now_ms >= competition.start_at:
        return Phase.ONGOING
    opens = competition.registration_starts_at
    if opens is not None and now_ms < opens:
        return Phase.UPCOMING
    deadline = registration_deadline(competition)
    if deadline is None or now_ms < deadline:
        return Phase.REGISTRATION_OPEN
    return Phase.REGISTRATION_CLOSED


def is_registration_open(competition: Competition, now_ms: int) -> bool:
    return resolve_phase(competition, now_ms) == Phase.REGISTRATION_OPEN


def is_accessible(
    competition: Competition,
    viewer_id: str | None,
    admin_ids: Iterable[str] = (),
) -> bool:
    """Visibility gate, orthogonal to the phase."""
    if competition.visible:
        return True
    if not viewer_id:
        return False
    if viewer_id == competition.organizer_id:
        return True
    return viewer_id in set(admin_ids)


def categorize(
    competitions: Iterable[Competition],
    now_ms: int,
    viewer_id: str | None = None,
    admin_ids: Iterable[str] = (),
) -> Dict[str, List[Competition]]:
    """Split accessible, published competitions into upcoming/ongoing/past.

    Order within each bucket follows the input order.
    """
    admins = set(admin_ids)
    buckets: Dict[str, List[Competition]] = {"upcoming": [], "ongoing": [], "past": []}
    for competition in competitions:
        if not is_accessible(competition, viewer_id, admins):
            continue
        phase = resolve_phase(competition, now_ms)
        if phase == Phase.DRAFT:
            continue
        if phase == Phase.ENDED:
            buckets["past"].append(competition)
        elif phase == Phase.ONGOING:
            buckets["ongoing"].append(competition)
        else:
            buckets["upcoming"].append(competition)
    return buckets


class PhaseTicker:
    """Periodically recompute a competition's phase and report changes.

    `load_competition` is called on every tick so the phase always reflects
    the latest stored timestamps; `on_change` fires only when the phase
    differs from the previous tick (the first successful tick always fires).
    A missing competition is reported as None.
    """

    def __init__(
        self,
        load_competition: Callable[[], Competition | None],
        on_change: Callable[[Phase | None], None],
        clock: Clock | None = None,
        interval: float = 1.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._load = load_competition
        self._on_change = on_change
        self._clock = clock or SystemClock()
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._has_value = False
        self._last: Phase | None = None

    @property
    def current(self) -> Phase | None:
        return self._last

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> Phase | None:
        """Evaluate once; returns the phase observed on this tick."""
        return self._evaluate(background=False)

    def _evaluate(self, background: bool) -> Phase | None:
        try:
            competition = self._load()
        except StoreError as e:
            logger.warning(f"Phase tick skipped, competition load failed: {e}")
            return self._last
        phase = resolve_phase(competition, self._clock.now_ms()) if competition else None
        if not self._has_value or phase != self._last:
            # A background tick that outlived stop() must not report.
            if background and self._stop.is_set():
                return phase
            self._has_value = True
            self._last = phase
            self._on_change(phase)
        return phase

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._evaluate(background=True)
            except Exception:
                logger.exception("Phase change handler failed")
            self._stop.wait(self._interval)

    def start(self) -> "PhaseTicker":
        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="phase-ticker", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: float | None = None) -> None:
        """Cancel the ticker and join its thread.

        No new callback starts once this is called. With a `timeout`, a
        callback already in progress may still be finishing on return.
        """
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def __enter__(self) -> "PhaseTicker":
        return self.start()

    def __exit__(self, *exc) -> None:
        self.stop()
