"""Per-user quiz attempts, keyed by user id under each competition."""
from __future__ import annotations

import logging

from .clock import Clock, SystemClock
from .documents import attempt_path
from .models import Attempt
from .store import DocumentStore
from .types import AttemptDoc

logger = logging.getLogger(__name__)


class AttemptTracker:
    """Records when a user starts and finishes the quiz.

    The tracker does not check the competition window or the user's
    registration; callers gate on `participation_status` first.
    """

    def __init__(self, store: DocumentStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    def get_attempt(self, competition_id: str, user_id: str) -> Attempt | None:
        doc = self._store.get(attempt_path(competition_id, user_id))
        if doc is None:
            return None
        return Attempt.from_doc(user_id, doc)

    def start_attempt(self, competition_id: str, user_id: str, name: str | None = None) -> Attempt:
        """Upsert the attempt with startedAt=now, status=started.

        Repeated calls overwrite startedAt/name on the same record. A
        finished attempt is returned unchanged.
        """
        existing = self.get_attempt(competition_id, user_id)
        if existing is not None and existing.finished:
            logger.debug(f"Attempt of {user_id} in {competition_id} already finished")
            return existing

        now = self._clock.now_ms()
        doc: AttemptDoc = {"userId": user_id, "name": name or None, "startedAt": now, "status": "started"}
        self._store.set(attempt_path(competition_id, user_id), doc, merge=True)
        if existing is None:
            logger.info(f"Started attempt for {user_id} in {competition_id}")
        return Attempt(user_id=user_id, status="started", started_at=now, name=name or None)

    def mark_finished(
        self, competition_id: str, user_id: str, elapsed_ms: int | None
    ) -> Attempt | None:
        """Mirror a score submission onto the attempt, if one was started."""
        if self.get_attempt(competition_id, user_id) is None:
            return None
        now = self._clock.now_ms()
        update: AttemptDoc = {"finishedAt": now, "status": "finished", "elapsedMs": elapsed_ms}
        self._store.set(attempt_path(competition_id, user_id), update, merge=True)
        return self.get_attempt(competition_id, user_id)
