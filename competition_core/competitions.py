"""Quiz and competition catalogue: create, draft, publish, administrative overrides."""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping

from .clock import Clock, SystemClock
from .config import DEFAULT_CONFIG, EngineConfig
from .documents import (
    COMPETITIONS,
    QUIZZES,
    competition_path,
    join_quiz,
    load_competition,
    load_quiz,
    quiz_path,
)
from .errors import NotAuthorizedError, NotFoundError, ValidationError
from .models import Competition, Quiz
from .phase import Phase, PhaseTicker, categorize
from .store import DocumentStore, Unsubscribe
from .types import CompetitionDoc, QuizDoc
from .validation import CompetitionInput, DraftInput, QuizInput, validate_input

logger = logging.getLogger(__name__)

# Fields copied from a draft onto the published record.
_PUBLISHED_FIELDS = (
    "quizId",
    "title",
    "startAt",
    "endAt",
    "registrationStartsAt",
    "registrationEndsAt",
    "isPaid",
    "fee",
    "organizerPhone",
)


class CompetitionService:
    def __init__(
        self,
        store: DocumentStore,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or DEFAULT_CONFIG

    # ==================== QUIZZES ====================

    def create_quiz(self, organizer_id: str, payload: Mapping[str, Any]) -> str:
        if not organizer_id:
            raise ValidationError("organizer id is required", [("organizerId", "required")])
        quiz = validate_input(QuizInput, dict(payload or {}))
        doc: QuizDoc = {
            "title": quiz.title,
            "organizerId": organizer_id,
            "questions": quiz.to_docs(),
            "createdAt": self._clock.now_ms(),
        }
        quiz_id = self._store.add(QUIZZES, doc)
        logger.info(f"Created quiz {quiz_id} ({len(doc['questions'])} questions) for {organizer_id}")
        return quiz_id

    def update_quiz(self, quiz_id: str, payload: Mapping[str, Any], actor_id: str) -> Quiz:
        """Replace title/questions of a quiz owned by `actor_id`."""
        existing = load_quiz(self._store, quiz_id)
        if actor_id != existing.organizer_id:
            raise NotAuthorizedError("only the quiz organizer can update it")
        quiz = validate_input(QuizInput, dict(payload or {}))
        self._store.set(
            quiz_path(quiz_id),
            {"title": quiz.title, "questions": quiz.to_docs(), "updatedAt": self._clock.now_ms()},
            merge=True,
        )
        return load_quiz(self._store, quiz_id)

    def get_quiz(self, quiz_id: str) -> Quiz:
        return load_quiz(self._store, quiz_id)

    # ==================== COMPETITIONS ====================

    def create_competition(self, organizer_id: str, payload: Mapping[str, Any]) -> str:
        """Publish a live competition referencing an existing quiz."""
        if not organizer_id:
            raise ValidationError("organizer id is required", [("organizerId", "required")])
        data = validate_input(CompetitionInput, dict(payload or {}))
        load_quiz(self._store, data.quizId)

        doc: CompetitionDoc = data.to_doc()
        doc.update(
            {
                "organizerId": organizer_id,
                "visible": True,
                "draft": False,
                "participants": [],
                "createdAt": self._clock.now_ms(),
            }
        )
        competition_id = self._store.add(COMPETITIONS, doc)
        logger.info(f"Created competition {competition_id} (quiz {data.quizId}, paid={data.isPaid})")
        return competition_id

    def save_draft(
        self, organizer_id: str, payload: Mapping[str, Any], draft_id: str | None = None
    ) -> str:
        """Create or merge-update a hidden draft, embedding its quiz.

        An edit merges only the fields present in `payload`.
        """
        if not organizer_id:
            raise ValidationError("organizer id is required", [("organizerId", "required")])
        data = validate_input(DraftInput, dict(payload or {}))
        doc = data.to_doc()
        doc["draft"] = True
        doc["organizerId"] = organizer_id
        if data.quizId:
            doc = join_quiz(self._store, draft_id or "draft", doc)

        now = self._clock.now_ms()
        if draft_id:
            existing = load_competition(self._store, draft_id)
            if existing.organizer_id != organizer_id:
                raise NotAuthorizedError("only the organizer can edit this draft")
            if not existing.draft:
                raise ValidationError("competition is already published", [("draft", "published")])
            doc["updatedAt"] = now
            self._store.set(competition_path(draft_id), doc, merge=True)
            return draft_id
        doc.setdefault("isPaid", False)
        doc.setdefault("visible", False)
        doc["createdAt"] = now
        doc["participants"] = []
        draft_id = self._store.add(COMPETITIONS, doc)
        logger.info(f"Saved draft {draft_id} for {organizer_id}")
        return draft_id

    def publish_draft(
        self, draft_id: str, actor_id: str, quiz_id: str | None = None
    ) -> str:
        """Copy a draft onto a live, visible record and return its id.

        `quiz_id` repoints the competition at a republished quiz.
        """
        draft_doc = self._store.get(competition_path(draft_id))
        if draft_doc is None:
            raise NotFoundError(f"competition {draft_id} not found")
        draft = Competition.from_doc(draft_id, draft_doc)
        if actor_id != draft.organizer_id:
            raise NotAuthorizedError("only the organizer can publish this draft")
        if not draft.draft:
            return draft_id

        fields: Dict[str, Any] = {k: draft_doc[k] for k in _PUBLISHED_FIELDS if k in draft_doc}
        if quiz_id:
            fields["quizId"] = quiz_id
        data = validate_input(CompetitionInput, fields)
        load_quiz(self._store, data.quizId)

        live = data.to_doc()
        live.update(
            {
                "organizerId": draft.organizer_id,
                "draft": False,
                "visible": True,
                "updatedAt": self._clock.now_ms(),
            }
        )
        if quiz_id:
            live["quiz"] = None
        self._store.set(competition_path(draft_id), live, merge=True)
        logger.info(f"Published draft {draft_id}")
        return draft_id

    def list_drafts_for_organizer(self, organizer_id: str) -> List[Competition]:
        items = self._store.query(
            COMPETITIONS,
            order_by="createdAt",
            descending=True,
            where=[("draft", "==", True), ("organizerId", "==", organizer_id)],
        )
        return [Competition.from_doc(cid, join_quiz(self._store, cid, doc)) for cid, doc in items]

    def get_competition(self, competition_id: str) -> Competition:
        return load_competition(self._store, competition_id, with_quiz=True)

    def list_competitions(self) -> List[Competition]:
        items = self._store.query(COMPETITIONS, order_by="startAt")
        return [Competition.from_doc(cid, join_quiz(self._store, cid, doc)) for cid, doc in items]

    def browse(self, viewer_id: str | None = None) -> Dict[str, List[Competition]]:
        """Upcoming/ongoing/past buckets as seen by `viewer_id` right now."""
        return categorize(
            self.list_competitions(),
            self._clock.now_ms(),
            viewer_id,
            self._config.admin_user_ids,
        )

    def phase_ticker(
        self, competition_id: str, on_change: Callable[[Phase | None], None]
    ) -> PhaseTicker:
        """Unstarted ticker re-evaluating the phase every `tick_interval_seconds`.

        A deleted competition is reported as None.
        """

        def load() -> Competition | None:
            try:
                return load_competition(self._store, competition_id)
            except NotFoundError:
                return None

        return PhaseTicker(load, on_change, self._clock, self._config.tick_interval_seconds)

    def subscribe_competition(
        self, competition_id: str, on_update: Callable[[Competition | None], None]
    ) -> Unsubscribe:
        def deliver(doc):
            if doc is None:
                on_update(None)
                return
            on_update(Competition.from_doc(competition_id, join_quiz(self._store, competition_id, doc)))

        return self._store.subscribe(competition_path(competition_id), deliver)

    def subscribe_competitions(
        self, on_update: Callable[[List[Competition]], None]
    ) -> Unsubscribe:
        def deliver(items):
            on_update(
                [Competition.from_doc(cid, join_quiz(self._store, cid, doc)) for cid, doc in items]
            )

        return self._store.subscribe(COMPETITIONS, deliver, order_by="startAt")

    # ==================== ADMINISTRATIVE OVERRIDES ====================

    def _require_owner_or_admin(self, competition: Competition, actor_id: str) -> None:
        if actor_id == competition.organizer_id or self._config.is_admin(actor_id):
            return
        raise NotAuthorizedError("only the organizer or an admin can change this competition")

    def set_visibility(self, competition_id: str, visible: bool, actor_id: str) -> None:
        competition = load_competition(self._store, competition_id)
        self._require_owner_or_admin(competition, actor_id)
        self._store.set(competition_path(competition_id), {"visible": bool(visible)}, merge=True)
        logger.info(f"Competition {competition_id} visible={bool(visible)} by {actor_id}")

    def delete_competition(self, competition_id: str, actor_id: str) -> None:
        competition = load_competition(self._store, competition_id)
        self._require_owner_or_admin(competition, actor_id)
        self._store.delete(competition_path(competition_id))
        logger.info(f"Deleted competition {competition_id} by {actor_id}")

    def _bulk_visibility(self, visible: bool, where, actor_id: str) -> int:
        """Flip `visible` on every match in one batch; a failed batch changes nothing."""
        if not self._config.is_admin(actor_id):
            raise NotAuthorizedError("bulk visibility changes are admin-only")
        items = self._store.query(COMPETITIONS, where=where)
        self._store.set_many(
            [(competition_path(cid), {"visible": visible}) for cid, _ in items], merge=True
        )
        return len(items)

    def hide_past_competitions(self, actor_id: str) -> int:
        """Hide every competition whose endAt has passed."""
        count = self._bulk_visibility(False, [("endAt", "<", self._clock.now_ms())], actor_id)
        logger.info(f"Hid {count} past competitions")
        return count

    def hide_future_competitions(self, actor_id: str) -> int:
        """Hide every competition that has not started yet."""
        count = self._bulk_visibility(False, [("startAt", ">", self._clock.now_ms())], actor_id)
        logger.info(f"Hid {count} future competitions")
        return count

    def show_all_competitions(self, actor_id: str) -> int:
        count = self._bulk_visibility(True, [], actor_id)
        logger.info(f"Made {count} competitions visible")
        return count
