"""Registration workflow: sign-up, paid-gate, organizer verification.

Free competitions are auto-verified right after the registration record is
written; paid competitions wait for the organizer. Participants are only
ever added to ``Competition.participants`` through the store's keyed
add-to-set, so concurrent approvals never duplicate or drop entries.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, List, Mapping

from .clock import Clock, SystemClock
from .config import DEFAULT_CONFIG, EngineConfig
from .errors import (
    NotAuthorizedError,
    NotFoundError,
    SelfRegistrationError,
    StoreError,
    ValidationError,
    WindowClosedError,
)
from .documents import competition_path, load_competition, registrations_path
from .models import Registration
from .phase import Phase, resolve_phase
from .store import DocumentStore, IdentityDirectory, Unsubscribe
from .types import RegistrationDoc
from .validation import RegistrationPayload, validate_input

logger = logging.getLogger(__name__)


class RegistrationWorkflow:
    def __init__(
        self,
        store: DocumentStore,
        clock: Clock | None = None,
        config: EngineConfig | None = None,
        identity: IdentityDirectory | None = None,
    ) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or DEFAULT_CONFIG
        self._identity = identity

    def _collection(self, competition_id: str) -> str:
        return registrations_path(competition_id)

    def find_registration(self, competition_id: str, user_id: str) -> Registration | None:
        """Earliest registration of `user_id`, if any."""
        items = self._store.query(
            self._collection(competition_id),
            order_by="registeredAt",
            where=[("userId", "==", user_id)],
        )
        if not items:
            return None
        reg_id, doc = items[0]
        return Registration.from_doc(reg_id, doc)

    def get_registration(self, competition_id: str, registration_id: str) -> Registration:
        doc = self._store.get(registrations_path(competition_id, registration_id))
        if doc is None:
            raise NotFoundError(f"registration {registration_id} not found")
        return Registration.from_doc(registration_id, doc)

    def register(
        self, competition_id: str, user_id: str, payload: Mapping[str, Any] | None = None
    ) -> str:
        """Create a registration for `user_id` and return its id.

        Raises:
            NotFoundError: competition does not exist
            SelfRegistrationError: the organizer tried to register
            WindowClosedError: registration window is not open
            ValidationError: required form fields are missing
        """
        if not user_id:
            raise ValidationError("user id is required", [("userId", "required")])
        competition = load_competition(self._store, competition_id)
        if user_id == competition.organizer_id:
            raise SelfRegistrationError("organizers cannot register for their own competition")

        existing = self.find_registration(competition_id, user_id)
        if existing is not None:
            logger.debug(f"User {user_id} already registered for {competition_id} as {existing.id}")
            return existing.id

        now = self._clock.now_ms()
        phase = resolve_phase(competition, now)
        if phase != Phase.REGISTRATION_OPEN:
            raise WindowClosedError(f"registration is not open (phase: {phase.label})")

        form = validate_input(
            RegistrationPayload, dict(payload or {}), context={"is_paid": competition.is_paid}
        )
        name = self._resolve_name(user_id, form.name)

        doc: RegistrationDoc = {
            "userId": user_id,
            "name": name,
            "fbProfile": form.fbProfile,
            "verified": False,
            "registeredAt": now,
        }
        if competition.is_paid:
            doc["paymentTxn"] = form.paymentTxn
            doc["payerPhone"] = form.payerPhone
        reg_id = self._store.add(self._collection(competition_id), doc)
        logger.info(f"Registered {user_id} for {competition_id} ({reg_id}, paid={competition.is_paid})")

        if not competition.is_paid:
            self._approve(competition_id, reg_id, Registration.from_doc(reg_id, doc), now)
        return reg_id

    def verify(
        self, competition_id: str, registration_id: str, approve: bool, actor_id: str
    ) -> Registration:
        """Organizer decision on a registration.

        Approving twice leaves a single participant entry. A rejection is
        terminal, so flipping an earlier decision raises ValidationError.
        """
        competition = load_competition(self._store, competition_id)
        if actor_id != competition.organizer_id:
            raise NotAuthorizedError("only the organizer can verify registrations")

        registration = self.get_registration(competition_id, registration_id)
        status = registration.status
        now = self._clock.now_ms()

        if approve:
            if status == "rejected":
                raise ValidationError(
                    "registration was rejected and cannot be approved",
                    [("verified", "rejected registrations are final")],
                )
            self._approve(competition_id, registration_id, registration, now)
        else:
            if status == "verified":
                raise ValidationError(
                    "registration was already verified",
                    [("verified", "verified registrations cannot be rejected")],
                )
            if status == "pending":
                self._store.set(
                    registrations_path(competition_id, registration_id),
                    {"verified": False, "reviewedAt": now},
                    merge=True,
                )
                logger.info(f"Rejected registration {registration_id} in {competition_id}")
        return self.get_registration(competition_id, registration_id)

    def list_registrations(self, competition_id: str) -> List[Registration]:
        items = self._store.query(self._collection(competition_id), order_by="registeredAt")
        return [Registration.from_doc(reg_id, doc) for reg_id, doc in items]

    def subscribe_registrations(
        self, competition_id: str, on_update: Callable[[List[Registration]], None]
    ) -> Unsubscribe:
        """Live moderation view ordered by registeredAt ascending."""

        def deliver(items):
            on_update([Registration.from_doc(reg_id, doc) for reg_id, doc in items])

        return self._store.subscribe(
            self._collection(competition_id), deliver, order_by="registeredAt"
        )

    def _approve(
        self, competition_id: str, registration_id: str, registration: Registration, now: int
    ) -> None:
        if not registration.verified:
            self._store.set(
                registrations_path(competition_id, registration_id),
                {"verified": True, "reviewedAt": now},
                merge=True,
            )
            logger.info(f"Verified registration {registration_id} in {competition_id}")
        added = self._store.add_to_set(
            competition_path(competition_id),
            "participants",
            registration.to_participant().to_doc(),
            key="userId",
        )
        if added:
            logger.info(f"Added participant {registration.user_id} to {competition_id}")

    def _resolve_name(self, user_id: str, name: str | None) -> str:
        if name:
            return name[: self._config.max_name_length]
        if self._identity is not None:
            try:
                display = self._identity.display_name(user_id)
            except StoreError as e:
                logger.warning(f"Display name lookup failed for {user_id}: {e}")
                display = None
            if display:
                return display[: self._config.max_name_length]
        return self._config.anonymous_name
