"""Leaderboard projection: ranking rows, statistics and derived participation state.

Everything here is recomputed from fresh Registration/Attempt/Score reads.
No "already joined" or "already started" flag is trusted from client memory.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, Sequence, Tuple

from .attempts import AttemptTracker
from .clock import Clock, SystemClock
from .config import DEFAULT_CONFIG, EngineConfig
from .documents import load_competition
from .errors import NotAuthorizedError, StoreError, WindowClosedError
from .models import Attempt, Competition, Registration, Score, ScoreStatistics
from .phase import Phase, resolve_phase
from .registration import RegistrationWorkflow
from .scoring import ScoringEngine, effective_elapsed_ms, rank_scores
from .store import DocumentStore, IdentityDirectory

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeaderboardRow:
    rank: int
    user_id: str
    name: str
    score: int
    elapsed_ms: int | None
    timestamp: int | None
    fb_profile: str | None = None


@dataclass(frozen=True)
class Leaderboard:
    rows: Tuple[LeaderboardRow, ...]
    statistics: ScoreStatistics
    total: int


@dataclass(frozen=True)
class ParticipationStatus:
    phase: Phase
    is_organizer: bool
    registered: bool
    verified: bool
    rejected: bool
    started: bool
    submitted: bool
    can_register: bool
    can_start: bool
    can_view_leaderboard: bool


def score_statistics(scores: Sequence[Score], buckets: int = 5) -> ScoreStatistics:
    """Count, top, mean and a fixed-size score histogram.

    Bucket width is ceil((top + 1) / buckets), at least 1; each score goes to
    floor(score / width), clamped to the last bucket.
    """
    buckets = max(1, int(buckets))
    count = len(scores)
    if not count:
        return ScoreStatistics(count=0, top=0, mean=0.0, histogram=(0,) * buckets, bucket_width=1)

    values = [max(0, s.score) for s in scores]
    top = max(values)
    mean = sum(values) / count
    width = max(1, math.ceil((top + 1) / buckets))
    histogram = [0] * buckets
    for value in values:
        histogram[min(buckets - 1, value // width)] += 1
    return ScoreStatistics(
        count=count, top=top, mean=mean, histogram=tuple(histogram), bucket_width=width
    )


def format_duration(ms: int | None) -> str:
    """
    Human readable elapsed time.

    Examples:
        - None → "-"
        - 42_000 → "42s"
        - 125_000 → "2m 05s"
        - 3_725_000 → "1h 02m 05s"
    """
    if ms is None:
        return "-"
    total_sec = max(0, int(ms)) // 1000
    hrs = total_sec // 3600
    mins = (total_sec % 3600) // 60
    secs = total_sec % 60
    if hrs > 0:
        return f"{hrs}h {mins:02d}m {secs:02d}s"
    if mins > 0:
        return f"{mins}m {secs:02d}s"
    return f"{secs}s"


def can_view_leaderboard(
    viewer_id: str | None,
    competition: Competition,
    registrations: Iterable[Registration] = (),
    scores: Iterable[Score] = (),
) -> bool:
    """Organizer, participants, verified registrants and anyone who submitted.

    Submitters are included so a participant always sees their own result
    even if registration bookkeeping is inconsistent.
    """
    if not viewer_id:
        return False
    if viewer_id == competition.organizer_id:
        return True
    if competition.has_participant(viewer_id):
        return True
    if any(r.user_id == viewer_id and r.verified for r in registrations):
        return True
    return any(s.user_id == viewer_id for s in scores)


def resolve_names(
    user_ids: Iterable[str],
    competition: Competition,
    scores: Iterable[Score] = (),
    registrations: Iterable[Registration] = (),
    identity: IdentityDirectory | None = None,
    anonymous: str = "Anonymous",
) -> Dict[str, str]:
    """Best display name per user id.

    Sources in order: the score record, the participants list, the
    registration, then the identity directory. Anonymous placeholders are
    skipped while a better source remains.
    """
    def usable(name: str | None) -> bool:
        return bool(name) and name != anonymous

    by_score = {s.user_id: s.name for s in scores if usable(s.name)}
    by_participant = {p.user_id: p.name for p in competition.participants if usable(p.name)}
    by_registration: Dict[str, str] = {}
    for r in registrations:
        if usable(r.name):
            by_registration.setdefault(r.user_id, r.name)

    names: Dict[str, str] = {}
    for uid in user_ids:
        if uid in names:
            continue
        name = by_score.get(uid) or by_participant.get(uid) or by_registration.get(uid)
        if not name and identity is not None:
            try:
                name = identity.display_name(uid)
            except StoreError as e:
                logger.warning(f"Failed to fetch user for leaderboard {uid}: {e}")
                name = None
        names[uid] = name or anonymous
    return names


def build_leaderboard(
    competition: Competition,
    scores: Sequence[Score],
    registrations: Sequence[Registration] = (),
    identity: IdentityDirectory | None = None,
    limit: int = 15,
    buckets: int = 5,
    anonymous: str = "Anonymous",
) -> Leaderboard:
    """Rank every score, keep the top `limit` rows, compute stats over all."""
    ranked = rank_scores(scores, competition.start_at)
    shown = ranked[: max(0, limit)]
    names = resolve_names(
        (s.user_id for s in shown), competition, scores, registrations, identity, anonymous
    )
    profiles: Dict[str, str] = {}
    for r in registrations:
        if r.fb_profile:
            profiles.setdefault(r.user_id, r.fb_profile)
    for p in competition.participants:
        if p.fb_profile:
            profiles[p.user_id] = p.fb_profile

    rows = tuple(
        LeaderboardRow(
            rank=idx + 1,
            user_id=s.user_id,
            name=names[s.user_id],
            score=s.score,
            elapsed_ms=effective_elapsed_ms(s, competition.start_at),
            timestamp=s.timestamp,
            fb_profile=profiles.get(s.user_id),
        )
        for idx, s in enumerate(shown)
    )
    return Leaderboard(rows=rows, statistics=score_statistics(scores, buckets), total=len(scores))


def participation_status(
    competition: Competition,
    viewer_id: str | None,
    now_ms: int,
    registration: Registration | None = None,
    attempt: Attempt | None = None,
    submitted: bool = False,
) -> ParticipationStatus:
    """Derive what the viewer may do right now from fresh records."""
    phase = resolve_phase(competition, now_ms)
    is_organizer = bool(viewer_id) and viewer_id == competition.organizer_id
    registered = registration is not None
    verified = bool(registration and registration.verified) or competition.has_participant(viewer_id)
    rejected = bool(registration and registration.status == "rejected")
    started = attempt is not None
    submitted = bool(submitted) or bool(attempt and attempt.finished)

    audience = is_organizer or verified or submitted
    return ParticipationStatus(
        phase=phase,
        is_organizer=is_organizer,
        registered=registered,
        verified=verified,
        rejected=rejected,
        started=started,
        submitted=submitted,
        can_register=bool(viewer_id)
        and not is_organizer
        and not registered
        and phase == Phase.REGISTRATION_OPEN,
        can_start=bool(viewer_id)
        and not is_organizer
        and verified
        and not submitted
        and phase == Phase.ONGOING,
        can_view_leaderboard=audience and phase == Phase.ENDED,
    )


class LeaderboardService:
    """Store-backed projection for one viewer."""

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
        self._registrations = RegistrationWorkflow(store, self._clock, self._config, identity)
        self._scoring = ScoringEngine(store, identity, self._clock, self._config)
        self._attempts = AttemptTracker(store, self._clock)

    def status_for(self, competition_id: str, viewer_id: str | None) -> ParticipationStatus:
        competition = load_competition(self._store, competition_id)
        registration = attempt = None
        submitted = False
        if viewer_id:
            registration = self._registrations.find_registration(competition_id, viewer_id)
            attempt = self._attempts.get_attempt(competition_id, viewer_id)
            submitted = self._scoring.has_submitted(competition_id, viewer_id)
        return participation_status(
            competition, viewer_id, self._clock.now_ms(), registration, attempt, submitted
        )

    def leaderboard(self, competition_id: str, viewer_id: str | None) -> Leaderboard:
        """Ranked leaderboard once the competition has ended.

        Raises:
            NotFoundError: competition does not exist
            WindowClosedError: the competition has not ended yet
            NotAuthorizedError: the viewer is not in the leaderboard audience
        """
        competition = load_competition(self._store, competition_id)
        phase = resolve_phase(competition, self._clock.now_ms())
        if phase != Phase.ENDED:
            raise WindowClosedError(f"leaderboard opens when the competition ends (phase: {phase.label})")

        registrations = self._registrations.list_registrations(competition_id)
        scores = self._scoring.list_scores(competition_id)
        if not can_view_leaderboard(viewer_id, competition, registrations, scores):
            raise NotAuthorizedError("leaderboard is visible to the organizer and verified participants")
        return build_leaderboard(
            competition,
            scores,
            registrations,
            self._identity,
            limit=self._config.leaderboard_size,
            buckets=self._config.histogram_buckets,
            anonymous=self._config.anonymous_name,
        )
