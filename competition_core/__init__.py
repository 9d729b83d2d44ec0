from .attempts import AttemptTracker
from .clock import Clock, ManualClock, SystemClock
from .competitions import CompetitionService
from .config import EngineConfig
from .errors import (
    CompetitionError,
    DocumentExistsError,
    DuplicateSubmissionError,
    NotAuthorizedError,
    NotFoundError,
    SelfRegistrationError,
    StoreError,
    ValidationError,
    WindowClosedError,
)
from .leaderboard import (
    Leaderboard,
    LeaderboardRow,
    LeaderboardService,
    ParticipationStatus,
    build_leaderboard,
    can_view_leaderboard,
    format_duration,
    participation_status,
    resolve_names,
    score_statistics,
)
from .models import (
    Attempt,
    Competition,
    Participant,
    Question,
    Quiz,
    Registration,
    Score,
    ScoreStatistics,
    to_epoch_ms,
)
from .phase import (
    Phase,
    PhaseTicker,
    categorize,
    is_accessible,
    is_registration_open,
    registration_deadline,
    resolve_phase,
)
from .registration import RegistrationWorkflow
from .scoring import ScoringEngine, compute_score, effective_elapsed_ms, rank_scores
from .store import DocumentStore, IdentityDirectory, InMemoryDocumentStore, StoreIdentityDirectory
from .types import (
    AttemptDoc,
    CompetitionDoc,
    ParticipantDoc,
    QuestionDoc,
    QuizDoc,
    RegistrationDoc,
    ScoreDoc,
)
from .validation import InputSanitizer, RegistrationPayload, validate_input

__all__ = [
    "AttemptTracker",
    "Clock",
    "ManualClock",
    "SystemClock",
    "CompetitionService",
    "EngineConfig",
    "CompetitionError",
    "DocumentExistsError",
    "DuplicateSubmissionError",
    "NotAuthorizedError",
    "NotFoundError",
    "SelfRegistrationError",
    "StoreError",
    "ValidationError",
    "WindowClosedError",
    "Leaderboard",
    "LeaderboardRow",
    "LeaderboardService",
    "ParticipationStatus",
    "build_leaderboard",
    "can_view_leaderboard",
    "format_duration",
    "participation_status",
    "resolve_names",
    "score_statistics",
    "Attempt",
    "Competition",
    "Participant",
    "Question",
    "Quiz",
    "Registration",
    "Score",
    "ScoreStatistics",
    "to_epoch_ms",
    "Phase",
    "PhaseTicker",
    "categorize",
    "is_accessible",
    "is_registration_open",
    "registration_deadline",
    "resolve_phase",
    "RegistrationWorkflow",
    "ScoringEngine",
    "compute_score",
    "effective_elapsed_ms",
    "rank_scores",
    "DocumentStore",
    "IdentityDirectory",
    "InMemoryDocumentStore",
    "StoreIdentityDirectory",
    "AttemptDoc",
    "CompetitionDoc",
    "ParticipantDoc",
    "QuestionDoc",
    "QuizDoc",
    "RegistrationDoc",
    "ScoreDoc",
    "InputSanitizer",
    "RegistrationPayload",
    "validate_input",
]
