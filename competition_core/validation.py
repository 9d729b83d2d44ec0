"""
Input validation schemas using Pydantic v2
Validates quiz, competition and registration payloads
"""

import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Self, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from .errors import ValidationError
from .models import to_epoch_ms

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class InputSanitizer:
    """Utility class for input sanitization"""

    @staticmethod
    def sanitize_string(value: str, max_length: int = 255) -> str:
        """Sanitize string input"""
        if not isinstance(value, str):
            return str(value)[:max_length]

        # Strip whitespace
        value = value.strip()

        # Limit length
        value = value[:max_length]

        # Remove null bytes
        value = value.replace("\0", "")

        return value

    @staticmethod
    def sanitize_display_name(name: str, max_length: int = 255) -> str:
        """Sanitize a participant display name, keeping Unicode letters and apostrophes"""
        name = InputSanitizer.sanitize_string(name, max_length)

        # Remove only control characters and markup/shell special chars
        dangerous_chars = r'[<>{}[\]\\|;`"\x00-\x1f\x7f]'
        name = re.sub(dangerous_chars, "", name)

        return name.strip()

    @staticmethod
    def sanitize_phone(phone: str) -> str:
        """Keep digits and a leading plus sign"""
        phone = InputSanitizer.sanitize_string(phone, 32)
        plus = phone.startswith("+")
        digits = re.sub(r"\D", "", phone)
        return f"+{digits}" if plus and digits else digits


def _blank_to_none(v: Any) -> Any:
    if isinstance(v, str) and not v.strip():
        return None
    return v


class RegistrationPayload(BaseModel):
    """Registration form. Payment fields are required only for paid competitions.

    Validate with ``context={"is_paid": bool}``.
    """

    name: Optional[str] = Field(None, max_length=255)
    fbProfile: Optional[str] = Field(None, max_length=500)
    paymentTxn: Optional[str] = Field(None, max_length=128)
    payerPhone: Optional[str] = Field(None, max_length=32)

    @field_validator("name", "fbProfile", "paymentTxn", "payerPhone", mode="before")
    @classmethod
    def strip_blank(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return InputSanitizer.sanitize_display_name(v) or None

    @field_validator("payerPhone")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        normalized = InputSanitizer.sanitize_phone(v)
        if len(normalized.lstrip("+")) < 6:
            raise ValueError("payerPhone must contain at least 6 digits")
        return normalized

    @model_validator(mode="after")
    def validate_required_fields(self, info: ValidationInfo) -> Self:
        """Validate required fields based on the competition's access gate"""
        is_paid = bool((info.context or {}).get("is_paid"))
        missing = []
        if not self.fbProfile:
            missing.append("fbProfile")
        if is_paid:
            if not self.paymentTxn:
                missing.append("paymentTxn")
            if not self.payerPhone:
                missing.append("payerPhone")
        if missing:
            raise ValueError(f"missing required fields: {', '.join(missing)}")
        return self

    model_config = ConfigDict(extra="ignore")


class QuestionInput(BaseModel):
    id: Optional[str] = Field(None, max_length=64)
    question: str = Field(..., min_length=1, max_length=2000)
    options: List[str] = Field(..., min_length=2, max_length=20)
    answer: str = Field(..., min_length=1, max_length=500)

    @field_validator("question", "answer")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("cannot be empty")
        return v

    @field_validator("options")
    @classmethod
    def validate_options(cls, v: List[str]) -> List[str]:
        cleaned = [opt.strip() for opt in v if isinstance(opt, str) and opt.strip()]
        if len(cleaned) < 2:
            raise ValueError("at least two non-empty options are required")
        if len(set(cleaned)) != len(cleaned):
            raise ValueError("options must be unique")
        return cleaned

    @model_validator(mode="after")
    def validate_answer_in_options(self) -> Self:
        if self.answer not in self.options:
            raise ValueError("answer must be one of the options")
        if not self.id:
            self.id = uuid.uuid4().hex[:12]
        return self


class QuizInput(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    questions: List[QuestionInput] = Field(..., min_length=1, max_length=500)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_unique_question_ids(self) -> Self:
        ids = [q.id for q in self.questions]
        if len(set(ids)) != len(ids):
            raise ValueError("question ids must be unique")
        return self

    def to_docs(self) -> List[Dict[str, Any]]:
        return [q.model_dump() for q in self.questions]


def _coerce_time(v: Any) -> Any:
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    ms = to_epoch_ms(v)
    if ms is None:
        raise ValueError(f"invalid timestamp: {v!r}")
    return ms


class CompetitionInput(BaseModel):
    """Fields an organizer supplies when publishing a competition."""

    quizId: str = Field(..., min_length=1, max_length=128)
    title: Optional[str] = Field(None, max_length=200)
    startAt: int
    endAt: int
    registrationStartsAt: Optional[int] = None
    registrationEndsAt: Optional[int] = None
    isPaid: bool = False
    fee: Optional[float] = Field(None, ge=0, le=1_000_000)
    organizerPhone: Optional[str] = Field(None, max_length=32)

    @field_validator("startAt", "endAt", "registrationStartsAt", "registrationEndsAt", mode="before")
    @classmethod
    def coerce_times(cls, v: Any) -> Any:
        return _coerce_time(v)

    @field_validator("organizerPhone", mode="before")
    @classmethod
    def normalize_phone(cls, v: Any) -> Any:
        v = _blank_to_none(v)
        if v is None:
            return v
        return InputSanitizer.sanitize_phone(str(v)) or None

    @model_validator(mode="after")
    def validate_window(self) -> Self:
        if not self.startAt < self.endAt:
            raise ValueError("startAt must be before endAt")
        if self.registrationEndsAt is not None and self.registrationEndsAt > self.endAt:
            # Allowed; the phase resolver caps the window at startAt.
            logger.debug(f"registrationEndsAt {self.registrationEndsAt} is after endAt {self.endAt}")
        if not self.isPaid and self.fee is not None:
            logger.debug("Dropping fee for a free competition")
            self.fee = None
        return self

    def to_doc(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class DraftInput(BaseModel):
    """Draft competitions may be incomplete; only shapes are checked."""

    quizId: Optional[str] = Field(None, max_length=128)
    title: Optional[str] = Field(None, max_length=200)
    startAt: Optional[int] = None
    endAt: Optional[int] = None
    registrationStartsAt: Optional[int] = None
    registrationEndsAt: Optional[int] = None
    isPaid: Optional[bool] = None
    fee: Optional[float] = Field(None, ge=0, le=1_000_000)
    organizerPhone: Optional[str] = Field(None, max_length=32)
    visible: Optional[bool] = None

    @field_validator("startAt", "endAt", "registrationStartsAt", "registrationEndsAt", mode="before")
    @classmethod
    def coerce_times(cls, v: Any) -> Any:
        return _coerce_time(v)

    def to_doc(self) -> Dict[str, Any]:
        """Only the fields the caller sent, so an edit never resets stored ones."""
        doc = self.model_dump(exclude_none=True)
        if self.isPaid is False:
            doc.pop("fee", None)
        return doc


def validate_input(
    model: Type[ModelT], data: Any, *, context: Dict[str, Any] | None = None
) -> ModelT:
    """
    Validate a payload against a schema

    Returns:
        The validated model instance

    Raises:
        ValidationError: with one (field, message) detail per failure
    """
    if isinstance(data, model):
        data = data.model_dump()
    try:
        return model.model_validate(data or {}, context=context)
    except pydantic.ValidationError as e:
        details = []
        for err in e.errors():
            loc = ".".join(str(part) for part in err.get("loc", ())) or "__root__"
            details.append((loc, err.get("msg", "invalid")))
        logger.warning(f"{model.__name__} validation failed: {details}")
        raise ValidationError(f"Invalid {model.__name__}: {e.error_count()} error(s)", details)


# ==================== EXPORT ====================

__all__ = [
    "InputSanitizer",
    "RegistrationPayload",
    "QuestionInput",
    "QuizInput",
    "CompetitionInput",
    "DraftInput",
    "validate_input",
]
