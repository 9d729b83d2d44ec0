"""Engine configuration."""
from __future__ import annotations

import logging
from typing import Any, FrozenSet, Mapping

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ValidationError

logger = logging.getLogger(__name__)


class EngineConfig(BaseModel):
    """Tunables shared by the competition services."""

    # Phase re-evaluation period for PhaseTicker
    tick_interval_seconds: float = Field(1.0, gt=0.0, le=60.0)

    # Leaderboard display truncation after full ranking
    leaderboard_size: int = Field(15, ge=1, le=1000)
    histogram_buckets: int = Field(5, ge=1, le=50)

    # Platform admins may see hidden competitions and override visibility
    admin_user_ids: FrozenSet[str] = Field(default_factory=frozenset)

    anonymous_name: str = Field("Anonymous", min_length=1, max_length=64)
    max_name_length: int = Field(255, ge=1, le=1024)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("admin_user_ids", mode="before")
    @classmethod
    def normalize_admin_ids(cls, v: Any) -> Any:
        if v is None:
            return frozenset()
        if isinstance(v, str):
            return frozenset(part.strip() for part in v.split(",") if part.strip())
        return v

    def is_admin(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id in self.admin_user_ids

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "EngineConfig":
        """Build a config from a plain mapping, raising ValidationError on bad values."""
        try:
            return cls(**dict(data or {}))
        except pydantic.ValidationError as e:
            logger.warning(f"Engine config validation failed: {e}")
            raise ValidationError(f"Invalid engine config: {str(e)}")


DEFAULT_CONFIG = EngineConfig()
