"""Visit pattern models."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class PatternType(str, Enum):
    """The single dimension of regularity a pattern captures."""

    DAY_PREFERENCE = "day_preference"
    TIME_PREFERENCE = "time_preference"
    DURATION_PREFERENCE = "duration_preference"
    FREQUENCY_PATTERN = "frequency_pattern"


class ConfidenceLevel(str, Enum):
    """Confidence tier derived from consistency score and sample size."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANKS[self]

    def at_least(self, other: "ConfidenceLevel") -> bool:
        """Return True if this tier is the same as or above `other`."""
        return self.rank >= other.rank


_CONFIDENCE_RANKS = {
    ConfidenceLevel.LOW: 0,
    ConfidenceLevel.MEDIUM: 1,
    ConfidenceLevel.HIGH: 2,
}


class VisitPattern(BaseModel):
    """A detected regularity for one (circle, visitor) pair."""

    id: Optional[UUID] = None
    circle_id: UUID
    visitor_id: UUID
    pattern_type: PatternType
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)  # 0 = Sunday
    preferred_start_time: Optional[time] = None
    preferred_duration_minutes: Optional[int] = Field(default=None, gt=0)
    visits_per_week: Optional[float] = Field(default=None, ge=0)
    occurrence_count: int = Field(ge=0)
    total_opportunities: int = Field(gt=0)
    consistency_score: float = Field(ge=0.0, le=1.0)
    confidence_level: ConfidenceLevel
    suggestion_count: int = Field(default=0, ge=0)
    acceptance_count: int = Field(default=0, ge=0)
    rejection_count: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_counts(self) -> "VisitPattern":
        if self.occurrence_count > self.total_opportunities:
            raise ValueError("occurrence_count cannot exceed total_opportunities")
        if self.acceptance_count + self.rejection_count > self.suggestion_count:
            raise ValueError(
                "acceptance_count + rejection_count cannot exceed suggestion_count"
            )
        return self

    @property
    def key(self) -> tuple:
        """Upsert key: counters follow a pattern across recomputes by this key."""
        return (self.circle_id, self.visitor_id, self.pattern_type, self.day_of_week)

    @property
    def trust(self) -> float:
        """Laplace-smoothed acceptance rate; only ever falls as rejections grow."""
        return (self.acceptance_count + 1) / (
            self.acceptance_count + self.rejection_count + 1
        )

    @property
    def priority_score(self) -> float:
        return self.consistency_score * self.trust


class AnalysisResult(BaseModel):
    """Summary of one analysis run for a circle."""

    circle_id: UUID
    window_start: date
    window_end: date
    visits_analyzed: int
    visitor_count: int
    pattern_count: int
    expired_suggestions: int = 0
