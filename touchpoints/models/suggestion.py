"""Visit suggestion models."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from touchpoints.models.pattern import ConfidenceLevel


class SuggestionStatus(str, Enum):
    """Status of a suggestion in the outcome log."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class VisitSuggestion(BaseModel):
    """A proposed, not yet committed visit derived from a day pattern."""

    id: UUID = Field(default_factory=uuid4)
    circle_id: UUID
    pattern_id: UUID
    visitor_id: UUID
    visitor_name: Optional[str] = None
    suggested_date: date
    suggested_start_time: time
    suggested_end_time: time
    suggestion_reason: str
    confidence_level: ConfidenceLevel
    can_accept: bool = True
    alternate_time: bool = False
    expires_at: Optional[datetime] = None


class SuggestionOutcome(BaseModel):
    """A row of the append-only suggestion/outcome log."""

    id: UUID
    suggestion_id: Optional[UUID] = None
    circle_id: UUID
    visitor_id: UUID
    pattern_id: Optional[UUID] = None
    suggested_date: date
    suggested_start_time: time
    suggested_end_time: time
    suggestion_reason: str = ""
    status: SuggestionStatus
    visit_id: Optional[UUID] = None
    responded_at: Optional[datetime] = None
    expires_at: datetime
    created_at: Optional[datetime] = None


class AcceptResult(BaseModel):
    """Result of accepting a suggestion."""

    suggestion_id: UUID
    visit_id: UUID
