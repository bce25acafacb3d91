"""Visit models consumed by the pattern engine."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class VisitStatus(str, Enum):
    """Lifecycle status of a visit."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VisitRecord(BaseModel):
    """A visit to the patient, as read from the visit store."""

    id: UUID
    circle_id: UUID
    visitor_id: Optional[UUID] = None
    visit_date: date
    start_time: time
    end_time: time
    status: VisitStatus = VisitStatus.SCHEDULED
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        """Scheduled and completed visits count; cancelled ones never do."""
        return self.status != VisitStatus.CANCELLED

    @property
    def duration_minutes(self) -> int:
        start = self.start_time.hour * 60 + self.start_time.minute
        end = self.end_time.hour * 60 + self.end_time.minute
        return end - start
