"""Models package exports."""

from touchpoints.models.pattern import (
    AnalysisResult,
    ConfidenceLevel,
    PatternType,
    VisitPattern,
)
from touchpoints.models.suggestion import (
    AcceptResult,
    SuggestionOutcome,
    SuggestionStatus,
    VisitSuggestion,
)
from touchpoints.models.visit import VisitRecord, VisitStatus

__all__ = [
    "AcceptResult",
    "AnalysisResult",
    "ConfidenceLevel",
    "PatternType",
    "SuggestionOutcome",
    "SuggestionStatus",
    "VisitPattern",
    "VisitRecord",
    "VisitStatus",
    "VisitSuggestion",
]
