"""Services package exports."""

from touchpoints.services.care_store import CareStore, PostgresCareStore
from touchpoints.services.logging_service import configure_logging, get_logger
from touchpoints.services.pattern_service import PatternAnalyzer
from touchpoints.services.suggestion_service import SuggestionService

__all__ = [
    "CareStore",
    "PatternAnalyzer",
    "PostgresCareStore",
    "SuggestionService",
    "configure_logging",
    "get_logger",
]
