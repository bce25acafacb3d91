"""Suggestion API endpoints.

Suggestions are an optional enhancement: read endpoints degrade to an empty
list instead of failing, so visit scheduling keeps working without them.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
import structlog

from touchpoints.api.dependencies import (
    get_current_user_id,
    get_pattern_analyzer,
    get_suggestion_service,
)
from touchpoints.errors import (
    ConflictError,
    NoHistoryError,
    PatternEngineError,
    StorageError,
    SuggestionValidationError,
)
from touchpoints.models.suggestion import VisitSuggestion
from touchpoints.services.pattern_service import PatternAnalyzer
from touchpoints.services.suggestion_service import SuggestionService

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/circles/{circle_id}/suggestions", tags=["Suggestions"])


def _unavailable(circle_id: UUID, error: PatternEngineError) -> dict:
    logger.warning(
        "suggestions_unavailable",
        circle_id=str(circle_id),
        error_type=type(error).__name__,
        error=str(error),
    )
    return {"items": [], "available": False}


def _raise_for_resolution_error(error: PatternEngineError) -> None:
    if isinstance(error, SuggestionValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(error))
    if isinstance(error, ConflictError):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="That slot was just taken. Refresh suggestions and try again.",
        )
    if isinstance(error, StorageError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Could not save your response. Please try again.",
        )
    raise error


@router.get("")
async def list_suggestions(
    circle_id: UUID,
    current_user_id: UUID = Depends(get_current_user_id),
    service: SuggestionService = Depends(get_suggestion_service),
) -> dict:
    """Suggestions for the current week."""
    try:
        suggestions = await service.generate_suggestions(circle_id)
    except PatternEngineError as e:
        return _unavailable(circle_id, e)

    return {
        "items": [s.model_dump(mode="json") for s in suggestions],
        "available": True,
    }


@router.post("/refresh")
async def refresh_suggestions(
    circle_id: UUID,
    current_user_id: UUID = Depends(get_current_user_id),
    analyzer: PatternAnalyzer = Depends(get_pattern_analyzer),
    service: SuggestionService = Depends(get_suggestion_service),
) -> dict:
    """Re-analyze patterns, then generate this week's suggestions."""
    try:
        await analyzer.analyze_patterns(circle_id)
    except NoHistoryError:
        return {"items": [], "available": True}
    except PatternEngineError as e:
        return _unavailable(circle_id, e)

    try:
        suggestions = await service.generate_suggestions(circle_id)
    except PatternEngineError as e:
        return _unavailable(circle_id, e)

    return {
        "items": [s.model_dump(mode="json") for s in suggestions],
        "available": True,
    }


@router.post("/accept", status_code=status.HTTP_201_CREATED)
async def accept_suggestion(
    circle_id: UUID,
    suggestion: VisitSuggestion,
    current_user_id: UUID = Depends(get_current_user_id),
    service: SuggestionService = Depends(get_suggestion_service),
) -> dict:
    """Schedule the suggested visit."""
    try:
        result = await service.accept_suggestion(suggestion, circle_id, current_user_id)
    except PatternEngineError as e:
        _raise_for_resolution_error(e)

    return result.model_dump(mode="json")


@router.post("/reject")
async def reject_suggestion(
    circle_id: UUID,
    suggestion: VisitSuggestion,
    current_user_id: UUID = Depends(get_current_user_id),
    service: SuggestionService = Depends(get_suggestion_service),
) -> dict:
    """Dismiss a suggestion and count it against its pattern."""
    try:
        await service.reject_suggestion(suggestion, circle_id)
    except PatternEngineError as e:
        _raise_for_resolution_error(e)

    return {"status": "rejected", "suggestion_id": str(suggestion.id)}
