"""Pattern API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
import structlog

from touchpoints.api.dependencies import get_current_user_id, get_pattern_analyzer
from touchpoints.errors import NoHistoryError, StorageError
from touchpoints.models.pattern import ConfidenceLevel
from touchpoints.services.pattern_service import PatternAnalyzer

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/circles/{circle_id}/patterns", tags=["Patterns"])


@router.post("/analyze")
async def analyze_patterns(
    circle_id: UUID,
    window_days: int | None = Query(default=None, ge=7, le=365),
    current_user_id: UUID = Depends(get_current_user_id),
    analyzer: PatternAnalyzer = Depends(get_pattern_analyzer),
) -> dict:
    """Recompute the circle's visit patterns from recent history."""
    try:
        result = await analyzer.analyze_patterns(circle_id, window_days)
    except NoHistoryError as e:
        return {
            "status": "no_history",
            "circle_id": str(circle_id),
            "window_days": e.window_days,
        }
    except StorageError:
        raise HTTPException(status_code=503, detail="Pattern analysis is temporarily unavailable")

    return {"status": "analyzed", **result.model_dump(mode="json")}


@router.get("")
async def list_patterns(
    circle_id: UUID,
    min_confidence: ConfidenceLevel = Query(default=ConfidenceLevel.LOW),
    current_user_id: UUID = Depends(get_current_user_id),
    analyzer: PatternAnalyzer = Depends(get_pattern_analyzer),
) -> dict:
    """List stored patterns for a circle."""
    try:
        patterns = await analyzer.list_patterns(circle_id, min_confidence)
    except StorageError:
        raise HTTPException(status_code=503, detail="Patterns are temporarily unavailable")

    return {
        "items": [p.model_dump(mode="json") for p in patterns],
        "total": len(patterns),
    }
