"""Pattern service for detecting and storing per-visitor visit patterns."""

from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

import structlog

from touchpoints.config import Settings, get_settings
from touchpoints.errors import NoHistoryError, PatternEngineError
from touchpoints.models.pattern import AnalysisResult, ConfidenceLevel, VisitPattern
from touchpoints.services.care_store import CareStore
from touchpoints.services.pattern_analysis import PatternDetector
from touchpoints.services.timeutil import circle_now

logger = structlog.get_logger(__name__)


class PatternAnalyzer:
    """Recomputes a circle's visit patterns from its recent history."""

    def __init__(self, store: CareStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    def _detector(self, window_days: int) -> PatternDetector:
        s = self.settings
        return PatternDetector(
            window_days=window_days,
            min_occurrences=s.pattern_min_occurrences,
            time_bucket_minutes=s.time_bucket_minutes,
            duration_bucket_minutes=s.duration_bucket_minutes,
            confidence_thresholds={
                "high_score": s.high_confidence_score,
                "high_occurrences": s.high_confidence_occurrences,
                "medium_score": s.medium_confidence_score,
                "medium_occurrences": s.medium_confidence_occurrences,
            },
        )

    async def analyze_patterns(
        self,
        circle_id: UUID,
        history_window_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> AnalysisResult:
        """Analyze a circle's visit history and replace its stored patterns.

        The whole window is read in one query, patterns are computed in memory
        and written back in a single merge-by-key transaction that preserves
        feedback counters. Stale pending suggestions are expired in the same
        transaction.

        Raises:
            NoHistoryError: If the circle has no scheduled/completed visits in the window
            StorageError: If any read or write fails; nothing is partially written
        """
        window_days = history_window_days
        if window_days is None:
            window_days = self.settings.pattern_history_window_days
        if window_days < 1:
            raise ValueError("history_window_days must be positive")

        now = now or circle_now(self.settings.circle_timezone)
        today = now.date()
        window_start = today - timedelta(days=window_days)

        visits = await self.store.fetch_visits(circle_id, window_start, today)
        eligible = [v for v in visits if v.is_active and v.visitor_id is not None]
        if not eligible:
            logger.info(
                "pattern_analysis_no_history",
                circle_id=str(circle_id),
                window_days=window_days,
            )
            raise NoHistoryError(circle_id, window_days)

        patterns = self._detector(window_days).detect(circle_id, eligible)
        stored, expired = await self.store.replace_patterns(
            circle_id, patterns, expire_before=now
        )

        visitor_count = len({v.visitor_id for v in eligible})
        logger.info(
            "patterns_analyzed",
            circle_id=str(circle_id),
            window_days=window_days,
            visits_analyzed=len(eligible),
            visitor_count=visitor_count,
            pattern_count=len(stored),
            expired_suggestions=expired,
        )

        return AnalysisResult(
            circle_id=circle_id,
            window_start=window_start,
            window_end=today,
            visits_analyzed=len(eligible),
            visitor_count=visitor_count,
            pattern_count=len(stored),
            expired_suggestions=expired,
        )

    async def analyze_circles(
        self,
        circle_ids: Iterable[UUID],
        history_window_days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> dict[UUID, AnalysisResult | PatternEngineError]:
        """Analyze several circles independently.

        A failure for one circle is recorded in its slot of the result and
        never stops the others.
        """
        results: dict[UUID, AnalysisResult | PatternEngineError] = {}
        for circle_id in circle_ids:
            try:
                results[circle_id] = await self.analyze_patterns(
                    circle_id, history_window_days, now
                )
            except PatternEngineError as e:
                logger.warning(
                    "circle_analysis_failed",
                    circle_id=str(circle_id),
                    error_type=type(e).__name__,
                    error=str(e),
                )
                results[circle_id] = e
        return results

    async def list_patterns(
        self,
        circle_id: UUID,
        min_confidence: ConfidenceLevel = ConfidenceLevel.LOW,
    ) -> list[VisitPattern]:
        """List stored patterns for a circle at or above a confidence tier."""
        return await self.store.list_patterns(circle_id, min_confidence)
