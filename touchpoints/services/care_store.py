"""Storage boundary for visits, patterns and the suggestion outcome log."""

import asyncio
from contextlib import contextmanager
from datetime import date, datetime, timezone
from typing import Optional, Protocol
from uuid import UUID, uuid4

import asyncpg
import structlog

from touchpoints.errors import (
    ConflictError,
    PatternEngineError,
    StalePatternError,
    StorageError,
    SuggestionAlreadyResolvedError,
)
from touchpoints.models.pattern import ConfidenceLevel, VisitPattern
from touchpoints.models.suggestion import (
    SuggestionOutcome,
    SuggestionStatus,
    VisitSuggestion,
)
from touchpoints.models.visit import VisitRecord

logger = structlog.get_logger(__name__)


class CareStore(Protocol):
    """What the analyzer and generator need from storage."""

    async def fetch_visits(
        self, circle_id: UUID, start_date: date, end_date: date
    ) -> list[VisitRecord]: ...

    async def fetch_member_names(self, circle_id: UUID) -> dict[UUID, str]: ...

    async def replace_patterns(
        self,
        circle_id: UUID,
        patterns: list[VisitPattern],
        expire_before: Optional[datetime] = None,
    ) -> tuple[list[VisitPattern], int]: ...

    async def list_patterns(
        self, circle_id: UUID, min_confidence: ConfidenceLevel = ConfidenceLevel.LOW
    ) -> list[VisitPattern]: ...

    async def list_issued_suggestions(
        self, circle_id: UUID, start_date: date, end_date: date
    ) -> list[SuggestionOutcome]: ...

    async def record_acceptance(
        self, suggestion: VisitSuggestion, acting_user_id: UUID, expires_at: datetime
    ) -> UUID: ...

    async def record_rejection(
        self, suggestion: VisitSuggestion, expires_at: datetime
    ) -> None: ...


@contextmanager
def storage_call(operation: str, circle_id: Optional[UUID] = None):
    """Convert driver failures into typed engine errors.

    Engine errors raised inside the block pass through untouched.
    """
    try:
        yield
    except PatternEngineError:
        raise
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as e:
        logger.error(
            "storage_operation_failed",
            operation=operation,
            circle_id=str(circle_id) if circle_id else None,
            error=str(e),
        )
        raise StorageError(operation, e) from e


def rows_affected(command_tag: str) -> int:
    """Row count from an asyncpg command tag such as "UPDATE 3" or "INSERT 0 1"."""
    return int(command_tag.split()[-1]) if command_tag else 0


PATTERN_COLUMNS = """
    id, circle_id, visitor_id, pattern_type, day_of_week, preferred_start_time,
    preferred_duration_minutes, visits_per_week, occurrence_count, total_opportunities,
    consistency_score, confidence_level, suggestion_count, acceptance_count,
    rejection_count, created_at, updated_at
"""

OUTCOME_COLUMNS = """
    id, suggestion_id, circle_id, visitor_id, pattern_id, suggested_date,
    suggested_start_time, suggested_end_time, suggestion_reason, status, visit_id,
    responded_at, expires_at, created_at
"""


class PostgresCareStore:
    """asyncpg implementation of `CareStore`.

    The pool is handed in by whoever owns its lifecycle; this class never
    creates or closes it.
    """

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def fetch_visits(
        self, circle_id: UUID, start_date: date, end_date: date
    ) -> list[VisitRecord]:
        """Return every visit of the circle in [start_date, end_date] in one query."""
        with storage_call("fetch_visits", circle_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT id, circle_id, visitor_id, visit_date, start_time, end_time,
                           status, created_at
                    FROM visits
                    WHERE circle_id = $1 AND visit_date BETWEEN $2 AND $3
                    ORDER BY visit_date, start_time
                    """,
                    circle_id,
                    start_date,
                    end_date,
                )
        return [VisitRecord(**dict(row)) for row in rows]

    async def fetch_member_names(self, circle_id: UUID) -> dict[UUID, str]:
        with storage_call("fetch_member_names", circle_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT cm.user_id, u.full_name
                    FROM circle_members cm
                    JOIN users u ON u.id = cm.user_id
                    WHERE cm.circle_id = $1
                    """,
                    circle_id,
                )
        return {row["user_id"]: row["full_name"] for row in rows}

    async def replace_patterns(
        self,
        circle_id: UUID,
        patterns: list[VisitPattern],
        expire_before: Optional[datetime] = None,
    ) -> tuple[list[VisitPattern], int]:
        """Merge freshly computed patterns into the store by key.

        Existing rows keep their id and feedback counters; rows whose key was
        not produced by this run are removed. When `expire_before` is given,
        pending suggestion rows due by then are expired in the same transaction.
        The circle never has a moment without patterns and never a half-written
        set.

        Returns:
            The stored patterns and the number of suggestion rows expired
        """
        now = datetime.now(timezone.utc)
        stored: list[VisitPattern] = []
        expired = 0

        with storage_call("replace_patterns", circle_id):
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    for pattern in patterns:
                        row = await conn.fetchrow(
                            f"""
                            INSERT INTO visit_patterns
                            (id, circle_id, visitor_id, pattern_type, day_of_week,
                             preferred_start_time, preferred_duration_minutes, visits_per_week,
                             occurrence_count, total_opportunities, consistency_score,
                             confidence_level, created_at, updated_at)
                            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $13)
                            ON CONFLICT (circle_id, visitor_id, pattern_type, (COALESCE(day_of_week, -1)))
                            DO UPDATE SET
                                preferred_start_time = EXCLUDED.preferred_start_time,
                                preferred_duration_minutes = EXCLUDED.preferred_duration_minutes,
                                visits_per_week = EXCLUDED.visits_per_week,
                                occurrence_count = EXCLUDED.occurrence_count,
                                total_opportunities = EXCLUDED.total_opportunities,
                                consistency_score = EXCLUDED.consistency_score,
                                confidence_level = EXCLUDED.confidence_level,
                                updated_at = EXCLUDED.updated_at
                            RETURNING {PATTERN_COLUMNS}
                            """,
                            uuid4(),
                            circle_id,
                            pattern.visitor_id,
                            pattern.pattern_type.value,
                            pattern.day_of_week,
                            pattern.preferred_start_time,
                            pattern.preferred_duration_minutes,
                            pattern.visits_per_week,
                            pattern.occurrence_count,
                            pattern.total_opportunities,
                            pattern.consistency_score,
                            pattern.confidence_level.value,
                            now,
                        )
                        stored.append(VisitPattern(**dict(row)))

                    deleted = await conn.execute(
                        """
                        DELETE FROM visit_patterns
                        WHERE circle_id = $1 AND NOT (id = ANY($2::uuid[]))
                        """,
                        circle_id,
                        [p.id for p in stored],
                    )

                    if expire_before is not None:
                        expired = rows_affected(
                            await conn.execute(
                                """
                                UPDATE pattern_suggestions
                                SET status = 'expired'
                                WHERE circle_id = $1 AND status = 'pending' AND expires_at <= $2
                                """,
                                circle_id,
                                expire_before,
                            )
                        )

        logger.debug(
            "patterns_replaced",
            circle_id=str(circle_id),
            upserted=len(stored),
            deleted=rows_affected(deleted),
            expired=expired,
        )
        return stored, expired

    async def list_patterns(
        self, circle_id: UUID, min_confidence: ConfidenceLevel = ConfidenceLevel.LOW
    ) -> list[VisitPattern]:
        levels = [level.value for level in ConfidenceLevel if level.at_least(min_confidence)]

        with storage_call("list_patterns", circle_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {PATTERN_COLUMNS}
                    FROM visit_patterns
                    WHERE circle_id = $1 AND confidence_level = ANY($2::text[])
                    ORDER BY consistency_score DESC, occurrence_count DESC
                    """,
                    circle_id,
                    levels,
                )
        return [VisitPattern(**dict(row)) for row in rows]

    async def list_issued_suggestions(
        self, circle_id: UUID, start_date: date, end_date: date
    ) -> list[SuggestionOutcome]:
        """Live (pending, accepted or rejected) log rows for dates in the range."""
        with storage_call("list_issued_suggestions", circle_id):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {OUTCOME_COLUMNS}
                    FROM pattern_suggestions
                    WHERE circle_id = $1 AND suggested_date BETWEEN $2 AND $3
                    AND status <> 'expired'
                    """,
                    circle_id,
                    start_date,
                    end_date,
                )
        return [SuggestionOutcome(**dict(row)) for row in rows]

    async def record_acceptance(
        self, suggestion: VisitSuggestion, acting_user_id: UUID, expires_at: datetime
    ) -> UUID:
        """Create the visit, log the acceptance and bump counters atomically.

        Raises:
            SuggestionAlreadyResolvedError: If this suggestion was accepted before
            StalePatternError: If the source pattern is gone from the circle
            ConflictError: If the slot overlaps a non-cancelled visit
            StorageError: On any other storage failure (nothing is written)
        """
        now = datetime.now(timezone.utc)
        visit_id = uuid4()
        circle_id = suggestion.circle_id

        with storage_call("record_acceptance", circle_id):
            try:
                async with self.pool.acquire() as conn:
                    async with conn.transaction():
                        await self._ensure_not_accepted(conn, suggestion)
                        clash = await conn.fetchval(
                            """
                            SELECT id FROM visits
                            WHERE circle_id = $1 AND visit_date = $2 AND status <> 'cancelled'
                            AND start_time < $4 AND $3 < end_time
                            LIMIT 1
                            """,
                            circle_id,
                            suggestion.suggested_date,
                            suggestion.suggested_start_time,
                            suggestion.suggested_end_time,
                        )
                        if clash is not None:
                            raise ConflictError(circle_id, suggestion.suggested_date)

                        await conn.execute(
                            """
                            INSERT INTO visits
                            (id, circle_id, visitor_id, visit_date, start_time, end_time,
                             status, created_by, created_at)
                            VALUES ($1, $2, $3, $4, $5, $6, 'scheduled', $7, $8)
                            """,
                            visit_id,
                            circle_id,
                            suggestion.visitor_id,
                            suggestion.suggested_date,
                            suggestion.suggested_start_time,
                            suggestion.suggested_end_time,
                            acting_user_id,
                            now,
                        )
                        await self._log_outcome(
                            conn, suggestion, SuggestionStatus.ACCEPTED, expires_at, now, visit_id
                        )
                        await self._bump_counter(conn, suggestion, "acceptance_count")
            except asyncpg.exceptions.ExclusionViolationError as e:
                # A concurrent accept won the race past the pre-check
                raise ConflictError(circle_id, suggestion.suggested_date) from e
            except asyncpg.exceptions.UniqueViolationError as e:
                # Same suggestion accepted concurrently from another session
                raise SuggestionAlreadyResolvedError(suggestion.id) from e

        return visit_id

    async def record_rejection(
        self, suggestion: VisitSuggestion, expires_at: datetime
    ) -> None:
        """Log the rejection and bump counters atomically.

        Raises:
            SuggestionAlreadyResolvedError: If this suggestion was accepted before
            StalePatternError: If the source pattern is gone from the circle
        """
        now = datetime.now(timezone.utc)

        with storage_call("record_rejection", suggestion.circle_id):
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await self._ensure_not_accepted(conn, suggestion)
                    await self._log_outcome(
                        conn, suggestion, SuggestionStatus.REJECTED, expires_at, now
                    )
                    await self._bump_counter(conn, suggestion, "rejection_count")

    async def _ensure_not_accepted(self, conn, suggestion: VisitSuggestion) -> None:
        accepted = await conn.fetchval(
            """
            SELECT id FROM pattern_suggestions
            WHERE suggestion_id = $1 AND status = 'accepted'
            LIMIT 1
            """,
            suggestion.id,
        )
        if accepted is not None:
            raise SuggestionAlreadyResolvedError(suggestion.id)

    async def _bump_counter(self, conn, suggestion: VisitSuggestion, counter: str) -> None:
        """Increment `counter` and suggestion_count; raise if the pattern is gone."""
        result = await conn.execute(
            f"""
            UPDATE visit_patterns
            SET {counter} = {counter} + 1,
                suggestion_count = suggestion_count + 1
            WHERE id = $1 AND circle_id = $2
            """,
            suggestion.pattern_id,
            suggestion.circle_id,
        )
        if rows_affected(result) == 0:
            raise StalePatternError(suggestion.pattern_id)

    async def _log_outcome(
        self,
        conn,
        suggestion: VisitSuggestion,
        status: SuggestionStatus,
        expires_at: datetime,
        now: datetime,
        visit_id: Optional[UUID] = None,
    ) -> None:
        await conn.execute(
            """
            INSERT INTO pattern_suggestions
            (id, suggestion_id, circle_id, visitor_id, pattern_id, suggested_date,
             suggested_start_time, suggested_end_time, suggestion_reason, status,
             visit_id, responded_at, expires_at, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $12)
            """,
            uuid4(),
            suggestion.id,
            suggestion.circle_id,
            suggestion.visitor_id,
            suggestion.pattern_id,
            suggestion.suggested_date,
            suggestion.suggested_start_time,
            suggestion.suggested_end_time,
            suggestion.suggestion_reason,
            status.value,
            visit_id,
            now,
            expires_at,
        )
