"""Suggestion service: proposes visits from day patterns and learns from responses."""

from datetime import date, datetime, time, timedelta
from typing import Optional
from uuid import UUID

import structlog

from touchpoints.config import Settings, get_settings
from touchpoints.errors import SuggestionValidationError
from touchpoints.models.pattern import ConfidenceLevel, PatternType, VisitPattern
from touchpoints.models.suggestion import AcceptResult, VisitSuggestion
from touchpoints.models.visit import VisitRecord
from touchpoints.services.care_store import CareStore
from touchpoints.services.pattern_analysis import DAY_NAMES, week_start
from touchpoints.services.timeutil import add_minutes, circle_now, end_of_week, overlaps

logger = structlog.get_logger(__name__)

FALLBACK_VISITOR_NAME = "A family member"

CONFLICT_NOTE = "to avoid a scheduling conflict"
PASSED_NOTE = "because that time has already passed today"
LATE_NOTE = "so the visit ends the same day"


def format_reason(
    visitor_name: str,
    pattern: VisitPattern,
    start: time,
    preferred_start: Optional[time] = None,
    substitution_note: str = CONFLICT_NOTE,
) -> str:
    """Build the human-readable reason shown next to a suggestion."""
    reason = (
        f"{visitor_name} usually visits on {DAY_NAMES[pattern.day_of_week]}s "
        f"({pattern.occurrence_count} of the last {pattern.total_opportunities} weeks)."
    )
    if preferred_start is not None and preferred_start != start:
        reason += (
            f" Suggested {start:%H:%M} instead of {preferred_start:%H:%M}"
            f" {substitution_note}."
        )
    return reason


class SuggestionService:
    """Generates weekly visit suggestions and applies accept/reject feedback."""

    def __init__(self, store: CareStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    async def generate_suggestions(
        self, circle_id: UUID, now: Optional[datetime] = None
    ) -> list[VisitSuggestion]:
        """Propose up to `max_suggestions` conflict-free visits for this week.

        Only day patterns of medium or high confidence are considered, minus
        those suppressed by repeated rejection. Nothing is persisted here;
        suggestions reach the outcome log only when a user accepts or rejects
        them.
        """
        now = now or circle_now(self.settings.circle_timezone)
        today = now.date()
        first_day = week_start(today)
        last_day = first_day + timedelta(days=6)
        expires_at = end_of_week(now, first_day)

        patterns = await self.store.list_patterns(circle_id, ConfidenceLevel.MEDIUM)
        day_patterns = [
            p
            for p in patterns
            if p.pattern_type == PatternType.DAY_PREFERENCE
            and p.confidence_level.at_least(ConfidenceLevel.MEDIUM)
            and not self._suppressed(p)
        ]
        if not day_patterns:
            logger.info("suggestions_generated", circle_id=str(circle_id), count=0)
            return []

        visits = await self.store.fetch_visits(circle_id, first_day, last_day)
        issued = await self.store.list_issued_suggestions(circle_id, first_day, last_day)
        names = await self.store.fetch_member_names(circle_id)

        start_prefs, duration_prefs = self._visitor_preferences(patterns)
        taken = {(o.visitor_id, o.suggested_date) for o in issued}
        active_visits = [v for v in visits if v.is_active]

        candidates: list[tuple[VisitPattern, VisitSuggestion]] = []
        for pattern in day_patterns:
            target = first_day + timedelta(days=pattern.day_of_week)
            if target < today:
                continue
            if (pattern.visitor_id, target) in taken:
                continue

            day_visits = [v for v in active_visits if v.visit_date == target]
            if any(v.visitor_id == pattern.visitor_id for v in day_visits):
                continue

            preferred = start_prefs.get(pattern.visitor_id, self.settings.default_visit_start_time)
            duration = duration_prefs.get(
                pattern.visitor_id, self.settings.default_visit_duration_minutes
            )
            earliest = now.time() if target == today else None
            slot = self._find_slot(day_visits, preferred, duration, earliest)
            if slot is None:
                # No conflict-free slot: drop rather than offer an unacceptable one
                logger.debug(
                    "suggestion_dropped_no_slot",
                    circle_id=str(circle_id),
                    visitor_id=str(pattern.visitor_id),
                    suggested_date=target.isoformat(),
                )
                continue

            start, end = slot
            name = names.get(pattern.visitor_id, FALLBACK_VISITOR_NAME)
            suggestion = VisitSuggestion(
                circle_id=circle_id,
                pattern_id=pattern.id,
                visitor_id=pattern.visitor_id,
                visitor_name=name,
                suggested_date=target,
                suggested_start_time=start,
                suggested_end_time=end,
                suggestion_reason=format_reason(
                    name,
                    pattern,
                    start,
                    preferred,
                    self._substitution_note(preferred, duration, earliest),
                ),
                confidence_level=pattern.confidence_level,
                can_accept=True,
                alternate_time=start != preferred,
                expires_at=expires_at,
            )
            taken.add((pattern.visitor_id, target))
            candidates.append((pattern, suggestion))

        candidates.sort(
            key=lambda item: (
                -self._feedback_rank(item[0]),
                -item[0].priority_score,
                item[1].suggested_date,
                str(item[1].visitor_id),
            )
        )
        suggestions = [s for _, s in candidates[: self.settings.max_suggestions]]

        logger.info(
            "suggestions_generated",
            circle_id=str(circle_id),
            count=len(suggestions),
            candidates=len(candidates),
        )
        return suggestions

    def _feedback_rank(self, pattern: VisitPattern) -> int:
        """Confidence rank, one tier lower once rejections pull trust under the floor."""
        rank = pattern.confidence_level.rank
        if pattern.trust < self.settings.suggestion_trust_floor:
            rank -= 1
        return rank

    def _suppressed(self, pattern: VisitPattern) -> bool:
        return (
            pattern.rejection_count >= self.settings.suggestion_suppression_rejections
            and pattern.trust < self.settings.suggestion_trust_floor
        )

    def _substitution_note(
        self, preferred: time, duration: int, earliest: Optional[time]
    ) -> str:
        if earliest is not None and preferred <= earliest:
            return PASSED_NOTE
        if add_minutes(preferred, duration) is None:
            return LATE_NOTE
        return CONFLICT_NOTE

    def _visitor_preferences(
        self, patterns: list[VisitPattern]
    ) -> tuple[dict[UUID, time], dict[UUID, int]]:
        """Preferred start time and duration per visitor, from their own patterns."""
        starts: dict[UUID, time] = {}
        durations: dict[UUID, int] = {}
        for p in patterns:
            if p.pattern_type == PatternType.TIME_PREFERENCE and p.preferred_start_time:
                starts[p.visitor_id] = p.preferred_start_time
            elif (
                p.pattern_type == PatternType.DURATION_PREFERENCE
                and p.preferred_duration_minutes
            ):
                durations[p.visitor_id] = p.preferred_duration_minutes
        return starts, durations

    def _find_slot(
        self,
        day_visits: list[VisitRecord],
        preferred: time,
        duration: int,
        earliest: Optional[time] = None,
    ) -> Optional[tuple[time, time]]:
        """First free window: the preferred start, then each alternate slot in order."""
        for start in [preferred, *self.settings.alternate_visit_slots_list]:
            if earliest is not None and start <= earliest:
                continue
            end = add_minutes(start, duration)
            if end is None:
                continue
            if not any(overlaps(start, end, v.start_time, v.end_time) for v in day_visits):
                return start, end
        return None

    def _validate(self, suggestion: VisitSuggestion, circle_id: UUID) -> None:
        if suggestion.circle_id != circle_id:
            raise SuggestionValidationError("Suggestion belongs to a different circle")
        if suggestion.visitor_id is None or suggestion.pattern_id is None:
            raise SuggestionValidationError("Suggestion is missing its visitor or pattern")
        if suggestion.suggested_end_time <= suggestion.suggested_start_time:
            raise SuggestionValidationError("Suggested visit must end after it starts")
        if not suggestion.can_accept:
            raise SuggestionValidationError("Suggestion cannot be accepted")

    def _expiry(self, suggested_date: date, now: datetime) -> datetime:
        return end_of_week(now, week_start(suggested_date))

    async def accept_suggestion(
        self,
        suggestion: VisitSuggestion,
        circle_id: UUID,
        acting_user_id: UUID,
        now: Optional[datetime] = None,
    ) -> AcceptResult:
        """Turn a suggestion into a scheduled visit.

        The visit, the accepted outcome row and the pattern counters are
        written in one transaction: either all exist afterwards or none do.

        Raises:
            SuggestionValidationError: If the suggestion is malformed, in the past,
                already accepted, or its pattern was replaced by a re-analysis
            ConflictError: If the slot was taken in the meantime
            StorageError: On any other storage failure
        """
        self._validate(suggestion, circle_id)
        now = now or circle_now(self.settings.circle_timezone)
        if suggestion.suggested_date < now.date():
            raise SuggestionValidationError("Suggested date is in the past")

        visit_id = await self.store.record_acceptance(
            suggestion, acting_user_id, self._expiry(suggestion.suggested_date, now)
        )

        logger.info(
            "suggestion_accepted",
            circle_id=str(circle_id),
            suggestion_id=str(suggestion.id),
            pattern_id=str(suggestion.pattern_id),
            visitor_id=str(suggestion.visitor_id),
            visit_id=str(visit_id),
            acting_user_id=str(acting_user_id),
        )
        return AcceptResult(suggestion_id=suggestion.id, visit_id=visit_id)

    async def reject_suggestion(
        self,
        suggestion: VisitSuggestion,
        circle_id: UUID,
        now: Optional[datetime] = None,
    ) -> None:
        """Record a rejection and count it against the source pattern."""
        self._validate(suggestion, circle_id)
        now = now or circle_now(self.settings.circle_timezone)

        await self.store.record_rejection(
            suggestion, self._expiry(suggestion.suggested_date, now)
        )

        logger.info(
            "suggestion_rejected",
            circle_id=str(circle_id),
            suggestion_id=str(suggestion.id),
            pattern_id=str(suggestion.pattern_id),
            visitor_id=str(suggestion.visitor_id),
        )
