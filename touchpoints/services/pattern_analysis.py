"""Pure pattern detection over a snapshot of visit history.

Nothing in this module touches storage; `PatternAnalyzer` feeds it one
snapshot of visits and persists whatever it returns.
"""

from collections import Counter, defaultdict
from datetime import date, time, timedelta
from typing import Iterable, Optional
from uuid import UUID

from touchpoints.models.pattern import ConfidenceLevel, PatternType, VisitPattern
from touchpoints.models.visit import VisitRecord

DAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


def day_index(d: date) -> int:
    """Day of week with Sunday = 0 ... Saturday = 6."""
    return (d.weekday() + 1) % 7


def week_start(d: date) -> date:
    """Sunday that opens the week containing `d`."""
    return d - timedelta(days=day_index(d))


def weeks_in_window(window_days: int) -> int:
    return max(1, window_days // 7)


def classify_confidence(
    consistency_score: float,
    occurrence_count: int,
    *,
    high_score: float = 0.6,
    high_occurrences: int = 3,
    medium_score: float = 0.4,
    medium_occurrences: int = 2,
) -> ConfidenceLevel:
    """Map (consistency, sample size) to a confidence tier.

    High needs both a strong score and enough samples; medium needs either.
    """
    if consistency_score >= high_score and occurrence_count >= high_occurrences:
        return ConfidenceLevel.HIGH
    if consistency_score >= medium_score or occurrence_count >= medium_occurrences:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def _mode(counter: Counter) -> tuple:
    """Most common key, ties resolved by the smallest key."""
    return min(counter.items(), key=lambda item: (-item[1], item[0]))


def _bucket_time(t: time, bucket_minutes: int) -> time:
    minutes = t.hour * 60 + t.minute
    bucketed = minutes - minutes % bucket_minutes
    return time(bucketed // 60, bucketed % 60)


def _bucket_duration(minutes: int, bucket_minutes: int) -> int:
    """Nearest bucket, halves rounding up; never below one bucket."""
    buckets = max(1, (minutes + bucket_minutes // 2) // bucket_minutes)
    return buckets * bucket_minutes


class PatternDetector:
    """Derives per-visitor patterns from one window of visit history."""

    def __init__(
        self,
        window_days: int,
        min_occurrences: int = 2,
        time_bucket_minutes: int = 60,
        duration_bucket_minutes: int = 30,
        confidence_thresholds: Optional[dict] = None,
    ):
        self.window_days = window_days
        self.weeks = weeks_in_window(window_days)
        self.min_occurrences = min_occurrences
        self.time_bucket_minutes = time_bucket_minutes
        self.duration_bucket_minutes = duration_bucket_minutes
        self.confidence_thresholds = confidence_thresholds or {}

    def detect(self, circle_id: UUID, visits: Iterable[VisitRecord]) -> list[VisitPattern]:
        """Detect patterns for every visitor in the snapshot.

        Cancelled visits and visits without a visitor are ignored. The output
        is sorted by visitor then pattern type so repeated runs over the same
        snapshot produce identical lists.
        """
        by_visitor: dict[UUID, list[VisitRecord]] = defaultdict(list)
        for visit in visits:
            if visit.is_active and visit.visitor_id is not None:
                by_visitor[visit.visitor_id].append(visit)

        patterns: list[VisitPattern] = []
        for visitor_id in sorted(by_visitor, key=str):
            visitor_visits = by_visitor[visitor_id]
            candidates = [
                self._day_preference(circle_id, visitor_id, visitor_visits),
                self._time_preference(circle_id, visitor_id, visitor_visits),
                self._duration_preference(circle_id, visitor_id, visitor_visits),
                self._frequency_pattern(circle_id, visitor_id, visitor_visits),
            ]
            patterns.extend(
                p
                for p in candidates
                if p is not None and p.occurrence_count >= self.min_occurrences
            )
        return patterns

    def _build(
        self,
        circle_id: UUID,
        visitor_id: UUID,
        pattern_type: PatternType,
        occurrence_count: int,
        total_opportunities: int,
        **fields,
    ) -> VisitPattern:
        total_opportunities = max(total_opportunities, occurrence_count, 1)
        score = round(occurrence_count / total_opportunities, 4)
        return VisitPattern(
            circle_id=circle_id,
            visitor_id=visitor_id,
            pattern_type=pattern_type,
            occurrence_count=occurrence_count,
            total_opportunities=total_opportunities,
            consistency_score=score,
            confidence_level=classify_confidence(
                score, occurrence_count, **self.confidence_thresholds
            ),
            **fields,
        )

    def _day_preference(self, circle_id, visitor_id, visits) -> Optional[VisitPattern]:
        days = Counter(day_index(v.visit_date) for v in visits)
        day, count = _mode(days)
        return self._build(
            circle_id,
            visitor_id,
            PatternType.DAY_PREFERENCE,
            occurrence_count=count,
            total_opportunities=self.weeks,
            day_of_week=day,
        )

    def _time_preference(self, circle_id, visitor_id, visits) -> Optional[VisitPattern]:
        buckets = Counter(_bucket_time(v.start_time, self.time_bucket_minutes) for v in visits)
        start, count = _mode(buckets)
        return self._build(
            circle_id,
            visitor_id,
            PatternType.TIME_PREFERENCE,
            occurrence_count=count,
            total_opportunities=len(visits),
            preferred_start_time=start,
        )

    def _duration_preference(self, circle_id, visitor_id, visits) -> Optional[VisitPattern]:
        durations = [v.duration_minutes for v in visits if v.duration_minutes > 0]
        if not durations:
            return None
        buckets = Counter(_bucket_duration(d, self.duration_bucket_minutes) for d in durations)
        minutes, count = _mode(buckets)
        return self._build(
            circle_id,
            visitor_id,
            PatternType.DURATION_PREFERENCE,
            occurrence_count=count,
            total_opportunities=len(durations),
            preferred_duration_minutes=minutes,
        )

    def _frequency_pattern(self, circle_id, visitor_id, visits) -> Optional[VisitPattern]:
        active_weeks = {week_start(v.visit_date) for v in visits}
        return self._build(
            circle_id,
            visitor_id,
            PatternType.FREQUENCY_PATTERN,
            occurrence_count=len(active_weeks),
            total_opportunities=self.weeks,
            visits_per_week=round(len(visits) / self.weeks, 2),
        )
