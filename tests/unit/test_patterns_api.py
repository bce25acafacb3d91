"""Unit tests for pattern API endpoints."""

from datetime import date
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from touchpoints.api.dependencies import get_current_user_id, get_pattern_analyzer
from touchpoints.api.patterns import router
from touchpoints.errors import NoHistoryError, StorageError
from touchpoints.models.pattern import (
    AnalysisResult,
    ConfidenceLevel,
    PatternType,
    VisitPattern,
)


@pytest.fixture
def circle_id():
    return uuid4()


@pytest.fixture
def mock_analyzer():
    return AsyncMock()


@pytest.fixture
def client(mock_analyzer):
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_current_user_id] = lambda: uuid4()
    app.dependency_overrides[get_pattern_analyzer] = lambda: mock_analyzer
    return TestClient(app)


class TestAnalyzePatterns:
    def test_returns_analysis_summary(self, client, mock_analyzer, circle_id):
        mock_analyzer.analyze_patterns.return_value = AnalysisResult(
            circle_id=circle_id,
            window_start=date(2026, 9, 19),
            window_end=date(2026, 10, 19),
            visits_analyzed=4,
            visitor_count=1,
            pattern_count=4,
        )

        response = client.post(f"/circles/{circle_id}/patterns/analyze?window_days=30")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "analyzed"
        assert data["pattern_count"] == 4
        mock_analyzer.analyze_patterns.assert_awaited_once_with(circle_id, 30)

    def test_no_history_is_not_an_error(self, client, mock_analyzer, circle_id):
        mock_analyzer.analyze_patterns.side_effect = NoHistoryError(circle_id, 30)

        response = client.post(f"/circles/{circle_id}/patterns/analyze")

        assert response.status_code == 200
        assert response.json()["status"] == "no_history"

    def test_storage_failure_returns_503(self, client, mock_analyzer, circle_id):
        mock_analyzer.analyze_patterns.side_effect = StorageError("fetch_visits")

        response = client.post(f"/circles/{circle_id}/patterns/analyze")

        assert response.status_code == 503

    def test_window_must_be_at_least_a_week(self, client, circle_id):
        response = client.post(f"/circles/{circle_id}/patterns/analyze?window_days=3")

        assert response.status_code == 422


class TestListPatterns:
    def test_lists_patterns_with_filter(self, client, mock_analyzer, circle_id):
        mock_analyzer.list_patterns.return_value = [
            VisitPattern(
                id=uuid4(),
                circle_id=circle_id,
                visitor_id=uuid4(),
                pattern_type=PatternType.DAY_PREFERENCE,
                day_of_week=2,
                occurrence_count=4,
                total_opportunities=4,
                consistency_score=1.0,
                confidence_level=ConfidenceLevel.HIGH,
            )
        ]

        response = client.get(f"/circles/{circle_id}/patterns?min_confidence=medium")

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["items"][0]["pattern_type"] == "day_preference"
        mock_analyzer.list_patterns.assert_awaited_once_with(circle_id, ConfidenceLevel.MEDIUM)
