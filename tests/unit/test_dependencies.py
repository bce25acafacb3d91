"""Unit tests for API dependencies."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
from uuid import uuid4

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from touchpoints.api.dependencies import (
    JWT_ALGORITHM,
    get_current_user_id,
    get_pattern_analyzer,
    get_store,
    get_suggestion_service,
)
from touchpoints.config import get_settings
from touchpoints.services.care_store import PostgresCareStore
from touchpoints.services.pattern_service import PatternAnalyzer
from touchpoints.services.suggestion_service import SuggestionService


def bearer(payload: dict, secret: str | None = None) -> HTTPAuthorizationCredentials:
    token = jwt.encode(payload, secret or get_settings().jwt_secret, algorithm=JWT_ALGORITHM)
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


class TestGetCurrentUserId:
    @pytest.mark.asyncio
    async def test_returns_subject(self):
        user_id = uuid4()
        exp = datetime.now(timezone.utc) + timedelta(minutes=5)

        result = await get_current_user_id(bearer({"sub": str(user_id), "exp": exp}))

        assert result == user_id

    @pytest.mark.asyncio
    async def test_expired_token_is_401(self):
        exp = datetime.now(timezone.utc) - timedelta(minutes=5)

        with pytest.raises(HTTPException) as exc_info:
            await get_current_user_id(bearer({"sub": str(uuid4()), "exp": exp}))

        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Access token has expired"

    @pytest.mark.asyncio
    async def test_wrong_signature_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user_id(bearer({"sub": str(uuid4())}, secret="another-secret"))

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_subject_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_current_user_id(bearer({"username": "maria"}))

        assert exc_info.value.detail == "Invalid token payload"


class TestServiceDependencies:
    def test_store_requires_pool(self):
        request = MagicMock()
        request.app.state.pool = None

        with pytest.raises(HTTPException) as exc_info:
            get_store(request)

        assert exc_info.value.status_code == 503

    def test_builds_services_over_app_pool(self):
        request = MagicMock()
        pool = MagicMock()
        request.app.state.pool = pool

        store = get_store(request)

        assert isinstance(store, PostgresCareStore)
        assert store.pool is pool
        assert isinstance(get_pattern_analyzer(store), PatternAnalyzer)
        assert isinstance(get_suggestion_service(store), SuggestionService)
