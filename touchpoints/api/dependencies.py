"""FastAPI dependencies for authentication and service construction."""

from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from touchpoints.config import get_settings
from touchpoints.services.care_store import CareStore, PostgresCareStore
from touchpoints.services.pattern_service import PatternAnalyzer
from touchpoints.services.suggestion_service import SuggestionService

bearer_scheme = HTTPBearer()

JWT_ALGORITHM = "HS256"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> UUID:
    """Verify the Bearer access token and return the acting user's id.

    Tokens are issued by the auth collaborator; only the signature, expiry and
    the 'sub' claim are checked here.

    Raises:
        HTTPException 401: If the token is invalid, expired or has no usable subject
    """
    try:
        payload = jwt.decode(
            credentials.credentials,
            get_settings().jwt_secret,
            algorithms=[JWT_ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Access token has expired")
    except jwt.InvalidTokenError:
        raise _unauthorized("Invalid or expired access token")

    try:
        return UUID(str(payload.get("sub")))
    except ValueError:
        raise _unauthorized("Invalid token payload")


def get_store(request: Request) -> CareStore:
    """Build a store over the pool the application lifespan created."""
    pool = getattr(request.app.state, "pool", None)
    if pool is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Visit storage is unavailable",
        )
    return PostgresCareStore(pool)


def get_pattern_analyzer(store: CareStore = Depends(get_store)) -> PatternAnalyzer:
    return PatternAnalyzer(store)


def get_suggestion_service(store: CareStore = Depends(get_store)) -> SuggestionService:
    return SuggestionService(store)
