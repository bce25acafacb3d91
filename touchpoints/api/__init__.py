"""API package exports."""

from touchpoints.api.middleware import CorrelationIdMiddleware
from touchpoints.api.patterns import router as patterns_router
from touchpoints.api.suggestions import router as suggestions_router

__all__ = ["CorrelationIdMiddleware", "patterns_router", "suggestions_router"]
