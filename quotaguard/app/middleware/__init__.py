"""Invocation middleware: rate limit callback handler and usage extraction."""

from quotaguard.app.middleware.ratelimit_handler import (
    HandlerState,
    RatelimitHandler,
)
from quotaguard.app.middleware.usage import (
    DEFAULT_USAGE_FIELDS,
    TokenUsageFields,
    extract_token_count,
)

__all__ = [
    "HandlerState",
    "RatelimitHandler",
    "DEFAULT_USAGE_FIELDS",
    "TokenUsageFields",
    "extract_token_count",
]
