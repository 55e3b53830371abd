"""Token usage extraction from pipeline results.

Backends report usage under different keys, so the field names are
configurable. Extraction never raises: a result without usable numbers
costs zero tokens.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Optional

from quotaguard.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TokenUsageFields:
    """Where token counts live inside a result.

    Attributes:
        usage_field: Key of the nested usage record
        total_field: Key of the total token count inside the usage record
        prompt_field: Key of the prompt token count inside the usage record
    """
    usage_field: str = "token_usage"
    total_field: str = "total_tokens"
    prompt_field: str = "prompt_tokens"


DEFAULT_USAGE_FIELDS = TokenUsageFields()


def _as_mapping(result: Any) -> Optional[Mapping]:
    """Return the mapping that should hold the usage record."""
    if isinstance(result, Mapping):
        return result
    # LLMResult-style objects keep provider metadata in ``llm_output``
    llm_output = getattr(result, "llm_output", None)
    if isinstance(llm_output, Mapping):
        return llm_output
    return None


def _as_token_count(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if value < 0:
        return None
    # Fractional counts are charged in full
    return math.ceil(value)


def extract_token_count(
    result: Any,
    fields: TokenUsageFields = DEFAULT_USAGE_FIELDS,
    include_output_tokens: bool = False,
) -> int:
    """Extract the token cost of a pipeline result.

    Args:
        result: Pipeline result (mapping or object with ``llm_output``)
        fields: Field names locating the usage record
        include_output_tokens: Count total tokens instead of prompt tokens

    Returns:
        Token count, or 0 when the usage data is missing or malformed

    Example:
        >>> extract_token_count({"token_usage": {"prompt_tokens": 10, "total_tokens": 30}})
        10
    """
    container = _as_mapping(result)
    if container is None:
        logger.debug(f"No usage data in result of type {type(result).__name__}")
        return 0

    usage = container.get(fields.usage_field)
    if not isinstance(usage, Mapping):
        logger.debug(f"Result has no '{fields.usage_field}' usage record")
        return 0

    field_name = fields.total_field if include_output_tokens else fields.prompt_field
    count = _as_token_count(usage.get(field_name))
    if count is None:
        logger.debug(f"Usage record has no numeric '{field_name}'")
        return 0
    return count
