"""Rate limiting data models."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from quotaguard.app.core.utils import parse_duration

_LIMIT_PATTERN = re.compile(r"^\s*(\d+)\s*/\s*(.+?)\s*$")


class FailurePolicy(str, Enum):
    """What a gate does when its counter store cannot be reached."""
    RAISE = "raise"
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True)
class LimitConfig:
    """Immutable fixed window limit bound to a gate at construction.

    Attributes:
        max_count: Units allowed per window
        window_seconds: Window length in seconds
    """
    max_count: int
    window_seconds: float

    def __post_init__(self) -> None:
        if isinstance(self.max_count, bool) or int(self.max_count) != self.max_count:
            raise ValueError("max_count must be an integer")
        if self.max_count < 1:
            raise ValueError("max_count must be at least 1")
        object.__setattr__(self, "window_seconds", parse_duration(self.window_seconds))
        # Window keys are computed in whole milliseconds
        if self.window_ms < 1:
            raise ValueError("window must be at least 1ms")

    @property
    def window_ms(self) -> int:
        return int(self.window_seconds * 1000)

    @classmethod
    def parse(cls, text: str) -> "LimitConfig":
        """Build a limit from a string such as ``"10 / 60 s"`` or ``"1000/1m"``."""
        match = _LIMIT_PATTERN.match(text)
        if match is None:
            raise ValueError(f"Invalid limit: {text!r}")
        count, window = match.groups()
        return cls(max_count=int(count), window_seconds=parse_duration(window))


@dataclass
class RateLimitDecision:
    """Result of a gate check.

    ``degraded`` marks decisions produced by the failure policy rather
    than by the counter store.
    """
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: Optional[int] = None
    degraded: bool = field(default=False)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "reset_at": self.reset_at,
            "retry_after": self.retry_after,
            "degraded": self.degraded,
        }


@dataclass
class CounterEntry:
    """In-memory counter record for one window key."""
    used: int = 0
    expires_at: float = 0.0
