"""Mock pipeline for testing and demos.

This pipeline simulates an LLM chain without making external API calls.
It's useful for development when real API keys are not available.
"""

import asyncio
import random
import time
import uuid
from typing import Any, Dict, Optional


class MockPipeline:
    """Mock LLM chain that returns simulated results with token usage.

    Features:
    - Simulates response delays (configurable)
    - Reports prompt/completion/total token usage under ``token_usage``
    - Fixed token counts for deterministic tests
    - Configurable failure rate for testing error handling
    """

    def __init__(
        self,
        min_delay: float = 0.0,
        max_delay: float = 0.0,
        failure_rate: float = 0.0,
        prompt_tokens: Optional[int] = None,
        completion_tokens: Optional[int] = None,
        usage_field: str = "token_usage",
    ):
        """Initialize the mock pipeline.

        Args:
            min_delay: Minimum response delay in seconds
            max_delay: Maximum response delay in seconds
            failure_rate: Probability of raising an error (0-1)
            prompt_tokens: Fixed prompt token count (derived from input if None)
            completion_tokens: Fixed completion token count (random if None)
            usage_field: Key the usage record is reported under
        """
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.failure_rate = failure_rate
        self.prompt_tokens = prompt_tokens
        self.completion_tokens = completion_tokens
        self.usage_field = usage_field
        self.calls = 0

    def _generate_content(self, question: str) -> str:
        question_lower = question.lower()
        if any(kw in question_lower for kw in ["hello", "hi"]):
            return "Hello! I'm a mock assistant. How can I help you today?"
        if any(kw in question_lower for kw in ["python", "code", "programming"]):
            return "Python is a powerful programming language."
        return "This is a mock response for testing purposes."

    def _generate_result(self, inputs: Any) -> Dict[str, Any]:
        question = inputs.get("question", "") if isinstance(inputs, dict) else str(inputs)

        prompt_tokens = self.prompt_tokens
        if prompt_tokens is None:
            prompt_tokens = len(question.split()) * 2 if question else 10
        completion_tokens = self.completion_tokens
        if completion_tokens is None:
            completion_tokens = random.randint(20, 100)

        return {
            "id": f"run-{uuid.uuid4().hex[:24]}",
            "created": int(time.time()),
            "output": self._generate_content(question),
            self.usage_field: {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }

    async def ainvoke(self, inputs: Any = None) -> Dict[str, Any]:
        """Run the chain once.

        Args:
            inputs: Mapping with a ``question`` key, or any value

        Returns:
            Result mapping with ``output`` and a usage record

        Raises:
            RuntimeError: On a simulated failure
        """
        self.calls += 1
        delay = random.uniform(self.min_delay, self.max_delay)
        if delay > 0:
            await asyncio.sleep(delay)

        if random.random() < self.failure_rate:
            raise RuntimeError("Simulated pipeline failure")

        return self._generate_result(inputs if inputs is not None else {})
