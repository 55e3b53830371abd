"""Pipelines used for demos and tests."""

from quotaguard.app.providers.mock import MockPipeline

__all__ = ["MockPipeline"]
