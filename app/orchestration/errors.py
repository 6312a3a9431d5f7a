"""Errors raised by the orchestration pipeline."""


class OrchestrationError(Exception):
    """Base class for orchestration failures."""


class ModelCallError(OrchestrationError):
    """The model-generation service failed; fatal for the current request."""
