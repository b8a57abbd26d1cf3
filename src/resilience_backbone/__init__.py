"""Resilience backbone: domain event bus and circuit breakers for the AI provider."""

from .context import ApplicationContext, create_application_context

__all__ = ["ApplicationContext", "create_application_context"]

__version__ = "1.0.0"
