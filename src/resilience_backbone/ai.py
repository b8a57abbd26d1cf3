"""
Circuit breaker presets for the AI provider client.

The AI provider reports caller-side problems (rate limits, oversized prompts,
exhausted quota) with error codes that say nothing about the provider's
health, so those codes are ignored by its breakers.
"""

from typing import Any, Optional, Sequence

from resilience_backbone.circuit_breaker import (
    CircuitBreakerConfig,
    CircuitBreakerFactory,
    ClassifiedError,
    ProtectedClient,
)
from resilience_backbone.core.config import Settings, get_settings

AI_PROVIDER_IGNORED_ERROR_CODES = frozenset({
    "rate_limit_exceeded",
    "tokens_exceeded",
    "context_length_exceeded",
    "insufficient_quota",
})

DEFAULT_AI_METHODS = ("create_completion", "stream_completion")


class AIProviderError(ClassifiedError):
    """Error raised by AI provider clients, carrying the provider's error code."""

    def __init__(self, message: str, error_code: Optional[str] = None,
                 status_code: Optional[int] = None, provider: Optional[str] = None):
        super().__init__(message, error_code=error_code, status_code=status_code,
                         details={"provider": provider} if provider else None)
        self.provider = provider


def ai_breaker_config(settings: Optional[Settings] = None) -> CircuitBreakerConfig:
    """
    Breaker configuration for AI provider calls.

    Starts from the general breaker settings, raises the failure threshold
    and cooldown for the provider's occasional hiccups, and adds the
    provider's caller-side error codes to the ignore set.
    """
    settings = settings or get_settings()
    return CircuitBreakerConfig.from_settings(settings).with_overrides(
        failure_threshold=settings.AI_BREAKER_FAILURE_THRESHOLD,
        timeout_seconds=settings.AI_BREAKER_TIMEOUT_SECONDS,
        ignored_error_codes=AI_PROVIDER_IGNORED_ERROR_CODES
    )


def protect_ai_client(client: Any,
                      factory: CircuitBreakerFactory,
                      methods: Sequence[str] = DEFAULT_AI_METHODS,
                      name: str = "ai",
                      config: Optional[CircuitBreakerConfig] = None,
                      settings: Optional[Settings] = None) -> ProtectedClient:
    """
    Wrap an AI provider client so each listed method has its own breaker.

    Args:
        client: The provider client
        factory: Factory that owns the breakers
        methods: Client methods to guard
        name: Prefix for breaker names
        config: Breaker configuration, defaults to ai_breaker_config(settings)
        settings: Settings used when config is not given
    """
    return factory.wrap_client(
        client,
        methods=methods,
        name=name,
        config=config or ai_breaker_config(settings)
    )
