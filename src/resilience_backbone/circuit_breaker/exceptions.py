"""
Circuit breaker exceptions.

This module defines the errors raised by circuit breakers themselves and the
base class for dependency errors that carry an explicit error code. Breakers
decide whether a failure counts by looking only at that code.
"""

from typing import Optional, Dict, Any


class CircuitBreakerError(Exception):
    """
    Base exception class for circuit breaker related errors.

    This is the parent class for all circuit breaker exceptions and provides
    common functionality for error handling and debugging.
    """

    def __init__(self, message: str, breaker_name: Optional[str] = None,
                 context: Optional[Dict[str, Any]] = None):
        """
        Initialize circuit breaker error.

        Args:
            message: Human-readable error description
            breaker_name: Name of the breaker that raised the error
            context: Additional context information for debugging
        """
        super().__init__(message)
        self.breaker_name = breaker_name
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for API responses and logging.

        Returns:
            Dictionary representation of the error
        """
        return {
            "error_type": self.__class__.__name__,
            "message": str(self),
            "breaker_name": self.breaker_name,
            "context": self.context
        }


class CircuitBreakerOpenError(CircuitBreakerError):
    """
    Raised when a breaker is open and no fallback is registered.

    The wrapped function was not invoked. Callers may retry once
    ``cooldown_remaining`` seconds have passed.

    Attributes:
        cooldown_remaining: Seconds until the breaker lets a probe through
        total_failures: Counted failures recorded by the breaker
        last_failure_time: Clock reading of the most recent counted failure
    """

    def __init__(self,
                 message: str,
                 breaker_name: Optional[str] = None,
                 cooldown_remaining: float = 0,
                 total_failures: int = 0,
                 last_failure_time: Optional[float] = None):
        super().__init__(message, breaker_name)
        self.cooldown_remaining = cooldown_remaining
        self.total_failures = total_failures
        self.last_failure_time = last_failure_time

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert to dictionary with circuit breaker specific information.

        Returns:
            Extended dictionary with circuit breaker state details
        """
        base_dict = super().to_dict()
        base_dict.update({
            "error": "circuit_breaker_open",
            "cooldown_remaining_seconds": self.cooldown_remaining,
            "total_failures": self.total_failures,
            "last_failure_time": self.last_failure_time,
            "retry_after_ms": int(self.cooldown_remaining * 1000),
            "can_retry": True,
            "recommended_action": "wait_and_retry"
        })
        return base_dict


class CircuitBreakerConfigurationError(CircuitBreakerError):
    """
    Raised when circuit breaker configuration is invalid.

    This exception indicates that the circuit breaker configuration contains
    invalid values or incompatible settings that prevent proper operation.
    """

    def __init__(self, message: str, config_field: Optional[str] = None,
                 provided_value: Optional[Any] = None):
        """
        Initialize configuration error.

        Args:
            message: Description of the configuration issue
            config_field: Name of the problematic configuration field
            provided_value: The invalid value that was provided
        """
        super().__init__(message)
        self.config_field = config_field
        self.provided_value = provided_value

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with configuration details."""
        base_dict = super().to_dict()
        base_dict.update({
            "error": "circuit_breaker_configuration_error",
            "config_field": self.config_field,
            "provided_value": self.provided_value
        })
        return base_dict


class ClassifiedError(Exception):
    """
    Base class for dependency errors that carry an explicit error code.

    A breaker configured with ``ignored_error_codes`` compares ``error_code``
    against that set; nothing else about the exception is inspected.
    """

    def __init__(self, message: str, error_code: Optional[str] = None,
                 status_code: Optional[int] = None, category: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "status_code": self.status_code,
            "category": self.category,
            "details": self.details
        }
