"""
Error classification helpers.

``error_code_of`` reads the explicit error code a breaker uses to decide
whether a failure is ignored. ``categorize_error`` produces a coarse category
for log records and health reports only; it never affects breaker state.
"""

from typing import Optional

NETWORK_ERROR_CODES = frozenset({"ETIMEDOUT", "ECONNREFUSED", "EHOSTUNREACH", "ECONNRESET"})
TIMEOUT_ERROR_CODES = frozenset({"TIMEOUT"})
RATE_LIMIT_ERROR_CODES = frozenset({"RATE_LIMIT", "TOO_MANY_REQUESTS", "rate_limit_exceeded"})
AUTH_ERROR_CODES = frozenset({"UNAUTHORIZED", "FORBIDDEN"})


def error_code_of(error: BaseException) -> Optional[str]:
    """Return the error's ``error_code`` field if it carries a string code."""
    code = getattr(error, "error_code", None)
    return code if isinstance(code, str) else None


def status_code_of(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def categorize_error(error: Optional[BaseException]) -> str:
    """
    Categorize an error for monitoring.

    Returns one of ``network``, ``timeout``, ``rate_limit``, ``auth``,
    ``server``, ``client`` or ``unknown``.
    """
    if error is None:
        return "unknown"

    # An explicit category always wins
    category = getattr(error, "category", None)
    if isinstance(category, str) and category:
        return category

    code = error_code_of(error)
    status = status_code_of(error)

    if code in NETWORK_ERROR_CODES or isinstance(error, ConnectionError):
        return "network"
    if code in TIMEOUT_ERROR_CODES or isinstance(error, TimeoutError):
        return "timeout"
    if code in RATE_LIMIT_ERROR_CODES or status == 429:
        return "rate_limit"
    if code in AUTH_ERROR_CODES or status in (401, 403):
        return "auth"
    if status is not None and status >= 500:
        return "server"
    if status is not None and 400 <= status < 500:
        return "client"
    return "unknown"
