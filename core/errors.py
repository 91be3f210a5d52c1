"""Exception taxonomy for captcha-bridge.

All errors derive from :class:`CaptchaError` so callers can catch the whole
family in one place.  Each error carries a short machine-readable ``code``
(for provider failures this is the ``errorCode`` returned by the remote
service) so that "failed once" and "failed repeatedly" can be told apart.

Usage::

    from core.errors import CaptchaError, ExhaustionError

    try:
        result = await client.solve(vendor, site_key, url)
    except ExhaustionError as e:
        logger.error("Gave up: %s", e.code)
"""

from typing import Any, Dict, Optional


class CaptchaError(Exception):
    """Base exception for all captcha-bridge errors.

    Attributes:
        message: Human-readable error message.
        code: Machine-readable error code.
        details: Additional context (task id, widget id, ...).
    """

    default_code = "ERROR_UNKNOWN"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the exception to a JSON-safe dictionary."""
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class CaptchaValidationError(CaptchaError):
    """A widget is missing the fields needed to request a solve."""

    default_code = "ERROR_MISSING_DATA"


class TransportError(CaptchaError):
    """The remote service could not be reached or answered garbage.

    Retried under the same policy as :class:`ProviderError`.
    """

    default_code = "ERROR_TRANSPORT"


class ProviderError(CaptchaError):
    """The remote service reported a non-zero ``errorId``."""

    default_code = "ERROR_PROVIDER"


class ExhaustionError(CaptchaError):
    """The retry budget ran out without a successful solve."""

    default_code = "CAPTCHA_FAILED_TOO_MANY_TIMES"


class SolveTimeoutError(CaptchaError):
    """The caller-supplied solve deadline expired."""

    default_code = "ERROR_SOLVE_TIMEOUT"


class InjectionError(CaptchaError):
    """Solutions could not be written back into the page."""

    default_code = "ERROR_INJECTION"
