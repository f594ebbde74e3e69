"""
Exception hierarchy with recoverability flags.

Vendor errors are split into transient ones, which the dispatcher retries
after a backoff window, and fatal ones, which stop a dispatch immediately.
"""

from __future__ import annotations


class RelayError(RuntimeError):
    """Base exception for model_relay."""

    recoverable: bool = False


class ConfigurationError(RelayError):
    """Missing credentials or an unusable model catalog - surfaced immediately."""


class ClassificationParseError(RelayError):
    """Classifier output was not the expected JSON - always recovered locally."""


class VendorError(RelayError):
    """Base exception for upstream vendor calls."""

    category: str = "unknown"
    default_message: str = "Vendor request failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        vendor: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.vendor = vendor
        self.status_code = status_code
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class TransientVendorError(VendorError):
    """Condition expected to clear after a short wait - recoverable."""

    recoverable: bool = True
    # (min_seconds, max_seconds) to wait before the next attempt
    backoff: tuple[float, float] = (5.0, 8.0)

    def __init__(
        self,
        message: str | None = None,
        *,
        vendor: str | None = None,
        status_code: int | None = None,
        backoff: tuple[float, float] | None = None,
    ) -> None:
        super().__init__(message, vendor=vendor, status_code=status_code)
        if backoff is not None:
            self.backoff = backoff


class ModelLoadingError(TransientVendorError):
    """Model is still warming up on the inference host."""

    category = "model_loading"
    default_message = "Model is loading"
    backoff = (10.0, 15.0)


class RateLimitedError(TransientVendorError):
    """Vendor rate limit hit (HTTP 429 or a rate-limit payload)."""

    category = "rate_limited"
    default_message = "Rate limit exceeded"
    backoff = (10.0, 12.0)


# Backoff used when the rate limit is signalled in a 200 payload rather than a 429
PAYLOAD_RATE_LIMIT_BACKOFF: tuple[float, float] = (5.0, 10.0)


class ServiceUnavailableError(TransientVendorError):
    """HTTP 503 without a loading signal."""

    category = "service_unavailable"
    default_message = "Service temporarily unavailable"
    backoff = (5.0, 8.0)


class FatalVendorError(VendorError):
    """Condition that will not resolve by retrying unchanged - not recoverable."""

    recoverable: bool = False


class UnauthorizedError(FatalVendorError):
    """Credentials rejected (HTTP 401/403)."""

    category = "unauthorized"
    default_message = "Vendor rejected the credentials"


class VendorRequestError(FatalVendorError):
    """Vendor rejected the request shape (4xx other than 401/403/429)."""

    category = "bad_request"
    default_message = "Vendor rejected the request"


class VendorTimeoutError(FatalVendorError):
    """Call exceeded its timeout."""

    category = "timeout"
    default_message = "Vendor request timed out"


class VendorConnectionError(FatalVendorError):
    """Network-level failure reaching the vendor."""

    category = "connection"
    default_message = "Failed to reach vendor"


class MalformedResponseError(FatalVendorError):
    """Vendor answered with a payload that could not be interpreted."""

    category = "malformed"
    default_message = "Malformed response from vendor"


class UnknownVendorError(FatalVendorError):
    """Any other vendor failure, including 5xx other than 503."""

    category = "unknown"
    default_message = "Unknown vendor error"
