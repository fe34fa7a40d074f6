"""Error taxonomy shared by the clients, the processor and the HTTP layer.

Clients raise `ServiceError` subclasses. The activity processor converts
them into `ProcessingResult` values carrying the `ErrorKind`, and the retry
controller and HTTP layer only ever look at that kind.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Classification of a failed enrichment attempt."""
    USER_NOT_FOUND = "user_not_found"
    UPSTREAM_NOT_FOUND = "upstream_not_found"
    CREDENTIAL_INVALID = "credential_invalid"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    CORRUPTED_CIPHERTEXT = "corrupted_ciphertext"
    REFRESH_FAILED = "refresh_failed"
    UPSTREAM_ERROR = "upstream_error"
    INTERNAL = "internal"

    @property
    def retryable(self) -> bool:
        """True for failures that may clear up on their own within seconds."""
        return self in _RETRYABLE_KINDS

    @property
    def http_status(self) -> int:
        """Status code reported to manual-trigger callers."""
        return _HTTP_STATUS.get(self, 400)


_RETRYABLE_KINDS = frozenset({ErrorKind.UPSTREAM_NOT_FOUND, ErrorKind.TIMEOUT})

_HTTP_STATUS = {
    ErrorKind.USER_NOT_FOUND: 404,
    ErrorKind.UPSTREAM_NOT_FOUND: 404,
    ErrorKind.CREDENTIAL_INVALID: 401,
    ErrorKind.REFRESH_FAILED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.CORRUPTED_CIPHERTEXT: 500,
    ErrorKind.INTERNAL: 500,
    ErrorKind.UPSTREAM_ERROR: 400,
}


class ServiceError(Exception):
    """Base class for classified failures."""
    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CorruptedCiphertext(ServiceError):
    """Stored secret failed integrity verification or could not be decoded."""
    kind = ErrorKind.CORRUPTED_CIPHERTEXT


class CredentialInvalid(ServiceError):
    kind = ErrorKind.CREDENTIAL_INVALID


class Forbidden(ServiceError):
    kind = ErrorKind.FORBIDDEN


class UpstreamNotFound(ServiceError):
    kind = ErrorKind.UPSTREAM_NOT_FOUND


class RateLimited(ServiceError):
    kind = ErrorKind.RATE_LIMITED


class UpstreamTimeout(ServiceError):
    kind = ErrorKind.TIMEOUT


class TokenRefreshError(ServiceError):
    kind = ErrorKind.REFRESH_FAILED


class UpstreamError(ServiceError):
    """Any other non-success response from an upstream provider."""
    kind = ErrorKind.UPSTREAM_ERROR
