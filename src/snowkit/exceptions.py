"""Exception hierarchy for snowkit.

All exceptions inherit from :class:`SnowkitError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`snowkit.exit_codes`.
The CLI entry point in :func:`snowkit.app.main` catches ``SnowkitError``
and exits with the appropriate code.

Errors reported by the instance (or by the transport while talking to it)
are :class:`ServiceNowError` instances. Each one is classified into an
:class:`ErrorKind` and carries a ``retryable`` flag, which is what the retry
executor in :mod:`snowkit.retry` inspects through the :class:`Retryable`
protocol.

Subclass hierarchy::

    SnowkitError (exit 1)
    +-- ConfigError             (exit 1)
    +-- TokenStoreError         (exit 1)
    +-- RateLimiterError        (exit 1)
    +-- RequestCancelledError   (exit 130)
    +-- RetryExhaustedError     (exit code of the last error)
    +-- ServiceNowError
        +-- AuthenticationError (exit 3)
        +-- AuthorizationError  (exit 3)
        +-- NotFoundError       (exit 4)
        +-- RateLimitError      (exit 5)
        +-- ServerError         (exit 5)
        +-- TimeoutError_       (exit 6)
        +-- NetworkError        (exit 6)
        +-- ClientError         (exit 2)
        +-- ValidationError     (exit 2)
        +-- UnknownError        (exit 1)
"""

from __future__ import annotations

import enum
from http import HTTPStatus
from typing import Optional, Protocol, runtime_checkable

from snowkit.exit_codes import (
    EXIT_AUTH_FAILURE,
    EXIT_CANCELLED,
    EXIT_CONNECTION_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_NOT_FOUND,
    EXIT_SERVER_ERROR,
)


class SnowkitError(Exception):
    """Base exception for all snowkit errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`snowkit.exit_codes`.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(SnowkitError):
    """Raised for configuration problems (invalid config file, missing credentials)."""

    exit_code = EXIT_GENERIC_FAILURE


class TokenStoreError(SnowkitError):
    """Raised when a persisted OAuth token cannot be read, decoded, or written."""

    exit_code = EXIT_GENERIC_FAILURE


class RateLimiterError(SnowkitError):
    """Raised when a rate-limit permit can never be granted (zero burst or zero rate)."""

    exit_code = EXIT_GENERIC_FAILURE


class RequestCancelledError(SnowkitError):
    """Raised when a cancellation signal interrupts a rate-limit wait or retry sleep.

    Deliberately *not* a :class:`ServiceNowError`: it never implements the
    :class:`Retryable` protocol, so the retry executor surfaces it at once.
    """

    exit_code = EXIT_CANCELLED


# --- Classified instance errors ---


class ErrorKind(str, enum.Enum):
    """Classification of a failed request, used to drive retry decisions."""

    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    CLIENT = "client"
    UNKNOWN = "unknown"


@runtime_checkable
class Retryable(Protocol):
    """Capability the retry executor requires before it will retry an error."""

    def is_retryable(self) -> bool: ...

    def get_error_type(self) -> ErrorKind: ...


def classify_status(status_code: int) -> tuple[ErrorKind, bool]:
    """Map an HTTP status code to an :class:`ErrorKind` and a retryable flag.

    Args:
        status_code: The HTTP status returned by the instance.

    Returns:
        A ``(kind, retryable)`` tuple. Only rate limiting (429), request
        timeouts (408), and 5xx responses are retryable.
    """
    if status_code == 401:
        return ErrorKind.AUTHENTICATION, False
    if status_code == 403:
        return ErrorKind.AUTHORIZATION, False
    if status_code == 404:
        return ErrorKind.NOT_FOUND, False
    if status_code == 429:
        return ErrorKind.RATE_LIMIT, True
    if status_code == 408:
        return ErrorKind.TIMEOUT, True
    if 400 <= status_code < 500:
        return ErrorKind.CLIENT, False
    if 500 <= status_code < 600:
        return ErrorKind.SERVER, True
    return ErrorKind.UNKNOWN, False


def _reason_phrase(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:
        return ""


class ServiceNowError(SnowkitError):
    """An error reported by the instance, or by the transport while talking to it.

    Subclasses fix :attr:`kind`, the default ``retryable`` flag, and the
    default ``status_code``/``code`` used when the error did not come from
    an HTTP response (for example a failed token refresh).

    Use :meth:`from_status` to build the right subclass for an HTTP status.

    Args:
        message: The error message (from the instance's error body when
            available, otherwise the raw response text).
        status_code: HTTP status code, or the subclass default.
        code: Short symbolic code; defaults to the HTTP reason phrase.
        detail: Optional secondary detail from the instance's error body.
        retryable: Override for the subclass's default retryability.

    Attributes:
        kind: The :class:`ErrorKind` classification.
        message: The unformatted message.
        status_code: HTTP status code (``0`` when none applies).
        code: Symbolic code or reason phrase.
        detail: Optional extra detail.
        retryable: Whether the retry executor may re-attempt the request.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN
    default_retryable: bool = False
    default_status: int = 0
    default_code: str = ""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        detail: Optional[str] = None,
        retryable: Optional[bool] = None,
    ):
        self.message = message
        self.status_code = self.default_status if status_code is None else status_code
        self.code = code or self.default_code or _reason_phrase(self.status_code)
        self.detail = detail
        self.retryable = self.default_retryable if retryable is None else retryable
        super().__init__(self._format())

    def _format(self) -> str:
        text = (
            f"ServiceNow {self.kind.value} error "
            f"[{self.status_code} {self.code}]: {self.message}"
        )
        if self.detail:
            text += f" - {self.detail}"
        return text

    @classmethod
    def from_status(
        cls,
        status_code: int,
        message: str,
        detail: Optional[str] = None,
    ) -> ServiceNowError:
        """Build the subclass matching *status_code*.

        Args:
            status_code: HTTP status of the failed response.
            message: Error message extracted from the response.
            detail: Optional extra detail extracted from the response.

        Returns:
            A :class:`ServiceNowError` subclass instance whose kind and
            retryability follow :func:`classify_status`.
        """
        kind, retryable = classify_status(status_code)
        error_cls = _KIND_CLASSES.get(kind, UnknownError)
        return error_cls(
            message,
            status_code=status_code,
            code=_reason_phrase(status_code),
            detail=detail,
            retryable=retryable,
        )

    def is_retryable(self) -> bool:
        return self.retryable

    def get_error_type(self) -> ErrorKind:
        return self.kind

    def is_rate_limit(self) -> bool:
        return self.kind is ErrorKind.RATE_LIMIT

    def is_auth_error(self) -> bool:
        return self.kind in (ErrorKind.AUTHENTICATION, ErrorKind.AUTHORIZATION)

    def is_temporary(self) -> bool:
        return self.kind in (ErrorKind.TIMEOUT, ErrorKind.NETWORK, ErrorKind.RATE_LIMIT)


class AuthenticationError(ServiceNowError):
    """Credentials were rejected (HTTP 401) or an OAuth token refresh failed."""

    kind = ErrorKind.AUTHENTICATION
    default_status = 401
    default_code = "AUTHENTICATION_FAILED"
    exit_code = EXIT_AUTH_FAILURE


class AuthorizationError(ServiceNowError):
    """The authenticated identity lacks access to the resource (HTTP 403)."""

    kind = ErrorKind.AUTHORIZATION
    default_status = 403
    exit_code = EXIT_AUTH_FAILURE


class NotFoundError(ServiceNowError):
    """The record or endpoint does not exist (HTTP 404)."""

    kind = ErrorKind.NOT_FOUND
    default_status = 404
    exit_code = EXIT_NOT_FOUND


class RateLimitError(ServiceNowError):
    """The instance throttled the request (HTTP 429)."""

    kind = ErrorKind.RATE_LIMIT
    default_retryable = True
    default_status = 429
    default_code = "RATE_LIMIT_EXCEEDED"
    exit_code = EXIT_SERVER_ERROR


class TimeoutError_(ServiceNowError):
    """The instance reported a request timeout (HTTP 408).

    Named with a trailing underscore to avoid shadowing the built-in
    ``TimeoutError``.
    """

    kind = ErrorKind.TIMEOUT
    default_retryable = True
    default_status = 408
    default_code = "REQUEST_TIMEOUT"
    exit_code = EXIT_CONNECTION_ERROR


class NetworkError(ServiceNowError):
    """A transport-level failure (DNS, connection refused, reset, client timeout)."""

    kind = ErrorKind.NETWORK
    default_retryable = True
    default_code = "NETWORK_ERROR"
    exit_code = EXIT_CONNECTION_ERROR


class ServerError(ServiceNowError):
    """The instance returned an HTTP 5xx error."""

    kind = ErrorKind.SERVER
    default_retryable = True
    default_status = 500
    exit_code = EXIT_SERVER_ERROR


class ClientError(ServiceNowError):
    """The instance rejected the request with a 4xx status not covered elsewhere."""

    kind = ErrorKind.CLIENT
    default_status = 400
    exit_code = EXIT_INVALID_USAGE


class ValidationError(ServiceNowError):
    """The request was rejected locally before being sent (malformed input)."""

    kind = ErrorKind.VALIDATION
    default_status = 400
    default_code = "VALIDATION_ERROR"
    exit_code = EXIT_INVALID_USAGE


class UnknownError(ServiceNowError):
    """A failure whose status code fits no other category."""

    kind = ErrorKind.UNKNOWN
    exit_code = EXIT_GENERIC_FAILURE


_KIND_CLASSES: dict[ErrorKind, type[ServiceNowError]] = {
    ErrorKind.AUTHENTICATION: AuthenticationError,
    ErrorKind.AUTHORIZATION: AuthorizationError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.RATE_LIMIT: RateLimitError,
    ErrorKind.TIMEOUT: TimeoutError_,
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.SERVER: ServerError,
    ErrorKind.CLIENT: ClientError,
    ErrorKind.VALIDATION: ValidationError,
    ErrorKind.UNKNOWN: UnknownError,
}


class RetryExhaustedError(SnowkitError):
    """Raised when every attempt failed with a retryable error.

    The last underlying error is kept on :attr:`last_error` (and as
    ``__cause__``), and its classification is re-exposed so callers can
    tell "the instance is down" from "the credentials are wrong" without
    parsing the message.

    Args:
        attempts: How many attempts were made.
        last_error: The error raised by the final attempt.
    """

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        exit_code = getattr(last_error, "exit_code", None)
        super().__init__(
            f"max retry attempts ({attempts}) exceeded: {last_error}",
            exit_code=exit_code,
        )

    @property
    def kind(self) -> ErrorKind:
        if isinstance(self.last_error, ServiceNowError):
            return self.last_error.kind
        return ErrorKind.UNKNOWN

    @property
    def status_code(self) -> int:
        return getattr(self.last_error, "status_code", 0)
