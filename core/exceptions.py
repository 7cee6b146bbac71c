"""
core/exceptions.py -- The closed exception taxonomy surfaced to callers.

The request pipeline (api/interceptors.py) is the single place that turns
requests exceptions into these types. Everything above it -- the API client,
the session manager, the application shell -- only ever sees CoreException
subclasses.

user_message() is the one mapping from any exception to the short sentence a
screen shows. Screens never format exception text themselves.

Layer rule: no imports from api/, auth/, or storage/.
"""

from typing import Any, Optional

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."


class CoreException(Exception):
    """Base class for every error the client raises on purpose."""

    kind = "CoreException"

    def __init__(self, message: str, code: Optional[str] = None, original_error: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.original_error = original_error

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class AuthException(CoreException):
    """Bad credentials, an expired session, or a 401 that survived refresh."""

    kind = "AuthException"


class ApiException(CoreException):
    """Generic API failure. Carries the status and the raw response body."""

    kind = "ApiException"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        status_code: Optional[int] = None,
        response_data: Optional[Any] = None,
    ):
        super().__init__(message, code=code, original_error=original_error)
        self.status_code = status_code
        self.response_data = response_data

    def __str__(self) -> str:
        return f"{self.kind}: {self.message} (Status: {self.status_code})"


class RequestCancelledException(ApiException):
    """The caller cancelled the request through its CancelToken."""

    kind = "RequestCancelledException"


class NetworkException(CoreException):
    kind = "NetworkException"


class TimeoutException(CoreException):
    """Connect, send or receive timeout."""

    kind = "TimeoutException"


class StorageException(CoreException):
    kind = "StorageException"


class ValidationException(CoreException):
    """HTTP 422 (or local input validation) with the per-field error map."""

    kind = "ValidationException"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        errors: Optional[dict[str, list[str]]] = None,
    ):
        super().__init__(message, code=code, original_error=original_error)
        self.errors = errors or {}


class ServerException(CoreException):
    kind = "ServerException"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, code=code, original_error=original_error)
        self.status_code = status_code

    def __str__(self) -> str:
        return f"{self.kind}: {self.message} (Status: {self.status_code})"


class ClientException(CoreException):
    """Any 4xx other than 401 and 422."""

    kind = "ClientException"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, code=code, original_error=original_error)
        self.status_code = status_code

    def __str__(self) -> str:
        return f"{self.kind}: {self.message} (Status: {self.status_code})"


class BuildingConfigException(CoreException):
    kind = "BuildingConfigException"


class CapabilityException(CoreException):
    kind = "CapabilityException"


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def first_validation_message(errors: Optional[dict[str, Any]], default: str = "Validation error") -> str:
    """Return the first key's first message from a Laravel-style errors map."""
    if not errors:
        return default
    first = next(iter(errors.values()))
    if isinstance(first, list) and first:
        return str(first[0])
    if isinstance(first, str) and first:
        return first
    return default


def normalize_field_errors(errors: Optional[dict[str, Any]]) -> dict[str, list[str]]:
    """Coerce every value of an errors map to a list of strings."""
    if not errors:
        return {}
    return {
        str(field): [str(item) for item in value] if isinstance(value, list) else [str(value)]
        for field, value in errors.items()
    }


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------


def user_message(error: BaseException) -> str:
    """Return a short human-readable message for any exception."""
    if isinstance(error, ValidationException):
        return first_validation_message(error.errors, default=error.message)
    if isinstance(error, AuthException):
        return error.message or "Your session has expired. Please sign in again."
    if isinstance(error, TimeoutException):
        return "The server took too long to respond. Please try again."
    if isinstance(error, NetworkException):
        return "No connection. Check your network and try again."
    if isinstance(error, RequestCancelledException):
        return "The request was cancelled."
    if isinstance(error, ServerException):
        return "The server had a problem. Please try again later."
    if isinstance(error, (ClientException, BuildingConfigException, CapabilityException, ApiException)):
        return error.message or GENERIC_ERROR_MESSAGE
    return GENERIC_ERROR_MESSAGE
