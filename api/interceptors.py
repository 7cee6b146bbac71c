"""
api/interceptors.py -- The stages of the request pipeline.

Every outbound call passes through these stages in a fixed order:

  1. BuildingContextStage  -- route relative paths to the selected building
  2. AuthStage             -- bearer header; one refresh-and-replay on 401
  3. ErrorStage            -- requests exceptions -> core.exceptions taxonomy
  4. RetryStage            -- fixed-schedule retry of transient failures
  5. LoggingStage          -- optional, diagnostic only

Request hooks and error hooks both run in that order (see api/pipeline.py).
Building context comes first so refresh and retries hit the right host;
ErrorStage sits before RetryStage so retry decisions see canonical error
kinds rather than raw requests exceptions.

Each stage either transforms what it is given or fails: on_error returns an
ApiResponse to resolve the call, or raises to hand a (possibly replaced)
error to the next stage.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import requests

from api.transport import ApiRequest, ApiResponse, decode_body, is_absolute_url
from core.exceptions import (
    ApiException,
    AuthException,
    ClientException,
    CoreException,
    NetworkException,
    ServerException,
    TimeoutException,
    ValidationException,
    first_validation_message,
    normalize_field_errors,
)

if TYPE_CHECKING:
    from api.pipeline import Pipeline
    from auth.session import SessionManager

logger = logging.getLogger("automatedlife.pipeline")
http_logger = logging.getLogger("automatedlife.http")


class Stage:
    """Base stage: passes everything through unchanged."""

    def on_request(self, request: ApiRequest) -> ApiRequest:
        return request

    def on_response(self, response: ApiResponse) -> ApiResponse:
        return response

    def on_error(self, error: Exception, request: ApiRequest, pipeline: Pipeline) -> ApiResponse:
        raise error


# ---------------------------------------------------------------------------
# Error normalization
# ---------------------------------------------------------------------------


def _server_message(body: Any) -> str | None:
    """Pick the human-readable message out of an error body, if it has one."""
    if isinstance(body, dict):
        for field in ("message", "error", "detail", "msg"):
            value = body.get(field)
            if isinstance(value, str) and value:
                return value
    return None


def _status_of(error: Exception) -> int | None:
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return error.response.status_code
    return None


def _from_bad_response(error: requests.HTTPError) -> CoreException:
    response = error.response
    status = response.status_code
    body = decode_body(response)
    code = str(status)

    if status == 401:
        return AuthException("Unauthorized access", code=code, original_error=error)
    if status == 422:
        errors = body.get("errors") if isinstance(body, dict) else None
        if not isinstance(errors, dict):
            errors = None
        message = first_validation_message(errors, default=_server_message(body) or "Validation error")
        return ValidationException(message, code=code, original_error=error, errors=normalize_field_errors(errors))
    if 400 <= status < 500:
        return ClientException(
            _server_message(body) or "Client error", code=code, original_error=error, status_code=status
        )
    if status >= 500:
        return ServerException(
            _server_message(body) or "Server error", code=code, original_error=error, status_code=status
        )
    return ApiException(
        _server_message(body) or "API error",
        code=code,
        original_error=error,
        status_code=status,
        response_data=body,
    )


def normalize_error(error: Exception) -> CoreException:
    """Map any transport failure onto the closed CoreException taxonomy.

    Order matters: requests.ConnectTimeout is both a Timeout and a
    ConnectionError, and must come out as TimeoutException.
    """
    if isinstance(error, CoreException):
        return error
    if isinstance(error, requests.Timeout):
        return TimeoutException(f"Request timeout: {error}", original_error=error)
    if isinstance(error, requests.ConnectionError):
        return NetworkException(f"Network connection error: {error}", original_error=error)
    if isinstance(error, requests.HTTPError) and error.response is not None:
        return _from_bad_response(error)
    return ApiException(f"Unknown error: {error}", original_error=error)


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


class BuildingContextStage(Stage):
    """Send relative paths to the selected building's API host."""

    def __init__(self, session: SessionManager) -> None:
        self._session = session

    def on_request(self, request: ApiRequest) -> ApiRequest:
        if is_absolute_url(request.path):
            return request
        building = self._session.get_selected_building()
        if building is not None:
            request.base_url = building.api_base_url
        return request


def _bearer_token(headers: dict[str, str]) -> str | None:
    value = headers.get("Authorization", "")
    return value[len("Bearer ") :] if value.startswith("Bearer ") else None


class AuthStage(Stage):
    """Attach credentials, and recover from one 401 per request by refreshing.

    The refresh is attempted at most once per original request: the flag
    lives on the request, so replays and later retries of the same request
    cannot trigger a second refresh.
    """

    def __init__(self, session: SessionManager) -> None:
        self._session = session

    def on_request(self, request: ApiRequest) -> ApiRequest:
        request.headers.setdefault("Accept", "application/json")
        if request.files is None:
            # requests writes the multipart boundary itself for uploads.
            request.headers.setdefault("Content-Type", "application/json")
        if request.authenticate:
            token = self._session.access_token
            if token:
                request.headers["Authorization"] = f"Bearer {token}"
        return request

    def on_error(self, error: Exception, request: ApiRequest, pipeline: Pipeline) -> ApiResponse:
        if _status_of(error) != 401 or not request.authenticate or request.refresh_attempted:
            raise error

        request.refresh_attempted = True
        try:
            token = self._session.refresh_token(stale_token=_bearer_token(request.headers))
        except CoreException as exc:
            logger.warning("Token refresh failed, signing out: %s", exc)
            self._session.logout()
            raise error

        logger.info("Token refreshed; replaying %s %s", request.method, request.path)
        request.headers["Authorization"] = f"Bearer {token}"
        return pipeline.resend(request, after=self)


class ErrorStage(Stage):
    def on_error(self, error: Exception, request: ApiRequest, pipeline: Pipeline) -> ApiResponse:
        normalized = normalize_error(error)
        if normalized is error:
            raise error
        raise normalized from error


def is_transient(error: Exception) -> bool:
    """Default retry policy: connectivity and timeouts only, never 4xx/5xx."""
    return isinstance(error, (NetworkException, TimeoutException))


class RetryStage(Stage):
    """Re-send transient failures on a fixed, increasing delay schedule."""

    def __init__(
        self,
        max_retries: int = 3,
        delays: Sequence[float] = (1.0, 2.0, 3.0),
        evaluator: Callable[[Exception], bool] = is_transient,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.max_retries = max_retries
        self.delays = list(delays)
        self._evaluator = evaluator
        self._sleep = sleep

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        if not self.delays:
            return 0.0
        return self.delays[min(attempt, len(self.delays)) - 1]

    def on_error(self, error: Exception, request: ApiRequest, pipeline: Pipeline) -> ApiResponse:
        if not request.retry or self.max_retries <= 0 or not self._evaluator(error):
            raise error

        last_error: Exception = error
        for attempt in range(1, self.max_retries + 1):
            delay = self.delay_for(attempt)
            logger.info(
                "Retrying %s %s in %.1fs (attempt %d/%d): %s",
                request.method,
                request.path,
                delay,
                attempt,
                self.max_retries,
                last_error,
            )
            self._sleep(delay)
            if request.cancel_token is not None:
                request.cancel_token.raise_if_cancelled()
            try:
                return pipeline.resend(request, after=self)
            except CoreException as exc:
                last_error = exc
                if not self._evaluator(exc):
                    raise
        raise last_error


def _redacted(headers: dict[str, str]) -> dict[str, str]:
    return {k: ("Bearer ***" if k.lower() == "authorization" else v) for k, v in headers.items()}


class LoggingStage(Stage):
    """DEBUG-level request/response/error logging. Installed only on request."""

    def on_request(self, request: ApiRequest) -> ApiRequest:
        http_logger.debug("REQUEST[%s] => %s headers=%s", request.method, request.url, _redacted(request.headers))
        if request.params:
            http_logger.debug("Query parameters: %s", request.params)
        if request.json is not None:
            http_logger.debug("Body: %s", request.json)
        return request

    def on_response(self, response: ApiResponse) -> ApiResponse:
        http_logger.debug("RESPONSE[%s] => %s", response.status_code, response.request.url)
        return response

    def on_error(self, error: Exception, request: ApiRequest, pipeline: Pipeline) -> ApiResponse:
        http_logger.debug("ERROR => %s %s: %s", request.method, request.url, error)
        raise error
