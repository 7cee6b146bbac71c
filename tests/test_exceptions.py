"""Unit tests for core/exceptions.py -- taxonomy and user-facing messages."""

import pytest

from core.exceptions import (
    GENERIC_ERROR_MESSAGE,
    ApiException,
    AuthException,
    ClientException,
    CoreException,
    NetworkException,
    RequestCancelledException,
    ServerException,
    TimeoutException,
    ValidationException,
    first_validation_message,
    normalize_field_errors,
    user_message,
)


class TestTaxonomy:
    @pytest.mark.parametrize(
        "exc_type",
        [AuthException, ApiException, NetworkException, TimeoutException, ValidationException, ServerException],
    )
    def test_every_kind_is_a_core_exception(self, exc_type):
        assert issubclass(exc_type, CoreException)

    def test_str_includes_kind(self):
        assert str(AuthException("Session expired")) == "AuthException: Session expired"

    def test_api_exception_carries_status(self):
        exc = ApiException("No user data in response", status_code=200, response_data={"x": 1})
        assert exc.status_code == 200
        assert "Status: 200" in str(exc)

    def test_cancellation_is_an_api_exception(self):
        assert isinstance(RequestCancelledException("stop"), ApiException)


class TestValidationHelpers:
    def test_first_message_from_list(self):
        assert first_validation_message({"email": ["Taken", "Invalid"], "name": ["Long"]}) == "Taken"

    def test_first_message_from_string(self):
        assert first_validation_message({"email": "Taken"}) == "Taken"

    def test_default_when_empty(self):
        assert first_validation_message({}, default="Nope") == "Nope"
        assert first_validation_message(None) == "Validation error"

    def test_normalize_field_errors(self):
        assert normalize_field_errors({"email": "Taken", "age": [18]}) == {"email": ["Taken"], "age": ["18"]}


class TestUserMessage:
    def test_validation_uses_first_field_error(self):
        exc = ValidationException("Validation error", errors={"password": ["Too short"]})
        assert user_message(exc) == "Too short"

    def test_client_exception_uses_server_message(self):
        assert user_message(ClientException("Building not found", status_code=404)) == "Building not found"

    def test_transport_errors_have_distinct_messages(self):
        assert user_message(NetworkException("down")) != user_message(TimeoutException("slow"))

    def test_unknown_error_is_generic(self):
        assert user_message(KeyError("x")) == GENERIC_ERROR_MESSAGE
