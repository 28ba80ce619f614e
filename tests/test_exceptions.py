"""
Unit tests for the structured exception hierarchy.
"""

import asyncio

from nalog_shared.exceptions import (
    AuthenticationFailure, ErrorCode, ErrorSeverity, IncompleteCredentialError, NalogClientError,
    NotAuthenticatedError, RecoveryAction, SubmissionFailure, TransportFailure, ValidationError,
    handle_exception
)


class TestNalogClientError:
    """Test the base error."""

    def test_to_dict(self):
        cause = ValueError("bad")
        error = NalogClientError(
            "Something failed",
            ErrorCode.INTERNAL_UNEXPECTED_ERROR,
            severity=ErrorSeverity.HIGH,
            context={'key': "value"},
            recovery_actions=[RecoveryAction.CONTACT_SUPPORT],
            cause=cause
        )

        data = error.to_dict()['error']

        assert data['code'] == ErrorCode.INTERNAL_UNEXPECTED_ERROR.value
        assert data['message'] == "Something failed"
        assert data['severity'] == "high"
        assert data['context']['key'] == "value"
        assert data['recovery_actions'] == ["contact_support"]
        assert data['cause'] == {'type': "ValueError", 'message': "bad"}

    def test_user_message_defaults_to_message(self):
        error = NalogClientError("Oops", ErrorCode.INTERNAL_UNEXPECTED_ERROR)

        assert error.user_message == "Oops"
        assert error.to_dict()['error']['cause'] is None


class TestSubclasses:
    """Test the error taxonomy."""

    def test_authentication_failure_keeps_response(self):
        error = AuthenticationFailure("Wrong password", response={'message': "Wrong password"})

        assert error.response == {'message': "Wrong password"}
        assert error.error_code == ErrorCode.AUTH_LOGIN_FAILED
        assert RecoveryAction.REAUTHENTICATE in error.recovery_actions

    def test_not_authenticated_default_message(self):
        error = NotAuthenticatedError()

        assert error.error_code == ErrorCode.AUTH_NOT_AUTHENTICATED
        assert error.message

    def test_incomplete_credential(self):
        error = IncompleteCredentialError(missing_fields=['token'])

        assert error.message == "Missing auth information"
        assert error.context['missing_fields'] == ['token']

    def test_submission_failure_carries_response(self):
        body = {'message': "Limit exceeded"}
        error = SubmissionFailure("No receipt", response=body)

        assert error.response is body
        assert error.error_code == ErrorCode.SUBMISSION_NO_RECEIPT

    def test_transport_failure(self):
        error = TransportFailure("Bad status", error_code=ErrorCode.NETWORK_HTTP_STATUS, status_code=503, payload="down")

        assert error.status_code == 503
        assert error.payload == "down"
        assert error.context['status_code'] == 503
        assert RecoveryAction.RETRY_LATER in error.recovery_actions

    def test_validation_error_field(self):
        error = ValidationError("Bad amount", field_name="amount")

        assert error.context['field_name'] == "amount"


class TestHandleException:
    """Test conversion of foreign exceptions."""

    def test_structured_error_passes_through(self):
        error = NotAuthenticatedError()
        assert handle_exception(error) is error

    def test_timeout(self):
        converted = handle_exception(asyncio.TimeoutError())

        assert isinstance(converted, TransportFailure)
        assert converted.error_code == ErrorCode.NETWORK_TIMEOUT

    def test_connection_error(self):
        converted = handle_exception(ConnectionResetError("reset"))

        assert isinstance(converted, TransportFailure)
        assert converted.error_code == ErrorCode.NETWORK_CONNECTION_FAILED

    def test_value_error(self):
        converted = handle_exception(ValueError("bad"), context={'field': "x"})

        assert isinstance(converted, ValidationError)
        assert converted.context['field'] == "x"

    def test_unknown(self):
        converted = handle_exception(KeyError("k"))

        assert type(converted) is NalogClientError
        assert converted.error_code == ErrorCode.INTERNAL_UNEXPECTED_ERROR
