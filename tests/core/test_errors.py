"""Tests for the error hierarchy and failure conversion."""

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    EndpointConnectionError,
    NoCredentialsError,
)

from unity_builder.core.errors import (
    BuilderError,
    CatalogConnectionError,
    CommandLookupError,
    ConfigError,
    Failure,
    FailureKind,
    TerminalRemoteError,
    TransientRemoteError,
    aws_error_code,
    describe_aws_error,
    failure_from_exception,
    is_transient_aws_error,
)
from conftest import make_client_error


class TestFailure:
    def test_to_dict_uses_kind_value(self):
        failure = Failure(FailureKind.DEADLINE_EXCEEDED, "too slow", diagnostics="attempt 30")
        assert failure.to_dict() == {
            "kind": "deadline_exceeded",
            "message": "too slow",
            "diagnostics": "attempt 30",
        }


class TestBuilderError:
    def test_default_kind_is_internal(self):
        assert BuilderError("x").kind is FailureKind.INTERNAL

    def test_subclasses_carry_their_kind(self):
        assert TransientRemoteError("x").kind is FailureKind.TRANSIENT_REMOTE
        assert TerminalRemoteError("x").kind is FailureKind.TERMINAL_REMOTE
        assert ConfigError("x").kind is FailureKind.CONFIG
        assert CatalogConnectionError("x").kind is FailureKind.TRANSIENT_REMOTE

    def test_command_lookup_error_is_terminal(self):
        err = CommandLookupError("lookup failed")
        assert isinstance(err, TerminalRemoteError)
        assert err.kind is FailureKind.TERMINAL_REMOTE

    def test_explicit_kind_overrides_default(self):
        err = BuilderError("bad payload", kind=FailureKind.VALIDATION)
        assert err.to_failure().kind is FailureKind.VALIDATION

    def test_cause_is_chained(self):
        cause = ValueError("inner")
        err = BuilderError("outer", cause=cause)
        assert err.__cause__ is cause

    def test_to_failure_keeps_diagnostics(self):
        failure = TerminalRemoteError("rejected", diagnostics="AccessDenied: no").to_failure()
        assert failure.message == "rejected"
        assert failure.diagnostics == "AccessDenied: no"


class TestAwsErrorHelpers:
    def test_error_code(self):
        assert aws_error_code(make_client_error("InvocationDoesNotExist")) == "InvocationDoesNotExist"
        assert aws_error_code(ValueError("x")) is None

    def test_describe_client_error(self):
        err = make_client_error("AccessDeniedException", "not allowed")
        assert describe_aws_error(err) == "AccessDeniedException: not allowed"

    def test_describe_botocore_error(self):
        err = EndpointConnectionError(endpoint_url="https://ssm.example")
        assert describe_aws_error(err).startswith("EndpointConnectionError:")


class TestFailureFromException:
    def test_builder_error_keeps_kind(self):
        failure = failure_from_exception(ConfigError("missing bucket"))
        assert failure.kind is FailureKind.CONFIG
        assert failure.message == "missing bucket"

    def test_rejected_request_is_terminal_remote(self):
        failure = failure_from_exception(make_client_error("AccessDeniedException", "not allowed"))
        assert failure.kind is FailureKind.TERMINAL_REMOTE
        assert failure.diagnostics == "AccessDeniedException: not allowed"

    def test_throttling_is_transient_remote(self):
        for code in ("ThrottlingException", "RequestLimitExceeded", "TooManyRequestsException"):
            failure = failure_from_exception(make_client_error(code, "slow down"))
            assert failure.kind is FailureKind.TRANSIENT_REMOTE, code
            assert failure.diagnostics == f"{code}: slow down"

    def test_server_side_status_is_transient_remote(self):
        err = ClientError(
            {"Error": {"Code": "Unknown", "Message": "x"}, "ResponseMetadata": {"HTTPStatusCode": 503}},
            "DescribeInstances",
        )
        assert failure_from_exception(err).kind is FailureKind.TRANSIENT_REMOTE

    def test_endpoint_errors_are_transient_remote(self):
        failure = failure_from_exception(EndpointConnectionError(endpoint_url="https://ec2.example"))
        assert failure.kind is FailureKind.TRANSIENT_REMOTE
        failure = failure_from_exception(ConnectionClosedError(endpoint_url="https://ec2.example"))
        assert failure.kind is FailureKind.TRANSIENT_REMOTE

    def test_other_botocore_errors_are_terminal_remote(self):
        failure = failure_from_exception(NoCredentialsError())
        assert failure.kind is FailureKind.TERMINAL_REMOTE

    def test_anything_else_is_internal(self):
        failure = failure_from_exception(KeyError("scenes"))
        assert failure.kind is FailureKind.INTERNAL
        assert "KeyError" in failure.message


class TestIsTransientAwsError:
    def test_codes(self):
        assert is_transient_aws_error(make_client_error("Throttling"))
        assert is_transient_aws_error(make_client_error("ServiceUnavailable"))
        assert not is_transient_aws_error(make_client_error("InvalidInstanceID.NotFound"))

    def test_non_aws_errors(self):
        assert not is_transient_aws_error(ValueError("x"))
