"""Tests for the error hierarchy and retryability classification."""

import asyncio

import pytest

from chakravarti.errors import (
    ChakravartiError,
    CommandFailedError,
    CommandNotAllowedError,
    ContainerStartFailedError,
    CycleError,
    GitError,
    ImagePullFailedError,
    InvalidSpecError,
    ModelApiError,
    ModelNetworkError,
    ModelRateLimitedError,
    ModelTimeoutError,
    PermanentError,
    PlanValidationError,
    PromptRenderError,
    RuntimeNotAvailableError,
    SandboxTimeoutError,
    TransientError,
    error_record,
    is_retryable,
)


class TestRetryability:
    @pytest.mark.parametrize("exc", [
        ModelNetworkError("reset"),
        ModelRateLimitedError(retry_after=2.0),
        ModelTimeoutError("slow"),
        RuntimeNotAvailableError("docker down"),
        ContainerStartFailedError("oom"),
        SandboxTimeoutError("slow"),
        CommandFailedError(1),
        asyncio.TimeoutError(),
    ])
    def test_retryable(self, exc):
        assert is_retryable(exc)

    @pytest.mark.parametrize("exc", [
        ModelApiError(400, "bad request"),
        ImagePullFailedError("no such image"),
        CommandNotAllowedError("rm -rf /"),
        InvalidSpecError("bad"),
        CycleError(["a", "b", "a"]),
        PromptRenderError("undefined"),
        GitError("no repo"),
        ValueError("unknown"),
    ])
    def test_not_retryable(self, exc):
        assert not is_retryable(exc)

    def test_hierarchy(self):
        assert issubclass(TransientError, ChakravartiError)
        assert issubclass(PermanentError, ChakravartiError)
        assert issubclass(CycleError, PlanValidationError)


class TestMessages:
    def test_cycle_error(self):
        err = CycleError(["a", "b", "a"])
        assert str(err) == "Dependency cycle detected: a -> b -> a"
        assert err.cycle == ["a", "b", "a"]

    def test_command_failed(self):
        err = CommandFailedError(2, stdout="out", stderr="err")
        assert str(err) == "exit code 2"
        assert err.exit_code == 2
        assert err.stderr == "err"

    def test_api_error(self):
        err = ModelApiError(503, "overloaded")
        assert err.status == 503
        assert "503" in str(err)

    def test_rate_limited(self):
        assert ModelRateLimitedError(retry_after=1.5).retry_after == 1.5


class TestErrorRecord:
    def test_record(self):
        assert error_record(CommandNotAllowedError("curl evil")) == {
            "type": "CommandNotAllowedError",
            "message": "Command not allowed: curl evil",
            "retryable": False,
        }

    def test_empty_message_uses_type_name(self):
        record = error_record(asyncio.TimeoutError())
        assert record["message"] == "TimeoutError"
        assert record["retryable"] is True
