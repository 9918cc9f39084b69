"""
Error taxonomy for the validator harness.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from validator_harness.core.readiness import ServiceEndpoint


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


class SpawnError(HarnessError):
    """Raised when the service binary cannot be launched."""


class ProcessNotRunningError(HarnessError):
    """Raised when an operation needs a process but none is held."""


class WaitTimeoutError(HarnessError, TimeoutError):
    """Raised when a bounded wait elapses before the process exits."""

    def __init__(self, pid: int, timeout: float):
        super().__init__(f"Process {pid} did not exit within {timeout}s")
        self.pid = pid
        self.timeout = timeout


class AvailabilityError(HarnessError):
    """
    Raised when readiness polling runs out of attempts.

    Carries the full captured output of the service process so the
    failure can be diagnosed after the fact.
    """

    def __init__(
        self,
        endpoint: ServiceEndpoint,
        attempts: int,
        output: str = "",
        cause: OSError | None = None,
    ):
        message = f"Service at {endpoint} not available after {attempts} checks"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.endpoint = endpoint
        self.attempts = attempts
        self.output = output
        self.cause = cause


class TerminationFatal(HarnessError):
    """
    Raised when a process survives both graceful and forced termination.

    Not recoverable: callers should abort rather than keep running next
    to a leaked process.
    """

    def __init__(self, pid: int, message: str):
        super().__init__(message)
        self.pid = pid


class DeployError(HarnessError):
    """Raised when the external deploy command fails."""

    def __init__(
        self,
        message: str,
        cmd: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.cmd = cmd or []
        self.returncode = returncode
        self.stderr = stderr


class ArtifactError(HarnessError):
    """Base class for errors resolving the deployed copy of an artifact."""


class NotDeployedError(ArtifactError):
    """Raised when no account exists for the program id."""


class ArtifactStateError(ArtifactError):
    """Raised when the program account is in a state we cannot read bytes from."""


class ArtifactDecodeError(ArtifactError):
    """Raised when account data in an RPC response cannot be decoded."""


class RpcError(HarnessError):
    """Raised when the RPC node answers with a JSON-RPC error object."""

    def __init__(self, code: int, message: str):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
