"""Core module for the validator harness."""

from validator_harness.core.deployer import ConditionalDeployer, DeploymentArtifact, has_changed
from validator_harness.core.errors import (
    ArtifactDecodeError,
    ArtifactError,
    ArtifactStateError,
    AvailabilityError,
    DeployError,
    HarnessError,
    NotDeployedError,
    ProcessNotRunningError,
    RpcError,
    SpawnError,
    TerminationFatal,
    WaitTimeoutError,
)
from validator_harness.core.events import LifecycleEvent
from validator_harness.core.policy import READINESS_POLICY, TERMINATION_POLICY, RetryPolicy
from validator_harness.core.readiness import ReadinessPoller, ServiceEndpoint
from validator_harness.core.rpc import SolanaRpcClient
from validator_harness.core.service import TestValidatorService, TestValidatorServiceBuilder
from validator_harness.core.supervisor import (
    ExitStatus,
    ManagedProcess,
    OutputPolicy,
    ProcessSupervisor,
)

__all__ = [
    "ArtifactDecodeError",
    "ArtifactError",
    "ArtifactStateError",
    "AvailabilityError",
    "ConditionalDeployer",
    "DeployError",
    "DeploymentArtifact",
    "ExitStatus",
    "HarnessError",
    "LifecycleEvent",
    "ManagedProcess",
    "NotDeployedError",
    "OutputPolicy",
    "ProcessNotRunningError",
    "ProcessSupervisor",
    "READINESS_POLICY",
    "ReadinessPoller",
    "RetryPolicy",
    "RpcError",
    "ServiceEndpoint",
    "SolanaRpcClient",
    "SpawnError",
    "TERMINATION_POLICY",
    "TerminationFatal",
    "TestValidatorService",
    "TestValidatorServiceBuilder",
    "WaitTimeoutError",
    "has_changed",
]
