"""
Test validator service.

Composes a ProcessSupervisor and a ReadinessPoller: configures ports and
the ledger directory, launches the validator, blocks until it accepts
connections, and tears it down when the test is done.

    with TestValidatorService.builder("my_test").rpc_port(18899).build() as validator:
        validator.start()
        client = SolanaRpcClient(validator.rpc_url)
        ...
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from validator_harness.core.events import LifecycleEvent, log_event
from validator_harness.core.policy import READINESS_POLICY, TERMINATION_POLICY, RetryPolicy
from validator_harness.core.readiness import ReadinessPoller, ServiceEndpoint
from validator_harness.core.supervisor import OutputPolicy, ProcessSupervisor
from validator_harness.utils.paths import clean_test_ledger_dir

logger = logging.getLogger(__name__)

SERVICE_NAME = "Test validator"
DEFAULT_LABEL = "test-validator-service"
DEFAULT_BINARY = "solana-test-validator"


class ServiceOptions(BaseModel):
    """Options collected by TestValidatorServiceBuilder."""

    model_config = ConfigDict(frozen=True)

    label: str = DEFAULT_LABEL
    rpc_port: int = Field(default=8899, ge=1, le=65535)
    faucet_port: int = Field(default=9900, ge=1, le=65535)
    ledger_path: Path | None = None
    binary: str = DEFAULT_BINARY
    extra_args: tuple[str, ...] = ()
    readiness_policy: RetryPolicy = READINESS_POLICY
    termination_policy: RetryPolicy = TERMINATION_POLICY


class TestValidatorServiceBuilder:
    """Chainable builder for TestValidatorService."""

    __test__ = False  # Not a pytest test class

    def __init__(self, label: str = DEFAULT_LABEL):
        self.options = ServiceOptions(label=label)

    def _update(self, **changes) -> TestValidatorServiceBuilder:
        # Re-validate so bad ports fail at configuration time
        self.options = ServiceOptions.model_validate({**dict(self.options), **changes})
        return self

    def rpc_port(self, port: int) -> TestValidatorServiceBuilder:
        return self._update(rpc_port=port)

    def faucet_port(self, port: int) -> TestValidatorServiceBuilder:
        return self._update(faucet_port=port)

    def ledger_path(self, path: str | Path) -> TestValidatorServiceBuilder:
        return self._update(ledger_path=Path(path))

    def binary(self, path: str | Path) -> TestValidatorServiceBuilder:
        return self._update(binary=str(path))

    def extra_args(self, *args: str) -> TestValidatorServiceBuilder:
        return self._update(extra_args=tuple(args))

    def readiness_policy(self, policy: RetryPolicy) -> TestValidatorServiceBuilder:
        return self._update(readiness_policy=policy)

    def termination_policy(self, policy: RetryPolicy) -> TestValidatorServiceBuilder:
        return self._update(termination_policy=policy)

    def build(self, poller: ReadinessPoller | None = None) -> TestValidatorService:
        """Create the service; wipes and recreates the ledger unless one was given."""
        ledger = self.options.ledger_path or clean_test_ledger_dir(self.options.label)
        return TestValidatorService(self.options, ledger, poller=poller)


class TestValidatorService:
    """A solana-test-validator process scoped to one test."""

    __test__ = False  # Not a pytest test class

    def __init__(
        self,
        options: ServiceOptions,
        ledger_path: Path,
        poller: ReadinessPoller | None = None,
    ):
        self.options = options
        self._ledger_path = ledger_path
        self._endpoint = ServiceEndpoint(options.rpc_port)
        self._faucet_endpoint = ServiceEndpoint(options.faucet_port)
        self._poller = poller or ReadinessPoller()
        self.process = ProcessSupervisor(
            SERVICE_NAME,
            options.label,
            policy=options.termination_policy,
        )

    @classmethod
    def builder(cls, label: str = DEFAULT_LABEL) -> TestValidatorServiceBuilder:
        return TestValidatorServiceBuilder(label)

    @property
    def label(self) -> str:
        return self.options.label

    @property
    def endpoint(self) -> ServiceEndpoint:
        return self._endpoint

    @property
    def faucet_endpoint(self) -> ServiceEndpoint:
        return self._faucet_endpoint

    @property
    def ledger(self) -> Path:
        return self._ledger_path

    working_directory = ledger

    @property
    def rpc_url(self) -> str:
        return self._endpoint.url

    @property
    def faucet_addr(self) -> tuple[str, int]:
        return self._faucet_endpoint.address

    def is_running(self) -> bool:
        return self.process.is_running()

    def check_availability(self) -> None:
        """
        Probe the RPC port once.

        Raises:
            OSError: If nothing accepts connections on the port.
        """
        self._poller.probe(self._endpoint)

    def start(self, wait_tries: int | None = None) -> TestValidatorService:
        """
        Launch the validator and wait until its RPC port accepts connections.

        A validator already listening on the port (left over from an earlier
        run) is reused as is.

        Args:
            wait_tries: Readiness retries; defaults to the readiness policy's.

        Raises:
            SpawnError: If the binary cannot be launched.
            AvailabilityError: If the port never opens. The process remains
                owned by this service and is still terminated by stop().
        """
        try:
            self.check_availability()
        except OSError:
            pass
        else:
            log_event(
                logger,
                logging.INFO,
                LifecycleEvent.REUSED,
                f"Test validator already listening on {self._endpoint}, reusing it",
                endpoint=str(self._endpoint),
            )
            return self

        logger.info(f"Starting test validator process for {self.label}")
        self.run()
        self.wait_for_availability(wait_tries)
        logger.debug("Test validator service started")
        return self

    def run(self) -> None:
        """Spawn the validator process without waiting for readiness."""
        args = [
            "--ledger",
            str(self._ledger_path),
            "--rpc-port",
            str(self.options.rpc_port),
            "--faucet-port",
            str(self.options.faucet_port),
            *self.options.extra_args,
        ]
        self.process.spawn(
            self.options.binary,
            args,
            stdout=OutputPolicy.DISCARD,
            stderr=OutputPolicy.CAPTURE,
        )

    def wait_for_availability(self, wait_tries: int | None = None) -> int:
        """Block until the RPC port is live; returns the number of checks made."""
        policy = self.options.readiness_policy
        if wait_tries is not None:
            policy = policy.with_attempts(wait_tries)
        return self._poller.wait_ready(self._endpoint, policy, output=self.process.read_output)

    def output(self) -> str:
        """Captured diagnostic output of the validator process."""
        return self.process.read_output()

    def stop(self) -> None:
        """Terminate the validator process; safe to call repeatedly."""
        self.process.terminate()

    close = stop

    def __enter__(self) -> TestValidatorService:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def __repr__(self) -> str:
        return (
            f"TestValidatorService(label={self.label!r}, rpc_port={self.options.rpc_port}, "
            f"pid={self.process.pid})"
        )
