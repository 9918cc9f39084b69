"""
Readiness polling for network services.

A service is ready once it accepts TCP connections on its endpoint. No
payload is exchanged: connection acceptance alone is the signal.
"""

from __future__ import annotations

import logging
import socket
import time
from collections.abc import Callable
from dataclasses import dataclass

from validator_harness.core.errors import AvailabilityError
from validator_harness.core.events import LifecycleEvent, log_event
from validator_harness.core.policy import READINESS_POLICY, RetryPolicy

logger = logging.getLogger(__name__)

LOCALHOST = "127.0.0.1"

# Bound for a single TCP probe, independent of the retry policy
DEFAULT_CONNECT_TIMEOUT = 5.0


@dataclass(frozen=True)
class ServiceEndpoint:
    """Host and TCP port a service listens on."""

    port: int
    host: str = LOCALHOST

    @property
    def address(self) -> tuple[str, int]:
        return (self.host, self.port)

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class ReadinessPoller:
    """
    Polls an endpoint until it accepts connections.

    ``probe`` and ``sleep`` are injectable so tests can run the retry loop
    without touching the network or the wall clock.
    """

    def __init__(
        self,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        probe: Callable[[ServiceEndpoint], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.connect_timeout = connect_timeout
        self._probe = probe or self.check
        self._sleep = sleep

    def check(self, endpoint: ServiceEndpoint) -> None:
        """
        Open and immediately close a TCP connection to ``endpoint``.

        Raises:
            OSError: If the connection cannot be established in time.
        """
        with socket.create_connection(endpoint.address, timeout=self.connect_timeout):
            pass

    def probe(self, endpoint: ServiceEndpoint) -> None:
        """
        Run the configured probe once against ``endpoint``.

        Raises:
            OSError: If the endpoint is not available.
        """
        self._probe(endpoint)

    def wait_ready(
        self,
        endpoint: ServiceEndpoint,
        policy: RetryPolicy = READINESS_POLICY,
        output: Callable[[], str] | None = None,
    ) -> int:
        """
        Block until ``endpoint`` is live.

        Checks right away; each failed check with tries left sleeps
        ``policy.retry_delay`` and retries, so ``policy.max_attempts`` tries
        allow at most ``max_attempts + 1`` checks.

        Args:
            endpoint: Endpoint to probe.
            policy: Attempt budget and delay between checks.
            output: Returns the service's captured output; only called once
                all attempts are exhausted.

        Returns:
            Number of checks performed.

        Raises:
            AvailabilityError: If the endpoint never became available.
        """
        tries = policy.max_attempts
        checks = 0
        while True:
            checks += 1
            try:
                self._probe(endpoint)
            except OSError as e:
                if tries == 0:
                    raise self._exhausted(endpoint, policy, checks, e, output) from e
                self._sleep(policy.retry_delay)
                tries -= 1
                continue

            log_event(
                logger,
                logging.DEBUG,
                LifecycleEvent.READY,
                f"Service at {endpoint} accepted a connection after {checks} check(s)",
                endpoint=str(endpoint),
                checks=checks,
            )
            return checks

    def _exhausted(
        self,
        endpoint: ServiceEndpoint,
        policy: RetryPolicy,
        checks: int,
        error: OSError,
        output: Callable[[], str] | None,
    ) -> AvailabilityError:
        log_event(
            logger,
            logging.WARNING,
            LifecycleEvent.READINESS_FAILED,
            f"Failed to wait for service at {endpoint} after {policy.max_attempts} retries: {error!r}",
            endpoint=str(endpoint),
            checks=checks,
        )
        captured = ""
        if output is not None:
            try:
                captured = output()
            except OSError as e:
                captured = str(e)
            logger.warning(f"Service output:\n{captured}")
        return AvailabilityError(endpoint, checks, output=captured, cause=error)
