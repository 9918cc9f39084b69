"""
Conditional program deployment.

Deploying a program is slow, so the deployed bytes are compared with the
local artifact first and the deploy command only runs when they differ.
"""

from __future__ import annotations

import itertools
import logging
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import httpx

from validator_harness.core.errors import DeployError, HarnessError
from validator_harness.core.events import LifecycleEvent, log_event
from validator_harness.core.rpc import SolanaRpcClient
from validator_harness.models.network import Network

logger = logging.getLogger(__name__)

SOLANA_CLI = "solana"
SOLANA_KEYGEN_CLI = "solana-keygen"


def has_changed(local_path: Path | str, remote_bytes: bytes) -> bool:
    """
    Compare a local artifact against the deployed bytes.

    The shorter of the two is padded with zero bytes, so trailing zeros
    never count as a difference: ``[1, 2, 3, 0, 0]`` against ``[1, 2, 3]``
    is unchanged. Program-data accounts are allocated larger than the
    program and zero filled, which this padding absorbs; it also hides a
    local file that only grew by zero bytes.
    """
    local_bytes = Path(local_path).read_bytes()
    return any(
        a != b for a, b in itertools.zip_longest(local_bytes, remote_bytes, fillvalue=0)
    )


@dataclass(frozen=True)
class DeploymentArtifact:
    """A local program binary and the keypair that addresses its deployed copy."""

    path: Path
    keypair_path: Path
    program_id: str | None = None


class ConditionalDeployer:
    """
    Deploys a program artifact, optionally only when it changed.

    ``fetch_remote_bytes`` maps a program id to the deployed bytes; by
    default it queries the network's RPC endpoint. ``runner`` executes
    CLI commands and defaults to subprocess.run.
    """

    def __init__(
        self,
        artifact: DeploymentArtifact,
        payer_path: Path | str,
        network: Network | None = None,
        fetch_remote_bytes: Callable[[str], bytes] | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        solana_cli: str = SOLANA_CLI,
    ):
        self.artifact = artifact
        self.payer_path = Path(payer_path)
        self.network = network or Network.localhost()
        self._fetch_remote_bytes = fetch_remote_bytes
        self._runner = runner
        self.solana_cli = solana_cli
        self._program_id = artifact.program_id

    def for_network(self, network: Network) -> ConditionalDeployer:
        return ConditionalDeployer(
            self.artifact,
            self.payer_path,
            network=network,
            fetch_remote_bytes=self._fetch_remote_bytes,
            runner=self._runner,
            solana_cli=self.solana_cli,
        )

    def _run(self, cmd: list[str]) -> subprocess.CompletedProcess:
        try:
            result = self._runner(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            raise DeployError(f"Failed to run {cmd[0]}: {e}", cmd=cmd) from e
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise DeployError(
                stderr or f"{' '.join(cmd)} exited with code {result.returncode}",
                cmd=cmd,
                returncode=result.returncode,
                stderr=stderr,
            )
        return result

    @property
    def program_id(self) -> str:
        """Program id of the artifact, derived from its keypair when not given."""
        if self._program_id is None:
            result = self._run([SOLANA_KEYGEN_CLI, "pubkey", str(self.artifact.keypair_path)])
            self._program_id = result.stdout.strip()
        return self._program_id

    def fetch_remote_bytes(self) -> bytes:
        if self._fetch_remote_bytes is not None:
            return self._fetch_remote_bytes(self.program_id)
        with SolanaRpcClient(self.network.rpc_url) as client:
            return client.fetch_program_bytes(self.program_id)

    def is_changed(self) -> bool:
        """
        Whether the local artifact differs from the deployed program.

        Raises:
            ArtifactError: If the deployed copy cannot be resolved.
            OSError: If the local artifact cannot be read.
        """
        return has_changed(self.artifact.path, self.fetch_remote_bytes())

    def deploy(self) -> None:
        """
        Run ``solana program deploy`` for the artifact.

        Raises:
            DeployError: With the command's stderr, if it fails. Not retried.
        """
        cmd = [
            self.solana_cli,
            "program",
            "deploy",
            "--url",
            self.network.moniker,
            "--program-id",
            str(self.artifact.keypair_path),
            "--keypair",
            str(self.payer_path),
            str(self.artifact.path),
        ]
        log_event(
            logger,
            logging.INFO,
            LifecycleEvent.DEPLOY_STARTED,
            f"Deploying {self.artifact.path} to {self.network}",
            network=str(self.network),
        )
        self._run(cmd)
        log_event(
            logger,
            logging.INFO,
            LifecycleEvent.DEPLOYED,
            f"Deployed {self.artifact.path} to {self.network}",
            network=str(self.network),
        )

    def deploy_if_changed(self) -> bool:
        """
        Deploy unless the deployed copy is known to match the local artifact.

        When the comparison itself fails the artifact is assumed changed.

        Returns:
            True if a deploy ran.
        """
        try:
            changed = self.is_changed()
        except (HarnessError, httpx.HTTPError, OSError, ValueError) as e:
            logger.warning(f"Could not compare {self.artifact.path} with deployed program: {e}")
            changed = True

        if not changed:
            log_event(
                logger,
                logging.INFO,
                LifecycleEvent.DEPLOY_SKIPPED,
                f"{self.artifact.path} unchanged on {self.network}, skipping deploy",
                network=str(self.network),
            )
            return False

        self.deploy()
        return True
