"""
Harness configuration models.

A YAML file (harness.yaml by default) supplies defaults for the CLI:

    validator:
      label: my-suite
      rpc_port: 18899
      wait_tries: 20
    deploy:
      program: target/deploy/my_program.so
      program_keypair: target/deploy/my_program-keypair.json
      payer: ~/.config/solana/id.json
      network: localhost
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from validator_harness.core.errors import HarnessError
from validator_harness.models.network import Network

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "harness.yaml"


class ValidatorSettings(BaseModel):
    """Settings for the supervised validator process."""

    label: str = Field(default="test-validator-service", description="Test/service label")
    rpc_port: int = Field(default=8899, ge=1, le=65535)
    faucet_port: int = Field(default=9900, ge=1, le=65535)
    ledger_path: Path | None = Field(
        default=None, description="Existing ledger directory; a fresh one is created if unset"
    )
    binary: str = Field(default="solana-test-validator")
    wait_tries: int = Field(default=50, ge=0, description="Readiness retries before giving up")


class DeploySettings(BaseModel):
    """Settings for deploying a program artifact."""

    program: Path | None = None
    program_keypair: Path | None = None
    program_id: str | None = Field(
        default=None, description="Program id; derived from program_keypair if unset"
    )
    payer: Path | None = None
    network: str = Field(default="localhost", description="Preset name or RPC URL")

    @property
    def resolved_network(self) -> Network:
        return Network.parse(self.network)


class HarnessConfig(BaseModel):
    """Top-level harness configuration."""

    validator: ValidatorSettings = Field(default_factory=ValidatorSettings)
    deploy: DeploySettings = Field(default_factory=DeploySettings)


class HarnessConfigError(HarnessError):
    """Raised when a configuration file cannot be parsed or validated."""


def load_harness_config(path: Path | str | None = None) -> HarnessConfig:
    """
    Load harness configuration from YAML.

    A missing file yields the defaults.

    Raises:
        HarnessConfigError: If the file is not valid YAML or fails validation.
    """
    config_path = Path(path) if path is not None else Path(DEFAULT_CONFIG_FILE)
    if not config_path.exists():
        logger.debug(f"No harness config at {config_path}, using defaults")
        return HarnessConfig()

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise HarnessConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise HarnessConfigError(f"{config_path} must contain a mapping at the top level")

    try:
        return HarnessConfig(**data)
    except ValidationError as e:
        raise HarnessConfigError(f"Invalid harness config in {config_path}:\n{e}") from e
