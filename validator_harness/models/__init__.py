"""Data models for the validator harness."""

from validator_harness.models.harness_config import (
    DeploySettings,
    HarnessConfig,
    HarnessConfigError,
    ValidatorSettings,
    load_harness_config,
)
from validator_harness.models.network import Network

__all__ = [
    "DeploySettings",
    "HarnessConfig",
    "HarnessConfigError",
    "Network",
    "ValidatorSettings",
    "load_harness_config",
]
