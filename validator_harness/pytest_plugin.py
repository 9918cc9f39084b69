"""
Pytest fixtures for tests that need a live test validator.

Registered through the ``pytest11`` entry point, so installing the package
makes the fixtures available:

    def test_transfer(test_validator):
        client = SolanaRpcClient(test_validator.rpc_url)
        ...

Override ``validator_builder`` in a conftest.py to change ports or the
binary for a module or a whole suite.
"""

from __future__ import annotations

import pytest

from validator_harness.core.errors import TerminationFatal
from validator_harness.core.service import TestValidatorService, TestValidatorServiceBuilder
from validator_harness.utils.paths import sanitize_label

# Exit code used when a validator process could not be stopped
EXIT_STUCK_PROCESS = 3


def stop_or_abort(service: TestValidatorService) -> None:
    """Stop ``service``; a process that refuses to die aborts the whole session."""
    try:
        service.stop()
    except TerminationFatal as e:
        pytest.exit(f"Aborting test session: {e}", returncode=EXIT_STUCK_PROCESS)


@pytest.fixture
def validator_builder(request: pytest.FixtureRequest) -> TestValidatorServiceBuilder:
    """Builder labeled after the requesting test."""
    return TestValidatorService.builder(sanitize_label(request.node.name))


@pytest.fixture
def test_validator(validator_builder: TestValidatorServiceBuilder):
    """A running test validator, terminated when the test finishes."""
    service = validator_builder.build()
    try:
        service.start()
        yield service
    finally:
        stop_or_abort(service)
