"""
Pytest fixtures for validator-harness tests.
"""

import socket
import stat
import sys
from pathlib import Path

import pytest

from validator_harness.utils.paths import LEDGER_ROOT_ENV

FAKE_VALIDATOR = Path(__file__).parent / "fake_validator.py"


@pytest.fixture(autouse=True)
def _isolated_ledger_root(tmp_path, monkeypatch):
    """Keep per-test ledgers out of the working tree."""
    monkeypatch.setenv(LEDGER_ROOT_ENV, str(tmp_path / "ledger"))


@pytest.fixture
def fake_validator_bin(tmp_path) -> Path:
    """An executable that behaves like solana-test-validator."""
    wrapper = tmp_path / "fake-solana-test-validator"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_VALIDATOR}" "$@"\n')
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return int(sock.getsockname()[1])


@pytest.fixture
def free_port() -> int:
    """A TCP port nothing is listening on."""
    return _free_port()


@pytest.fixture
def faucet_port() -> int:
    return _free_port()


@pytest.fixture
def listening_port():
    """A port with a listening socket (connections complete via the backlog)."""
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    server.bind(("127.0.0.1", 0))
    server.listen(16)
    try:
        yield int(server.getsockname()[1])
    finally:
        server.close()

