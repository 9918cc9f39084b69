"""
Path utilities for the validator harness.
"""

import os
import re
import shutil
from pathlib import Path

LEDGER_ROOT_ENV = "VALIDATOR_HARNESS_LEDGER_ROOT"


def get_harness_dir() -> Path:
    """Get the .validator-harness runtime directory."""
    return Path(".validator-harness")


def get_ledger_root() -> Path:
    """Get the directory under which per-test ledgers are created."""
    override = os.environ.get(LEDGER_ROOT_ENV)
    if override:
        return Path(override)
    return get_harness_dir() / "ledger"


def sanitize_label(label: str) -> str:
    """Turn a test label (e.g. a pytest node id) into a safe directory name."""
    safe = re.sub(r"[^\w\-.]", "_", label).strip("._")
    return safe or "test"


def clean_test_ledger_dir(label: str) -> Path:
    """Delete and recreate the ledger directory for ``label``."""
    path = (get_ledger_root() / sanitize_label(label)).resolve()
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path
