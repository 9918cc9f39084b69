"""
Minimal JSON-RPC client for reading deployed program bytes.

Resolves the bytes currently stored for a program id, unwrapping the
upgradeable loader's program -> program-data indirection.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any

import httpx

from validator_harness.core.errors import (
    ArtifactDecodeError,
    ArtifactStateError,
    NotDeployedError,
    RpcError,
)

logger = logging.getLogger(__name__)

BPF_LOADER_DEPRECATED_ID = "BPFLoader1111111111111111111111111111111111"
BPF_LOADER_ID = "BPFLoader2111111111111111111111111111111111"
BPF_LOADER_UPGRADEABLE_ID = "BPFLoaderUpgradeab1e11111111111111111111111"

DEFAULT_TIMEOUT = 30.0
DEFAULT_COMMITMENT = "confirmed"


def decode_account_data(data: Any) -> bytes:
    """
    Decode an ``[payload, encoding]`` pair as returned by getAccountInfo.

    Raises:
        ArtifactDecodeError: If the value is not a base64 payload.
    """
    if not isinstance(data, list) or len(data) != 2 or data[1] != "base64":
        raise ArtifactDecodeError(f"Unsupported account data encoding: {data!r:.80}")
    try:
        return base64.b64decode(data[0], validate=True)
    except (binascii.Error, TypeError) as e:
        raise ArtifactDecodeError(f"Invalid base64 account data: {e}") from e


class SolanaRpcClient:
    """
    Synchronous JSON-RPC client over httpx.

    Only the calls the harness needs are implemented.
    """

    def __init__(
        self,
        url: str,
        timeout: float = DEFAULT_TIMEOUT,
        commitment: str = DEFAULT_COMMITMENT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.url = url
        self.commitment = commitment
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )
        self._request_id = 0

    def _call(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}
        response = self._client.post(self.url, json=payload)
        response.raise_for_status()
        body = response.json()
        if "error" in body:
            error = body["error"] or {}
            raise RpcError(error.get("code", -1), error.get("message", "unknown error"))
        return body.get("result")

    def get_account(self, pubkey: str) -> dict[str, Any] | None:
        """
        Fetch an account with jsonParsed encoding.

        Returns:
            The account object, or None if the account does not exist.
        """
        result = self._call(
            "getAccountInfo",
            [pubkey, {"encoding": "jsonParsed", "commitment": self.commitment}],
        )
        if not isinstance(result, dict):
            raise ArtifactDecodeError(f"Unexpected getAccountInfo result: {result!r:.80}")
        return result.get("value")

    def _require_account(self, pubkey: str) -> dict[str, Any]:
        account = self.get_account(pubkey)
        if account is None:
            raise NotDeployedError(f"Account {pubkey} not found")
        return account

    def fetch_program_bytes(self, program_id: str) -> bytes:
        """
        Return the program bytes currently deployed under ``program_id``.

        Raises:
            NotDeployedError: If the program (or its data account) is missing.
            ArtifactStateError: If the account is not a program or is in a
                state with no program bytes.
            ArtifactDecodeError: If the RPC payload cannot be decoded.
        """
        account = self._require_account(program_id)
        owner = account.get("owner")

        if owner in (BPF_LOADER_ID, BPF_LOADER_DEPRECATED_ID):
            return decode_account_data(account.get("data"))

        if owner != BPF_LOADER_UPGRADEABLE_ID:
            raise ArtifactStateError(f"Non-program account {program_id} (owner {owner})")

        parsed = self._parsed(account)
        state = parsed.get("type")
        info = parsed.get("info") or {}

        if state == "program":
            programdata_address = info.get("programData")
            if not programdata_address:
                raise ArtifactDecodeError(f"Program {program_id} has no programData address")
            logger.debug(f"Program {program_id} data lives in {programdata_address}")
            programdata = self._parsed(self._require_account(programdata_address))
            if programdata.get("type") != "programData":
                raise ArtifactStateError(
                    f"Invalid program state: {programdata_address} is {programdata.get('type')!r}"
                )
            return decode_account_data((programdata.get("info") or {}).get("data"))

        if state == "buffer":
            return decode_account_data(info.get("data"))

        raise ArtifactStateError(f"Invalid program state: {state!r}")

    @staticmethod
    def _parsed(account: dict[str, Any]) -> dict[str, Any]:
        data = account.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("parsed"), dict):
            # The node falls back to raw bytes when it cannot parse loader state
            raise ArtifactStateError("Invalid program state: loader account could not be parsed")
        return data["parsed"]

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SolanaRpcClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
