"""JSON-RPC client for a Soroban RPC endpoint.

API Docs: https://developers.stellar.org/docs/data/apis/rpc/api-reference/methods
"""

import itertools
import logging
from typing import Any, Optional

import httpx

from ciphertoken.errors import RpcError

logger = logging.getLogger(__name__)


class SorobanRpcClient:
    """Thin async wrapper over the Soroban RPC methods the service uses.

    A new httpx client is opened per call so the poller holds no connection
    state between ticks.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize RPC client.

        Args:
            rpc_url: Soroban RPC endpoint
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)

    async def call(self, method: str, params: Optional[dict] = None) -> dict:
        """Call a JSON-RPC method and return its result object.

        Raises:
            RpcError: On transport failure, non-200 status or a JSON-RPC error
        """
        payload: dict[str, Any] = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
        }
        if params is not None:
            payload["params"] = params

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise RpcError(f"{method} request failed: {e}") from e

        if response.status_code != 200:
            raise RpcError(f"{method} returned HTTP {response.status_code}")

        data = response.json()
        error = data.get("error")
        if error:
            raise RpcError(
                f"{method} failed: {error.get('message', error)}",
                code=error.get("code"),
            )

        return data.get("result") or {}

    async def get_latest_ledger(self) -> dict:
        return await self.call("getLatestLedger")

    async def get_events(
        self,
        filters: list[dict],
        start_ledger: Optional[int] = None,
        end_ledger: Optional[int] = None,
        cursor: Optional[str] = None,
        limit: int = 1000,
    ) -> dict:
        """Query contract events.

        Either start_ledger or cursor must be given; the RPC rejects both.
        """
        params: dict[str, Any] = {"filters": filters}
        pagination: dict[str, Any] = {"limit": limit}
        if cursor:
            pagination["cursor"] = cursor
        else:
            params["startLedger"] = start_ledger
            if end_ledger is not None:
                params["endLedger"] = end_ledger
        params["pagination"] = pagination
        return await self.call("getEvents", params)

    async def simulate_transaction(self, transaction_xdr: str) -> dict:
        return await self.call("simulateTransaction", {"transaction": transaction_xdr})

    async def send_transaction(self, transaction_xdr: str) -> dict:
        return await self.call("sendTransaction", {"transaction": transaction_xdr})

    async def get_transaction(self, tx_hash: str) -> dict:
        return await self.call("getTransaction", {"hash": tx_hash})

    async def get_ledger_entries(self, keys: list[str]) -> dict:
        return await self.call("getLedgerEntries", {"keys": keys})
