"""
JSON-RPC client for the settlement ledger.
Only the two reads the engine needs: a finalized transaction and an account.
"""
import itertools
import logging
from typing import Any, Dict, Optional

import httpx

from paygate.core.config import settings
from paygate.core.errors import LedgerUnavailable

logger = logging.getLogger(__name__)


class LedgerClient:

    def __init__(self, rpc_url: Optional[str] = None, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.rpc_url = rpc_url or settings.LEDGER_RPC_URL
        self.timeout = timeout if timeout is not None else settings.LEDGER_TIMEOUT_SECONDS
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.warning(f"[Ledger] {method} transport error: {e}")
            raise LedgerUnavailable("Ledger RPC request failed")
        except ValueError:
            raise LedgerUnavailable("Ledger RPC returned invalid JSON")

        if not isinstance(body, dict):
            logger.warning(f"[Ledger] {method} returned a non-object body: {type(body).__name__}")
            raise LedgerUnavailable("Ledger RPC returned an unexpected response")
        if body.get("error"):
            logger.warning(f"[Ledger] {method} RPC error: {body['error']}")
            raise LedgerUnavailable("Ledger RPC returned an error")
        return body.get("result")

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Finalized transaction by signature, or None when the ledger has no such transaction."""
        return await self._call(
            "getTransaction",
            [signature, {"commitment": "finalized", "encoding": "json", "maxSupportedTransactionVersion": 0}],
        )

    async def get_account(self, address: str) -> Optional[Dict[str, Any]]:
        """
        Account data at address, or None when the account does not exist.
        Program accounts are returned in parsed form; the parsed payload is unwrapped.
        """
        result = await self._call("getAccountInfo", [address, {"commitment": "confirmed", "encoding": "jsonParsed"}])
        if not result:
            return None
        if not isinstance(result, dict):
            raise LedgerUnavailable("Ledger RPC returned an unexpected account result")
        value = result.get("value")
        if not value:
            return None
        if not isinstance(value, dict):
            raise LedgerUnavailable("Ledger RPC returned an unexpected account result")
        data = value.get("data")
        if isinstance(data, dict) and "parsed" in data:
            return data["parsed"]
        return value
