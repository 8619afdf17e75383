"""Soroban JSON-RPC client used to observe transaction finality."""
from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Optional

import aiohttp

from buffer_api.config import settings
from buffer_api.models.schemas import SorobanTransactionPayload
from buffer_api.onchain.base import ChainTransaction, parse_payload
from buffer_api.onchain.polling import RetryPolicy, Sleep, poll_until
from buffer_api.services.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class SorobanRpcClient:
    def __init__(
        self,
        rpc_url: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        timeout_seconds: Optional[float] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.rpc_url = rpc_url or settings.stellar_soroban_rpc_url
        self.policy = policy or RetryPolicy(
            max_attempts=settings.chain_poll_max_attempts,
            interval_seconds=settings.chain_poll_interval_seconds,
        )
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds or settings.http_timeout_seconds)
        self._sleep = sleep
        self._ids = itertools.count(1)

    def __repr__(self) -> str:
        return f"SorobanRpcClient(rpc_url={self.rpc_url})"

    async def _call(self, method: str, params: dict) -> dict:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(self.rpc_url, json=body) as resp:
                    if resp.status >= 400:
                        text = await resp.text()
                        raise ExternalServiceError(
                            f"Soroban RPC {method} HTTP {resp.status}: {text[:200]}"
                        )
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise ExternalServiceError(f"Soroban RPC {method} request failed: {exc}") from exc
        if not isinstance(data, dict):
            raise ExternalServiceError(f"Soroban RPC {method} returned a non-object response")
        if data.get("error"):
            raise ExternalServiceError(f"Soroban RPC {method} error: {data['error']}")
        result = data.get("result")
        if not isinstance(result, dict):
            raise ExternalServiceError(f"Soroban RPC {method} returned no result")
        return result

    async def get_transaction_status(self, tx_hash: str) -> ChainTransaction:
        result = await self._call("getTransaction", {"hash": tx_hash})
        payload = parse_payload(SorobanTransactionPayload, result, "Soroban RPC getTransaction")
        return ChainTransaction(
            hash=tx_hash,
            status=payload.status.upper(),
            ledger=payload.ledger,
        )

    async def wait_for_transaction(self, tx_hash: str) -> ChainTransaction:
        """Poll until the transaction leaves NOT_FOUND or the attempt budget is spent."""
        kwargs = {"sleep": self._sleep} if self._sleep else {}
        tx = await poll_until(
            lambda: self.get_transaction_status(tx_hash),
            lambda result: result.pending,
            self.policy,
            label=f"getTransaction {tx_hash}",
            **kwargs,
        )
        logger.info("Transaction %s resolved with status %s", tx_hash, tx.status)
        return tx
