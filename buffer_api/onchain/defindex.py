"""DeFindex vault API client.

Vault creation, deposit and withdrawal are returned as unsigned XDR for the
wallet owner to sign; this client never signs anything.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional

import aiohttp

from buffer_api.config import settings
from buffer_api.models.schemas import (
    BufferBalancePayload,
    DeFindexCreateVaultPayload,
    DeFindexTransactionPayload,
    DeFindexVaultInfoPayload,
)
from buffer_api.onchain.base import BufferBalance, VaultCreation, parse_payload
from buffer_api.onchain.polling import RetryPolicy, Sleep, poll_until
from buffer_api.services.errors import ExternalServiceError

logger = logging.getLogger(__name__)

VAULT_FEE_BPS = 100


class DeFindexClient:
    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        network: Optional[str] = None,
        confirm_policy: Optional[RetryPolicy] = None,
        timeout_seconds: Optional[float] = None,
        sleep: Optional[Sleep] = None,
    ) -> None:
        self.api_url = (api_url or settings.defindex_api_url).rstrip("/")
        self._api_key = api_key or settings.defindex_api_key
        self.network = network or settings.stellar_network
        self.confirm_policy = confirm_policy or RetryPolicy(
            max_attempts=settings.vault_confirm_max_attempts,
            interval_seconds=settings.vault_confirm_interval_seconds,
            backoff_factor=1.5,
            max_interval_seconds=settings.vault_confirm_max_interval_seconds,
        )
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds or settings.http_timeout_seconds)
        self._sleep = sleep

    def __repr__(self) -> str:
        return f"DeFindexClient(api_url={self.api_url}, network={self.network})"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> tuple[int, Any]:
        url = f"{self.api_url}{path}"
        params = {"network": self.network, **(params or {})}
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method, url, params=params, json=json, headers=self._headers()
                ) as resp:
                    data = await resp.json(content_type=None)
                    return resp.status, data
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            # ValueError covers non-JSON bodies such as a gateway error page.
            raise ExternalServiceError(f"DeFindex {method} {path} failed: {exc}") from exc

    async def _post_for_xdr(self, path: str, body: dict, operation: str) -> str:
        status, data = await self._request("POST", path, json=body)
        if status >= 400:
            raise ExternalServiceError(f"DeFindex {operation} HTTP {status}")
        return parse_payload(DeFindexTransactionPayload, data, f"DeFindex {operation}").xdr

    async def create_vault(
        self,
        user_address: str,
        asset_address: str,
        strategy_address: str,
    ) -> VaultCreation:
        if not asset_address or not strategy_address:
            raise ExternalServiceError("Vault asset/strategy addresses are not configured")
        roles = {
            "emergencyManager": user_address,
            "feeReceiver": user_address,
            "manager": user_address,
            "rebalanceManager": user_address,
        }
        body = {
            "roles": roles,
            "vaultFeeBps": VAULT_FEE_BPS,
            "assets": [
                {
                    "address": asset_address,
                    "strategies": [
                        {"address": strategy_address, "name": "XLM Blend", "paused": False}
                    ],
                }
            ],
            "name_symbol": {"name": "Buffer Vault", "symbol": "BUFV"},
            "upgradable": True,
            "caller": user_address,
        }
        status, data = await self._request("POST", "/factory/create-vault", json=body)
        if status >= 400:
            raise ExternalServiceError(f"DeFindex create-vault HTTP {status}")
        payload = parse_payload(DeFindexCreateVaultPayload, data, "DeFindex create-vault")
        logger.info(
            "Prepared vault creation for %s (predicted %s)",
            user_address,
            payload.predictedVaultAddress,
        )
        return VaultCreation(
            transaction_xdr=payload.xdr,
            predicted_vault_address=payload.predictedVaultAddress,
        )

    async def get_vault(self, vault_address: str) -> Optional[DeFindexVaultInfoPayload]:
        status, data = await self._request("GET", f"/vault/{vault_address}")
        if status in (400, 404):
            return None
        if status >= 400:
            raise ExternalServiceError(f"DeFindex get vault HTTP {status}")
        return parse_payload(DeFindexVaultInfoPayload, data, "DeFindex vault")

    async def _vault_live(self, vault_address: str) -> bool:
        try:
            return await self.get_vault(vault_address) is not None
        except ExternalServiceError as exc:
            # The indexer lags the chain; transient upstream errors count as not yet live.
            logger.warning("Vault %s lookup failed: %s", vault_address, exc)
            return False

    async def wait_for_vault_confirmation(self, vault_address: str) -> bool:
        kwargs = {"sleep": self._sleep} if self._sleep else {}
        live = await poll_until(
            lambda: self._vault_live(vault_address),
            lambda result: not result,
            self.confirm_policy,
            label=f"vault {vault_address}",
            **kwargs,
        )
        return live

    async def build_deposit_transaction(self, contract_id: str, address: str, amount: str) -> str:
        body = {"amounts": [int(amount)], "caller": address, "invest": True}
        return await self._post_for_xdr(f"/vault/{contract_id}/deposit", body, "deposit")

    async def build_withdraw_transaction(self, contract_id: str, address: str, shares: str) -> str:
        body = {"shares": int(shares), "caller": address}
        return await self._post_for_xdr(f"/vault/{contract_id}/withdraw-shares", body, "withdraw")

    async def get_balance(self, contract_id: str, address: str) -> BufferBalance:
        status, data = await self._request(
            "GET", f"/vault/{contract_id}/balance", params={"from": address}
        )
        if status >= 400:
            raise ExternalServiceError(f"DeFindex balance HTTP {status}")
        payload = parse_payload(BufferBalancePayload, data, "DeFindex balance")
        return BufferBalance(
            available_shares=payload.availableShares,
            protected_shares=payload.protectedShares,
            total_deposited=payload.totalDeposited,
            last_deposit_ts=payload.lastDepositTs,
            version=payload.version,
        )
