"""Crossmint custodial wallet client."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote

import aiohttp

from buffer_api.config import settings
from buffer_api.models.schemas import CrossmintBalanceEntry, CrossmintWalletPayload
from buffer_api.onchain.base import WalletInfo, WalletState, parse_payload
from buffer_api.services.errors import ExternalServiceError, WalletNotReady

logger = logging.getLogger(__name__)

NATIVE_TOKEN = "xlm"


class CrossmintClient:
    """Creates or fetches the email-owned smart wallet for a user."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        chain: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.api_url = (api_url or settings.crossmint_api_url).rstrip("/")
        self._api_key = api_key or settings.crossmint_api_key
        self.chain = chain or settings.crossmint_chain
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds or settings.http_timeout_seconds)

    def __repr__(self) -> str:
        return f"CrossmintClient(api_url={self.api_url}, chain={self.chain})"

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise ExternalServiceError("Missing CROSSMINT_API_KEY")
        return {"X-API-KEY": self._api_key, "Content-Type": "application/json"}

    def wallet_locator(self, email: str) -> str:
        return f"email:{email.strip().lower()}:{self.chain}:smart"

    async def _request(self, method: str, path: str, json: Optional[dict] = None) -> tuple[int, Any]:
        url = f"{self.api_url}{path}"
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(method, url, json=json, headers=self._headers()) as resp:
                    data = await resp.json(content_type=None)
                    return resp.status, data
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            raise ExternalServiceError(f"Crossmint {method} {path} failed: {exc}") from exc

    async def get_wallet(self, email: str) -> Optional[WalletInfo]:
        locator = quote(self.wallet_locator(email), safe=":@")
        status, data = await self._request("GET", f"/wallets/{locator}")
        if status == 404:
            return None
        if status >= 400:
            raise ExternalServiceError(f"Crossmint get wallet HTTP {status}")
        return self._to_wallet(data)

    async def create_or_get_wallet(self, email: str) -> WalletInfo:
        existing = await self.get_wallet(email)
        if existing is not None:
            logger.info("Crossmint wallet already exists: %s", existing.address)
            return existing
        body = {
            "chainType": self.chain,
            "type": "smart",
            "owner": f"email:{email.strip().lower()}",
            "config": {"adminSigner": {"type": "api-key"}},
        }
        status, data = await self._request("POST", "/wallets", json=body)
        if status >= 400:
            raise ExternalServiceError(f"Crossmint create wallet HTTP {status}")
        wallet = self._to_wallet(data)
        logger.info("Crossmint wallet created: %s", wallet.address)
        return wallet

    def _to_wallet(self, data: Any) -> WalletInfo:
        payload = parse_payload(CrossmintWalletPayload, data, "Crossmint")
        chain = payload.chainType or payload.chain or self.chain
        return WalletInfo(address=payload.address, chain=chain, wallet_id=payload.address)

    async def get_wallet_state(self, email: str) -> WalletState:
        """Wallet address plus its native XLM balance."""
        wallet = await self.get_wallet(email)
        if wallet is None:
            raise WalletNotReady(f"No Crossmint wallet for {email.strip().lower()}")
        locator = quote(self.wallet_locator(email), safe=":@")
        status, data = await self._request(
            "GET", f"/wallets/{locator}/balances?tokens={NATIVE_TOKEN}&chains={self.chain}"
        )
        if status >= 400:
            raise ExternalServiceError(f"Crossmint wallet balances HTTP {status}")
        if not isinstance(data, list):
            raise ExternalServiceError("Crossmint wallet balances returned a non-list payload")
        entries = [parse_payload(CrossmintBalanceEntry, item, "Crossmint balances") for item in data]
        native = next(
            (entry for entry in entries if (entry.symbol or "").lower() == NATIVE_TOKEN),
            None,
        )
        amount = native.amount if native else "0"
        raw_amount = (native.rawAmount or native.amount) if native else "0"
        return WalletState(
            address=wallet.address,
            chain=wallet.chain,
            native_amount=amount,
            native_raw_amount=raw_amount,
        )
