"""Contracts for the external collaborators the services depend on."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from pydantic import ValidationError

from buffer_api.services.errors import ExternalServiceError


@dataclass(frozen=True)
class WalletInfo:
    address: str
    chain: str
    wallet_id: str


@dataclass(frozen=True)
class VaultCreation:
    transaction_xdr: str
    predicted_vault_address: Optional[str]


@dataclass(frozen=True)
class BufferBalance:
    available_shares: str
    protected_shares: str
    total_deposited: str
    last_deposit_ts: int = 0
    version: int = 0


@dataclass(frozen=True)
class WalletState:
    address: str
    chain: str
    native_amount: str
    native_raw_amount: str
    wallet_type: str = "smart"


class ChainTxStatus:
    NOT_FOUND = "NOT_FOUND"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


@dataclass(frozen=True)
class ChainTransaction:
    hash: str
    status: str
    ledger: Optional[int] = None

    @property
    def pending(self) -> bool:
        return self.status == ChainTxStatus.NOT_FOUND

    @property
    def succeeded(self) -> bool:
        return self.status == ChainTxStatus.SUCCESS


class WalletProvider(Protocol):
    async def create_or_get_wallet(self, email: str) -> WalletInfo: ...

    async def get_wallet_state(self, email: str) -> WalletState: ...


class VaultProtocol(Protocol):
    async def create_vault(
        self,
        user_address: str,
        asset_address: str,
        strategy_address: str,
    ) -> VaultCreation: ...

    async def wait_for_vault_confirmation(self, vault_address: str) -> bool: ...

    async def build_deposit_transaction(self, contract_id: str, address: str, amount: str) -> str: ...

    async def build_withdraw_transaction(self, contract_id: str, address: str, shares: str) -> str: ...

    async def get_balance(self, contract_id: str, address: str) -> BufferBalance: ...


class ChainRpc(Protocol):
    async def get_transaction_status(self, tx_hash: str) -> ChainTransaction: ...

    async def wait_for_transaction(self, tx_hash: str) -> ChainTransaction: ...


def parse_payload(model, data, source: str):
    """Validate an upstream JSON payload, raising ExternalServiceError on shape mismatch."""
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ExternalServiceError(
            f"{source} returned an unexpected payload: {exc.error_count()} validation error(s)"
        ) from exc
