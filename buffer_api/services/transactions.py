from __future__ import annotations

import logging
import re
from typing import Any, Optional

from pydantic import ValidationError

from buffer_api.config import settings
from buffer_api.models.database import TransactionStatus, TransactionType
from buffer_api.models.schemas import ConfirmTransactionRequest, LegacySubmitRequest
from buffer_api.onchain.base import VaultProtocol
from buffer_api.services.datastore import Datastore
from buffer_api.services.errors import (
    ContractNotAvailable,
    OnboardingIncomplete,
    RequestValidationFailed,
    TransactionNotFound,
    UserSignatureRequired,
)

logger = logging.getLogger(__name__)

FUND_MOVEMENTS = (TransactionType.DEPOSIT, TransactionType.WITHDRAW)


def parse_confirm_payload(payload: Any) -> ConfirmTransactionRequest:
    """Validate a deposit/withdraw confirmation body.

    Bodies in the old server-signing shape (raw XDR plus wallet locator, no
    hash) are a policy rejection, not a malformed request.
    """
    try:
        return ConfirmTransactionRequest.model_validate(payload)
    except ValidationError as exc:
        try:
            LegacySubmitRequest.model_validate(payload)
        except ValidationError:
            raise RequestValidationFailed(details=exc.errors(include_url=False)) from exc
        raise UserSignatureRequired() from exc


def _positive_amount(value: str, field: str) -> str:
    text = str(value).strip()
    if not re.fullmatch(r"\d+", text, re.ASCII) or int(text) <= 0:
        raise RequestValidationFailed(f"{field} must be a positive integer string")
    return str(int(text))


class TransactionService:
    """Prepare and confirm user-signed deposits and withdrawals."""

    def __init__(
        self,
        datastore: Datastore,
        vault_protocol: VaultProtocol,
        default_contract_id: Optional[str] = None,
    ) -> None:
        self.datastore = datastore
        self.vault_protocol = vault_protocol
        self.default_contract_id = (
            default_contract_id if default_contract_id is not None else settings.buffer_contract_id
        )

    def resolve_contract_id(self, user_contract_address: Optional[str]) -> Optional[str]:
        if user_contract_address:
            return user_contract_address
        return self.default_contract_id or None

    async def _funding_context(self, user_id: str) -> tuple[str, str]:
        user = await self.datastore.get_user(user_id)
        wallet_address = user.stellar_address if user is not None else None
        if not wallet_address:
            raise OnboardingIncomplete()
        contract_id = self.resolve_contract_id(user.buffer_contract_address)
        if not contract_id:
            raise ContractNotAvailable()
        return wallet_address, contract_id

    async def get_balance(self, user_id: str) -> dict:
        wallet_address, contract_id = await self._funding_context(user_id)
        balance = await self.vault_protocol.get_balance(contract_id, wallet_address)
        try:
            await self.datastore.sync_user_balance(user_id, balance)
        except Exception as exc:
            # Cached copy only; the live read is what the caller gets.
            logger.warning("Balance sync failed for user %s: %s", user_id, exc)
            await self.datastore.rollback()
        return {
            "user_id": user_id,
            "balance": {
                "available_shares": balance.available_shares,
                "protected_shares": balance.protected_shares,
                "total_deposited": balance.total_deposited,
                "last_deposit_ts": balance.last_deposit_ts,
                "version": balance.version,
            },
        }

    async def prepare(self, kind: str, user_id: str, amount: str) -> dict:
        if kind not in FUND_MOVEMENTS:
            raise RequestValidationFailed(f"Unsupported transaction kind {kind}")
        amount = _positive_amount(
            amount, "amountStroops" if kind == TransactionType.DEPOSIT else "sharesAmount"
        )

        wallet_address, contract_id = await self._funding_context(user_id)

        if kind == TransactionType.DEPOSIT:
            transaction_xdr = await self.vault_protocol.build_deposit_transaction(
                contract_id, wallet_address, amount
            )
            tx_id = await self.datastore.create_transaction(
                user_id,
                TransactionType.DEPOSIT,
                amount_stroops=amount,
                metadata={"bufferContractId": contract_id, "walletAddress": wallet_address},
            )
        else:
            transaction_xdr = await self.vault_protocol.build_withdraw_transaction(
                contract_id, wallet_address, amount
            )
            tx_id = await self.datastore.create_transaction(
                user_id,
                TransactionType.WITHDRAW,
                shares_delta=amount,
                metadata={"bufferContractId": contract_id, "walletAddress": wallet_address},
            )

        logger.info("Prepared %s %s for user %s via %s", kind, tx_id, user_id, contract_id)
        return {
            "tx_id": tx_id,
            "transaction_xdr": transaction_xdr,
            "wallet_address": wallet_address,
            "buffer_contract_id": contract_id,
        }

    async def prepare_deposit(self, user_id: str, amount_stroops: str) -> dict:
        return await self.prepare(TransactionType.DEPOSIT, user_id, amount_stroops)

    async def prepare_withdraw(self, user_id: str, shares_amount: str) -> dict:
        return await self.prepare(TransactionType.WITHDRAW, user_id, shares_amount)

    async def _owned(self, user_id: str, tx_id: str, kind: Optional[str]):
        record = await self.datastore.get_transaction(user_id, tx_id)
        if kind is not None and record.transaction_type != kind:
            raise TransactionNotFound(f"Transaction {tx_id} is not a {kind.lower()}")
        return record

    async def confirm(
        self,
        user_id: str,
        tx_id: str,
        transaction_hash: str,
        kind: Optional[str] = None,
    ) -> dict:
        await self._owned(user_id, tx_id, kind)
        await self.datastore.confirm_transaction(user_id, tx_id, transaction_hash)
        return {
            "tx_id": tx_id,
            "transaction_hash": transaction_hash,
            "status": TransactionStatus.CONFIRMED,
        }

    async def confirm_payload(self, payload: Any, kind: Optional[str] = None) -> dict:
        request = parse_confirm_payload(payload)
        return await self.confirm(request.userId, request.txId, request.transactionHash, kind=kind)

    async def cancel(
        self,
        user_id: str,
        tx_id: str,
        reason: Optional[str] = None,
        kind: Optional[str] = None,
    ) -> dict:
        await self._owned(user_id, tx_id, kind)
        await self.datastore.fail_transaction(user_id, tx_id, reason or "Cancelled by user")
        return {"tx_id": tx_id, "transaction_hash": None, "status": TransactionStatus.FAILED}
