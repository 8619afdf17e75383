"""User onboarding: custodial wallet, then a DeFindex vault signed by the user.

Status flow::

    PENDING -> WALLET_CREATED -> VAULT_PREPARING -> VAULT_PENDING_SIGNATURE -> READY

``FAILED`` can be entered from any step and is left again by calling
``onboard_user``, which re-derives the forward status from what is persisted.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
from typing import Optional

from buffer_api.config import settings
from buffer_api.models.database import OnboardingStatus, Profile, TransactionType, utcnow
from buffer_api.onchain.base import ChainRpc, VaultProtocol, WalletProvider
from buffer_api.services.datastore import Datastore
from buffer_api.services.errors import (
    VaultAlreadyActive,
    VaultNotConfirmed,
    VaultPrepareInProgress,
    VaultSubmitInvalidState,
    VaultTransactionFailed,
    WalletNotReady,
)

logger = logging.getLogger(__name__)

VAULT_CREATE_OPERATION = "VAULT_CREATE"
# A VAULT_PREPARING row older than this is treated as abandoned by a crashed request.
VAULT_PREPARE_STALE_AFTER = timedelta(minutes=2)

RECOVERABLE_STATUSES = {
    OnboardingStatus.NOT_STARTED,
    OnboardingStatus.PENDING,
    OnboardingStatus.FAILED,
}


def _state(user_id: str, user: Optional[Profile]) -> dict:
    if user is None:
        return {
            "user_id": user_id,
            "stellar_address": None,
            "vault_address": None,
            "status": OnboardingStatus.NOT_STARTED,
        }
    return {
        "user_id": user_id,
        "stellar_address": user.stellar_address or None,
        "vault_address": user.defindex_vault_address or None,
        "status": user.buffer_onboarding_status or OnboardingStatus.PENDING,
    }


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OnboardingService:
    def __init__(
        self,
        datastore: Datastore,
        wallet_provider: WalletProvider,
        vault_protocol: VaultProtocol,
        chain_rpc: ChainRpc,
        asset_address: Optional[str] = None,
        strategy_address: Optional[str] = None,
    ) -> None:
        self.datastore = datastore
        self.wallet_provider = wallet_provider
        self.vault_protocol = vault_protocol
        self.chain_rpc = chain_rpc
        self.asset_address = asset_address or settings.xlm_contract_address
        self.strategy_address = strategy_address or settings.xlm_blend_strategy

    async def onboard_user(self, user_id: str, email: str) -> dict:
        logger.info("Starting onboarding for user %s", user_id)
        try:
            user = await self.datastore.upsert_user(user_id, email)

            if user.buffer_onboarding_status == OnboardingStatus.READY:
                logger.info("User %s already onboarded", user_id)
                return _state(user_id, user)

            if not user.stellar_address:
                await self._create_wallet(user_id, email)
                user = await self.datastore.get_user(user_id)

            await self._advance_from_persisted(user)
            return _state(user_id, await self.datastore.get_user(user_id))
        except Exception as exc:
            logger.error("Onboarding failed for user %s: %s", user_id, exc)
            await self._mark_failed(user_id)
            raise

    async def get_status(self, user_id: str) -> dict:
        return _state(user_id, await self.datastore.get_user(user_id))

    async def prepare_vault_creation(self, user_id: str) -> dict:
        user = await self.datastore.get_user(user_id)
        wallet_address = user.stellar_address if user is not None else None
        if not wallet_address:
            raise WalletNotReady()
        if user.defindex_vault_address and user.buffer_onboarding_status == OnboardingStatus.READY:
            raise VaultAlreadyActive()

        previous_status = user.buffer_onboarding_status
        if previous_status == OnboardingStatus.VAULT_PREPARING:
            updated_at = _as_utc(user.updated_at)
            if updated_at is not None and utcnow() - updated_at < VAULT_PREPARE_STALE_AFTER:
                raise VaultPrepareInProgress()
            logger.warning("Taking over stale vault preparation for user %s", user_id)

        acquired = await self.datastore.update_onboarding_status(
            user_id,
            OnboardingStatus.VAULT_PREPARING,
            expected_status=previous_status,
        )
        if not acquired:
            raise VaultPrepareInProgress()

        try:
            vault = await self.vault_protocol.create_vault(
                user_address=wallet_address,
                asset_address=self.asset_address,
                strategy_address=self.strategy_address,
            )
            tx_id = await self.datastore.create_transaction(
                user_id,
                TransactionType.LOCK,
                metadata={
                    "operation": VAULT_CREATE_OPERATION,
                    "predictedVaultAddress": vault.predicted_vault_address,
                },
            )
            await self.datastore.update_onboarding_status(
                user_id, OnboardingStatus.VAULT_PENDING_SIGNATURE
            )
        except Exception as exc:
            logger.error("Vault preparation failed for user %s: %s", user_id, exc)
            await self._mark_failed(user_id)
            raise

        logger.info("Vault creation prepared for user %s (tx %s)", user_id, tx_id)
        return {
            "tx_id": tx_id,
            "transaction_xdr": vault.transaction_xdr,
            "wallet_address": wallet_address,
            "predicted_vault_address": vault.predicted_vault_address,
        }

    async def submit_vault_creation(self, user_id: str, tx_id: str, transaction_hash: str) -> dict:
        record = await self.datastore.get_transaction(user_id, tx_id)
        if record.transaction_type != TransactionType.LOCK:
            raise VaultSubmitInvalidState(f"Transaction {tx_id} is not a vault creation")

        await self.datastore.confirm_transaction(user_id, tx_id, transaction_hash)
        record = await self.datastore.get_transaction(user_id, tx_id)

        metadata = record.tx_metadata or {}
        predicted_vault_address = metadata.get("predictedVaultAddress")
        if not isinstance(predicted_vault_address, str) or not predicted_vault_address:
            raise VaultSubmitInvalidState()

        chain_tx = await self.chain_rpc.wait_for_transaction(transaction_hash)
        if not chain_tx.succeeded:
            raise VaultTransactionFailed(f"Vault submit RPC status: {chain_tx.status}")

        confirmed = await self.vault_protocol.wait_for_vault_confirmation(predicted_vault_address)
        if not confirmed:
            raise VaultNotConfirmed(
                f"Vault {predicted_vault_address} not confirmed by DeFindex API after polling"
            )

        await self.datastore.update_onboarding_status(
            user_id,
            OnboardingStatus.READY,
            patch={"defindex_vault_address": predicted_vault_address},
        )
        logger.info("Vault %s ready for user %s", predicted_vault_address, user_id)
        return {
            "tx_id": tx_id,
            "transaction_hash": transaction_hash,
            "vault_address": predicted_vault_address,
            "status": OnboardingStatus.READY,
        }

    async def _create_wallet(self, user_id: str, email: str) -> None:
        logger.info("Creating Crossmint wallet for user %s", user_id)
        wallet = await self.wallet_provider.create_or_get_wallet(email)
        await self.datastore.update_onboarding_status(
            user_id,
            OnboardingStatus.WALLET_CREATED,
            patch={"stellar_address": wallet.address, "crossmint_wallet_id": wallet.wallet_id},
        )
        logger.info("Wallet created for user %s: %s", user_id, wallet.address)

    async def _advance_from_persisted(self, user: Profile) -> None:
        status = user.buffer_onboarding_status or OnboardingStatus.PENDING
        if status not in RECOVERABLE_STATUSES:
            return
        if user.defindex_vault_address and user.stellar_address:
            target = OnboardingStatus.READY
        elif user.stellar_address:
            target = OnboardingStatus.WALLET_CREATED
        else:
            return
        await self.datastore.update_onboarding_status(user.id, target, expected_status=status)

    async def _mark_failed(self, user_id: str) -> None:
        try:
            await self.datastore.rollback()
            await self.datastore.update_onboarding_status(user_id, OnboardingStatus.FAILED)
        except Exception as exc:
            logger.warning("Could not mark user %s as FAILED: %s", user_id, exc)
