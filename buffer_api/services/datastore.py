"""Persistence gateway for onboarding profiles and buffer transactions.

Every mutating call is a single statement followed by a commit. Writes that
must not race (transaction confirmation, guarded status advances) are
conditional UPDATEs whose affected-row count decides the outcome, so no
in-process locking is needed.
"""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from buffer_api.models.database import (
    BufferTransaction,
    OnboardingStatus,
    Profile,
    TransactionStatus,
    TransactionType,
    new_uuid,
    utcnow,
)
from buffer_api.onchain.base import BufferBalance
from buffer_api.services.errors import (
    DatastoreError,
    TransactionAlreadyFinalized,
    TransactionNotFound,
)

logger = logging.getLogger(__name__)

PROFILE_PATCH_FIELDS = {
    "stellar_address",
    "crossmint_wallet_id",
    "defindex_vault_address",
    "buffer_contract_address",
}


def _to_amount(value: Optional[int | str]) -> Optional[str]:
    if value is None:
        return None
    return str(int(value))


class Datastore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def rollback(self) -> None:
        await self.session.rollback()

    # --- profiles ---------------------------------------------------------

    async def get_user(self, user_id: str) -> Optional[Profile]:
        result = await self.session.execute(
            select(Profile)
            .where(Profile.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def upsert_user(self, user_id: str, email: str) -> Profile:
        """Insert the profile as PENDING if absent; an existing row is left untouched."""
        existing = await self.get_user(user_id)
        if existing is not None:
            return existing
        self.session.add(
            Profile(id=user_id, email=email, buffer_onboarding_status=OnboardingStatus.PENDING)
        )
        try:
            await self.session.commit()
        except IntegrityError:
            # A concurrent request inserted the same profile first.
            await self.session.rollback()
            logger.info("Profile %s created concurrently; reusing existing row", user_id)
        profile = await self.get_user(user_id)
        if profile is None:
            raise DatastoreError(f"upsert_user failed for {user_id}")
        return profile

    async def update_onboarding_status(
        self,
        user_id: str,
        status: str,
        patch: Optional[dict] = None,
        expected_status: Optional[str] = None,
    ) -> bool:
        """Set the onboarding status (and optional profile fields) in one UPDATE.

        The vault address is append-only and READY requires both addresses;
        both are enforced in the WHERE clause. With ``expected_status`` the
        write only applies if the stored status still matches, and a lost race
        returns False instead of raising.
        """
        patch = dict(patch or {})
        unknown = set(patch) - PROFILE_PATCH_FIELDS
        if unknown:
            raise DatastoreError(f"Unsupported profile fields: {sorted(unknown)}")

        stmt = update(Profile).where(Profile.id == user_id)
        if "defindex_vault_address" in patch:
            vault_address = patch["defindex_vault_address"]
            if not vault_address:
                raise DatastoreError("Vault address cannot be cleared once set")
            stmt = stmt.where(
                or_(
                    Profile.defindex_vault_address.is_(None),
                    Profile.defindex_vault_address == vault_address,
                )
            )
        if status == OnboardingStatus.READY:
            if not patch.get("stellar_address"):
                stmt = stmt.where(Profile.stellar_address.is_not(None))
            if not patch.get("defindex_vault_address"):
                stmt = stmt.where(Profile.defindex_vault_address.is_not(None))
        if expected_status is not None:
            stmt = stmt.where(Profile.buffer_onboarding_status == expected_status)

        values = {"buffer_onboarding_status": status, "updated_at": utcnow(), **patch}
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if result.rowcount:
            logger.info("Profile %s -> %s", user_id, status)
            return True
        if expected_status is not None:
            logger.info("Profile %s status moved away from %s; update to %s skipped", user_id, expected_status, status)
            return False
        raise DatastoreError(f"update_onboarding_status rejected for {user_id} -> {status}")

    async def sync_user_balance(self, user_id: str, balance: BufferBalance) -> None:
        """Cache the last observed buffer position on the profile."""
        result = await self.session.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(
                buffer_available_shares=balance.available_shares,
                buffer_protected_shares=balance.protected_shares,
                buffer_total_deposited=balance.total_deposited,
                buffer_last_synced_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if not result.rowcount:
            raise DatastoreError(f"sync_user_balance matched no profile for {user_id}")

    # --- buffer transactions ----------------------------------------------

    async def create_transaction(
        self,
        user_id: str,
        transaction_type: str,
        amount_stroops: Optional[int | str] = None,
        shares_delta: Optional[int | str] = None,
        metadata: Optional[dict] = None,
        status: str = TransactionStatus.PENDING,
    ) -> str:
        if transaction_type not in TransactionType.ALL:
            raise DatastoreError(f"Unknown transaction type {transaction_type}")
        record = BufferTransaction(
            id=new_uuid(),
            profile_id=user_id,
            transaction_type=transaction_type,
            amount_stroops=_to_amount(amount_stroops),
            shares_delta=_to_amount(shares_delta),
            status=status,
            tx_metadata=metadata,
        )
        tx_id = record.id
        self.session.add(record)
        await self.session.commit()
        logger.info("Created %s transaction %s for %s", transaction_type, tx_id, user_id)
        return tx_id

    async def get_transaction(self, user_id: str, tx_id: str) -> BufferTransaction:
        result = await self.session.execute(
            select(BufferTransaction)
            .where(BufferTransaction.id == tx_id, BufferTransaction.profile_id == user_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise TransactionNotFound(f"Transaction {tx_id} not found")
        return record

    async def _finalize(self, user_id: str, tx_id: str, values: dict) -> int:
        result = await self.session.execute(
            update(BufferTransaction)
            .where(
                BufferTransaction.id == tx_id,
                BufferTransaction.profile_id == user_id,
                BufferTransaction.status == TransactionStatus.PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount

    async def confirm_transaction(self, user_id: str, tx_id: str, tx_hash: str) -> None:
        """PENDING -> CONFIRMED, scoped to the owning user in the same statement."""
        updated = await self._finalize(
            user_id,
            tx_id,
            {
                "status": TransactionStatus.CONFIRMED,
                "stellar_tx_hash": tx_hash,
                "confirmed_at": utcnow(),
                "error_message": None,
            },
        )
        if updated:
            logger.info("Transaction %s confirmed with hash %s", tx_id, tx_hash)
            return
        record = await self.get_transaction(user_id, tx_id)
        if record.status == TransactionStatus.CONFIRMED and record.stellar_tx_hash == tx_hash:
            logger.info("Transaction %s already confirmed with the same hash", tx_id)
            return
        raise TransactionAlreadyFinalized(f"Transaction {tx_id} is already {record.status}")

    async def fail_transaction(self, user_id: str, tx_id: str, error_message: str) -> None:
        updated = await self._finalize(
            user_id,
            tx_id,
            {"status": TransactionStatus.FAILED, "error_message": error_message[:1000]},
        )
        if updated:
            logger.info("Transaction %s marked failed: %s", tx_id, error_message)
            return
        record = await self.get_transaction(user_id, tx_id)
        if record.status == TransactionStatus.FAILED:
            return
        raise TransactionAlreadyFinalized(f"Transaction {tx_id} is already {record.status}")
