from datetime import datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    JSON,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


JSON_TYPE = JSONB().with_variant(JSON, "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> str:
    return str(uuid.uuid4())


class OnboardingStatus:
    NOT_STARTED = "NOT_STARTED"
    PENDING = "PENDING"
    WALLET_CREATED = "WALLET_CREATED"
    VAULT_PREPARING = "VAULT_PREPARING"
    VAULT_PENDING_SIGNATURE = "VAULT_PENDING_SIGNATURE"
    READY = "READY"
    FAILED = "FAILED"


class TransactionType:
    DEPOSIT = "DEPOSIT"
    WITHDRAW = "WITHDRAW"
    LOCK = "LOCK"
    UNLOCK = "UNLOCK"

    ALL = (DEPOSIT, WITHDRAW, LOCK, UNLOCK)


class TransactionStatus:
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


class Base(DeclarativeBase):
    pass


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (Index("idx_profiles_onboarding_status", "buffer_onboarding_status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(320))
    stellar_address: Mapped[Optional[str]] = mapped_column(String(56))
    crossmint_wallet_id: Mapped[Optional[str]] = mapped_column(String(255))
    defindex_vault_address: Mapped[Optional[str]] = mapped_column(String(56))
    buffer_contract_address: Mapped[Optional[str]] = mapped_column(String(56))
    buffer_onboarding_status: Mapped[str] = mapped_column(
        String(32), default=OnboardingStatus.PENDING
    )
    buffer_available_shares: Mapped[Optional[str]] = mapped_column(String(40))
    buffer_protected_shares: Mapped[Optional[str]] = mapped_column(String(40))
    buffer_total_deposited: Mapped[Optional[str]] = mapped_column(String(40))
    buffer_last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    transactions: Mapped[list["BufferTransaction"]] = relationship(back_populates="profile")


class BufferTransaction(Base):
    __tablename__ = "buffer_transactions"
    __table_args__ = (
        Index("idx_buffer_tx_profile_created", "profile_id", "created_at"),
        Index("idx_buffer_tx_status", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    profile_id: Mapped[str] = mapped_column(
        ForeignKey("profiles.id", ondelete="CASCADE"), index=True
    )
    transaction_type: Mapped[str] = mapped_column(String(16))
    amount_stroops: Mapped[Optional[str]] = mapped_column(String(40))
    shares_delta: Mapped[Optional[str]] = mapped_column(String(40))
    status: Mapped[str] = mapped_column(String(16), default=TransactionStatus.PENDING)
    # "metadata" is reserved on declarative classes.
    tx_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON_TYPE)
    stellar_tx_hash: Mapped[Optional[str]] = mapped_column(String(64))
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    profile: Mapped["Profile"] = relationship(back_populates="transactions")
