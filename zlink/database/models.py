"""
Database models for Zlink Bridge

SQLAlchemy 2.0 models with full type hints. Amounts are Numeric and map
to Decimal; uniqueness that the reconciliation core relies on is enforced
by the storage layer.
"""

from datetime import datetime, UTC
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    ForeignKeyConstraint,
    UniqueConstraint,
    CheckConstraint,
    Numeric,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from zlink.core.enums import AdminStep, PayoutStatus


# Native amounts (wei-precision) and reference/payout amounts
AMOUNT = Numeric(38, 18)
MONEY = Numeric(28, 8)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware DateTime that always returns UTC

    Backends without timezone support (SQLite) hand back naive values;
    those are stored in UTC and re-tagged on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(UTC)
            if dialect.name == "sqlite":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


class User(Base):
    """
    User account keyed by messaging-platform id

    total_received only grows, and only when an operator approves a payout.
    """

    __tablename__ = "users"

    user_id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False, comment="Telegram user ID"
    )
    display_name: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, comment="Username or first name, best effort"
    )
    payout_address: Mapped[Optional[str]] = mapped_column(
        String(512), nullable=True, comment="Validated Zcash payout address"
    )
    total_received: Mapped[Decimal] = mapped_column(
        MONEY, default=Decimal("0"), nullable=False, comment="Sum of approved payouts"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<User(user_id={self.user_id}, display_name={self.display_name})>"


class WalletMapping(Base):
    """Deposit wallet -> user. One address belongs to exactly one user."""

    __tablename__ = "wallet_mappings"

    wallet_address: Mapped[str] = mapped_column(
        String(128), primary_key=True, comment="Case-normalized wallet address"
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False, index=True
    )
    chain_family: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True, comment="evm / solana / bitcoin"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<WalletMapping(wallet_address={self.wallet_address}, user_id={self.user_id})>"


class Transfer(Base):
    """
    Observed on-chain transfer - the dedup ledger

    Never deleted. processed goes false -> true once.
    """

    __tablename__ = "transfers"

    chain: Mapped[str] = mapped_column(String(20), primary_key=True)
    tx_ref: Mapped[str] = mapped_column(
        String(128), primary_key=True, comment="Tx hash or signature (EVM: lowercase)"
    )
    from_address: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    to_address: Mapped[str] = mapped_column(String(128), nullable=False)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, comment="Native units")
    observed_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    skip_reason: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True, comment="Set when processed without a claim token"
    )

    __table_args__ = (
        Index("ix_transfers_unprocessed", "processed", "observed_at"),
    )

    def __repr__(self) -> str:
        return f"<Transfer(chain={self.chain}, tx_ref={self.tx_ref}, processed={self.processed})>"


class ClaimToken(Base):
    """
    Single-use claim token, one per funding transfer

    Expiry is computed from expires_at, never stored as a state.
    """

    __tablename__ = "claim_tokens"

    token_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    issued_to_user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.user_id"), nullable=False, index=True
    )
    issued_to_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    transfer_chain: Mapped[str] = mapped_column(String(20), nullable=False)
    transfer_tx_ref: Mapped[str] = mapped_column(String(128), nullable=False)
    reward_amount_at_issuance: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, comment="Advisory payout estimate at issuance"
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    redeemed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    redeemed_by_user_id: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    __table_args__ = (
        UniqueConstraint("transfer_chain", "transfer_tx_ref", name="uq_claim_tokens_transfer"),
        ForeignKeyConstraint(
            ["transfer_chain", "transfer_tx_ref"],
            ["transfers.chain", "transfers.tx_ref"],
            name="fk_claim_tokens_transfer",
        ),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def __repr__(self) -> str:
        return f"<ClaimToken(token_id={self.token_id[:8]}..., redeemed={self.redeemed})>"


class PendingPayout(Base):
    """
    Payout awaiting operator decision

    status: pending -> approved | rejected, exactly once. Terminal fields
    are written in the same UPDATE as the status.
    """

    __tablename__ = "pending_payouts"

    claim_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    source_token_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("claim_tokens.token_id"), nullable=False, unique=True
    )
    beneficiary_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    beneficiary_username: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    source_coin: Mapped[str] = mapped_column(String(10), nullable=False)
    source_amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False)
    source_value: Mapped[Decimal] = mapped_column(
        MONEY, nullable=False, comment="Source amount in reference currency at redemption"
    )
    payout_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, comment="After fee")
    payout_address: Mapped[str] = mapped_column(String(512), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=PayoutStatus.PENDING.value, nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, nullable=False
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    resolved_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    approval_proof: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    refund_reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status <> 'approved' OR approval_proof IS NOT NULL",
            name="ck_pending_payouts_approved_has_proof",
        ),
        CheckConstraint(
            "status <> 'rejected' OR rejection_reason IS NOT NULL",
            name="ck_pending_payouts_rejected_has_reason",
        ),
        Index("ix_pending_payouts_status_created", "status", "created_at"),
    )

    @property
    def status_enum(self) -> PayoutStatus:
        return PayoutStatus(self.status)

    def __repr__(self) -> str:
        return f"<PendingPayout(claim_id={self.claim_id}, status={self.status})>"


class AdminSession(Base):
    """
    Operator session and the step of the current approve/reject dialogue

    Persisted so a bot restart does not lose a half-finished rejection.
    """

    __tablename__ = "admin_sessions"

    operator_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    activated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    pending_step: Mapped[str] = mapped_column(
        String(40), default=AdminStep.NONE.value, nullable=False
    )
    step_claim_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    step_reason: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<AdminSession(operator_id={self.operator_id}, step={self.pending_step})>"
