# coding: utf-8
"""
Payout approval queue

State machine: pending -> approved | rejected, terminal. Each transition
is a single conditional UPDATE, so concurrent operators cannot both win,
and the terminal fields are written together with the status.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import REJECTION_REASON_MIN_LENGTH
from zlink.core.enums import PayoutError, PayoutStatus
from zlink.database.models import PendingPayout, User, utcnow

if TYPE_CHECKING:
    from zlink.services.conversion import Quote
    from zlink.services.notifications import Notifier

logger = logging.getLogger(__name__)


# Operator answers meaning "no refund reference"
REFUND_SENTINELS = {"", "none", "n/a", "na", "-", "skip", "no", "null", "empty"}


def normalize_refund_reference(value: Optional[str]) -> Optional[str]:
    """'none', 'N/A', '-' and friends become None"""
    if value is None:
        return None
    value = value.strip()
    if value.lower() in REFUND_SENTINELS:
        return None
    return value


@dataclass(frozen=True)
class PayoutActionResult:
    ok: bool
    payout: Optional[PendingPayout] = None
    error: Optional[PayoutError] = None


class PayoutApprovalQueue:
    """Pending payouts awaiting a manual operator decision"""

    def __init__(
        self,
        notifier: Optional["Notifier"] = None,
        reason_min_length: int = REJECTION_REASON_MIN_LENGTH,
    ):
        self.notifier = notifier
        self.reason_min_length = reason_min_length

    async def enqueue(
        self,
        session: AsyncSession,
        source_token_id: str,
        beneficiary_user_id: int,
        beneficiary_username: Optional[str],
        quote: "Quote",
        payout_address: str,
    ) -> PendingPayout:
        """
        Add a pending payout inside the caller's transaction

        Does not commit: redemption commits the token flip and the payout
        together.

        Returns:
            The new PendingPayout (claim_id assigned)
        """
        payout = PendingPayout(
            claim_id=uuid.uuid4().hex,
            source_token_id=source_token_id,
            beneficiary_user_id=beneficiary_user_id,
            beneficiary_username=beneficiary_username,
            source_coin=quote.source_coin,
            source_amount=quote.source_amount,
            source_value=quote.source_value,
            payout_amount=quote.payout_amount,
            payout_address=payout_address,
            status=PayoutStatus.PENDING.value,
            created_at=utcnow(),
        )
        session.add(payout)
        await session.flush()
        return payout

    async def list_pending(self, session: AsyncSession, limit: Optional[int] = None) -> List[PendingPayout]:
        """Pending payouts, oldest first"""
        stmt = (
            select(PendingPayout)
            .where(PendingPayout.status == PayoutStatus.PENDING.value)
            .order_by(PendingPayout.created_at, PendingPayout.claim_id)
        )
        if limit:
            stmt = stmt.limit(limit)
        result = await session.execute(stmt)
        return list(result.scalars().all())

    async def get(self, session: AsyncSession, claim_id: str) -> Optional[PendingPayout]:
        return await session.get(PendingPayout, claim_id, populate_existing=True)

    def validate_reason(self, reason: Optional[str]) -> bool:
        return len((reason or "").strip()) >= self.reason_min_length

    async def approve(
        self,
        session: AsyncSession,
        claim_id: str,
        proof_reference: str,
        operator_id: Optional[int] = None,
    ) -> PayoutActionResult:
        """
        Mark a payout as paid

        Sets approval_proof and resolved_at in the same UPDATE as the
        status, and adds the payout to the beneficiary's total_received.

        Returns:
            PayoutActionResult (error: NOT_FOUND, NOT_PENDING or INVALID_PROOF)
        """
        proof_reference = (proof_reference or "").strip()
        if not proof_reference:
            return PayoutActionResult(ok=False, error=PayoutError.INVALID_PROOF)

        payout = await self.get(session, claim_id)
        if payout is None:
            return PayoutActionResult(ok=False, error=PayoutError.NOT_FOUND)

        result = await session.execute(
            update(PendingPayout)
            .where(
                PendingPayout.claim_id == claim_id,
                PendingPayout.status == PayoutStatus.PENDING.value,
            )
            .values(
                status=PayoutStatus.APPROVED.value,
                approval_proof=proof_reference,
                resolved_at=utcnow(),
                resolved_by=operator_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            return PayoutActionResult(ok=False, error=PayoutError.NOT_PENDING)

        await session.execute(
            update(User)
            .where(User.user_id == payout.beneficiary_user_id)
            .values(total_received=User.total_received + Decimal(payout.payout_amount))
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        payout = await self.get(session, claim_id)
        logger.info(f"✅ Payout {claim_id} approved by {operator_id} (proof: {proof_reference})")

        if self.notifier is not None:
            await self.notifier.payout_approved(payout)

        return PayoutActionResult(ok=True, payout=payout)

    async def reject(
        self,
        session: AsyncSession,
        claim_id: str,
        reason: str,
        refund_reference: Optional[str] = None,
        operator_id: Optional[int] = None,
    ) -> PayoutActionResult:
        """
        Reject a payout with a reason and an optional refund reference

        Returns:
            PayoutActionResult (error: INVALID_REASON, NOT_FOUND or NOT_PENDING)
        """
        if not self.validate_reason(reason):
            return PayoutActionResult(ok=False, error=PayoutError.INVALID_REASON)

        reason = reason.strip()
        refund_reference = normalize_refund_reference(refund_reference)

        result = await session.execute(
            update(PendingPayout)
            .where(
                PendingPayout.claim_id == claim_id,
                PendingPayout.status == PayoutStatus.PENDING.value,
            )
            .values(
                status=PayoutStatus.REJECTED.value,
                rejection_reason=reason,
                refund_reference=refund_reference,
                resolved_at=utcnow(),
                resolved_by=operator_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            exists = await self.get(session, claim_id)
            error = PayoutError.NOT_PENDING if exists is not None else PayoutError.NOT_FOUND
            return PayoutActionResult(ok=False, error=error)

        await session.commit()

        payout = await self.get(session, claim_id)
        logger.info(f"❌ Payout {claim_id} rejected by {operator_id}: {reason}")

        if self.notifier is not None:
            await self.notifier.payout_rejected(payout)

        return PayoutActionResult(ok=True, payout=payout)
