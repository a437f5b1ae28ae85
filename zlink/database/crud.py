"""
CRUD operations for Zlink Bridge

Plain point reads and user bookkeeping. The compare-and-swap operations
of the reconciliation core live in zlink.services.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from zlink.core.enums import PayoutStatus
from zlink.database.models import (
    User,
    WalletMapping,
    Transfer,
    ClaimToken,
    PendingPayout,
)

logger = logging.getLogger(__name__)


# ===========================
# USER OPERATIONS
# ===========================


async def get_user(session: AsyncSession, user_id: int) -> Optional[User]:
    """
    Get user by Telegram ID

    Args:
        session: Database session
        user_id: Telegram user ID

    Returns:
        User model or None
    """
    return await session.get(User, user_id)


async def create_user(
    session: AsyncSession,
    user_id: int,
    display_name: Optional[str] = None,
) -> Optional[User]:
    """
    Create new user

    Returns:
        Created User model, or None if a concurrent request created it first
    """
    user = User(user_id=user_id, display_name=display_name, total_received=Decimal("0"))
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        return None

    logger.info(f"User created: {user_id} ({display_name})")
    return user


async def get_or_create_user(
    session: AsyncSession,
    user_id: int,
    display_name: Optional[str] = None,
) -> tuple[User, bool]:
    """
    Get existing user or create new one

    Refreshes display_name when it changed.

    Returns:
        Tuple of (User model, is_created)
    """
    user = await get_user(session, user_id)

    if user:
        if display_name and user.display_name != display_name:
            user.display_name = display_name
            await session.commit()
        return user, False

    user = await create_user(session, user_id, display_name)
    if user is None:
        user = await get_user(session, user_id)
        return user, False
    return user, True


# ===========================
# READS FOR DISPLAY
# ===========================


async def list_wallets(session: AsyncSession, user_id: int) -> List[WalletMapping]:
    stmt = (
        select(WalletMapping)
        .where(WalletMapping.user_id == user_id)
        .order_by(WalletMapping.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_unprocessed_transfers(session: AsyncSession, limit: int = 100) -> List[Transfer]:
    """Transfers still waiting for attribution, oldest first"""
    stmt = (
        select(Transfer)
        .where(Transfer.processed.is_(False))
        .order_by(Transfer.observed_at)
        .limit(limit)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


@dataclass
class UserStats:
    total_received: Decimal
    claims_issued: int
    claims_redeemed: int
    payouts_pending: int
    payouts_approved: int
    payouts_rejected: int


async def get_user_stats(session: AsyncSession, user_id: int) -> UserStats:
    """
    Aggregate claim and payout counters for /mystats

    Args:
        session: Database session
        user_id: Telegram user ID

    Returns:
        UserStats (all zeros for an unknown user)
    """
    user = await get_user(session, user_id)

    issued = await session.scalar(
        select(func.count()).select_from(ClaimToken).where(ClaimToken.issued_to_user_id == user_id)
    )
    redeemed = await session.scalar(
        select(func.count())
        .select_from(ClaimToken)
        .where(ClaimToken.redeemed_by_user_id == user_id)
    )

    rows = await session.execute(
        select(PendingPayout.status, func.count())
        .where(PendingPayout.beneficiary_user_id == user_id)
        .group_by(PendingPayout.status)
    )
    by_status = {status: count for status, count in rows.all()}

    return UserStats(
        total_received=user.total_received if user else Decimal("0"),
        claims_issued=issued or 0,
        claims_redeemed=redeemed or 0,
        payouts_pending=by_status.get(PayoutStatus.PENDING.value, 0),
        payouts_approved=by_status.get(PayoutStatus.APPROVED.value, 0),
        payouts_rejected=by_status.get(PayoutStatus.REJECTED.value, 0),
    )
