# coding: utf-8
"""
Identity registry - deposit wallets <-> users

Attribution of a deposit relies on one wallet address belonging to exactly
one user; a wallet owned by someone else is never silently reassigned.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from zlink.core.enums import WalletError
from zlink.database.crud import get_or_create_user
from zlink.database.models import User, WalletMapping, utcnow
from zlink.utils.address_validation import (
    detect_wallet_family,
    is_valid_payout_address,
    normalize_wallet_address,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletRegistrationResult:
    ok: bool
    wallet_address: Optional[str] = None
    created: bool = False
    error: Optional[WalletError] = None


class IdentityRegistry:
    """Wallet registration, sender resolution and payout addresses"""

    async def register_wallet(
        self,
        session: AsyncSession,
        user_id: int,
        wallet_address: str,
        display_name: Optional[str] = None,
    ) -> WalletRegistrationResult:
        """
        Map a deposit wallet to a user

        Registering the same wallet to the same user again is a no-op.

        Returns:
            WalletRegistrationResult (error: INVALID_ADDRESS_FORMAT or
            ALREADY_REGISTERED_TO_OTHER_USER)
        """
        family = detect_wallet_family(wallet_address)
        if family is None:
            return WalletRegistrationResult(ok=False, error=WalletError.INVALID_ADDRESS_FORMAT)

        address = normalize_wallet_address(wallet_address, family)

        owner = await self.resolve_user(session, address)
        if owner is not None:
            return self._existing_result(owner, user_id, address)

        await get_or_create_user(session, user_id, display_name)

        try:
            await session.execute(
                insert(WalletMapping).values(
                    wallet_address=address,
                    user_id=user_id,
                    chain_family=family.value,
                    created_at=utcnow(),
                )
            )
            await session.commit()
        except IntegrityError:
            # Lost a race against another registration of the same wallet
            await session.rollback()
            owner = await self.resolve_user(session, address)
            if owner is None:
                raise
            return self._existing_result(owner, user_id, address)

        logger.info(f"Wallet registered: {address} -> user {user_id} ({family.value})")
        return WalletRegistrationResult(ok=True, wallet_address=address, created=True)

    @staticmethod
    def _existing_result(owner: int, user_id: int, address: str) -> WalletRegistrationResult:
        if owner == user_id:
            return WalletRegistrationResult(ok=True, wallet_address=address, created=False)

        logger.warning(f"Wallet {address} already belongs to user {owner}, refused for {user_id}")
        return WalletRegistrationResult(
            ok=False,
            wallet_address=address,
            error=WalletError.ALREADY_REGISTERED_TO_OTHER_USER,
        )

    async def resolve_user(self, session: AsyncSession, wallet_address: str) -> Optional[int]:
        """
        Find the user owning a wallet address

        Returns:
            user_id, or None for an unregistered sender (a normal case)
        """
        address = normalize_wallet_address(wallet_address)
        if not address:
            return None
        stmt = select(WalletMapping.user_id).where(WalletMapping.wallet_address == address)
        return await session.scalar(stmt)

    async def set_payout_address(
        self,
        session: AsyncSession,
        user_id: int,
        address: str,
        display_name: Optional[str] = None,
    ) -> WalletRegistrationResult:
        """
        Store a validated Zcash payout address for a user

        Returns:
            WalletRegistrationResult (error: INVALID_ADDRESS_FORMAT)
        """
        address = (address or "").strip()
        if not is_valid_payout_address(address):
            return WalletRegistrationResult(ok=False, error=WalletError.INVALID_ADDRESS_FORMAT)

        result = await session.execute(
            update(User)
            .where(User.user_id == user_id)
            .values(payout_address=address)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            user, _ = await get_or_create_user(session, user_id, display_name)
            user.payout_address = address

        await session.commit()

        logger.info(f"Payout address set for user {user_id}")
        return WalletRegistrationResult(ok=True, wallet_address=address)

    async def get_payout_address(self, session: AsyncSession, user_id: int) -> Optional[str]:
        return await session.scalar(select(User.payout_address).where(User.user_id == user_id))
