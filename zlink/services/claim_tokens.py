# coding: utf-8
"""
Claim token service

- issue: one unguessable token per funding transfer (unique in storage)
- redeem: validates in a fixed order, then flips redeemed false -> true
  with a conditional UPDATE and enqueues the pending payout in the same
  transaction
- info: read-only view for the claim page
"""
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import CLAIM_BASE_URL, CLAIM_TOKEN_TTL_HOURS, CLAIM_URL_MARKER
from zlink.core.enums import Chain, ClaimError
from zlink.database.models import ClaimToken, PendingPayout, Transfer, User, utcnow
from zlink.services.conversion import ConversionEngine
from zlink.services.payout_queue import PayoutApprovalQueue
from zlink.services.price_oracle import UnknownCoinError
from zlink.services.transfer_ledger import normalize_tx_ref
from zlink.utils.address_validation import is_valid_payout_address

logger = logging.getLogger(__name__)


TOKEN_ID_RE = re.compile(r"^[A-Za-z0-9_-]{8,128}$")


def generate_token_id() -> str:
    """32 url-safe chars from the OS CSPRNG"""
    return secrets.token_urlsafe(24)


def extract_token_id(value: Optional[str], marker: str = CLAIM_URL_MARKER) -> Optional[str]:
    """
    Accept a bare token id or a claim URL and return the token id

    https://host/claim/<token>?x=1 -> <token>

    Returns:
        Token id, or None when the input is not a well-formed token
    """
    value = (value or "").strip()
    if not value:
        return None

    if marker in value:
        value = value.rsplit(marker, 1)[1]
    elif "://" in value:
        return None

    value = value.split("?", 1)[0].split("#", 1)[0].strip("/")

    if not TOKEN_ID_RE.match(value):
        return None
    return value


def claim_url(token_id: str, base_url: str = CLAIM_BASE_URL, marker: str = CLAIM_URL_MARKER) -> str:
    return f"{base_url.rstrip('/')}{marker}{token_id}"


@dataclass(frozen=True)
class RedemptionResult:
    ok: bool
    payout: Optional[PendingPayout] = None
    error: Optional[ClaimError] = None


@dataclass(frozen=True)
class ClaimInfo:
    """What the claim page may show: amounts and flags, no redemption details"""

    token_id: str
    recipient: Optional[str]
    estimated_payout: Decimal
    source_chain: str
    source_amount: Optional[Decimal]
    created_at: datetime
    expires_at: datetime
    claimed: bool
    expired: bool


class ClaimTokenService:
    """Issues, describes and redeems claim tokens"""

    def __init__(
        self,
        conversion: ConversionEngine,
        queue: PayoutApprovalQueue,
        ttl_hours: int = CLAIM_TOKEN_TTL_HOURS,
        base_url: str = CLAIM_BASE_URL,
    ):
        self.conversion = conversion
        self.queue = queue
        self.ttl = timedelta(hours=ttl_hours)
        self.base_url = base_url

    def url_for(self, token_id: str) -> str:
        return claim_url(token_id, self.base_url)

    async def issue(
        self,
        session: AsyncSession,
        user_id: int,
        username: Optional[str],
        reference_amount: Decimal,
        chain: Chain,
        tx_ref: str,
    ) -> Optional[ClaimToken]:
        """
        Issue the claim token for a transfer and mark the transfer processed

        Both writes commit together; the unique (transfer_chain,
        transfer_tx_ref) constraint makes a second issuance fail.

        Returns:
            The new ClaimToken, or None if the transfer already has one
        """
        tx_ref = normalize_tx_ref(chain, tx_ref)
        now = utcnow()
        token_id = generate_token_id()

        try:
            await session.execute(
                insert(ClaimToken).values(
                    token_id=token_id,
                    issued_to_user_id=user_id,
                    issued_to_username=username,
                    transfer_chain=chain.value,
                    transfer_tx_ref=tx_ref,
                    reward_amount_at_issuance=Decimal(reference_amount),
                    created_at=now,
                    expires_at=now + self.ttl,
                    redeemed=False,
                )
            )
            await session.execute(
                update(Transfer)
                .where(Transfer.chain == chain.value, Transfer.tx_ref == tx_ref)
                .values(processed=True)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.info(f"Claim token already issued for {chain.value}:{tx_ref}")
            return None

        logger.info(f"🎟 Claim token issued for {chain.value}:{tx_ref} -> user {user_id}")
        return await self.get(session, token_id)

    async def get(self, session: AsyncSession, token_id: str) -> Optional[ClaimToken]:
        return await session.get(ClaimToken, token_id, populate_existing=True)

    async def get_for_transfer(self, session: AsyncSession, chain: Chain, tx_ref: str) -> Optional[ClaimToken]:
        stmt = select(ClaimToken).where(
            ClaimToken.transfer_chain == chain.value,
            ClaimToken.transfer_tx_ref == normalize_tx_ref(chain, tx_ref),
        )
        return await session.scalar(stmt)

    async def info(self, session: AsyncSession, token_id: str) -> Optional[ClaimInfo]:
        """Read-only status of a token, None if unknown"""
        token = await self.get(session, token_id)
        if token is None:
            return None

        amount = await session.scalar(
            select(Transfer.amount).where(
                Transfer.chain == token.transfer_chain,
                Transfer.tx_ref == token.transfer_tx_ref,
            )
        )
        return ClaimInfo(
            token_id=token.token_id,
            recipient=token.issued_to_username,
            estimated_payout=token.reward_amount_at_issuance,
            source_chain=token.transfer_chain,
            source_amount=amount,
            created_at=token.created_at,
            expires_at=token.expires_at,
            claimed=token.redeemed,
            expired=token.is_expired(),
        )

    async def redeem(
        self,
        session: AsyncSession,
        token_id: str,
        redeemer_user_id: int,
        redeemer_username: Optional[str],
        payout_address: str,
        allow_sharing: bool,
    ) -> RedemptionResult:
        """
        Redeem a claim token for a pending payout

        Checks, first failure wins: exists, not redeemed, not expired,
        recipient (unless sharing is allowed), payout address, minimum value.
        The payout amount is recomputed here against current prices.

        Returns:
            RedemptionResult with the pending payout or a ClaimError
        """
        token = await self.get(session, token_id)
        if token is None:
            return RedemptionResult(ok=False, error=ClaimError.NOT_FOUND)
        if token.redeemed:
            return RedemptionResult(ok=False, error=ClaimError.ALREADY_CLAIMED)

        now = utcnow()
        if token.is_expired(now):
            return RedemptionResult(ok=False, error=ClaimError.EXPIRED)
        if not allow_sharing and redeemer_user_id != token.issued_to_user_id:
            return RedemptionResult(ok=False, error=ClaimError.NOT_INTENDED_RECIPIENT)

        payout_address = (payout_address or "").strip()
        if not is_valid_payout_address(payout_address):
            return RedemptionResult(ok=False, error=ClaimError.INVALID_ADDRESS)

        transfer = await session.get(Transfer, (token.transfer_chain, token.transfer_tx_ref))
        if transfer is None:
            logger.error(f"Claim token {token_id} has no linked transfer")
            return RedemptionResult(ok=False, error=ClaimError.NOT_FOUND)

        chain = Chain(transfer.chain)
        amount = transfer.amount
        # Release the read transaction before the price lookup
        await session.commit()

        try:
            quote = await self.conversion.quote(amount, chain.coin)
        except UnknownCoinError:
            logger.error(f"No price for {chain.coin}, cannot redeem {token_id}")
            return RedemptionResult(ok=False, error=ClaimError.PRICE_UNAVAILABLE)

        if not self.conversion.meets_minimum(quote.source_value):
            return RedemptionResult(ok=False, error=ClaimError.BELOW_MINIMUM)

        now = utcnow()
        flipped = await session.execute(
            update(ClaimToken)
            .where(
                ClaimToken.token_id == token_id,
                ClaimToken.redeemed.is_(False),
                ClaimToken.expires_at >= now,
            )
            .values(redeemed=True, redeemed_at=now, redeemed_by_user_id=redeemer_user_id)
            .execution_options(synchronize_session=False)
        )
        if flipped.rowcount != 1:
            await session.rollback()
            return RedemptionResult(ok=False, error=await self._lost_race_error(session, token_id))

        try:
            payout = await self.queue.enqueue(
                session,
                source_token_id=token_id,
                beneficiary_user_id=redeemer_user_id,
                beneficiary_username=redeemer_username,
                quote=quote,
                payout_address=payout_address,
            )
            await session.execute(
                update(User)
                .where(User.user_id == redeemer_user_id)
                .values(payout_address=payout_address)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.warning(f"Payout for token {token_id} already exists")
            return RedemptionResult(ok=False, error=ClaimError.ALREADY_CLAIMED)

        logger.info(
            f"🎉 Token {token_id[:8]}... redeemed by {redeemer_user_id}: "
            f"{quote.payout_amount} {quote.payout_coin} (claim {payout.claim_id})"
        )
        return RedemptionResult(ok=True, payout=payout)

    async def _lost_race_error(self, session: AsyncSession, token_id: str) -> ClaimError:
        token = await self.get(session, token_id)
        if token is None:
            return ClaimError.NOT_FOUND
        if token.redeemed:
            return ClaimError.ALREADY_CLAIMED
        return ClaimError.EXPIRED
