# coding: utf-8
"""
Reconciliation orchestrator

Feeds watcher events through ledger -> identity -> conversion -> claim
token, and drives redemptions into the payout queue. Correctness never
depends on event order or on delivering an event only once.
"""
from collections import Counter
from typing import Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.config import ALLOW_TOKEN_SHARING
from zlink.core.enums import Chain, ClaimError, SKIP_REASON_BELOW_MINIMUM, TransferOutcome
from zlink.database.crud import get_user, list_unprocessed_transfers
from zlink.database.models import Transfer
from zlink.services.claim_tokens import ClaimTokenService, RedemptionResult, extract_token_id
from zlink.services.conversion import ConversionEngine
from zlink.services.identity import IdentityRegistry
from zlink.services.notifications import Notifier
from zlink.services.price_oracle import UnknownCoinError
from zlink.services.transfer_ledger import TransferLedger
from zlink.watchers.base import TransferEvent


class ReconciliationOrchestrator:
    """Wires ledger, identity, conversion, claim tokens and notifications"""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        ledger: TransferLedger,
        identity: IdentityRegistry,
        conversion: ConversionEngine,
        claims: ClaimTokenService,
        notifier: Optional[Notifier] = None,
        allow_sharing: bool = ALLOW_TOKEN_SHARING,
    ):
        self.session_maker = session_maker
        self.ledger = ledger
        self.identity = identity
        self.conversion = conversion
        self.claims = claims
        self.notifier = notifier
        self.allow_sharing = allow_sharing

    async def handle_transfer(self, event: TransferEvent) -> TransferOutcome:
        """
        Process one confirmed transfer event (at-least-once input)

        Returns:
            TransferOutcome describing what happened
        """
        async with self.session_maker() as session:
            recorded = await self.ledger.record_if_new(
                session,
                event.chain,
                event.tx_ref,
                event.from_address,
                event.to_address,
                event.amount,
            )
            record = recorded.record
            if record is None:
                logger.error(f"Transfer {event.chain.value}:{event.tx_ref} vanished after insert")
                return TransferOutcome.DUPLICATE
            if record.processed:
                return TransferOutcome.DUPLICATE

            return await self._process(session, record)

    async def _process(self, session: AsyncSession, record: Transfer) -> TransferOutcome:
        chain = Chain(record.chain)
        ref = f"{chain.value}:{record.tx_ref}"

        if await self.claims.get_for_transfer(session, chain, record.tx_ref) is not None:
            await self.ledger.mark_processed(session, chain, record.tx_ref)
            return TransferOutcome.DUPLICATE

        user_id = await self.identity.resolve_user(session, record.from_address)
        if user_id is None:
            logger.warning(
                f"⚠️ Unattributed deposit {ref} from {record.from_address} "
                f"({record.amount} {chain.coin}), held for reconciliation"
            )
            return TransferOutcome.UNATTRIBUTED

        user = await get_user(session, user_id)
        username = user.display_name if user else None
        # No transaction stays open across the price lookup
        await session.commit()

        try:
            quote = await self.conversion.quote(record.amount, chain.coin)
        except UnknownCoinError as e:
            logger.error(f"Cannot price {ref}: {e}")
            return TransferOutcome.PRICE_UNAVAILABLE

        if not self.conversion.meets_minimum(quote.source_value):
            flipped = await self.ledger.mark_processed(
                session, chain, record.tx_ref, skip_reason=SKIP_REASON_BELOW_MINIMUM
            )
            logger.info(f"Deposit {ref} below minimum ({quote.source_value}), skipped")
            if flipped and self.notifier is not None:
                await self.notifier.deposit_below_minimum(user_id, record, quote.source_value)
            return TransferOutcome.BELOW_MINIMUM

        token = await self.claims.issue(
            session,
            user_id=user_id,
            username=username,
            reference_amount=quote.payout_amount,
            chain=chain,
            tx_ref=record.tx_ref,
        )
        if token is None:
            return TransferOutcome.DUPLICATE

        if self.notifier is not None:
            await self.notifier.claim_issued(token, record, self.claims.url_for(token.token_id))
        return TransferOutcome.ISSUED

    async def reconcile_pending(self, limit: int = 100) -> Dict[TransferOutcome, int]:
        """
        Re-run unprocessed transfers (e.g. the sender registered later)

        Returns:
            Count per outcome
        """
        async with self.session_maker() as session:
            pending = await list_unprocessed_transfers(session, limit=limit)
            refs = [(Chain(t.chain), t.tx_ref) for t in pending]

        outcomes: Counter = Counter()
        for chain, tx_ref in refs:
            async with self.session_maker() as session:
                record = await self.ledger.get(session, chain, tx_ref)
                if record is None or record.processed:
                    outcomes[TransferOutcome.DUPLICATE] += 1
                    continue
                outcomes[await self._process(session, record)] += 1

        if refs:
            logger.info(f"Reconciliation over {len(refs)} transfers: {dict(outcomes)}")
        return dict(outcomes)

    async def redeem(
        self,
        token_input: str,
        redeemer_user_id: int,
        redeemer_username: Optional[str],
        payout_address: str,
        allow_sharing: Optional[bool] = None,
    ) -> RedemptionResult:
        """
        Redeem a claim link or bare code and notify operators on success

        Args:
            allow_sharing: Channel policy; None uses the configured default
        """
        token_id = extract_token_id(token_input)
        if token_id is None:
            return RedemptionResult(ok=False, error=ClaimError.MALFORMED_TOKEN)

        sharing = self.allow_sharing if allow_sharing is None else allow_sharing
        async with self.session_maker() as session:
            result = await self.claims.redeem(
                session,
                token_id=token_id,
                redeemer_user_id=redeemer_user_id,
                redeemer_username=redeemer_username,
                payout_address=payout_address,
                allow_sharing=sharing,
            )

        if result.ok:
            if self.notifier is not None:
                await self.notifier.payout_created(result.payout)
        else:
            logger.info(f"Redemption of {token_id[:8]}... by {redeemer_user_id} refused: {result.error.value}")
        return result
