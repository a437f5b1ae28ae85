# coding: utf-8
"""
Transfer ledger - durable dedup store of observed on-chain transfers

The (chain, tx_ref) primary key is the only thing standing between a
redelivered watcher event and a second claim token.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import insert, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from zlink.core.enums import Chain, ChainFamily
from zlink.database.models import Transfer, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordResult:
    inserted: bool
    record: Optional[Transfer]


def normalize_tx_ref(chain: Chain, tx_ref: str) -> str:
    """Hex hashes are case-insensitive; base58 signatures are not"""
    if chain.family == ChainFamily.EVM:
        return tx_ref.lower()
    return tx_ref


class TransferLedger:
    """Insert-if-absent ledger keyed on (chain, tx_ref)"""

    async def record_if_new(
        self,
        session: AsyncSession,
        chain: Chain,
        tx_ref: str,
        from_address: str,
        to_address: str,
        amount: Decimal,
    ) -> RecordResult:
        """
        Atomically insert a transfer unless it is already known

        Concurrent callers for the same key race on the primary key;
        exactly one of them sees inserted=True.

        Returns:
            RecordResult with the stored record (existing one on duplicates)
        """
        tx_ref = normalize_tx_ref(chain, tx_ref)
        stmt = insert(Transfer).values(
            chain=chain.value,
            tx_ref=tx_ref,
            from_address=from_address,
            to_address=to_address,
            amount=Decimal(amount),
            observed_at=utcnow(),
            processed=False,
        )
        try:
            await session.execute(stmt)
            await session.commit()
        except IntegrityError:
            await session.rollback()
            logger.debug(f"Transfer already recorded: {chain.value}:{tx_ref}")
            return RecordResult(inserted=False, record=await self.get(session, chain, tx_ref))

        logger.info(f"📥 New transfer recorded: {chain.value}:{tx_ref} amount={amount}")
        return RecordResult(inserted=True, record=await self.get(session, chain, tx_ref))

    async def mark_processed(
        self,
        session: AsyncSession,
        chain: Chain,
        tx_ref: str,
        skip_reason: Optional[str] = None,
        commit: bool = True,
    ) -> bool:
        """
        Flip processed false -> true. Idempotent.

        Args:
            commit: False when the caller commits as part of a larger transaction

        Returns:
            True if this call performed the flip
        """
        stmt = (
            update(Transfer)
            .where(
                Transfer.chain == chain.value,
                Transfer.tx_ref == normalize_tx_ref(chain, tx_ref),
                Transfer.processed.is_(False),
            )
            .values(processed=True, skip_reason=skip_reason)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if commit:
            await session.commit()
        return result.rowcount == 1

    async def get(self, session: AsyncSession, chain: Chain, tx_ref: str) -> Optional[Transfer]:
        return await session.get(
            Transfer,
            (chain.value, normalize_tx_ref(chain, tx_ref)),
            populate_existing=True,
        )
