"""
Service wiring shared by the bot and the API process

Built once at startup and handed to handlers through dispatcher
workflow data (bot) or app.state (API).
"""
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.config import (
    ADMIN_IDS,
    ADMIN_SESSION_TTL_HOURS,
    ALLOW_TOKEN_SHARING,
    CLAIM_BASE_URL,
    CLAIM_TOKEN_TTL_HOURS,
    FEE_RATE,
    MINIMUM_REFERENCE_VALUE,
    PAYOUT_COIN,
    REJECTION_REASON_MIN_LENGTH,
)
from zlink.services.admin_sessions import AdminSessionService
from zlink.services.claim_tokens import ClaimTokenService
from zlink.services.conversion import ConversionEngine
from zlink.services.identity import IdentityRegistry
from zlink.services.messaging import Messenger
from zlink.services.notifications import Notifier
from zlink.services.orchestrator import ReconciliationOrchestrator
from zlink.services.payout_queue import PayoutApprovalQueue
from zlink.services.price_oracle import PriceOracle
from zlink.services.transfer_ledger import TransferLedger


@dataclass
class Services:
    session_maker: async_sessionmaker[AsyncSession]
    oracle: PriceOracle
    conversion: ConversionEngine
    ledger: TransferLedger
    identity: IdentityRegistry
    queue: PayoutApprovalQueue
    claims: ClaimTokenService
    admin_sessions: AdminSessionService
    orchestrator: ReconciliationOrchestrator
    notifier: Optional[Notifier] = None

    async def close(self) -> None:
        await self.oracle.close()


def build_services(
    session_maker: async_sessionmaker[AsyncSession],
    messenger: Optional[Messenger] = None,
    oracle: Optional[PriceOracle] = None,
    admin_ids: Iterable[int] = ADMIN_IDS,
) -> Services:
    """
    Build the service graph

    Args:
        session_maker: Session factory for the orchestrator
        messenger: Outbound channel; None disables notifications (API process)
        oracle: Price oracle override (tests)
        admin_ids: Operators notified about new payouts
    """
    oracle = oracle or PriceOracle()
    notifier = Notifier(messenger, admin_ids, PAYOUT_COIN) if messenger is not None else None

    conversion = ConversionEngine(oracle, FEE_RATE, MINIMUM_REFERENCE_VALUE, PAYOUT_COIN)
    ledger = TransferLedger()
    identity = IdentityRegistry()
    queue = PayoutApprovalQueue(notifier=notifier, reason_min_length=REJECTION_REASON_MIN_LENGTH)
    claims = ClaimTokenService(conversion, queue, CLAIM_TOKEN_TTL_HOURS, CLAIM_BASE_URL)

    orchestrator = ReconciliationOrchestrator(
        session_maker,
        ledger=ledger,
        identity=identity,
        conversion=conversion,
        claims=claims,
        notifier=notifier,
        allow_sharing=ALLOW_TOKEN_SHARING,
    )

    return Services(
        session_maker=session_maker,
        oracle=oracle,
        conversion=conversion,
        ledger=ledger,
        identity=identity,
        queue=queue,
        claims=claims,
        admin_sessions=AdminSessionService(ADMIN_SESSION_TTL_HOURS),
        orchestrator=orchestrator,
        notifier=notifier,
    )
