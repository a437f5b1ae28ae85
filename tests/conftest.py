"""
Pytest configuration and fixtures for Zlink Bridge tests
"""

from decimal import Decimal
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from zlink.core.enums import Chain
from zlink.database.engine import serialize_sqlite_writes
from zlink.database.models import Base
from zlink.services.claim_tokens import ClaimTokenService
from zlink.services.conversion import ConversionEngine
from zlink.services.identity import IdentityRegistry
from zlink.services.notifications import Notifier
from zlink.services.orchestrator import ReconciliationOrchestrator
from zlink.services.payout_queue import PayoutApprovalQueue
from zlink.services.price_oracle import UnknownCoinError
from zlink.services.transfer_ledger import TransferLedger
from zlink.watchers.base import TransferEvent


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_ID = 900001
ALICE = 1001
BOB = 1002

ALICE_WALLET = "0x" + "a1" * 20
BOB_WALLET = "0x" + "b2" * 20
DEPOSIT_ADDRESS = "0x" + "de" * 20

ZEC_T_ADDRESS = "t1" + "a" * 33
ZEC_UNIFIED_ADDRESS = "u1" + "q" * 80

PRICES = {
    "ETH": Decimal("3500"),
    "BNB": Decimal("600"),
    "SOL": Decimal("150"),
    "BTC": Decimal("65000"),
    "ZEC": Decimal("45"),
}


class FixedPriceOracle:
    """Price oracle stand-in with settable prices"""

    def __init__(self, prices: Optional[Dict[str, Decimal]] = None):
        self.prices = dict(PRICES if prices is None else prices)
        self.calls: List[str] = []

    async def price(self, symbol: str) -> Decimal:
        symbol = symbol.upper()
        self.calls.append(symbol)
        if symbol not in self.prices:
            raise UnknownCoinError(f"No price source for {symbol}")
        return self.prices[symbol]

    async def close(self) -> None:
        pass


class RecordingMessenger:
    """Messenger that records every message instead of sending it"""

    def __init__(self, unreachable: Tuple[int, ...] = ()):
        self.sent: List[Tuple[int, str]] = []
        self.unreachable = set(unreachable)

    async def send_to_user(self, user_id: int, text: str, reply_markup=None) -> bool:
        if user_id in self.unreachable:
            return False
        self.sent.append((user_id, text))
        return True

    def to(self, user_id: int) -> List[str]:
        return [text for uid, text in self.sent if uid == user_id]


def make_event(
    tx_ref: str = "0x" + "11" * 32,
    amount: str = "1.0",
    sender: str = ALICE_WALLET,
    chain: Chain = Chain.BASE,
) -> TransferEvent:
    return TransferEvent(
        chain=chain,
        tx_ref=tx_ref,
        from_address=sender,
        to_address=DEPOSIT_ADDRESS,
        amount=Decimal(amount),
    )


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def concurrent_engine(tmp_path):
    """
    File-backed engine with one connection per session

    Every transaction starts with BEGIN IMMEDIATE, so concurrent writers
    serialize on the database lock the way row locks serialize them on
    PostgreSQL.
    """
    engine = serialize_sqlite_writes(
        create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'zlink.db'}",
            connect_args={"timeout": 30},
        )
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
def concurrent_session_maker(concurrent_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(concurrent_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def oracle() -> FixedPriceOracle:
    return FixedPriceOracle()


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger()


@pytest.fixture
def notifier(messenger) -> Notifier:
    return Notifier(messenger, admin_ids=[ADMIN_ID], payout_coin="ZEC")


@pytest.fixture
def conversion(oracle) -> ConversionEngine:
    return ConversionEngine(oracle, fee_rate=Decimal("0.01"), minimum_value=Decimal("10"), payout_coin="ZEC")


@pytest.fixture
def ledger() -> TransferLedger:
    return TransferLedger()


@pytest.fixture
def identity() -> IdentityRegistry:
    return IdentityRegistry()


@pytest.fixture
def queue(notifier) -> PayoutApprovalQueue:
    return PayoutApprovalQueue(notifier=notifier, reason_min_length=3)


@pytest.fixture
def claims(conversion, queue) -> ClaimTokenService:
    return ClaimTokenService(conversion, queue, ttl_hours=24, base_url="https://zlink.test")


@pytest.fixture
def orchestrator(session_maker, ledger, identity, conversion, claims, notifier) -> ReconciliationOrchestrator:
    return ReconciliationOrchestrator(
        session_maker,
        ledger=ledger,
        identity=identity,
        conversion=conversion,
        claims=claims,
        notifier=notifier,
        allow_sharing=True,
    )


@pytest.fixture
async def registered(db_session, identity):
    """Alice owns ALICE_WALLET, Bob owns BOB_WALLET"""
    await identity.register_wallet(db_session, ALICE, ALICE_WALLET, display_name="alice")
    await identity.register_wallet(db_session, BOB, BOB_WALLET, display_name="bob")


async def issue_token(
    session: AsyncSession,
    ledger: TransferLedger,
    claims: ClaimTokenService,
    user_id: int = ALICE,
    username: Optional[str] = "alice",
    tx_ref: str = "0x" + "11" * 32,
    amount: str = "1.0",
    chain: Chain = Chain.BASE,
):
    """Record a transfer and issue its claim token directly"""
    await ledger.record_if_new(session, chain, tx_ref, ALICE_WALLET, DEPOSIT_ADDRESS, Decimal(amount))
    return await claims.issue(
        session,
        user_id=user_id,
        username=username,
        reference_amount=Decimal("77"),
        chain=chain,
        tx_ref=tx_ref,
    )
