"""
Unit tests for claim token issuance and redemption
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select, update

from zlink.core.enums import Chain, ClaimError, PayoutStatus
from zlink.database.models import ClaimToken, PendingPayout, utcnow
from zlink.services.claim_tokens import ClaimTokenService, claim_url, extract_token_id
from zlink.services.conversion import ConversionEngine
from zlink.services.notifications import Notifier
from zlink.services.orchestrator import ReconciliationOrchestrator
from zlink.services.payout_queue import PayoutApprovalQueue
from zlink.services.identity import IdentityRegistry
from zlink.services.transfer_ledger import TransferLedger

from tests.conftest import (
    ADMIN_ID,
    ALICE,
    BOB,
    ZEC_T_ADDRESS,
    ZEC_UNIFIED_ADDRESS,
    FixedPriceOracle,
    RecordingMessenger,
    issue_token,
)


# ===========================
# ISSUANCE
# ===========================


@pytest.mark.asyncio
async def test_issue_marks_transfer_processed(db_session, ledger, claims, registered):
    token = await issue_token(db_session, ledger, claims)

    assert token is not None
    assert len(token.token_id) >= 32
    assert token.redeemed is False
    assert token.expires_at - token.created_at == timedelta(hours=24)

    transfer = await ledger.get(db_session, Chain.BASE, token.transfer_tx_ref)
    assert transfer.processed is True


@pytest.mark.asyncio
async def test_second_issue_for_same_transfer_is_refused(db_session, ledger, claims, registered):
    first = await issue_token(db_session, ledger, claims)
    second = await issue_token(db_session, ledger, claims)

    assert first is not None
    assert second is None
    count = await db_session.scalar(select(func.count()).select_from(ClaimToken))
    assert count == 1


@pytest.mark.asyncio
async def test_tokens_are_unique(db_session, ledger, claims, registered):
    tokens = [
        await issue_token(db_session, ledger, claims, tx_ref="0x" + f"{i:02x}" * 32)
        for i in range(5)
    ]
    assert len({t.token_id for t in tokens}) == 5


# ===========================
# REDEMPTION
# ===========================


@pytest.mark.asyncio
async def test_redeem_creates_pending_payout(db_session, ledger, claims, registered):
    token = await issue_token(db_session, ledger, claims)

    result = await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)

    assert result.ok is True
    payout = result.payout
    assert payout.status == PayoutStatus.PENDING.value
    assert payout.beneficiary_user_id == ALICE
    assert payout.source_coin == "ETH"
    assert Decimal(payout.payout_amount) == Decimal("77")
    assert payout.payout_address == ZEC_T_ADDRESS

    token = await claims.get(db_session, token.token_id)
    assert token.redeemed is True
    assert token.redeemed_by_user_id == ALICE
    assert token.redeemed_at is not None


@pytest.mark.asyncio
async def test_payout_is_recomputed_at_redemption(db_session, ledger, claims, oracle, registered):
    token = await issue_token(db_session, ledger, claims)
    oracle.prices["ZEC"] = Decimal("50")

    result = await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)

    # 3500 * 0.99 / 50
    assert Decimal(result.payout.payout_amount) == Decimal("69.3")


@pytest.mark.asyncio
async def test_redeem_unknown_token(db_session, claims):
    result = await claims.redeem(db_session, "doesNotExist123", ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=True)

    assert result.ok is False
    assert result.error == ClaimError.NOT_FOUND


@pytest.mark.asyncio
async def test_redeem_twice_is_already_claimed(db_session, ledger, claims, registered):
    token = await issue_token(db_session, ledger, claims)

    first = await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)
    second = await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)

    assert first.ok is True
    assert second.ok is False
    assert second.error == ClaimError.ALREADY_CLAIMED


@pytest.mark.asyncio
async def test_expired_token_is_refused(db_session, ledger, claims, registered):
    token = await issue_token(db_session, ledger, claims)
    await db_session.execute(
        update(ClaimToken)
        .where(ClaimToken.token_id == token.token_id)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db_session.commit()

    result = await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=True)

    assert result.ok is False
    assert result.error == ClaimError.EXPIRED
    assert (await claims.get(db_session, token.token_id)).redeemed is False


@pytest.mark.asyncio
async def test_already_claimed_wins_over_expired(db_session, ledger, claims, registered):
    token = await issue_token(db_session, ledger, claims)
    await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)
    await db_session.execute(
        update(ClaimToken)
        .where(ClaimToken.token_id == token.token_id)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db_session.commit()

    result = await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)

    assert result.error == ClaimError.ALREADY_CLAIMED


@pytest.mark.asyncio
async def test_recipient_policy(db_session, ledger, claims, registered):
    """Bob holds Alice's link: refused without sharing, accepted with it"""
    token = await issue_token(db_session, ledger, claims)

    refused = await claims.redeem(db_session, token.token_id, BOB, "bob", ZEC_T_ADDRESS, allow_sharing=False)
    assert refused.ok is False
    assert refused.error == ClaimError.NOT_INTENDED_RECIPIENT
    assert (await claims.get(db_session, token.token_id)).redeemed is False

    accepted = await claims.redeem(db_session, token.token_id, BOB, "bob", ZEC_UNIFIED_ADDRESS, allow_sharing=True)
    assert accepted.ok is True
    assert accepted.payout.beneficiary_user_id == BOB
    assert accepted.payout.beneficiary_username == "bob"


@pytest.mark.asyncio
async def test_invalid_payout_address_leaves_token_unredeemed(db_session, ledger, claims, registered):
    token = await issue_token(db_session, ledger, claims)

    result = await claims.redeem(db_session, token.token_id, ALICE, "alice", "0x" + "a1" * 20, allow_sharing=False)

    assert result.error == ClaimError.INVALID_ADDRESS
    assert (await claims.get(db_session, token.token_id)).redeemed is False


@pytest.mark.asyncio
async def test_value_below_minimum_at_redemption(db_session, ledger, claims, oracle, registered):
    token = await issue_token(db_session, ledger, claims)
    oracle.prices["ETH"] = Decimal("5")

    result = await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)

    assert result.error == ClaimError.BELOW_MINIMUM
    assert (await claims.get(db_session, token.token_id)).redeemed is False


@pytest.mark.asyncio
async def test_unpriceable_coin_at_redemption(db_session, ledger, claims, oracle, registered):
    token = await issue_token(db_session, ledger, claims)
    del oracle.prices["ETH"]

    result = await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)

    assert result.error == ClaimError.PRICE_UNAVAILABLE
    assert (await claims.get(db_session, token.token_id)).redeemed is False


@pytest.mark.asyncio
async def test_redeem_saves_payout_address(db_session, ledger, claims, identity, registered):
    token = await issue_token(db_session, ledger, claims)

    await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_UNIFIED_ADDRESS, allow_sharing=False)

    assert await identity.get_payout_address(db_session, ALICE) == ZEC_UNIFIED_ADDRESS


@pytest.mark.asyncio
async def test_concurrent_redeems_single_winner(concurrent_session_maker):
    """N racing redemptions of one token: one payout, the rest ALREADY_CLAIMED"""
    messenger = RecordingMessenger()
    notifier = Notifier(messenger, admin_ids=[ADMIN_ID], payout_coin="ZEC")
    conversion = ConversionEngine(FixedPriceOracle(), fee_rate=Decimal("0.01"), minimum_value=Decimal("10"))
    ledger = TransferLedger()
    claims = ClaimTokenService(conversion, PayoutApprovalQueue(notifier), ttl_hours=24, base_url="https://zlink.test")
    orchestrator = ReconciliationOrchestrator(
        concurrent_session_maker,
        ledger=ledger,
        identity=IdentityRegistry(),
        conversion=conversion,
        claims=claims,
        notifier=notifier,
        allow_sharing=True,
    )

    async with concurrent_session_maker() as session:
        token = await issue_token(session, ledger, claims)

    redeemers = [ALICE, BOB, 1003, 1004, 1005, 1006]
    results = await asyncio.gather(
        *(orchestrator.redeem(token.token_id, uid, None, ZEC_T_ADDRESS) for uid in redeemers)
    )

    winners = [r for r in results if r.ok]
    losers = [r for r in results if not r.ok]
    assert len(winners) == 1
    assert {r.error for r in losers} == {ClaimError.ALREADY_CLAIMED}

    async with concurrent_session_maker() as session:
        payouts = await session.scalar(select(func.count()).select_from(PendingPayout))
    assert payouts == 1
    assert len(messenger.to(ADMIN_ID)) == 1


# ===========================
# INFO AND TOKEN PARSING
# ===========================


@pytest.mark.asyncio
async def test_info_reflects_redemption(db_session, ledger, claims, registered):
    token = await issue_token(db_session, ledger, claims, amount="2.5")

    info = await claims.info(db_session, token.token_id)
    assert info.recipient == "alice"
    assert info.source_chain == "base"
    assert Decimal(info.source_amount) == Decimal("2.5")
    assert info.claimed is False
    assert info.expired is False

    await claims.redeem(db_session, token.token_id, ALICE, "alice", ZEC_T_ADDRESS, allow_sharing=False)
    assert (await claims.info(db_session, token.token_id)).claimed is True
    assert await claims.info(db_session, "unknownToken42") is None


def test_extract_token_id():
    token = "AbCdEf0123456789_-xyzXYZ"

    assert extract_token_id(token) == token
    assert extract_token_id(f"  {token}  ") == token
    assert extract_token_id(claim_url(token, "https://zlink.test")) == token
    assert extract_token_id(f"https://zlink.test/claim/{token}?ref=tg#top") == token
    assert extract_token_id(f"https://zlink.test/claim/{token}/") == token


@pytest.mark.parametrize(
    "value",
    [None, "", "   ", "short", "https://evil.test/other/AbCdEf0123456789", "bad token with spaces", "abc$%^&*()defgh"],
)
def test_extract_token_id_rejects_malformed(value):
    assert extract_token_id(value) is None
