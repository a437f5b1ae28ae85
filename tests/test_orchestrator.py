"""
End-to-end tests for the reconciliation orchestrator
"""

from decimal import Decimal

import pytest

from zlink.core.enums import Chain, ClaimError, PayoutStatus, TransferOutcome
from zlink.database.crud import get_user
from zlink.services.claim_tokens import claim_url

from tests.conftest import (
    ADMIN_ID,
    ALICE,
    BOB,
    ZEC_T_ADDRESS,
    make_event,
)


UNKNOWN_WALLET = "0x" + "cc" * 20
SOLANA_WALLET = "7EcDhSYGxXyscszYEp35KHN8vvw3svAuLKTzXwCFLtV"


async def token_for(session_maker, claims, event):
    async with session_maker() as session:
        return await claims.get_for_transfer(session, event.chain, event.tx_ref)


@pytest.mark.asyncio
async def test_deposit_to_approved_payout(session_maker, orchestrator, claims, queue, messenger, registered):
    """1 ETH on Base at 3500, 1% fee, ZEC at 45 -> 77 ZEC, then approved"""
    event = make_event(amount="1.0")

    outcome = await orchestrator.handle_transfer(event)

    assert outcome == TransferOutcome.ISSUED
    token = await token_for(session_maker, claims, event)
    assert token.issued_to_user_id == ALICE
    assert Decimal(token.reward_amount_at_issuance) == Decimal("77")
    alice_messages = messenger.to(ALICE)
    assert len(alice_messages) == 1
    assert claim_url(token.token_id, "https://zlink.test") in alice_messages[0]

    result = await orchestrator.redeem(claim_url(token.token_id, "https://zlink.test"), ALICE, "alice", ZEC_T_ADDRESS)

    assert result.ok is True
    assert Decimal(result.payout.payout_amount) == Decimal("77")
    assert len(messenger.to(ADMIN_ID)) == 1

    async with session_maker() as session:
        approved = await queue.approve(session, result.payout.claim_id, "zec-tx-77", operator_id=ADMIN_ID)
        assert approved.payout.status == PayoutStatus.APPROVED.value
        user = await get_user(session, ALICE)
        assert Decimal(user.total_received) == Decimal("77")


@pytest.mark.asyncio
async def test_redelivered_event_is_duplicate(session_maker, orchestrator, claims, messenger, registered):
    event = make_event(tx_ref="0x" + "ab" * 32)

    first = await orchestrator.handle_transfer(event)
    second = await orchestrator.handle_transfer(event)
    upper = await orchestrator.handle_transfer(make_event(tx_ref="0x" + "AB" * 32))

    assert first == TransferOutcome.ISSUED
    assert second == TransferOutcome.DUPLICATE
    assert upper == TransferOutcome.DUPLICATE
    assert len(messenger.to(ALICE)) == 1


@pytest.mark.asyncio
async def test_unattributed_deposit_reconciled_after_registration(
    session_maker, orchestrator, identity, ledger, claims, messenger, registered
):
    event = make_event(sender=UNKNOWN_WALLET)

    outcome = await orchestrator.handle_transfer(event)

    assert outcome == TransferOutcome.UNATTRIBUTED
    async with session_maker() as session:
        record = await ledger.get(session, Chain.BASE, event.tx_ref)
        assert record.processed is False

    # Redelivery before registration changes nothing
    assert await orchestrator.handle_transfer(event) == TransferOutcome.UNATTRIBUTED

    async with session_maker() as session:
        await identity.register_wallet(session, BOB, UNKNOWN_WALLET, display_name="bob")

    outcomes = await orchestrator.reconcile_pending()

    assert outcomes == {TransferOutcome.ISSUED: 1}
    token = await token_for(session_maker, claims, event)
    assert token.issued_to_user_id == BOB
    assert token.issued_to_username == "bob"
    assert len(messenger.to(BOB)) == 1

    assert await orchestrator.reconcile_pending() == {}


@pytest.mark.asyncio
async def test_below_minimum_notified_once(session_maker, orchestrator, ledger, claims, messenger, registered):
    # 0.001 ETH = 3.50 USD
    event = make_event(amount="0.001")

    first = await orchestrator.handle_transfer(event)
    second = await orchestrator.handle_transfer(event)

    assert first == TransferOutcome.BELOW_MINIMUM
    assert second == TransferOutcome.DUPLICATE
    assert len(messenger.to(ALICE)) == 1
    assert "minimum" in messenger.to(ALICE)[0]

    async with session_maker() as session:
        record = await ledger.get(session, Chain.BASE, event.tx_ref)
        assert record.processed is True
        assert record.skip_reason == "below_minimum"
    assert await token_for(session_maker, claims, event) is None


@pytest.mark.asyncio
async def test_exact_minimum_issues_token(orchestrator, oracle, registered):
    oracle.prices["ETH"] = Decimal("10")

    outcome = await orchestrator.handle_transfer(make_event(amount="1"))

    assert outcome == TransferOutcome.ISSUED


@pytest.mark.asyncio
async def test_unpriced_coin_left_for_retry(session_maker, orchestrator, identity, ledger, oracle, db_session):
    await identity.register_wallet(db_session, ALICE, SOLANA_WALLET, display_name="alice")
    del oracle.prices["SOL"]
    event = make_event(chain=Chain.SOLANA, sender=SOLANA_WALLET, tx_ref="5" * 88, amount="1")

    outcome = await orchestrator.handle_transfer(event)

    assert outcome == TransferOutcome.PRICE_UNAVAILABLE
    async with session_maker() as session:
        assert (await ledger.get(session, Chain.SOLANA, event.tx_ref)).processed is False

    oracle.prices["SOL"] = Decimal("150")
    assert await orchestrator.reconcile_pending() == {TransferOutcome.ISSUED: 1}


@pytest.mark.asyncio
async def test_redeem_malformed_token(orchestrator):
    result = await orchestrator.redeem("not a token!", ALICE, "alice", ZEC_T_ADDRESS)

    assert result.ok is False
    assert result.error == ClaimError.MALFORMED_TOKEN


@pytest.mark.asyncio
async def test_channel_policy_overrides_sharing_default(session_maker, orchestrator, claims, messenger, registered):
    event = make_event()
    await orchestrator.handle_transfer(event)
    token = await token_for(session_maker, claims, event)

    refused = await orchestrator.redeem(token.token_id, BOB, "bob", ZEC_T_ADDRESS, allow_sharing=False)
    shared = await orchestrator.redeem(token.token_id, BOB, "bob", ZEC_T_ADDRESS)

    assert refused.error == ClaimError.NOT_INTENDED_RECIPIENT
    assert shared.ok is True
    assert shared.payout.beneficiary_user_id == BOB
    assert "@bob" in messenger.to(ADMIN_ID)[0]
