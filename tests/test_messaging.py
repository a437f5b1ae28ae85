"""
Unit tests for Telegram delivery and notification formatting
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiogram.exceptions import TelegramForbiddenError, TelegramRetryAfter
from aiogram.methods import SendMessage

from zlink.core.enums import ClaimError, PayoutError, WalletError
from zlink.services.messaging import TelegramMessenger
from zlink.services.notifications import Notifier, display_user, format_amount
from zlink.utils.i18n import I18n, LOCALES_DIR

from tests.conftest import ADMIN_ID, RecordingMessenger


def make_bot(side_effect=None):
    bot = MagicMock()
    bot.send_message = AsyncMock(side_effect=side_effect)
    return bot


# ===========================
# TELEGRAM MESSENGER
# ===========================


@pytest.mark.asyncio
async def test_send_delivers():
    bot = make_bot()
    messenger = TelegramMessenger(bot)

    assert await messenger.send_to_user(42, "hello") is True
    bot.send_message.assert_awaited_once()
    assert bot.send_message.await_args.kwargs["chat_id"] == 42


@pytest.mark.asyncio
async def test_blocked_user_is_not_an_error():
    method = SendMessage(chat_id=42, text="hello")
    bot = make_bot(TelegramForbiddenError(method=method, message="Forbidden: bot was blocked by the user"))

    assert await TelegramMessenger(bot).send_to_user(42, "hello") is False


@pytest.mark.asyncio
async def test_flood_control_retried_once():
    method = SendMessage(chat_id=42, text="hello")
    bot = make_bot([TelegramRetryAfter(method=method, message="Too Many Requests", retry_after=0), None])

    assert await TelegramMessenger(bot).send_to_user(42, "hello") is True
    assert bot.send_message.await_count == 2


@pytest.mark.asyncio
async def test_long_flood_control_gives_up():
    method = SendMessage(chat_id=42, text="hello")
    bot = make_bot(TelegramRetryAfter(method=method, message="Too Many Requests", retry_after=3600))

    assert await TelegramMessenger(bot).send_to_user(42, "hello") is False
    assert bot.send_message.await_count == 1


# ===========================
# NOTIFICATIONS
# ===========================


def test_format_amount():
    assert format_amount(Decimal("76.96670000")) == "76.9667"
    assert format_amount(Decimal("77.00000000")) == "77"
    assert format_amount(Decimal("0.00000001")) == "0.00000001"
    assert format_amount(Decimal("3.456"), 2) == "3.46"
    assert format_amount(None) == "-"


def test_display_user():
    assert display_user(1, "alice") == "@alice"
    assert display_user(1, "@alice") == "@alice"
    assert display_user(7, None) == "user 7"


@pytest.mark.asyncio
async def test_payout_created_reaches_every_operator():
    messenger = RecordingMessenger(unreachable=(ADMIN_ID + 1,))
    notifier = Notifier(messenger, admin_ids=[ADMIN_ID, ADMIN_ID + 1], payout_coin="ZEC")
    payout = MagicMock(
        claim_id="c1",
        beneficiary_user_id=5,
        beneficiary_username="<b>eve</b>",
        payout_amount=Decimal("77"),
        source_amount=Decimal("1"),
        source_coin="ETH",
        source_value=Decimal("3500"),
        payout_address="t1" + "a" * 33,
    )

    delivered = await notifier.payout_created(payout)

    assert delivered == 1
    text = messenger.to(ADMIN_ID)[0]
    assert "c1" in text
    assert "77 ZEC" in text
    assert "&lt;b&gt;eve&lt;/b&gt;" in text


@pytest.mark.asyncio
async def test_notifier_swallows_messenger_failures():
    messenger = MagicMock()
    messenger.send_to_user = AsyncMock(side_effect=RuntimeError("boom"))
    notifier = Notifier(messenger, admin_ids=[ADMIN_ID])
    payout = MagicMock(
        beneficiary_user_id=5,
        payout_amount=Decimal("1"),
        payout_address="t1" + "a" * 33,
        approval_proof="tx",
    )

    assert await notifier.payout_approved(payout) is False


# ===========================
# MESSAGE CATALOG
# ===========================


def test_catalog_lookup_and_formatting():
    catalog = I18n(LOCALES_DIR)

    assert "en" in catalog.translations
    assert catalog.get("admin.buttons.approve") == "✅ Approve"
    assert "72" in catalog.get("payout_error.invalid_reason", min_length=72)
    assert catalog.has("claim_error.expired")


def test_catalog_missing_key_returns_key():
    catalog = I18n(LOCALES_DIR)

    assert catalog.get("no.such.key") == "no.such.key"
    assert catalog.has("admin.buttons") is False


def test_every_error_has_a_text():
    catalog = I18n(LOCALES_DIR)
    for error in ClaimError:
        assert catalog.has(f"claim_error.{error.value}")
    for error in PayoutError:
        assert catalog.has(f"payout_error.{error.value}")
    for error in WalletError:
        assert catalog.has(f"wallet_error.{error.value}")
