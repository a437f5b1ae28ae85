# coding: utf-8
"""
Outbound notifications of the reconciliation core

Every method is best-effort: failures are logged and never propagate,
so a notification can never undo a committed state transition.
"""
from decimal import Decimal
from html import escape
from typing import Iterable, List, Optional

from loguru import logger

from config.config import (
    MINIMUM_REFERENCE_VALUE,
    PAYOUT_COIN,
    REFERENCE_CURRENCY,
)
from zlink.core.enums import Chain
from zlink.database.models import ClaimToken, PendingPayout, Transfer
from zlink.services.messaging import Messenger
from zlink.utils.address_validation import shorten
from zlink.utils.i18n import i18n


def format_amount(value: Optional[Decimal], places: int = 8) -> str:
    """Fixed-point without trailing zeros: 76.96670000 -> 76.9667"""
    if value is None:
        return "-"
    text = f"{Decimal(value):.{places}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def display_user(user_id: int, username: Optional[str]) -> str:
    if username:
        return f"@{escape(username.lstrip('@'))}"
    return f"user {user_id}"


class Notifier:
    """Formats and sends claim and payout notifications"""

    def __init__(
        self,
        messenger: Messenger,
        admin_ids: Iterable[int] = (),
        payout_coin: str = PAYOUT_COIN,
    ):
        self.messenger = messenger
        self.admin_ids: List[int] = list(admin_ids)
        self.payout_coin = payout_coin

    async def _send(self, user_id: int, text: str) -> bool:
        try:
            return await self.messenger.send_to_user(user_id, text)
        except Exception as e:
            logger.exception(f"Notification to {user_id} failed: {e}")
            return False

    async def claim_issued(self, token: ClaimToken, transfer: Transfer, url: str) -> bool:
        chain = Chain(transfer.chain)
        text = i18n.get(
            "notify.claim_issued",
            amount=format_amount(transfer.amount),
            coin=chain.coin,
            chain=chain.display_name,
            tx=shorten(transfer.tx_ref),
            estimate=format_amount(token.reward_amount_at_issuance),
            payout_coin=self.payout_coin,
            url=url,
            token_id=token.token_id,
            expires_at=token.expires_at.strftime("%Y-%m-%d %H:%M"),
        )
        return await self._send(token.issued_to_user_id, text)

    async def deposit_below_minimum(self, user_id: int, transfer: Transfer, value: Decimal) -> bool:
        chain = Chain(transfer.chain)
        text = i18n.get(
            "notify.below_minimum",
            amount=format_amount(transfer.amount),
            coin=chain.coin,
            chain=chain.display_name,
            value=format_amount(value, 2),
            minimum=format_amount(MINIMUM_REFERENCE_VALUE, 2),
            currency=REFERENCE_CURRENCY.upper(),
        )
        return await self._send(user_id, text)

    async def payout_created(self, payout: PendingPayout) -> int:
        """Tell every operator about a new pending payout. Returns deliveries."""
        text = i18n.get(
            "notify.admin_new_payout",
            claim_id=payout.claim_id,
            user=display_user(payout.beneficiary_user_id, payout.beneficiary_username),
            amount=format_amount(payout.payout_amount),
            payout_coin=self.payout_coin,
            source_amount=format_amount(payout.source_amount),
            source_coin=payout.source_coin,
            value=format_amount(payout.source_value, 2),
            currency=REFERENCE_CURRENCY.upper(),
            address=escape(payout.payout_address),
        )
        delivered = 0
        for admin_id in self.admin_ids:
            if await self._send(admin_id, text):
                delivered += 1
        return delivered

    async def payout_approved(self, payout: PendingPayout) -> bool:
        text = i18n.get(
            "notify.payout_approved",
            amount=format_amount(payout.payout_amount),
            payout_coin=self.payout_coin,
            address=escape(payout.payout_address),
            proof=escape(payout.approval_proof or ""),
        )
        return await self._send(payout.beneficiary_user_id, text)

    async def payout_rejected(self, payout: PendingPayout) -> bool:
        text = i18n.get(
            "notify.payout_rejected",
            claim_id=payout.claim_id,
            reason=escape(payout.rejection_reason or ""),
        )
        if payout.refund_reference:
            text += i18n.get("notify.refund", refund=escape(payout.refund_reference))
        return await self._send(payout.beneficiary_user_id, text)
