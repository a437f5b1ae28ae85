"""
/mystats and /howtoget
"""
from decimal import Decimal
from typing import List, Tuple

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import FEE_RATE, MINIMUM_REFERENCE_VALUE, PAYOUT_COIN, REFERENCE_CURRENCY
from zlink.core.enums import Chain
from zlink.database.crud import get_user_stats
from zlink.services.notifications import format_amount
from zlink.utils.i18n import i18n

router = Router(name="stats")


async def render_stats(session: AsyncSession, user_id: int) -> str:
    stats = await get_user_stats(session, user_id)
    return i18n.get(
        "mystats.text",
        total=format_amount(stats.total_received),
        payout_coin=PAYOUT_COIN,
        issued=stats.claims_issued,
        redeemed=stats.claims_redeemed,
        pending=stats.payouts_pending,
        approved=stats.payouts_approved,
        rejected=stats.payouts_rejected,
    )


def render_howtoget(deposit_addresses: List[Tuple[Chain, str]]) -> str:
    """Deposit addresses per configured chain, with the current minimum and fee"""
    parts = [i18n.get("howtoget.header", payout_coin=PAYOUT_COIN)]
    if deposit_addresses:
        for chain, address in deposit_addresses:
            parts.append(
                i18n.get("howtoget.line", chain=f"{chain.display_name} ({chain.coin})", address=address)
            )
    else:
        parts.append(i18n.get("howtoget.none"))

    parts.append(
        i18n.get(
            "howtoget.footer",
            minimum=format_amount(MINIMUM_REFERENCE_VALUE, 2),
            currency=REFERENCE_CURRENCY.upper(),
            fee=format_amount(FEE_RATE * Decimal(100), 2),
        )
    )
    return "\n".join(parts)


@router.message(Command("mystats"))
async def cmd_mystats(message: Message, session: AsyncSession):
    await message.answer(await render_stats(session, message.from_user.id))


@router.callback_query(F.data == "menu_mystats")
async def menu_mystats(callback: CallbackQuery, session: AsyncSession):
    await callback.message.answer(await render_stats(session, callback.from_user.id))
    await callback.answer()


@router.message(Command("howtoget"))
async def cmd_howtoget(message: Message, deposit_addresses: List[Tuple[Chain, str]] = None):
    await message.answer(render_howtoget(deposit_addresses or []))


@router.callback_query(F.data == "menu_howtoget")
async def menu_howtoget(callback: CallbackQuery, deposit_addresses: List[Tuple[Chain, str]] = None):
    await callback.message.answer(render_howtoget(deposit_addresses or []))
    await callback.answer()
