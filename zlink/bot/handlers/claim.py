"""
/claim <link or code> [payout address]
"""
from html import escape

from aiogram import Router
from aiogram.filters import Command, CommandObject
from aiogram.types import Message
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import MINIMUM_REFERENCE_VALUE, PAYOUT_COIN, REFERENCE_CURRENCY
from zlink.core.enums import ClaimError
from zlink.services.container import Services
from zlink.services.notifications import format_amount
from zlink.utils.i18n import i18n

router = Router(name="claim")


def claim_error_text(error: ClaimError) -> str:
    """Specific user-facing message per redemption failure"""
    return i18n.get(
        f"claim_error.{error.value}",
        payout_coin=PAYOUT_COIN,
        minimum=format_amount(MINIMUM_REFERENCE_VALUE, 2),
        currency=REFERENCE_CURRENCY.upper(),
    )


@router.message(Command("claim"))
async def cmd_claim(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
    services: Services,
):
    """
    Redeem a claim link

    Without an explicit address the user's saved payout address is used.
    """
    args = (command.args or "").split()
    if not args:
        await message.answer(i18n.get("claim.usage", payout_coin=PAYOUT_COIN))
        return

    token_input = args[0]
    user_id = message.from_user.id

    if len(args) > 1:
        payout_address = args[1]
    else:
        payout_address = await services.identity.get_payout_address(session, user_id)
        if not payout_address:
            await message.answer(i18n.get("claim.no_address"))
            return

    # Redemption runs in its own transaction
    await session.commit()

    result = await services.orchestrator.redeem(
        token_input,
        redeemer_user_id=user_id,
        redeemer_username=message.from_user.username,
        payout_address=payout_address,
    )

    if not result.ok:
        await message.answer(claim_error_text(result.error))
        return

    payout = result.payout
    logger.info(f"User {user_id} claimed {payout.payout_amount} {PAYOUT_COIN} (claim {payout.claim_id})")
    await message.answer(
        i18n.get(
            "claim.success",
            amount=format_amount(payout.payout_amount),
            payout_coin=PAYOUT_COIN,
            address=escape(payout.payout_address),
            claim_id=payout.claim_id,
        )
    )
