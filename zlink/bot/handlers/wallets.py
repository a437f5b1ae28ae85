"""
Wallet and payout address commands

/register <wallet>, /mywallets, /setaddress <address>, /myaddress
"""
from html import escape

from aiogram import F, Router
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, Message
from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from config.config import PAYOUT_COIN
from zlink.database.crud import list_wallets
from zlink.services.container import Services
from zlink.utils.i18n import i18n

router = Router(name="wallets")


@router.message(Command("register"))
async def cmd_register(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
    services: Services,
):
    """Map a sending wallet to the user"""
    wallet = (command.args or "").strip()
    if not wallet:
        await message.answer(i18n.get("register.usage"))
        return

    result = await services.identity.register_wallet(
        session,
        user_id=message.from_user.id,
        wallet_address=wallet,
        display_name=message.from_user.username,
    )

    if not result.ok:
        await message.answer(i18n.get(f"wallet_error.{result.error.value}"))
        return

    key = "register.ok" if result.created else "register.already_yours"
    await message.answer(i18n.get(key, address=escape(result.wallet_address)))


async def _render_wallets(session: AsyncSession, user_id: int) -> str:
    wallets = await list_wallets(session, user_id)
    if not wallets:
        return i18n.get("mywallets.empty")

    lines = [i18n.get("mywallets.header")]
    for wallet in wallets:
        lines.append(
            i18n.get("mywallets.line", address=escape(wallet.wallet_address), family=wallet.chain_family)
        )
    return "\n".join(lines)


@router.message(Command("mywallets"))
async def cmd_mywallets(message: Message, session: AsyncSession):
    await message.answer(await _render_wallets(session, message.from_user.id))


@router.callback_query(F.data == "menu_mywallets")
async def menu_mywallets(callback: CallbackQuery, session: AsyncSession):
    await callback.message.answer(await _render_wallets(session, callback.from_user.id))
    await callback.answer()


@router.message(Command("setaddress"))
async def cmd_setaddress(
    message: Message,
    command: CommandObject,
    session: AsyncSession,
    services: Services,
):
    """Save the Zcash address payouts are sent to"""
    address = (command.args or "").strip()
    if not address:
        await message.answer(i18n.get("setaddress.usage", payout_coin=PAYOUT_COIN))
        return

    result = await services.identity.set_payout_address(
        session,
        user_id=message.from_user.id,
        address=address,
        display_name=message.from_user.username,
    )
    if not result.ok:
        await message.answer(i18n.get("setaddress.invalid", payout_coin=PAYOUT_COIN))
        return

    logger.info(f"User {message.from_user.id} updated payout address")
    await message.answer(i18n.get("setaddress.ok", address=escape(result.wallet_address)))


@router.message(Command("myaddress"))
async def cmd_myaddress(message: Message, session: AsyncSession, services: Services):
    address = await services.identity.get_payout_address(session, message.from_user.id)
    if not address:
        await message.answer(i18n.get("myaddress.none"))
        return
    await message.answer(i18n.get("myaddress.current", address=escape(address)))
