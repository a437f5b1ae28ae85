"""
/help command handler
"""

from aiogram import F, Router
from aiogram.filters import Command
from aiogram.types import CallbackQuery, Message
from loguru import logger

from config.config import PAYOUT_COIN
from zlink.utils.i18n import i18n

router = Router(name="help")


@router.message(Command("help"))
async def cmd_help(message: Message):
    """Show available commands and usage"""
    await message.answer(i18n.get("help.text", payout_coin=PAYOUT_COIN))

    logger.info(f"Help shown to user {message.from_user.id}")


@router.callback_query(F.data == "menu_help")
async def menu_help(callback: CallbackQuery):
    await callback.message.answer(i18n.get("help.text", payout_coin=PAYOUT_COIN))
    await callback.answer()
