"""
/start: welcome text and the main menu
"""

from aiogram import Router
from aiogram.filters import CommandStart
from aiogram.types import InlineKeyboardButton, InlineKeyboardMarkup, Message
from loguru import logger

from config.config import PAYOUT_COIN
from zlink.utils.i18n import i18n

router = Router(name="start")


def _button(key: str, callback_data: str, **kwargs) -> InlineKeyboardButton:
    return InlineKeyboardButton(text=i18n.get(key, **kwargs), callback_data=callback_data)


def get_main_menu() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [_button("menu.howtoget", "menu_howtoget", payout_coin=PAYOUT_COIN)],
            [_button("menu.mywallets", "menu_mywallets"), _button("menu.mystats", "menu_mystats")],
            [_button("menu.help", "menu_help")],
        ]
    )


@router.message(CommandStart())
async def cmd_start(message: Message, is_new_user: bool = False):
    """is_new_user comes from DatabaseMiddleware"""
    if is_new_user:
        logger.info(f"New user {message.from_user.id} (@{message.from_user.username})")

    await message.answer(
        i18n.get("start.welcome", payout_coin=PAYOUT_COIN),
        reply_markup=get_main_menu(),
    )
