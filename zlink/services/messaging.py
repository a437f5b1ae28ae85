# coding: utf-8
"""
Messaging channel - best-effort delivery to Telegram users

send_to_user never raises: unreachable recipients (blocked bot, deleted
account, unknown chat) are logged and reported as False; flood control
is honoured by waiting retry_after and trying once more.
"""
import asyncio
from typing import Optional, Protocol

from aiogram import Bot
from aiogram.exceptions import (
    TelegramBadRequest,
    TelegramForbiddenError,
    TelegramNetworkError,
    TelegramRetryAfter,
)
from aiogram.types import InlineKeyboardMarkup
from loguru import logger


class Messenger(Protocol):
    async def send_to_user(
        self,
        user_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> bool:
        ...


class TelegramMessenger:
    """aiogram Bot wrapper used for every notification the core sends"""

    # Longest flood-control wait we accept before giving up
    MAX_RETRY_AFTER = 60

    def __init__(self, bot: Bot):
        self.bot = bot

    async def send_to_user(
        self,
        user_id: int,
        text: str,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> bool:
        """
        Send an HTML message

        Returns:
            True if delivered, False otherwise
        """
        for attempt in (1, 2):
            try:
                await self.bot.send_message(
                    chat_id=user_id,
                    text=text,
                    reply_markup=reply_markup,
                    disable_web_page_preview=True,
                )
                return True
            except TelegramRetryAfter as e:
                if attempt == 2 or e.retry_after > self.MAX_RETRY_AFTER:
                    logger.warning(f"Flood control for {user_id}, giving up (retry_after={e.retry_after}s)")
                    return False
                logger.warning(f"Flood control for {user_id}, retrying in {e.retry_after}s")
                await asyncio.sleep(e.retry_after)
            except TelegramForbiddenError:
                logger.info(f"User {user_id} blocked the bot or was deactivated, message not delivered")
                return False
            except TelegramBadRequest as e:
                logger.warning(f"Cannot deliver to {user_id}: {e.message}")
                return False
            except TelegramNetworkError as e:
                logger.warning(f"Network error delivering to {user_id}: {e}")
                return False
            except Exception as e:
                logger.exception(f"Unexpected error delivering to {user_id}: {e}")
                return False
        return False
