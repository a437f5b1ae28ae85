"""
Update logging - one line per update in, one line per update out
"""

from typing import Callable, Dict, Any, Awaitable, Optional

import time

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from loguru import logger


def describe_update(event: TelegramObject) -> Optional[str]:
    """
    Short, log-safe description of an update

    Only the command word of a message is kept: /claim and /register
    arguments carry claim codes and wallet addresses, and operator free
    text carries payout proofs.
    """
    if isinstance(event, Message):
        words = (event.text or "").split(maxsplit=1)
        if not words:
            return f"[{event.content_type}]"
        if not words[0].startswith("/"):
            return "[text]"
        return words[0][:32]

    if isinstance(event, CallbackQuery):
        # admin_approve:<claim id> -> admin_approve
        return (event.data or "").partition(":")[0] or "[callback]"

    return None


class LoggingMiddleware(BaseMiddleware):
    """Logs who sent what and how long handling took"""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = getattr(event, "from_user", None)
        user_id = user.id if user else None
        summary = describe_update(event)

        if summary is not None:
            logger.info(f"{type(event).__name__} from @{user.username if user else None} ({user_id}): {summary}")

        started = time.perf_counter()
        try:
            result = await handler(event, data)
        except Exception as e:
            logger.error(f"{summary} failed after {time.perf_counter() - started:.3f}s (user: {user_id}): {e}")
            raise

        logger.debug(f"{summary} handled in {time.perf_counter() - started:.3f}s (user: {user_id})")
        return result
