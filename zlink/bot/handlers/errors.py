"""
Catch-all for exceptions escaping handlers
"""
from aiogram import Router
from aiogram.exceptions import TelegramAPIError
from aiogram.types import ErrorEvent
from loguru import logger

from zlink.utils.i18n import i18n

router = Router(name="errors")


@router.errors()
async def on_error(event: ErrorEvent) -> bool:
    """Log the failure and tell the user something went wrong"""
    update = event.update
    logger.opt(exception=event.exception).error(
        f"Unhandled error in update {update.update_id}: {event.exception}"
    )

    text = i18n.get("errors.generic")
    try:
        if update.message:
            await update.message.answer(text)
        elif update.callback_query:
            await update.callback_query.answer(text, show_alert=True)
    except TelegramAPIError as e:
        logger.warning(f"Could not report error to user: {e}")

    return True
