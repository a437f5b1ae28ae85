"""
Per-update database session

Every message and callback gets its own AsyncSession as `session`, and
the sender's users row (created on first contact) as `user`. The
session is committed when the handler returns and rolled back when it
raises.
"""

from typing import Callable, Dict, Any, Awaitable, Optional

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.sentry import set_user_context
from zlink.database.engine import get_session_maker
from zlink.database.crud import get_or_create_user


class DatabaseMiddleware(BaseMiddleware):
    def __init__(self, session_maker: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_maker = session_maker

    async def _attach_user(self, session: AsyncSession, event: TelegramObject, data: Dict[str, Any]) -> None:
        sender = event.from_user if isinstance(event, (Message, CallbackQuery)) else None
        if sender is None:
            return

        set_user_context(sender.id, sender.username)
        try:
            data["user"], data["is_new_user"] = await get_or_create_user(
                session, user_id=sender.id, display_name=sender.username
            )
        except SQLAlchemyError as e:
            # Continue without the users row
            await session.rollback()
            logger.error(f"Could not load user {sender.id}: {e}")

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        session_maker = self.session_maker or get_session_maker()
        async with session_maker() as session:
            data["session"] = session
            await self._attach_user(session, event, data)

            try:
                result = await handler(event, data)
            except Exception:
                await session.rollback()
                raise

            await session.commit()
            return result
