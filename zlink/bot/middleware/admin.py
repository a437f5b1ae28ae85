"""
Operator gate

/admin, /reconcile and every admin_* callback are reserved for the
operators in ADMIN_IDS. Everyone else gets a short refusal and the
handler never runs. All updates get an `is_admin` flag.
"""

from typing import Callable, Dict, Any, Awaitable, Iterable, Optional
import logging

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject, Message, CallbackQuery

from config.config import ADMIN_IDS
from zlink.utils.i18n import i18n


logger = logging.getLogger(__name__)


class AdminMiddleware(BaseMiddleware):
    ADMIN_COMMANDS = frozenset({"/admin", "/reconcile"})
    ADMIN_CALLBACK_PREFIX = "admin_"

    def __init__(self, admin_ids: Optional[Iterable[int]] = None):
        self.admin_ids = frozenset(ADMIN_IDS if admin_ids is None else admin_ids)

    def is_admin(self, user_id: int) -> bool:
        return user_id in self.admin_ids

    def is_admin_command(self, text: str) -> bool:
        """True for an operator command, including the /cmd@BotName form"""
        words = (text or "").split()
        if not words:
            return False

        command = words[0].lower().split("@")[0]
        return command in self.ADMIN_COMMANDS

    def is_admin_callback(self, callback_data: str) -> bool:
        return bool(callback_data) and callback_data.startswith(self.ADMIN_CALLBACK_PREFIX)

    def is_admin_action(self, event: TelegramObject) -> bool:
        if isinstance(event, Message):
            return self.is_admin_command(event.text)
        if isinstance(event, CallbackQuery):
            return self.is_admin_callback(event.data)
        return False

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any],
    ) -> Any:
        user = getattr(event, "from_user", None)
        if user is not None:
            data["is_admin"] = self.is_admin(user.id)

        if not self.is_admin_action(event):
            return await handler(event, data)

        if user is None:
            logger.warning("Admin action without a sender, dropped")
            return None

        if not data["is_admin"]:
            logger.warning(f"User {user.id} (@{user.username}) tried an admin action")
            if isinstance(event, CallbackQuery):
                await event.answer(i18n.get("admin.denied"), show_alert=True)
            else:
                await event.answer(i18n.get("admin.denied"))
            return None

        return await handler(event, data)
