"""
Middleware, определяющий участника клуба и его роль
"""
from typing import Callable, Dict, Any, Awaitable

from aiogram import BaseMiddleware
from aiogram.types import TelegramObject

from database.repository import MemberRepository
from services.members import MemberService


class ActorMiddleware(BaseMiddleware):
    """Добавляет в data хендлера `member` (или None) и `actor`"""

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        user = data.get("event_from_user")
        member = MemberRepository.get_member_by_telegram_id(user.id) if user else None

        data["member"] = member
        data["actor"] = MemberService.actor_for(member, user.id if user else None)

        return await handler(event, data)
