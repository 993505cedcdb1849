"""
Отправка уведомлений участникам через Telegram
"""
import logging
from dataclasses import dataclass
from typing import Optional

from aiogram import Bot
from aiogram.exceptions import TelegramForbiddenError
from aiogram.types import InlineKeyboardMarkup

from config import settings
from database.repository import MemberRepository

logger = logging.getLogger(__name__)


@dataclass
class Notification:
    """Уведомление: заголовок, текст и раздел бота, куда ведёт"""
    title: str
    body: str
    url: str = '/'

    def render(self) -> str:
        return f"{self.title}\n\n{self.body}"


class TelegramNotifier:
    """Доставка уведомлений «по возможности»: ошибки только логируются"""

    def __init__(self, bot: Bot):
        self.bot = bot

    async def notify(self, member_id: int, notification: Notification,
                     reply_markup: Optional[InlineKeyboardMarkup] = None) -> bool:
        """Отправка уведомления участнику; True, если доставлено"""
        member = MemberRepository.get_member_by_id(member_id)
        if not member or not member.telegram_id:
            logger.info(f"Участник {member_id} не привязан к Telegram, уведомление пропущено")
            return False

        try:
            await self.bot.send_message(
                member.telegram_id, notification.render(), reply_markup=reply_markup
            )
            return True
        except TelegramForbiddenError:
            # Пользователь заблокировал бота: подписка больше недействительна
            MemberRepository.unlink_telegram(member_id)
            logger.warning(f"Участник {member_id} заблокировал бота, Telegram отвязан")
        except Exception as e:
            logger.error(f"Не удалось уведомить участника {member_id}: {e}")
        return False

    async def notify_admins(self, text: str, exclude_id: Optional[int] = None):
        """Сообщение всем администраторам из настроек"""
        for admin_id in settings.ADMIN_IDS:
            if admin_id == exclude_id:
                continue
            try:
                await self.bot.send_message(admin_id, text)
            except Exception as e:
                logger.error(f"Не удалось отправить уведомление админу {admin_id}: {e}")
