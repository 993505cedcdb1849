import pytest
from aiogram.exceptions import TelegramForbiddenError
from aiogram.methods import SendMessage

from config import settings
from database.repository import MemberRepository
from services.notifier import Notification, TelegramNotifier

NOTIFICATION = Notification(title='Скоро выход', body='Катран • 09:00–10:00')


class StubBot:
    """Вместо Bot: запоминает отправки или бросает заданную ошибку"""

    def __init__(self, error=None):
        self.error = error
        self.sent = []

    async def send_message(self, chat_id, text, reply_markup=None):
        if self.error:
            raise self.error
        self.sent.append((chat_id, text))


def forbidden():
    return TelegramForbiddenError(
        method=SendMessage(chat_id=1001, text='x'),
        message='Forbidden: bot was blocked by the user'
    )


@pytest.mark.asyncio
async def test_notify_delivers(anna):
    bot = StubBot()
    assert await TelegramNotifier(bot).notify(anna.id, NOTIFICATION)
    assert bot.sent == [(1001, 'Скоро выход\n\nКатран • 09:00–10:00')]


@pytest.mark.asyncio
async def test_notify_without_telegram_skipped(admin_member):
    bot = StubBot()
    assert not await TelegramNotifier(bot).notify(admin_member.id, NOTIFICATION)
    assert bot.sent == []


@pytest.mark.asyncio
async def test_notify_swallows_send_errors(anna):
    bot = StubBot(error=RuntimeError('network down'))

    assert await TelegramNotifier(bot).notify(anna.id, NOTIFICATION) is False
    assert MemberRepository.get_member_by_id(anna.id).telegram_id == 1001


@pytest.mark.asyncio
async def test_blocked_bot_unlinks_telegram(anna):
    bot = StubBot(error=forbidden())

    assert await TelegramNotifier(bot).notify(anna.id, NOTIFICATION) is False
    assert MemberRepository.get_member_by_id(anna.id).telegram_id is None
    assert MemberRepository.get_member_by_telegram_id(1001) is None


@pytest.mark.asyncio
async def test_notify_admins_skips_sender_and_failures(monkeypatch):
    monkeypatch.setattr(settings, 'ADMIN_IDS', [1, 2, 3])
    bot = StubBot()

    await TelegramNotifier(bot).notify_admins('Новая бронь', exclude_id=2)
    assert [chat_id for chat_id, _ in bot.sent] == [1, 3]

    # Ошибка доставки одному админу не прерывает рассылку
    await TelegramNotifier(StubBot(error=RuntimeError('boom'))).notify_admins('Новая бронь')
