from datetime import datetime

import pytest

from config import settings
from database.database import init_db
from database.models import (
    Actor, AllowedMember, Boat, Member, ROLE_ADMIN, ROLE_COORDINATOR, ROLE_GUEST,
    USAGE_CAPTAINS, USAGE_GENERAL, USAGE_RESTRICTED
)
from database.repository import AllowedMemberRepository, BoatRepository, MemberRepository
from services.conflicts import ConflictChecker


# Понедельник, раннее утро: все интересующие тесты даты впереди
NOW = datetime(2024, 6, 10, 6, 0)


class FakeNotifier:
    """Записывает уведомления вместо отправки в Telegram"""

    def __init__(self, delivered: bool = True):
        self.delivered = delivered
        self.sent = []
        self.admin_messages = []

    async def notify(self, member_id, notification, reply_markup=None):
        self.sent.append((member_id, notification, reply_markup))
        return self.delivered

    async def notify_admins(self, text, exclude_id=None):
        self.admin_messages.append((text, exclude_id))

    def titles(self, member_id=None):
        return [n.title for m, n, _ in self.sent if member_id is None or m == member_id]


@pytest.fixture(autouse=True)
def db(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, 'DB_PATH', str(tmp_path / 'test.db'))
    init_db()
    yield settings.DB_PATH


@pytest.fixture
def now():
    return NOW


def _member(name, email, role, telegram_id=None):
    AllowedMemberRepository.add(AllowedMember(id=None, email=email, name=name, role=role))
    member = Member(id=None, name=name, email=email)
    member.id = MemberRepository.create_member(member)
    if telegram_id:
        MemberRepository.link_telegram(member.id, telegram_id)
        member.telegram_id = telegram_id
    return member


@pytest.fixture
def anna():
    return _member('Анна', 'anna@club.org', ROLE_COORDINATOR, telegram_id=1001)


@pytest.fixture
def boris():
    return _member('Борис', 'boris@club.org', ROLE_COORDINATOR, telegram_id=1002)


@pytest.fixture
def admin_member():
    return _member('Админ', 'admin@club.org', ROLE_ADMIN)


@pytest.fixture
def guest_member():
    return _member('Гость', 'guest@club.org', ROLE_GUEST)


@pytest.fixture
def anna_actor(anna):
    return Actor(member_id=anna.id, role=ROLE_COORDINATOR)


@pytest.fixture
def boris_actor(boris):
    return Actor(member_id=boris.id, role=ROLE_COORDINATOR)


@pytest.fixture
def admin(admin_member):
    return Actor(member_id=admin_member.id, role=ROLE_ADMIN)


@pytest.fixture
def guest(guest_member):
    return Actor(member_id=guest_member.id, role=ROLE_GUEST)


def _boat(code, name, usage_type=USAGE_GENERAL):
    boat = Boat(id=None, code=code, name=name, type='4x', usage_type=usage_type)
    boat.id = BoatRepository.create_boat(boat)
    return boat


@pytest.fixture
def boat():
    return _boat('K1', 'Катран')


@pytest.fixture
def boat2():
    return _boat('K2', 'Скат')


@pytest.fixture
def restricted_boat():
    return _boat('R1', 'Ремонтная', USAGE_RESTRICTED)


@pytest.fixture
def captains_boat():
    return _boat('C1', 'Капитанская', USAGE_CAPTAINS)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def db_guard_only(monkeypatch):
    """Проверка пересечений в сервисах отключена, остаётся только триггер БД"""
    monkeypatch.setattr(
        ConflictChecker, 'find_conflicts', staticmethod(lambda *args, **kwargs: [])
    )
