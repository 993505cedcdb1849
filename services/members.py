"""
Участники клуба: привязка Telegram и роли
"""
import logging
from typing import Optional

from config import settings
from database.models import Actor, AllowedMember, Member, ROLE_ADMIN, ROLE_GUEST, ROLES
from database.repository import AllowedMemberRepository, BoatRepository, MemberRepository
from services.exceptions import NotFoundError, PermissionDeniedError, ValidationError

logger = logging.getLogger(__name__)


class MemberService:
    """Регистрация по списку допуска и определение роли"""

    @staticmethod
    def link_by_email(email: str, telegram_id: int) -> Member:
        """Привязка Telegram к участнику; участник создаётся при первом входе"""
        email = email.strip().lower()
        if '@' not in email:
            raise ValidationError("Введите корректный e-mail")

        allowed = AllowedMemberRepository.get_by_email(email)
        if not allowed:
            raise PermissionDeniedError("Этого e-mail нет в списке участников клуба")

        member = MemberRepository.get_member_by_email(email)
        if member is None:
            member = Member(id=None, name=allowed.name, email=email)
            member.id = MemberRepository.create_member(member)
            logger.info(f"Зарегистрирован участник #{member.id} ({email})")

        MemberRepository.link_telegram(member.id, telegram_id)
        member.telegram_id = telegram_id
        logger.info(f"Участник #{member.id} привязал Telegram {telegram_id}")
        return member

    @staticmethod
    def actor_for(member: Optional[Member], telegram_id: Optional[int] = None) -> Actor:
        """Актор для участника; администраторы из настроек всегда admin"""
        if telegram_id is not None and settings.is_admin(telegram_id):
            return Actor(member_id=member.id if member else None, role=ROLE_ADMIN)
        if member is None:
            return Actor(member_id=None, role=ROLE_GUEST)
        return Actor(member_id=member.id, role=MemberRepository.get_role(member.id) or ROLE_GUEST)

    @staticmethod
    def allow(actor: Actor, email: str, name: str, role: str) -> AllowedMember:
        """Добавление e-mail в список допуска"""
        if not actor.is_admin:
            raise PermissionDeniedError("Список допуска меняют только администраторы")
        if role not in ROLES:
            raise ValidationError(f"Роль должна быть одной из: {', '.join(ROLES)}")

        allowed = AllowedMember(id=None, email=email.strip().lower(), name=name, role=role)
        AllowedMemberRepository.add(allowed)
        logger.info(f"Список допуска: {allowed.email} ({role})")
        return AllowedMemberRepository.get_by_email(allowed.email)

    @staticmethod
    def grant_boat(actor: Actor, boat_code: str, email: str):
        """Допуск участника к лодке с капитанским доступом"""
        if not actor.is_admin:
            raise PermissionDeniedError("Допуски выдают только администраторы")

        boat = BoatRepository.get_boat_by_code(boat_code)
        if not boat:
            raise NotFoundError("Лодка", boat_code)
        member = MemberRepository.get_member_by_email(email)
        if not member:
            raise NotFoundError("Участник", email)

        BoatRepository.grant_permission(boat.id, member.id)
        logger.info(f"Участнику #{member.id} выдан допуск к лодке {boat.code}")
        return boat, member
