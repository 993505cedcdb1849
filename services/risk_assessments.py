"""
Оценка рисков выхода: одна анкета на одну или несколько броней
"""
import logging
import sqlite3
from typing import Dict, List, Optional

from database.models import Actor, Booking, RiskAssessment, RISK_FIELDS, USAGE_CANCELLED
from database.repository import (
    BoatRepository, BookingRepository, MemberRepository, RiskAssessmentRepository
)
from services.bookings import ensure_can_mutate, ensure_owner_or_admin
from services.exceptions import (
    Conflict, ConflictError, ImmutableStateError, NotFoundError, ValidationError
)
from utils.time_utils import format_interval

logger = logging.getLogger(__name__)

RISK_QUESTIONS: Dict[str, str] = {
    'crew_type': "Состав экипажа (опытный, смешанный, новички)?",
    'boat_type': "Тип лодки?",
    'launch_supervision': "Кто страхует с катера или с берега?",
    'visibility': "Видимость?",
    'river_level': "Уровень воды в реке?",
    'water_conditions': "Состояние воды (течение, волна, мусор)?",
    'air_temperature': "Температура воздуха?",
    'wind_conditions': "Ветер?",
    'incoming_tide': "Прилив или сброс воды во время выхода?",
    'risk_actions': "Какие меры приняты для снижения рисков?",
}


class RiskAssessmentService:
    """Заполнение оценки рисков и уведомление администраторов"""

    @staticmethod
    def check_bookings(actor: Actor, booking_ids: List[int]) -> List[Booking]:
        """Брони, к которым актор может привязать новую оценку рисков"""
        ensure_can_mutate(actor)

        booking_ids = list(dict.fromkeys(booking_ids))
        if not booking_ids:
            raise ValidationError("Укажите хотя бы одну бронь")

        bookings = []
        for booking_id in booking_ids:
            booking = BookingRepository.get_booking_by_id(booking_id)
            if not booking:
                raise NotFoundError("Бронирование", booking_id)
            ensure_owner_or_admin(
                actor, booking.member_id, "Оценку рисков заполняют только для своих броней"
            )
            if booking.usage_status == USAGE_CANCELLED:
                raise ImmutableStateError(f"Бронирование #{booking_id} отменено")
            bookings.append(booking)

        assessed = RiskAssessmentRepository.get_assessed_booking_ids(booking_ids)
        if assessed:
            raise ConflictError(
                "Оценка рисков уже заполнена для броней: "
                + ', '.join(f"#{booking_id}" for booking_id in sorted(assessed)),
                [
                    Conflict(boat_id=booking.boat_id, kind='booking', booking_id=booking.id)
                    for booking in bookings if booking.id in assessed
                ]
            )

        return sorted(bookings, key=lambda booking: booking.start_time)

    @staticmethod
    def submit(actor: Actor, booking_ids: List[int], answers: Dict[str, str],
               coordinator_name: Optional[str] = None) -> RiskAssessment:
        """Сохранение оценки рисков для броней одного выхода"""
        bookings = RiskAssessmentService.check_bookings(actor, booking_ids)

        answers = {name: (answers.get(name) or '').strip() for name in RISK_FIELDS}
        missing = [name for name, value in answers.items() if not value]
        if missing:
            raise ValidationError(f"Не заполнены поля: {', '.join(missing)}")

        member_id = actor.member_id or bookings[0].member_id
        member = MemberRepository.get_member_by_id(member_id) if member_id else None
        if not member:
            raise NotFoundError("Участник", member_id)

        first = bookings[0]
        assessment = RiskAssessment(
            id=None,
            member_id=member.id,
            coordinator_name=(coordinator_name or '').strip() or member.name,
            session_date=first.start_time.date(),
            session_time=first.start_time.strftime('%H:%M'),
            answers=answers,
            booking_ids=[booking.id for booking in bookings]
        )
        try:
            assessment.id = RiskAssessmentRepository.create(assessment)
        except sqlite3.IntegrityError as e:
            # Параллельная отправка успела привязать оценку к той же брони
            if 'UNIQUE' in str(e):
                raise ConflictError("Оценка рисков для этой брони уже заполнена") from e
            raise

        logger.info(
            f"Оценка рисков #{assessment.id} от участника {member.id}: "
            f"брони {assessment.booking_ids}"
        )
        return RiskAssessmentRepository.get_by_id(assessment.id)

    @staticmethod
    def get_for_booking(actor: Actor, booking_id: int) -> Optional[RiskAssessment]:
        booking = BookingRepository.get_booking_by_id(booking_id)
        if not booking:
            raise NotFoundError("Бронирование", booking_id)
        ensure_owner_or_admin(actor, booking.member_id, "Это не ваше бронирование")
        return RiskAssessmentRepository.get_for_booking(booking_id)

    @staticmethod
    def admin_summary(assessment: RiskAssessment) -> str:
        """Текст уведомления администраторам"""
        lines = [
            f"📝 Новая оценка рисков #{assessment.id}",
            f"{assessment.coordinator_name} заполнил(а) оценку рисков:",
        ]
        for booking_id in assessment.booking_ids:
            booking = BookingRepository.get_booking_by_id(booking_id)
            if not booking:
                continue
            boat = BoatRepository.get_boat_by_id(booking.boat_id)
            lines.append(
                f"🚣 {boat.name if boat else 'Лодка'} • "
                f"{format_interval(booking.start_time, booking.end_time)}"
            )
        return '\n'.join(lines)

    @staticmethod
    async def notify_admins(assessment: RiskAssessment, notifier,
                            exclude_id: Optional[int] = None):
        await notifier.notify_admins(
            RiskAssessmentService.admin_summary(assessment), exclude_id=exclude_id
        )
