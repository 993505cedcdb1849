"""
Еженедельные шаблоны: выходы, исключения и подтверждения
"""
import logging
import sqlite3
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional, Tuple

from database.database import is_overlap_error
from database.models import (
    Actor, Booking, BookingTemplate, TemplateConfirmation, USAGE_SCHEDULED,
    CONFIRMATION_CONFIRMED, OUTCOMES
)
from database.repository import BoatRepository, MemberRepository, TemplateRepository
from services.bookings import ensure_can_mutate, ensure_owner_or_admin, ensure_no_conflict
from services.exceptions import (
    Conflict, ConflictError, ImmutableStateError, NotFoundError, PermissionDeniedError,
    ValidationError
)

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ['Понедельник', 'Вторник', 'Среда', 'Четверг', 'Пятница', 'Суббота', 'Воскресенье']


@dataclass
class Resolution:
    """Итог решения по шаблонному выходу"""
    confirmation: TemplateConfirmation
    previous_status: Optional[str]
    booking_id: Optional[int] = None
    changed: bool = True


class TemplateService:
    """Разворачивание шаблонов в даты и решения по конкретным выходам"""

    @staticmethod
    def get_template(template_id: int) -> BookingTemplate:
        template = TemplateRepository.get_template_by_id(template_id)
        if not template:
            raise NotFoundError("Шаблон", template_id)
        return template

    @staticmethod
    def occurs_on(template: BookingTemplate, day: date) -> bool:
        """Есть ли выход шаблона в эту дату"""
        if day.weekday() != template.weekday:
            return False
        return TemplateRepository.get_exception(template.id, day) is None

    @staticmethod
    def occurrences(template: BookingTemplate, start_date: date, end_date: date) -> List[date]:
        """Даты выходов шаблона в диапазоне (включительно), без исключений"""
        days = []
        offset = (template.weekday - start_date.weekday()) % 7
        current = start_date + timedelta(days=offset)
        while current <= end_date:
            days.append(current)
            current += timedelta(days=7)

        excepted = TemplateRepository.get_exception_keys(days)
        return [day for day in days if (template.id, day) not in excepted]

    @staticmethod
    def occurrences_between(template: BookingTemplate, window_start: datetime,
                            window_end: datetime) -> List[date]:
        """Выходы, начинающиеся в интервале (window_start, window_end]"""
        return [
            day for day in TemplateService.occurrences(
                template, window_start.date(), window_end.date()
            )
            if window_start < template.start_on(day) <= window_end
        ]

    @staticmethod
    def resolve(template_id: int, actor: Actor, occurrence_date: date, outcome: str,
                now: Optional[datetime] = None) -> Resolution:
        """Подтверждение или отмена одного выхода шаблона.

        Подтверждённый выход превращается в обычную бронь. В обоих случаях
        на дату ставится исключение, чтобы шаблон больше не занимал слот.
        """
        if outcome not in OUTCOMES:
            raise ValidationError(f"Неизвестный итог: {outcome}")

        now = now or datetime.now()
        template = TemplateService.get_template(template_id)
        ensure_can_mutate(actor)
        ensure_owner_or_admin(actor, template.member_id, "Можно подтверждать только свои шаблоны")

        if occurrence_date.weekday() != template.weekday:
            raise ValidationError(
                f"{occurrence_date:%d.%m.%Y} не {WEEKDAY_NAMES[template.weekday].lower()}"
            )

        member_id = template.member_id or actor.member_id
        if member_id is None:
            raise ValidationError("У шаблона нет участника")

        existing = TemplateRepository.get_confirmation(template_id, occurrence_date)
        previous_status = existing.status if existing else None

        if existing and existing.is_terminal:
            if existing.status == outcome:
                return Resolution(
                    confirmation=existing,
                    previous_status=previous_status,
                    booking_id=existing.booking_id,
                    changed=False
                )
            raise ImmutableStateError("Решение по этому выходу уже принято")

        booking = None
        if outcome == CONFIRMATION_CONFIRMED:
            booking = TemplateService._occurrence_booking(template, member_id, occurrence_date, now)

        try:
            booking_id = TemplateRepository.apply_resolution(
                template_id, member_id, occurrence_date, outcome, now, booking
            )
        except sqlite3.IntegrityError as e:
            if is_overlap_error(e):
                raise ConflictError(
                    "Лодка уже забронирована на время этого выхода.",
                    [Conflict(boat_id=template.boat_id, kind='booking')]
                ) from e
            raise

        logger.info(
            f"Шаблон #{template_id}, {occurrence_date}: {outcome}"
            + (f", создана бронь #{booking_id}" if booking_id else "")
        )
        return Resolution(
            confirmation=TemplateRepository.get_confirmation(template_id, occurrence_date),
            previous_status=previous_status,
            booking_id=booking_id
        )

    @staticmethod
    def _occurrence_booking(template: BookingTemplate, member_id: int, occurrence_date: date,
                            now: datetime) -> Booking:
        """Бронь, в которую превращается подтверждённый выход"""
        if template.boat_id is None:
            raise ValidationError("Шаблон без лодки нельзя подтвердить в бронь")

        if TemplateRepository.get_exception(template.id, occurrence_date):
            raise ValidationError("Этот выход шаблона уже отменён")

        start_time = template.start_on(occurrence_date)
        end_time = template.end_on(occurrence_date)
        if start_time < now:
            raise ValidationError("Выход уже начался")

        ensure_no_conflict(template.boat_id, start_time, end_time, exclude_template_id=template.id)

        return Booking(
            id=None,
            boat_id=template.boat_id,
            member_id=member_id,
            start_time=start_time,
            end_time=end_time,
            usage_status=USAGE_SCHEDULED
        )

    @staticmethod
    def skip_occurrence(template_id: int, actor: Actor, occurrence_date: date,
                        reason: Optional[str] = None, now: Optional[datetime] = None) -> bool:
        """Разовый пропуск выхода шаблона.

        Если по дате уже ждёт ответа запрос подтверждения,
        он закрывается как отменённый.
        """
        template = TemplateService.get_template(template_id)
        ensure_can_mutate(actor)
        ensure_owner_or_admin(actor, template.member_id, "Можно пропускать только свои шаблоны")

        if occurrence_date.weekday() != template.weekday:
            raise ValidationError("В эту дату у шаблона нет выхода")

        added = TemplateRepository.add_exception(
            template_id, occurrence_date, reason or 'skipped', now or datetime.now()
        )
        if added:
            logger.info(f"Шаблон #{template_id}: выход {occurrence_date} пропущен")
        return added

    @staticmethod
    def restore_occurrence(template_id: int, actor: Actor, occurrence_date: date) -> bool:
        """Отмена пропуска: выход шаблона снова занимает слот"""
        template = TemplateService.get_template(template_id)
        ensure_can_mutate(actor)
        ensure_owner_or_admin(actor, template.member_id, "Можно менять только свои шаблоны")

        confirmation = TemplateRepository.get_confirmation(template_id, occurrence_date)
        if confirmation and confirmation.is_terminal:
            raise ImmutableStateError("Решение по этому выходу уже принято")

        if template.boat_id is not None:
            ensure_no_conflict(
                template.boat_id,
                template.start_on(occurrence_date),
                template.end_on(occurrence_date),
                exclude_template_id=template.id
            )

        restored = TemplateRepository.delete_exception(template_id, occurrence_date)
        if restored:
            logger.info(f"Шаблон #{template_id}: выход {occurrence_date} восстановлен")
        return restored

    # Управление шаблонами (только администраторы)

    @staticmethod
    def _validate_template(template: BookingTemplate, exclude_template_id: Optional[int] = None):
        if not 0 <= template.weekday <= 6:
            raise ValidationError("День недели должен быть от 0 (пн) до 6 (вс)")
        if template.end_time <= template.start_time:
            raise ValidationError("Время окончания должно быть позже начала")

        member = MemberRepository.get_member_by_id(template.member_id) if template.member_id else None
        if not member:
            raise ValidationError("Выберите участника для шаблона")
        template.member_label = member.name

        if template.boat_id is None:
            template.boat_label = 'Любая лодка'
            return

        boat = BoatRepository.get_boat_by_id(template.boat_id)
        if not boat:
            raise NotFoundError("Лодка", template.boat_id)
        template.boat_label = boat.name

        if TemplateRepository.find_overlapping(
            template.weekday, [template.boat_id], template.start_time, template.end_time,
            exclude_template_id
        ):
            raise ConflictError(
                f"У лодки {boat.name} уже есть шаблон в это время.",
                [Conflict(boat_id=boat.id, kind='template')]
            )

    @staticmethod
    def _ensure_admin(actor: Actor):
        if not actor.is_admin:
            raise PermissionDeniedError("Шаблоны редактируют только администраторы")

    @staticmethod
    def create_template(actor: Actor, weekday: int, start_time: time, end_time: time,
                        member_id: int, boat_id: Optional[int] = None) -> BookingTemplate:
        """Создание еженедельного шаблона"""
        TemplateService._ensure_admin(actor)
        template = BookingTemplate(
            id=None,
            weekday=weekday,
            boat_id=boat_id,
            member_id=member_id,
            start_time=start_time,
            end_time=end_time
        )
        TemplateService._validate_template(template)
        template.id = TemplateRepository.create_template(template)
        logger.info(
            f"Создан шаблон #{template.id}: {WEEKDAY_NAMES[weekday]} "
            f"{start_time:%H:%M}-{end_time:%H:%M}, {template.boat_label}"
        )
        return template

    @staticmethod
    def update_template(template_id: int, actor: Actor, weekday: Optional[int] = None,
                        start_time: Optional[time] = None, end_time: Optional[time] = None,
                        member_id: Optional[int] = None,
                        boat_id: Optional[int] = None) -> BookingTemplate:
        TemplateService._ensure_admin(actor)
        template = TemplateService.get_template(template_id)

        if weekday is not None:
            template.weekday = weekday
        if start_time is not None:
            template.start_time = start_time
        if end_time is not None:
            template.end_time = end_time
        if member_id is not None:
            template.member_id = member_id
        if boat_id is not None:
            template.boat_id = boat_id

        TemplateService._validate_template(template, exclude_template_id=template_id)
        TemplateRepository.update_template(template)
        logger.info(f"Шаблон #{template_id} обновлён")
        return template

    @staticmethod
    def delete_template(template_id: int, actor: Actor):
        TemplateService._ensure_admin(actor)
        if not TemplateRepository.delete_template(template_id):
            raise NotFoundError("Шаблон", template_id)
        logger.info(f"Шаблон #{template_id} удалён")

    @staticmethod
    def upcoming_occurrences(member_id: int, now: Optional[datetime] = None,
                             days: int = 7) -> List[Tuple[BookingTemplate, date]]:
        """Ближайшие выходы шаблонов участника"""
        now = now or datetime.now()
        result = []
        for template in TemplateRepository.get_member_templates(member_id):
            for day in TemplateService.occurrences_between(
                template, now, now + timedelta(days=days)
            ):
                result.append((template, day))
        result.sort(key=lambda item: item[0].start_on(item[1]))
        return result
