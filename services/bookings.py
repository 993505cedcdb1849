"""
Жизненный цикл разовых бронирований
"""
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from config import settings
from database.database import is_overlap_error
from database.models import (
    Actor, Boat, Booking, USAGE_SCHEDULED, USAGE_PENDING, USAGE_RESTRICTED,
    USAGE_CAPTAINS, OUTCOMES
)
from database.repository import BookingRepository, BoatRepository, MemberRepository
from services.conflicts import ConflictChecker
from services.exceptions import (
    BookingError, Conflict, ConflictError, ImmutableStateError, NotFoundError,
    PermissionDeniedError, ValidationError
)

logger = logging.getLogger(__name__)


def ensure_can_mutate(actor: Actor):
    """Гости только смотрят расписание"""
    if actor.is_guest:
        raise PermissionDeniedError("Гостевой доступ только для просмотра")
    if actor.member_id is None and not actor.is_admin:
        raise PermissionDeniedError("Участник не определён")


def ensure_owner_or_admin(actor: Actor, owner_id: Optional[int], message: str):
    if not actor.is_admin and actor.member_id != owner_id:
        raise PermissionDeniedError(message)


def check_boat_usage(boat: Boat, actor: Actor):
    """Проверка, что тип использования лодки допускает бронь актором"""
    if not boat.in_service:
        raise PermissionDeniedError(f"Лодка {boat.name} выведена из эксплуатации")
    if boat.usage_type == USAGE_RESTRICTED:
        raise PermissionDeniedError(f"Лодка {boat.name} недоступна для бронирования")
    if boat.usage_type == USAGE_CAPTAINS and not actor.is_admin:
        if actor.member_id is None or not BoatRepository.has_permission(boat.id, actor.member_id):
            raise PermissionDeniedError(f"Для лодки {boat.name} нужен допуск капитана")


def validate_interval(start_time: datetime, end_time: datetime, now: datetime):
    """Проверка времени брони: порядок, часы работы, не в прошлом"""
    if end_time <= start_time:
        raise ValidationError("Время окончания должно быть позже начала")

    earliest = datetime.combine(start_time.date(), settings.EARLIEST_START)
    if start_time < earliest:
        raise ValidationError(
            f"Начало брони не раньше {settings.EARLIEST_START.strftime('%H:%M')}"
        )

    if start_time < now:
        raise ValidationError("Нельзя забронировать время в прошлом")


def conflict_error(conflicts: List[Conflict]) -> ConflictError:
    """Понятное сообщение о том, какие лодки заняты"""
    booked = []
    templated = []
    for conflict in conflicts:
        boat = BoatRepository.get_boat_by_id(conflict.boat_id)
        name = boat.name if boat else f"Лодка #{conflict.boat_id}"
        target = booked if conflict.kind == 'booking' else templated
        if name not in target:
            target.append(name)

    parts = []
    if booked:
        parts.append(f"Лодка уже забронирована: {', '.join(booked)}")
    if templated:
        parts.append(f"Пересечение с шаблонной бронью: {', '.join(templated)}")
    return ConflictError('. '.join(parts) + '.', conflicts)


def ensure_no_conflict(boat_id: int, start_time: datetime, end_time: datetime,
                       exclude_booking_id: Optional[int] = None,
                       exclude_template_id: Optional[int] = None):
    conflicts = ConflictChecker.find_conflicts(
        [boat_id], start_time, end_time, exclude_booking_id, exclude_template_id
    )
    if conflicts:
        raise conflict_error(conflicts)


@dataclass
class BatchResult:
    """Итог бронирования нескольких лодок"""
    created: List[Booking] = field(default_factory=list)
    failed: Dict[int, BookingError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class BookingService:
    """Создание, перенос, удаление и подтверждение бронирований"""

    @staticmethod
    def _get_booking(booking_id: int) -> Booking:
        booking = BookingRepository.get_booking_by_id(booking_id)
        if not booking:
            raise NotFoundError("Бронирование", booking_id)
        return booking

    @staticmethod
    def _get_boat(boat_id: int) -> Boat:
        boat = BoatRepository.get_boat_by_id(boat_id)
        if not boat:
            raise NotFoundError("Лодка", boat_id)
        return boat

    @staticmethod
    def _ensure_editable(booking: Booking, actor: Actor, now: datetime):
        ensure_can_mutate(actor)
        ensure_owner_or_admin(actor, booking.member_id, "Можно изменять только свои бронирования")
        if booking.usage_status != USAGE_SCHEDULED or booking.is_past(now):
            raise ImmutableStateError(f"Бронирование #{booking.id} уже нельзя изменить")

    @staticmethod
    def create(boat_id: int, member_id: int, start_time: datetime, end_time: datetime,
               actor: Actor, now: Optional[datetime] = None) -> Booking:
        """Создание разового бронирования"""
        now = now or datetime.now()

        ensure_can_mutate(actor)
        ensure_owner_or_admin(actor, member_id, "Можно бронировать только на себя")
        if not MemberRepository.get_member_by_id(member_id):
            raise NotFoundError("Участник", member_id)

        boat = BookingService._get_boat(boat_id)
        validate_interval(start_time, end_time, now)
        check_boat_usage(boat, actor)
        ensure_no_conflict(boat_id, start_time, end_time)

        booking = Booking(
            id=None,
            boat_id=boat_id,
            member_id=member_id,
            start_time=start_time,
            end_time=end_time,
            usage_status=USAGE_SCHEDULED
        )
        try:
            booking.id = BookingRepository.create_booking(booking)
        except sqlite3.IntegrityError as e:
            if is_overlap_error(e):
                raise ConflictError(
                    f"Лодка уже забронирована: {boat.name}.",
                    [Conflict(boat_id=boat_id, kind='booking')]
                ) from e
            raise

        logger.info(
            f"Создано бронирование #{booking.id}: лодка {boat.code}, "
            f"{start_time} - {end_time}, участник {member_id}"
        )
        return booking

    @staticmethod
    def create_many(boat_ids: List[int], member_id: int, start_time: datetime,
                    end_time: datetime, actor: Actor,
                    now: Optional[datetime] = None) -> BatchResult:
        """Бронирование нескольких лодок на один интервал.

        Каждая лодка проверяется и сохраняется отдельно: ошибка по одной
        лодке не отменяет уже созданные брони остальных.
        """
        if not boat_ids:
            raise ValidationError("Выберите хотя бы одну лодку")

        now = now or datetime.now()
        result = BatchResult()
        for boat_id in dict.fromkeys(boat_ids):
            try:
                result.created.append(
                    BookingService.create(boat_id, member_id, start_time, end_time, actor, now)
                )
            except BookingError as e:
                logger.info(f"Лодка {boat_id} не забронирована: {e}")
                result.failed[boat_id] = e
        return result

    @staticmethod
    def update(booking_id: int, actor: Actor, boat_id: Optional[int] = None,
               start_time: Optional[datetime] = None, end_time: Optional[datetime] = None,
               now: Optional[datetime] = None) -> Booking:
        """Перенос бронирования на другое время и/или лодку"""
        now = now or datetime.now()
        booking = BookingService._get_booking(booking_id)
        BookingService._ensure_editable(booking, actor, now)

        new_boat_id = boat_id if boat_id is not None else booking.boat_id
        new_start = start_time or booking.start_time
        new_end = end_time or booking.end_time

        boat = BookingService._get_boat(new_boat_id)
        validate_interval(new_start, new_end, now)
        check_boat_usage(boat, actor)
        ensure_no_conflict(new_boat_id, new_start, new_end, exclude_booking_id=booking_id)

        try:
            updated = BookingRepository.update_booking(booking_id, new_boat_id, new_start, new_end)
        except sqlite3.IntegrityError as e:
            if is_overlap_error(e):
                raise ConflictError(
                    f"Лодка уже забронирована: {boat.name}.",
                    [Conflict(boat_id=new_boat_id, kind='booking')]
                ) from e
            raise

        if not updated:
            raise ImmutableStateError(f"Бронирование #{booking_id} уже нельзя изменить")

        logger.info(f"Бронирование #{booking_id} перенесено: {new_start} - {new_end}")
        return BookingService._get_booking(booking_id)

    @staticmethod
    def delete(booking_id: int, actor: Actor, now: Optional[datetime] = None) -> Booking:
        """Удаление будущего бронирования"""
        now = now or datetime.now()
        booking = BookingService._get_booking(booking_id)
        BookingService._ensure_editable(booking, actor, now)

        if not BookingRepository.delete_booking(booking_id):
            raise ImmutableStateError(f"Бронирование #{booking_id} уже нельзя изменить")

        logger.info(f"Бронирование #{booking_id} удалено участником {actor.member_id}")
        return booking

    @staticmethod
    def resolve_usage(booking_id: int, actor: Actor, outcome: str,
                      now: Optional[datetime] = None) -> Booking:
        """Подтверждение, состоялся ли выход"""
        if outcome not in OUTCOMES:
            raise ValidationError(f"Неизвестный итог: {outcome}")

        now = now or datetime.now()
        booking = BookingService._get_booking(booking_id)
        ensure_can_mutate(actor)
        ensure_owner_or_admin(actor, booking.member_id, "Можно подтверждать только свои выходы")

        if booking.usage_status != USAGE_PENDING:
            raise ImmutableStateError(f"Бронирование #{booking_id} не ожидает подтверждения")

        # Условное обновление защищает от двойного подтверждения
        if not BookingRepository.resolve_usage(booking_id, outcome, now, actor.member_id):
            raise ImmutableStateError(f"Бронирование #{booking_id} уже подтверждено")

        logger.info(f"Бронирование #{booking_id}: выход {outcome}")
        return BookingService._get_booking(booking_id)

    @staticmethod
    def list_member_bookings(member_id: int, now: Optional[datetime] = None) -> List[Booking]:
        """Будущие брони и брони, ожидающие подтверждения"""
        return BookingRepository.get_member_bookings(member_id, now or datetime.now())
