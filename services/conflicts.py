"""
Проверка пересечений: брони и шаблонные выходы
"""
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from database.repository import BookingRepository, TemplateRepository
from services.exceptions import Conflict


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    """Пересечение полуоткрытых интервалов [start, end)"""
    return start_a < end_b and end_a > start_b


def days_touched(start_time: datetime, end_time: datetime) -> List[date]:
    """Календарные даты, которые задевает интервал"""
    days = []
    current = start_time.date()
    last = (end_time - timedelta(microseconds=1)).date()
    while current <= last:
        days.append(current)
        current += timedelta(days=1)
    return days


class ConflictChecker:
    """Единая проверка занятости лодок для всех операций"""

    @staticmethod
    def find_conflicts(boat_ids: Iterable[int], start_time: datetime, end_time: datetime,
                       exclude_booking_id: Optional[int] = None,
                       exclude_template_id: Optional[int] = None) -> List[Conflict]:
        """Все причины, по которым лодки заняты в интервале"""
        boat_ids = list(dict.fromkeys(boat_ids))
        conflicts = []

        # Проверка бронирований
        for booking in BookingRepository.find_overlapping(
            boat_ids, start_time, end_time, exclude_booking_id
        ):
            conflicts.append(Conflict(boat_id=booking.boat_id, kind='booking', booking_id=booking.id))

        # Проверка шаблонов на каждую затронутую дату
        days = days_touched(start_time, end_time)
        excepted = TemplateRepository.get_exception_keys(days)

        for day in days:
            for template in TemplateRepository.get_boat_templates(day.weekday(), boat_ids):
                if template.id == exclude_template_id or (template.id, day) in excepted:
                    continue
                if overlaps(template.start_on(day), template.end_on(day), start_time, end_time):
                    conflicts.append(Conflict(
                        boat_id=template.boat_id, kind='template', template_id=template.id
                    ))

        return conflicts

    @staticmethod
    def has_conflict(boat_id: int, start_time: datetime, end_time: datetime,
                     exclude_booking_id: Optional[int] = None,
                     exclude_template_id: Optional[int] = None) -> bool:
        """Лодка занята бронью или шаблонным выходом"""
        return bool(ConflictChecker.find_conflicts(
            [boat_id], start_time, end_time, exclude_booking_id, exclude_template_id
        ))
