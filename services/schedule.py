"""
Расписание дня: брони и шаблонные выходы одним списком
"""
from datetime import date, datetime, time, timedelta
from typing import Dict, List

from database.models import ScheduleItem
from database.repository import BookingRepository, TemplateRepository


def get_day_schedule(day: date) -> List[ScheduleItem]:
    """Все занятые интервалы дня, отсортированные по лодке и времени"""
    day_start = datetime.combine(day, time.min)
    day_end = day_start + timedelta(days=1)

    items = BookingRepository.get_schedule_items(day_start, day_end)
    items.extend(TemplateRepository.get_schedule_items(day))
    items.sort(key=lambda item: (item.boat_name, item.start_time, item.is_template))
    return items


def group_by_boat(items: List[ScheduleItem]) -> Dict[str, List[ScheduleItem]]:
    """Расписание, сгруппированное по названию лодки"""
    grouped: Dict[str, List[ScheduleItem]] = {}
    for item in items:
        grouped.setdefault(item.boat_name, []).append(item)
    return grouped
