"""
Утилиты для работы со временем и расписанием
"""
from datetime import date, datetime, time, timedelta
from typing import List, Optional
from config import settings


WEEKDAYS_SHORT = ['Пн', 'Вт', 'Ср', 'Чт', 'Пт', 'Сб', 'Вс']


def get_available_dates(now: Optional[datetime] = None) -> List[datetime]:
    """Получение списка доступных дат для бронирования"""
    dates = []
    today = (now or datetime.now()).replace(hour=0, minute=0, second=0, microsecond=0)

    for i in range(settings.MAX_BOOKING_DAYS):
        dates.append(today + timedelta(days=i))

    return dates


def get_available_times(day: datetime, now: Optional[datetime] = None) -> List[datetime]:
    """
    Получение списка времён начала для даты: от раннего старта
    до позднего окончания за вычетом минимальной длительности
    """
    now = now or datetime.now()
    times = []

    current = datetime.combine(day.date(), settings.EARLIEST_START)
    end_for_booking = (
        datetime.combine(day.date(), settings.LATEST_END)
        - timedelta(minutes=settings.MIN_BOOKING_MINUTES)
    )

    while current <= end_for_booking:
        # Добавляем только будущие слоты
        if current > now:
            times.append(current)
        current += timedelta(minutes=settings.BOOKING_STEP_MINUTES)

    return times


def get_durations(start_time: datetime) -> List[int]:
    """Допустимые длительности (в минутах), не выходящие за позднее окончание"""
    latest = datetime.combine(start_time.date(), settings.LATEST_END)
    durations = []
    minutes = settings.MIN_BOOKING_MINUTES
    while minutes <= settings.MAX_BOOKING_HOURS * 60:
        if start_time + timedelta(minutes=minutes) <= latest:
            durations.append(minutes)
        minutes += settings.BOOKING_STEP_MINUTES
    return durations


def parse_date(value: str) -> date:
    """Дата из строки YYYY-MM-DD"""
    return datetime.strptime(value, "%Y-%m-%d").date()


def parse_time(value: str) -> time:
    """Время из строки HH:MM"""
    return datetime.strptime(value, "%H:%M").time()


def format_duration(minutes: int) -> str:
    """Длительность для отображения: 1 ч 30 мин"""
    hours, rest = divmod(minutes, 60)
    if hours and rest:
        return f"{hours} ч {rest} мин"
    if hours:
        return f"{hours} ч"
    return f"{rest} мин"


def format_datetime(dt: datetime) -> str:
    """Форматирование datetime для отображения"""
    return dt.strftime("%d.%m.%Y %H:%M")


def format_date(dt, today: Optional[date] = None) -> str:
    """Форматирование даты"""
    day = dt.date() if isinstance(dt, datetime) else dt
    weekday = WEEKDAYS_SHORT[day.weekday()]

    today = today or datetime.now().date()
    if day == today:
        return f"Сегодня ({weekday})"
    elif day == today + timedelta(days=1):
        return f"Завтра ({weekday})"
    else:
        return f"{day.strftime('%d.%m')} ({weekday})"


def format_time(dt) -> str:
    """Форматирование времени"""
    return dt.strftime("%H:%M")


def format_interval(start_time: datetime, end_time: datetime) -> str:
    """Пн 10.06 • 08:00–09:00"""
    weekday = WEEKDAYS_SHORT[start_time.weekday()]
    return (
        f"{weekday} {start_time.strftime('%d.%m')} • "
        f"{format_time(start_time)}–{format_time(end_time)}"
    )
