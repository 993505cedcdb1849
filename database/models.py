"""
Модели данных для работы с БД
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time
from typing import Dict, List, Optional


# Роли участников клуба
ROLE_ADMIN = 'admin'
ROLE_COORDINATOR = 'coordinator'
ROLE_GUEST = 'guest'
ROLES = (ROLE_ADMIN, ROLE_COORDINATOR, ROLE_GUEST)

# Типы использования лодок
USAGE_GENERAL = 'general'
USAGE_RESTRICTED = 'restricted'
USAGE_CAPTAINS = 'captains-permission'

# Статусы использования бронирования
USAGE_SCHEDULED = 'scheduled'
USAGE_PENDING = 'pending'
USAGE_CONFIRMED = 'confirmed'
USAGE_CANCELLED = 'cancelled'

# Статусы подтверждения шаблонного выхода
CONFIRMATION_PENDING = 'pending'
CONFIRMATION_CONFIRMED = 'confirmed'
CONFIRMATION_CANCELLED = 'cancelled'

# Итог подтверждения (для бронирований и шаблонов одинаковый)
OUTCOMES = ('confirmed', 'cancelled')


def normalize_usage_type(value: Optional[str]) -> str:
    """Приведение типа использования лодки к каноническому виду"""
    usage = (value or '').strip().lower().replace('_', ' ').replace('-', ' ')
    if not usage:
        return USAGE_GENERAL
    if usage == 'restricted':
        return USAGE_RESTRICTED
    if usage in ('captains permission', "captain's permission"):
        return USAGE_CAPTAINS
    return USAGE_GENERAL


@dataclass
class Member:
    """Модель участника клуба"""
    id: Optional[int]
    name: str
    email: str
    telegram_id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class AllowedMember:
    """Запись списка допуска"""
    id: Optional[int]
    email: str
    name: str
    role: str = ROLE_COORDINATOR


@dataclass(frozen=True)
class Actor:
    """Тот, кто выполняет операцию, и его роль"""
    member_id: Optional[int]
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_guest(self) -> bool:
        return self.role == ROLE_GUEST

    @classmethod
    def system(cls) -> 'Actor':
        """Актор для фоновых задач планировщика"""
        return cls(member_id=None, role=ROLE_ADMIN)


@dataclass
class Boat:
    """Модель лодки"""
    id: Optional[int]
    code: str
    name: str
    type: Optional[str] = None
    usage_type: str = USAGE_GENERAL
    in_service: bool = True


@dataclass
class Booking:
    """Модель бронирования"""
    id: Optional[int]
    boat_id: int
    member_id: Optional[int]
    start_time: datetime
    end_time: datetime
    usage_status: str = USAGE_SCHEDULED
    usage_confirmed_at: Optional[datetime] = None
    usage_confirmed_by: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def duration_minutes(self) -> int:
        """Длительность брони в минутах"""
        delta = self.end_time - self.start_time
        return int(delta.total_seconds() / 60)

    def is_past(self, now: datetime) -> bool:
        """Бронь уже началась или закончилась"""
        return self.start_time < now


@dataclass
class BookingTemplate:
    """Модель еженедельного шаблона бронирования"""
    id: Optional[int]
    weekday: int
    boat_id: Optional[int]
    member_id: Optional[int]
    start_time: time
    end_time: time
    boat_label: Optional[str] = None
    member_label: Optional[str] = None

    def start_on(self, day: date) -> datetime:
        """Начало выхода в конкретную дату"""
        return datetime.combine(day, self.start_time)

    def end_on(self, day: date) -> datetime:
        """Окончание выхода в конкретную дату"""
        return datetime.combine(day, self.end_time)


@dataclass
class TemplateException:
    """Исключение: один выход шаблона отменён"""
    id: Optional[int]
    template_id: int
    exception_date: date
    reason: Optional[str] = None


@dataclass
class TemplateConfirmation:
    """Подтверждение конкретного шаблонного выхода"""
    id: Optional[int]
    template_id: int
    member_id: int
    occurrence_date: date
    status: str = CONFIRMATION_PENDING
    booking_id: Optional[int] = None
    notified_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (CONFIRMATION_CONFIRMED, CONFIRMATION_CANCELLED)


@dataclass
class ScheduleItem:
    """Строка расписания дня: бронь или шаблонный выход"""
    boat_id: Optional[int]
    boat_name: str
    member_id: Optional[int]
    member_name: str
    start_time: datetime
    end_time: datetime
    is_template: bool
    booking_id: Optional[int] = None
    template_id: Optional[int] = None
    usage_status: Optional[str] = None


@dataclass
class RaceEvent:
    """Гонка: лодки отданы под соревнование на весь день"""
    id: Optional[int]
    title: str
    event_date: date
    boat_ids: List[int] = field(default_factory=list)
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


# Вопросы оценки рисков выхода, в порядке заполнения
RISK_FIELDS = (
    'crew_type',
    'boat_type',
    'launch_supervision',
    'visibility',
    'river_level',
    'water_conditions',
    'air_temperature',
    'wind_conditions',
    'incoming_tide',
    'risk_actions',
)


@dataclass
class RiskAssessment:
    """Оценка рисков выхода, заполненная координатором"""
    id: Optional[int]
    member_id: int
    coordinator_name: str
    session_date: date
    session_time: str
    answers: Dict[str, str] = field(default_factory=dict)
    booking_ids: List[int] = field(default_factory=list)
    created_at: Optional[datetime] = None
