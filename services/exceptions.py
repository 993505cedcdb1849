"""
Ошибки бизнес-логики бронирования
"""
from dataclasses import dataclass
from typing import List, Optional


class BookingError(Exception):
    """Базовая ошибка бронирования"""
    pass


class ValidationError(BookingError):
    """Некорректные входные данные"""
    pass


class PermissionDeniedError(BookingError):
    """Недостаточно прав для операции"""
    pass


class ImmutableStateError(BookingError):
    """Бронь или подтверждение уже нельзя изменить"""
    pass


class NotFoundError(BookingError):
    """Сущность не найдена"""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} #{entity_id} не найден(а)")


@dataclass(frozen=True)
class Conflict:
    """Причина, по которой лодка занята"""
    boat_id: int
    kind: str  # booking, template
    booking_id: Optional[int] = None
    template_id: Optional[int] = None


class ConflictError(BookingError):
    """Интервал пересекается с бронью или шаблонным выходом"""

    def __init__(self, message: str, conflicts: Optional[List[Conflict]] = None):
        self.conflicts = conflicts or []
        super().__init__(message)

    @property
    def boat_ids(self) -> List[int]:
        """Лодки, по которым найден конфликт (без повторов)"""
        return list(dict.fromkeys(conflict.boat_id for conflict in self.conflicts))
