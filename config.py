"""
Конфигурация проекта
"""
import os
from dataclasses import dataclass
from typing import List
from datetime import time


def _parse_ids(value: str) -> List[int]:
    """Разбор списка Telegram ID из строки вида '1, 2, 3'"""
    return [int(item.strip()) for item in value.split(',') if item.strip()]


def _parse_time(value: str) -> time:
    """Разбор времени суток из строки HH:MM"""
    hours, minutes = value.split(':')
    return time(int(hours), int(minutes))


@dataclass
class Settings:
    """Настройки приложения"""
    # Telegram
    BOT_TOKEN: str = os.getenv('BOT_TOKEN', '')
    ADMIN_IDS: List[int] = None

    # База данных
    DB_PATH: str = os.getenv('DB_PATH', 'data/boat_club.db')

    # Логирование
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')

    # Бизнес-правила бронирования
    EARLIEST_START: time = _parse_time(os.getenv('EARLIEST_START', '07:30'))
    LATEST_END: time = time(20, 0)     # только для выбора слотов в боте
    BOOKING_STEP_MINUTES: int = 30
    MAX_BOOKING_DAYS: int = 14
    MIN_BOOKING_MINUTES: int = 30
    MAX_BOOKING_HOURS: int = 4

    # Окна подтверждений
    TEMPLATE_NOTICE_HOURS: int = int(os.getenv('TEMPLATE_NOTICE_HOURS', '72'))
    AUTO_CANCEL_HOURS: int = int(os.getenv('AUTO_CANCEL_HOURS', '24'))
    REMINDER_LEAD_MINUTES: int = int(os.getenv('REMINDER_LEAD_MINUTES', '60'))
    REMINDER_TOLERANCE_MINUTES: int = 2

    # Периодичность фоновых задач (минуты)
    USAGE_SWEEP_MINUTES: int = 5
    TEMPLATE_SWEEP_MINUTES: int = 15
    REMINDER_SWEEP_MINUTES: int = 2

    def __post_init__(self):
        """Инициализация после создания объекта"""
        # Парсинг ADMIN_IDS из переменной окружения
        if self.ADMIN_IDS is None:
            self.ADMIN_IDS = _parse_ids(os.getenv('ADMIN_IDS', ''))

        if self.AUTO_CANCEL_HOURS >= self.TEMPLATE_NOTICE_HOURS:
            raise ValueError("AUTO_CANCEL_HOURS должен быть меньше TEMPLATE_NOTICE_HOURS")

    def validate_bot(self):
        """Проверка настроек, обязательных для запуска бота"""
        if not self.BOT_TOKEN:
            raise ValueError("BOT_TOKEN не установлен")

    def is_admin(self, user_id: int) -> bool:
        """Проверка, является ли пользователь администратором"""
        return user_id in self.ADMIN_IDS


# Глобальный экземпляр настроек
settings = Settings()
