"""
Модуль для работы с базой данных SQLite
"""
import sqlite3
import os
from contextlib import contextmanager
from datetime import date, datetime, time
from typing import Generator, Optional
from config import settings


# Сообщение триггера, запрещающего пересечение броней одной лодки
OVERLAP_ERROR = 'booking_overlap'

TIME_FORMAT = '%H:%M'


def to_db_datetime(value: datetime) -> str:
    """Datetime -> строка для хранения и сравнения в SQL.

    Дробные секунды сохраняются: '2024-06-10 09:00:00' < '2024-06-10 09:00:00.500000'.
    """
    return value.isoformat(sep=' ')


def to_db_date(value: date) -> str:
    return value.isoformat()


def to_db_time(value: time) -> str:
    return value.strftime(TIME_FORMAT)


def from_db_datetime(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def from_db_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def from_db_time(value: str) -> time:
    return time.fromisoformat(value)


def get_connection() -> sqlite3.Connection:
    """Получение подключения к БД"""
    conn = sqlite3.connect(settings.DB_PATH, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    """Контекстный менеджер для работы с БД"""
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def is_overlap_error(error: sqlite3.IntegrityError) -> bool:
    """Ошибка вызвана триггером пересечения броней"""
    return OVERLAP_ERROR in str(error)


def init_db():
    """Инициализация базы данных"""
    # Создание директории для БД, если не существует
    db_dir = os.path.dirname(settings.DB_PATH)
    if db_dir and not os.path.exists(db_dir):
        os.makedirs(db_dir)

    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                telegram_id INTEGER UNIQUE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS allowed_members (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                email TEXT NOT NULL UNIQUE COLLATE NOCASE,
                name TEXT NOT NULL,
                role TEXT NOT NULL DEFAULT 'coordinator'
                    CHECK (role IN ('admin', 'coordinator', 'guest'))
            );

            CREATE TABLE IF NOT EXISTS boats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                code TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                type TEXT,
                usage_type TEXT NOT NULL DEFAULT 'general',
                in_service INTEGER DEFAULT 1
            );

            CREATE TABLE IF NOT EXISTS boat_permissions (
                boat_id INTEGER NOT NULL REFERENCES boats (id) ON DELETE CASCADE,
                member_id INTEGER NOT NULL REFERENCES members (id) ON DELETE CASCADE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (boat_id, member_id)
            );

            CREATE TABLE IF NOT EXISTS bookings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                boat_id INTEGER NOT NULL REFERENCES boats (id) ON DELETE CASCADE,
                member_id INTEGER REFERENCES members (id) ON DELETE SET NULL,
                start_time TIMESTAMP NOT NULL,
                end_time TIMESTAMP NOT NULL,
                usage_status TEXT NOT NULL DEFAULT 'scheduled'
                    CHECK (usage_status IN ('scheduled', 'pending', 'confirmed', 'cancelled')),
                usage_confirmed_at TIMESTAMP,
                usage_confirmed_by INTEGER REFERENCES members (id) ON DELETE SET NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK (end_time > start_time)
            );

            CREATE TABLE IF NOT EXISTS booking_templates (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                weekday INTEGER NOT NULL CHECK (weekday >= 0 AND weekday <= 6),
                boat_id INTEGER REFERENCES boats (id) ON DELETE CASCADE,
                member_id INTEGER REFERENCES members (id) ON DELETE SET NULL,
                start_time TEXT NOT NULL,
                end_time TEXT NOT NULL,
                boat_label TEXT,
                member_label TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                CHECK (end_time > start_time)
            );

            CREATE TABLE IF NOT EXISTS template_exceptions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                template_id INTEGER NOT NULL REFERENCES booking_templates (id) ON DELETE CASCADE,
                exception_date TEXT NOT NULL,
                reason TEXT,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (template_id, exception_date)
            );

            CREATE TABLE IF NOT EXISTS template_confirmations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                template_id INTEGER NOT NULL REFERENCES booking_templates (id) ON DELETE CASCADE,
                member_id INTEGER NOT NULL REFERENCES members (id) ON DELETE CASCADE,
                occurrence_date TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'pending'
                    CHECK (status IN ('pending', 'confirmed', 'cancelled')),
                booking_id INTEGER UNIQUE REFERENCES bookings (id) ON DELETE SET NULL,
                notified_at TIMESTAMP,
                responded_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                UNIQUE (template_id, occurrence_date)
            );

            CREATE TABLE IF NOT EXISTS booking_usage_notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                booking_id INTEGER NOT NULL UNIQUE REFERENCES bookings (id) ON DELETE CASCADE,
                notified_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS booking_reminders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                booking_id INTEGER NOT NULL UNIQUE REFERENCES bookings (id) ON DELETE CASCADE,
                remind_at TIMESTAMP NOT NULL
            );

            CREATE TABLE IF NOT EXISTS race_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                event_date TEXT NOT NULL,
                created_by INTEGER REFERENCES members (id) ON DELETE SET NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS race_event_boats (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                race_event_id INTEGER NOT NULL REFERENCES race_events (id) ON DELETE CASCADE,
                boat_id INTEGER NOT NULL REFERENCES boats (id) ON DELETE CASCADE,
                UNIQUE (race_event_id, boat_id)
            );

            CREATE TABLE IF NOT EXISTS risk_assessments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                member_id INTEGER NOT NULL REFERENCES members (id) ON DELETE CASCADE,
                coordinator_name TEXT NOT NULL,
                session_date TEXT NOT NULL,
                session_time TEXT NOT NULL,
                crew_type TEXT NOT NULL,
                boat_type TEXT NOT NULL,
                launch_supervision TEXT NOT NULL,
                visibility TEXT NOT NULL,
                river_level TEXT NOT NULL,
                water_conditions TEXT NOT NULL,
                air_temperature TEXT NOT NULL,
                wind_conditions TEXT NOT NULL,
                incoming_tide TEXT NOT NULL,
                risk_actions TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            -- Одна оценка рисков на бронь, одна оценка на несколько броней
            CREATE TABLE IF NOT EXISTS booking_risk_assessments (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                booking_id INTEGER NOT NULL UNIQUE REFERENCES bookings (id) ON DELETE CASCADE,
                risk_assessment_id INTEGER NOT NULL
                    REFERENCES risk_assessments (id) ON DELETE CASCADE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            -- Индексы для быстрого поиска
            CREATE INDEX IF NOT EXISTS idx_bookings_boat_time
                ON bookings (boat_id, start_time, end_time);
            CREATE INDEX IF NOT EXISTS idx_bookings_usage
                ON bookings (usage_status, end_time);
            CREATE INDEX IF NOT EXISTS idx_bookings_member
                ON bookings (member_id, usage_status);
            CREATE INDEX IF NOT EXISTS idx_templates_weekday
                ON booking_templates (weekday, boat_id);
            CREATE INDEX IF NOT EXISTS idx_race_events_date
                ON race_events (event_date);

            -- Лодку нельзя занять дважды на пересекающийся интервал
            CREATE TRIGGER IF NOT EXISTS bookings_no_overlap_insert
            BEFORE INSERT ON bookings
            WHEN NEW.usage_status != 'cancelled' AND EXISTS (
                SELECT 1 FROM bookings
                WHERE boat_id = NEW.boat_id
                AND usage_status != 'cancelled'
                AND start_time < NEW.end_time AND end_time > NEW.start_time
            )
            BEGIN
                SELECT RAISE(ABORT, 'booking_overlap');
            END;

            CREATE TRIGGER IF NOT EXISTS bookings_no_overlap_update
            BEFORE UPDATE OF boat_id, start_time, end_time, usage_status ON bookings
            WHEN NEW.usage_status != 'cancelled' AND EXISTS (
                SELECT 1 FROM bookings
                WHERE boat_id = NEW.boat_id
                AND id != NEW.id
                AND usage_status != 'cancelled'
                AND start_time < NEW.end_time AND end_time > NEW.start_time
            )
            BEGIN
                SELECT RAISE(ABORT, 'booking_overlap');
            END;
        """)
