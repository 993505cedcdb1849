"""
Репозиторий для работы с данными
"""
from datetime import date, datetime
from typing import Iterable, List, Optional, Set, Tuple
from database.database import (
    get_db, to_db_datetime, to_db_date, to_db_time,
    from_db_datetime, from_db_date, from_db_time
)
from database.models import (
    Member, AllowedMember, Boat, Booking, BookingTemplate, TemplateException,
    TemplateConfirmation, ScheduleItem, RaceEvent, RiskAssessment, RISK_FIELDS,
    normalize_usage_type,
    USAGE_SCHEDULED, USAGE_PENDING, USAGE_CANCELLED, CONFIRMATION_PENDING, CONFIRMATION_CANCELLED
)


def _placeholders(values) -> str:
    return ', '.join('?' for _ in values)


class MemberRepository:
    """Репозиторий для работы с участниками клуба"""

    @staticmethod
    def create_member(member: Member) -> int:
        """Создание участника"""
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO members (name, email, telegram_id)
                VALUES (?, ?, ?)
            """, (member.name, member.email.lower(), member.telegram_id))
            return cursor.lastrowid

    @staticmethod
    def get_member_by_id(member_id: int) -> Optional[Member]:
        with get_db() as conn:
            row = conn.execute("SELECT * FROM members WHERE id = ?", (member_id,)).fetchone()
            return MemberRepository._row_to_member(row) if row else None

    @staticmethod
    def get_member_by_email(email: str) -> Optional[Member]:
        with get_db() as conn:
            row = conn.execute(
                "SELECT * FROM members WHERE email = ?", (email.strip().lower(),)
            ).fetchone()
            return MemberRepository._row_to_member(row) if row else None

    @staticmethod
    def get_member_by_telegram_id(telegram_id: int) -> Optional[Member]:
        with get_db() as conn:
            row = conn.execute(
                "SELECT * FROM members WHERE telegram_id = ?", (telegram_id,)
            ).fetchone()
            return MemberRepository._row_to_member(row) if row else None

    @staticmethod
    def link_telegram(member_id: int, telegram_id: int):
        """Привязка Telegram-аккаунта к участнику"""
        with get_db() as conn:
            conn.execute(
                "UPDATE members SET telegram_id = NULL WHERE telegram_id = ?", (telegram_id,)
            )
            conn.execute(
                "UPDATE members SET telegram_id = ? WHERE id = ?", (telegram_id, member_id)
            )

    @staticmethod
    def unlink_telegram(member_id: int) -> bool:
        """Отвязка Telegram-аккаунта (бот заблокирован пользователем)"""
        with get_db() as conn:
            cursor = conn.execute(
                "UPDATE members SET telegram_id = NULL WHERE id = ?", (member_id,)
            )
            return cursor.rowcount > 0

    @staticmethod
    def get_role(member_id: int) -> Optional[str]:
        """Роль участника по списку допуска"""
        with get_db() as conn:
            row = conn.execute("""
                SELECT am.role FROM members m
                JOIN allowed_members am ON am.email = m.email
                WHERE m.id = ?
            """, (member_id,)).fetchone()
            return row['role'] if row else None

    @staticmethod
    def _row_to_member(row) -> Member:
        return Member(
            id=row['id'],
            name=row['name'],
            email=row['email'],
            telegram_id=row['telegram_id'],
            created_at=from_db_datetime(row['created_at'])
        )


class AllowedMemberRepository:
    """Репозиторий для списка допуска"""

    @staticmethod
    def add(allowed: AllowedMember) -> int:
        """Добавление или обновление записи списка допуска"""
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO allowed_members (email, name, role) VALUES (?, ?, ?)
                ON CONFLICT (email) DO UPDATE SET name = excluded.name, role = excluded.role
            """, (allowed.email.strip().lower(), allowed.name, allowed.role))
            return cursor.lastrowid

    @staticmethod
    def get_by_email(email: str) -> Optional[AllowedMember]:
        with get_db() as conn:
            row = conn.execute(
                "SELECT * FROM allowed_members WHERE email = ?", (email.strip().lower(),)
            ).fetchone()
            if row:
                return AllowedMember(
                    id=row['id'], email=row['email'], name=row['name'], role=row['role']
                )
            return None


class BoatRepository:
    """Репозиторий для работы с лодками"""

    @staticmethod
    def create_boat(boat: Boat) -> int:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO boats (code, name, type, usage_type, in_service)
                VALUES (?, ?, ?, ?, ?)
            """, (
                boat.code,
                boat.name,
                boat.type,
                normalize_usage_type(boat.usage_type),
                int(boat.in_service)
            ))
            return cursor.lastrowid

    @staticmethod
    def get_all_boats() -> List[Boat]:
        """Получение всех лодок в строю"""
        with get_db() as conn:
            rows = conn.execute(
                "SELECT * FROM boats WHERE in_service = 1 ORDER BY type, name"
            ).fetchall()
            return [BoatRepository._row_to_boat(row) for row in rows]

    @staticmethod
    def get_boat_by_id(boat_id: int) -> Optional[Boat]:
        with get_db() as conn:
            row = conn.execute("SELECT * FROM boats WHERE id = ?", (boat_id,)).fetchone()
            return BoatRepository._row_to_boat(row) if row else None

    @staticmethod
    def get_boat_by_code(code: str) -> Optional[Boat]:
        with get_db() as conn:
            row = conn.execute("SELECT * FROM boats WHERE code = ?", (code,)).fetchone()
            return BoatRepository._row_to_boat(row) if row else None

    @staticmethod
    def grant_permission(boat_id: int, member_id: int):
        """Разрешение участнику бронировать лодку с допуском капитана"""
        with get_db() as conn:
            conn.execute("""
                INSERT OR IGNORE INTO boat_permissions (boat_id, member_id) VALUES (?, ?)
            """, (boat_id, member_id))

    @staticmethod
    def has_permission(boat_id: int, member_id: int) -> bool:
        with get_db() as conn:
            row = conn.execute("""
                SELECT 1 FROM boat_permissions WHERE boat_id = ? AND member_id = ?
            """, (boat_id, member_id)).fetchone()
            return row is not None

    @staticmethod
    def _row_to_boat(row) -> Boat:
        return Boat(
            id=row['id'],
            code=row['code'],
            name=row['name'],
            type=row['type'],
            usage_type=normalize_usage_type(row['usage_type']),
            in_service=bool(row['in_service'])
        )


class BookingRepository:
    """Репозиторий для работы с бронированиями"""

    @staticmethod
    def create_booking(booking: Booking) -> int:
        """Создание нового бронирования.

        Пересечение с другой бронью отклоняется триггером БД
        (sqlite3.IntegrityError с текстом booking_overlap).
        """
        with get_db() as conn:
            return BookingRepository._insert(conn, booking)

    @staticmethod
    def _insert(conn, booking: Booking) -> int:
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO bookings
            (boat_id, member_id, start_time, end_time, usage_status)
            VALUES (?, ?, ?, ?, ?)
        """, (
            booking.boat_id,
            booking.member_id,
            to_db_datetime(booking.start_time),
            to_db_datetime(booking.end_time),
            booking.usage_status
        ))
        return cursor.lastrowid

    @staticmethod
    def get_booking_by_id(booking_id: int) -> Optional[Booking]:
        """Получение бронирования по ID"""
        with get_db() as conn:
            row = conn.execute("SELECT * FROM bookings WHERE id = ?", (booking_id,)).fetchone()
            return BookingRepository._row_to_booking(row) if row else None

    @staticmethod
    def find_overlapping(boat_ids: List[int], start_time: datetime, end_time: datetime,
                         exclude_booking_id: Optional[int] = None) -> List[Booking]:
        """Активные брони указанных лодок, пересекающие интервал"""
        if not boat_ids:
            return []
        query = f"""
            SELECT * FROM bookings
            WHERE boat_id IN ({_placeholders(boat_ids)})
            AND usage_status != ?
            AND start_time < ? AND end_time > ?
        """
        params = [*boat_ids, USAGE_CANCELLED, to_db_datetime(end_time), to_db_datetime(start_time)]

        if exclude_booking_id is not None:
            query += " AND id != ?"
            params.append(exclude_booking_id)

        with get_db() as conn:
            rows = conn.execute(query + " ORDER BY start_time", params).fetchall()
            return [BookingRepository._row_to_booking(row) for row in rows]

    @staticmethod
    def update_booking(booking_id: int, boat_id: int, start_time: datetime,
                       end_time: datetime) -> bool:
        """Перенос запланированного бронирования"""
        with get_db() as conn:
            cursor = conn.execute("""
                UPDATE bookings SET boat_id = ?, start_time = ?, end_time = ?
                WHERE id = ? AND usage_status = ?
            """, (
                boat_id,
                to_db_datetime(start_time),
                to_db_datetime(end_time),
                booking_id,
                USAGE_SCHEDULED
            ))
            return cursor.rowcount > 0

    @staticmethod
    def delete_booking(booking_id: int) -> bool:
        with get_db() as conn:
            cursor = conn.execute("""
                DELETE FROM bookings WHERE id = ? AND usage_status = ?
            """, (booking_id, USAGE_SCHEDULED))
            return cursor.rowcount > 0

    @staticmethod
    def resolve_usage(booking_id: int, status: str, resolved_at: datetime,
                      resolved_by: Optional[int]) -> bool:
        """Фиксация итога выхода, только если бронь ожидает подтверждения"""
        with get_db() as conn:
            cursor = conn.execute("""
                UPDATE bookings
                SET usage_status = ?, usage_confirmed_at = ?, usage_confirmed_by = ?
                WHERE id = ? AND usage_status = ?
            """, (status, to_db_datetime(resolved_at), resolved_by, booking_id, USAGE_PENDING))
            return cursor.rowcount > 0

    @staticmethod
    def mark_finished_as_pending(now: datetime) -> int:
        """Перевод закончившихся броней в ожидание подтверждения"""
        with get_db() as conn:
            cursor = conn.execute("""
                UPDATE bookings SET usage_status = ?
                WHERE usage_status = ? AND end_time < ?
            """, (USAGE_PENDING, USAGE_SCHEDULED, to_db_datetime(now)))
            return cursor.rowcount

    @staticmethod
    def get_pending_without_notification() -> List[Booking]:
        """Брони в ожидании подтверждения, по которым ещё не было напоминания"""
        with get_db() as conn:
            rows = conn.execute("""
                SELECT b.* FROM bookings b
                LEFT JOIN booking_usage_notifications n ON n.booking_id = b.id
                WHERE b.usage_status = ? AND b.member_id IS NOT NULL
                AND n.id IS NULL
                ORDER BY b.end_time
            """, (USAGE_PENDING,)).fetchall()
            return [BookingRepository._row_to_booking(row) for row in rows]

    @staticmethod
    def record_usage_notification(booking_id: int) -> bool:
        """Отметка о напоминании; False, если оно уже было"""
        with get_db() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO booking_usage_notifications (booking_id) VALUES (?)
            """, (booking_id,))
            return cursor.rowcount > 0

    @staticmethod
    def get_bookings_starting_between(window_start: datetime,
                                      window_end: datetime) -> List[Booking]:
        with get_db() as conn:
            rows = conn.execute("""
                SELECT * FROM bookings
                WHERE usage_status = ? AND member_id IS NOT NULL
                AND start_time >= ? AND start_time < ?
                ORDER BY start_time
            """, (
                USAGE_SCHEDULED,
                to_db_datetime(window_start),
                to_db_datetime(window_end)
            )).fetchall()
            return [BookingRepository._row_to_booking(row) for row in rows]

    @staticmethod
    def record_reminder(booking_id: int, remind_at: datetime) -> bool:
        """Отметка о напоминании перед выходом; False, если оно уже было"""
        with get_db() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO booking_reminders (booking_id, remind_at) VALUES (?, ?)
            """, (booking_id, to_db_datetime(remind_at)))
            return cursor.rowcount > 0

    @staticmethod
    def get_member_bookings(member_id: int, now: datetime) -> List[Booking]:
        """Будущие и ожидающие подтверждения брони участника"""
        with get_db() as conn:
            rows = conn.execute("""
                SELECT * FROM bookings
                WHERE member_id = ?
                AND (usage_status = ? OR (usage_status = ? AND end_time > ?))
                ORDER BY start_time
            """, (member_id, USAGE_PENDING, USAGE_SCHEDULED, to_db_datetime(now))).fetchall()
            return [BookingRepository._row_to_booking(row) for row in rows]

    @staticmethod
    def get_schedule_items(day_start: datetime, day_end: datetime) -> List[ScheduleItem]:
        """Брони, пересекающие сутки, с названиями лодок и именами участников"""
        with get_db() as conn:
            rows = conn.execute("""
                SELECT b.id, b.boat_id, b.member_id, b.start_time, b.end_time,
                       b.usage_status, bo.name AS boat_name, m.name AS member_name
                FROM bookings b
                JOIN boats bo ON bo.id = b.boat_id
                LEFT JOIN members m ON m.id = b.member_id
                WHERE b.start_time < ? AND b.end_time > ?
                AND b.usage_status != ?
                ORDER BY b.start_time
            """, (
                to_db_datetime(day_end),
                to_db_datetime(day_start),
                USAGE_CANCELLED
            )).fetchall()
            return [
                ScheduleItem(
                    boat_id=row['boat_id'],
                    boat_name=row['boat_name'],
                    member_id=row['member_id'],
                    member_name=row['member_name'] or 'Участник',
                    start_time=from_db_datetime(row['start_time']),
                    end_time=from_db_datetime(row['end_time']),
                    is_template=False,
                    booking_id=row['id'],
                    usage_status=row['usage_status']
                )
                for row in rows
            ]

    @staticmethod
    def _row_to_booking(row) -> Booking:
        """Преобразование строки БД в объект Booking"""
        return Booking(
            id=row['id'],
            boat_id=row['boat_id'],
            member_id=row['member_id'],
            start_time=from_db_datetime(row['start_time']),
            end_time=from_db_datetime(row['end_time']),
            usage_status=row['usage_status'],
            usage_confirmed_at=from_db_datetime(row['usage_confirmed_at']),
            usage_confirmed_by=row['usage_confirmed_by'],
            created_at=from_db_datetime(row['created_at'])
        )


class TemplateRepository:
    """Репозиторий для шаблонов, исключений и подтверждений"""

    @staticmethod
    def create_template(template: BookingTemplate) -> int:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO booking_templates
                (weekday, boat_id, member_id, start_time, end_time, boat_label, member_label)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                template.weekday,
                template.boat_id,
                template.member_id,
                to_db_time(template.start_time),
                to_db_time(template.end_time),
                template.boat_label,
                template.member_label
            ))
            return cursor.lastrowid

    @staticmethod
    def update_template(template: BookingTemplate) -> bool:
        with get_db() as conn:
            cursor = conn.execute("""
                UPDATE booking_templates
                SET weekday = ?, boat_id = ?, member_id = ?, start_time = ?, end_time = ?,
                    boat_label = ?, member_label = ?
                WHERE id = ?
            """, (
                template.weekday,
                template.boat_id,
                template.member_id,
                to_db_time(template.start_time),
                to_db_time(template.end_time),
                template.boat_label,
                template.member_label,
                template.id
            ))
            return cursor.rowcount > 0

    @staticmethod
    def delete_template(template_id: int) -> bool:
        with get_db() as conn:
            cursor = conn.execute("DELETE FROM booking_templates WHERE id = ?", (template_id,))
            return cursor.rowcount > 0

    @staticmethod
    def get_template_by_id(template_id: int) -> Optional[BookingTemplate]:
        with get_db() as conn:
            row = conn.execute(
                "SELECT * FROM booking_templates WHERE id = ?", (template_id,)
            ).fetchone()
            return TemplateRepository._row_to_template(row) if row else None

    @staticmethod
    def get_templates_by_weekday(weekday: int) -> List[BookingTemplate]:
        with get_db() as conn:
            rows = conn.execute("""
                SELECT * FROM booking_templates WHERE weekday = ? ORDER BY start_time
            """, (weekday,)).fetchall()
            return [TemplateRepository._row_to_template(row) for row in rows]

    @staticmethod
    def get_templates_with_member() -> List[BookingTemplate]:
        """Шаблоны, закреплённые за участником (им нужны подтверждения)"""
        with get_db() as conn:
            rows = conn.execute("""
                SELECT * FROM booking_templates WHERE member_id IS NOT NULL
                ORDER BY weekday, start_time
            """).fetchall()
            return [TemplateRepository._row_to_template(row) for row in rows]

    @staticmethod
    def get_member_templates(member_id: int) -> List[BookingTemplate]:
        with get_db() as conn:
            rows = conn.execute("""
                SELECT * FROM booking_templates WHERE member_id = ?
                ORDER BY weekday, start_time
            """, (member_id,)).fetchall()
            return [TemplateRepository._row_to_template(row) for row in rows]

    @staticmethod
    def get_boat_templates(weekday: int, boat_ids: List[int]) -> List[BookingTemplate]:
        """Шаблоны указанных лодок в день недели"""
        if not boat_ids:
            return []
        with get_db() as conn:
            rows = conn.execute(f"""
                SELECT * FROM booking_templates
                WHERE weekday = ? AND boat_id IN ({_placeholders(boat_ids)})
                ORDER BY start_time
            """, [weekday, *boat_ids]).fetchall()
            return [TemplateRepository._row_to_template(row) for row in rows]

    @staticmethod
    def find_overlapping(weekday: int, boat_ids: List[int], start_time, end_time,
                         exclude_template_id: Optional[int] = None) -> List[BookingTemplate]:
        """Шаблоны тех же лодок в тот же день недели с пересекающимся временем"""
        if not boat_ids:
            return []
        query = f"""
            SELECT * FROM booking_templates
            WHERE weekday = ? AND boat_id IN ({_placeholders(boat_ids)})
            AND start_time < ? AND end_time > ?
        """
        params = [weekday, *boat_ids, to_db_time(end_time), to_db_time(start_time)]

        if exclude_template_id is not None:
            query += " AND id != ?"
            params.append(exclude_template_id)

        with get_db() as conn:
            rows = conn.execute(query + " ORDER BY start_time", params).fetchall()
            return [TemplateRepository._row_to_template(row) for row in rows]

    @staticmethod
    def get_schedule_items(day: date) -> List[ScheduleItem]:
        """Шаблонные выходы на дату без исключений"""
        with get_db() as conn:
            rows = conn.execute("""
                SELECT t.*, bo.name AS boat_name, m.name AS member_name
                FROM booking_templates t
                LEFT JOIN boats bo ON bo.id = t.boat_id
                LEFT JOIN members m ON m.id = t.member_id
                WHERE t.weekday = ?
                AND NOT EXISTS (
                    SELECT 1 FROM template_exceptions e
                    WHERE e.template_id = t.id AND e.exception_date = ?
                )
                ORDER BY t.start_time
            """, (day.weekday(), to_db_date(day))).fetchall()
            items = []
            for row in rows:
                template = TemplateRepository._row_to_template(row)
                items.append(ScheduleItem(
                    boat_id=template.boat_id,
                    boat_name=row['boat_name'] or template.boat_label or 'Любая лодка',
                    member_id=template.member_id,
                    member_name=row['member_name'] or template.member_label or 'Участник',
                    start_time=template.start_on(day),
                    end_time=template.end_on(day),
                    is_template=True,
                    template_id=template.id
                ))
            return items

    # Исключения

    @staticmethod
    def get_exception(template_id: int, exception_date: date) -> Optional[TemplateException]:
        with get_db() as conn:
            row = conn.execute("""
                SELECT * FROM template_exceptions
                WHERE template_id = ? AND exception_date = ?
            """, (template_id, to_db_date(exception_date))).fetchone()
            if row:
                return TemplateException(
                    id=row['id'],
                    template_id=row['template_id'],
                    exception_date=from_db_date(row['exception_date']),
                    reason=row['reason']
                )
            return None

    @staticmethod
    def get_exception_keys(dates: Iterable[date]) -> Set[Tuple[int, date]]:
        """Пары (шаблон, дата), для которых есть исключения"""
        dates = [to_db_date(day) for day in dates]
        if not dates:
            return set()
        with get_db() as conn:
            rows = conn.execute(f"""
                SELECT template_id, exception_date FROM template_exceptions
                WHERE exception_date IN ({_placeholders(dates)})
            """, dates).fetchall()
            return {(row['template_id'], from_db_date(row['exception_date'])) for row in rows}

    @staticmethod
    def add_exception(template_id: int, exception_date: date, reason: Optional[str] = None,
                      responded_at: Optional[datetime] = None) -> bool:
        """Пропуск одного выхода; False, если исключение уже есть.

        Неотвеченный запрос подтверждения на эту дату закрывается
        как отменённый в той же транзакции.
        """
        with get_db() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO template_exceptions (template_id, exception_date, reason)
                VALUES (?, ?, ?)
            """, (template_id, to_db_date(exception_date), reason))
            if cursor.rowcount == 0:
                return False

            conn.execute("""
                UPDATE template_confirmations SET status = ?, responded_at = ?
                WHERE template_id = ? AND occurrence_date = ? AND status = ?
            """, (
                CONFIRMATION_CANCELLED,
                to_db_datetime(responded_at or datetime.now()),
                template_id,
                to_db_date(exception_date),
                CONFIRMATION_PENDING
            ))
            return True

    @staticmethod
    def delete_exception(template_id: int, exception_date: date) -> bool:
        with get_db() as conn:
            cursor = conn.execute("""
                DELETE FROM template_exceptions WHERE template_id = ? AND exception_date = ?
            """, (template_id, to_db_date(exception_date)))
            return cursor.rowcount > 0

    # Подтверждения

    @staticmethod
    def get_confirmation(template_id: int, occurrence_date: date) -> Optional[TemplateConfirmation]:
        with get_db() as conn:
            row = conn.execute("""
                SELECT * FROM template_confirmations
                WHERE template_id = ? AND occurrence_date = ?
            """, (template_id, to_db_date(occurrence_date))).fetchone()
            return TemplateRepository._row_to_confirmation(row) if row else None

    @staticmethod
    def create_pending_confirmation(template_id: int, member_id: int,
                                    occurrence_date: date) -> bool:
        """Запрос подтверждения; False, если запись уже существует"""
        with get_db() as conn:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO template_confirmations
                (template_id, member_id, occurrence_date, status)
                VALUES (?, ?, ?, ?)
            """, (template_id, member_id, to_db_date(occurrence_date), CONFIRMATION_PENDING))
            return cursor.rowcount > 0

    @staticmethod
    def mark_notified(confirmation_id: int, notified_at: datetime) -> bool:
        with get_db() as conn:
            cursor = conn.execute("""
                UPDATE template_confirmations SET notified_at = ?
                WHERE id = ? AND notified_at IS NULL
            """, (to_db_datetime(notified_at), confirmation_id))
            return cursor.rowcount > 0

    @staticmethod
    def apply_resolution(template_id: int, member_id: int, occurrence_date: date,
                         status: str, responded_at: datetime,
                         booking: Optional[Booking] = None) -> Optional[int]:
        """Фиксация решения по шаблонному выходу одной транзакцией.

        Создаёт бронь (если передана), исключение на дату и
        переводит подтверждение в итоговый статус. Возвращает ID брони.
        """
        with get_db() as conn:
            booking_id = BookingRepository._insert(conn, booking) if booking else None

            conn.execute("""
                INSERT INTO template_exceptions (template_id, exception_date, reason)
                VALUES (?, ?, ?)
                ON CONFLICT (template_id, exception_date) DO UPDATE SET reason = excluded.reason
            """, (template_id, to_db_date(occurrence_date), status))

            conn.execute("""
                INSERT INTO template_confirmations
                (template_id, member_id, occurrence_date, status, booking_id, responded_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT (template_id, occurrence_date) DO UPDATE SET
                    status = excluded.status,
                    booking_id = COALESCE(excluded.booking_id, template_confirmations.booking_id),
                    responded_at = excluded.responded_at
            """, (
                template_id,
                member_id,
                to_db_date(occurrence_date),
                status,
                booking_id,
                to_db_datetime(responded_at)
            ))
            return booking_id

    @staticmethod
    def _row_to_template(row) -> BookingTemplate:
        return BookingTemplate(
            id=row['id'],
            weekday=row['weekday'],
            boat_id=row['boat_id'],
            member_id=row['member_id'],
            start_time=from_db_time(row['start_time']),
            end_time=from_db_time(row['end_time']),
            boat_label=row['boat_label'],
            member_label=row['member_label']
        )

    @staticmethod
    def _row_to_confirmation(row) -> TemplateConfirmation:
        return TemplateConfirmation(
            id=row['id'],
            template_id=row['template_id'],
            member_id=row['member_id'],
            occurrence_date=from_db_date(row['occurrence_date']),
            status=row['status'],
            booking_id=row['booking_id'],
            notified_at=from_db_datetime(row['notified_at']),
            responded_at=from_db_datetime(row['responded_at'])
        )


class RaceEventRepository:
    """Репозиторий для гонок"""

    @staticmethod
    def create_event(event: RaceEvent) -> int:
        """Гонка и её лодки одной транзакцией"""
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                INSERT INTO race_events (title, event_date, created_by) VALUES (?, ?, ?)
            """, (event.title, to_db_date(event.event_date), event.created_by))
            event_id = cursor.lastrowid
            conn.executemany("""
                INSERT OR IGNORE INTO race_event_boats (race_event_id, boat_id) VALUES (?, ?)
            """, [(event_id, boat_id) for boat_id in event.boat_ids])
            return event_id

    @staticmethod
    def get_event_by_id(event_id: int) -> Optional[RaceEvent]:
        with get_db() as conn:
            row = conn.execute("SELECT * FROM race_events WHERE id = ?", (event_id,)).fetchone()
            return RaceEventRepository._row_to_event(conn, row) if row else None

    @staticmethod
    def get_events_on(day: date) -> List[RaceEvent]:
        """Гонки на дату"""
        with get_db() as conn:
            rows = conn.execute("""
                SELECT * FROM race_events WHERE event_date = ? ORDER BY id
            """, (to_db_date(day),)).fetchall()
            return [RaceEventRepository._row_to_event(conn, row) for row in rows]

    @staticmethod
    def delete_event(event_id: int) -> bool:
        with get_db() as conn:
            cursor = conn.execute("DELETE FROM race_events WHERE id = ?", (event_id,))
            return cursor.rowcount > 0

    @staticmethod
    def _row_to_event(conn, row) -> RaceEvent:
        boat_rows = conn.execute("""
            SELECT boat_id FROM race_event_boats WHERE race_event_id = ? ORDER BY id
        """, (row['id'],)).fetchall()
        return RaceEvent(
            id=row['id'],
            title=row['title'],
            event_date=from_db_date(row['event_date']),
            boat_ids=[boat_row['boat_id'] for boat_row in boat_rows],
            created_by=row['created_by'],
            created_at=from_db_datetime(row['created_at'])
        )


class RiskAssessmentRepository:
    """Репозиторий для оценок рисков выхода"""

    @staticmethod
    def create(assessment: RiskAssessment) -> int:
        """Оценка и её привязка к броням одной транзакцией.

        Бронь, к которой уже привязана оценка, отклоняется
        ограничением UNIQUE (sqlite3.IntegrityError).
        """
        columns = ', '.join(RISK_FIELDS)
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                INSERT INTO risk_assessments
                (member_id, coordinator_name, session_date, session_time, {columns})
                VALUES (?, ?, ?, ?, {_placeholders(RISK_FIELDS)})
            """, (
                assessment.member_id,
                assessment.coordinator_name,
                to_db_date(assessment.session_date),
                assessment.session_time,
                *(assessment.answers[name] for name in RISK_FIELDS)
            ))
            assessment_id = cursor.lastrowid
            conn.executemany("""
                INSERT INTO booking_risk_assessments (booking_id, risk_assessment_id)
                VALUES (?, ?)
            """, [(booking_id, assessment_id) for booking_id in assessment.booking_ids])
            return assessment_id

    @staticmethod
    def get_by_id(assessment_id: int) -> Optional[RiskAssessment]:
        with get_db() as conn:
            row = conn.execute(
                "SELECT * FROM risk_assessments WHERE id = ?", (assessment_id,)
            ).fetchone()
            return RiskAssessmentRepository._row_to_assessment(conn, row) if row else None

    @staticmethod
    def get_for_booking(booking_id: int) -> Optional[RiskAssessment]:
        """Оценка, привязанная к брони"""
        with get_db() as conn:
            row = conn.execute("""
                SELECT ra.* FROM risk_assessments ra
                JOIN booking_risk_assessments bra ON bra.risk_assessment_id = ra.id
                WHERE bra.booking_id = ?
            """, (booking_id,)).fetchone()
            return RiskAssessmentRepository._row_to_assessment(conn, row) if row else None

    @staticmethod
    def get_assessed_booking_ids(booking_ids: List[int]) -> Set[int]:
        """Брони из списка, к которым уже привязана оценка"""
        if not booking_ids:
            return set()
        with get_db() as conn:
            rows = conn.execute(f"""
                SELECT booking_id FROM booking_risk_assessments
                WHERE booking_id IN ({_placeholders(booking_ids)})
            """, list(booking_ids)).fetchall()
            return {row['booking_id'] for row in rows}

    @staticmethod
    def _row_to_assessment(conn, row) -> RiskAssessment:
        link_rows = conn.execute("""
            SELECT booking_id FROM booking_risk_assessments
            WHERE risk_assessment_id = ? ORDER BY booking_id
        """, (row['id'],)).fetchall()
        return RiskAssessment(
            id=row['id'],
            member_id=row['member_id'],
            coordinator_name=row['coordinator_name'],
            session_date=from_db_date(row['session_date']),
            session_time=row['session_time'],
            answers={name: row[name] for name in RISK_FIELDS},
            booking_ids=[link_row['booking_id'] for link_row in link_rows],
            created_at=from_db_datetime(row['created_at'])
        )
