"""
Гонки: лодки отдаются под соревнование, владельцы пересекающихся броней получают уведомление
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import List, Optional

from database.models import Actor, RaceEvent
from database.repository import (
    BoatRepository, BookingRepository, MemberRepository, RaceEventRepository, TemplateRepository
)
from services.conflicts import ConflictChecker
from services.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from services.members import MemberService
from services.notifier import Notification
from utils.time_utils import format_interval

logger = logging.getLogger(__name__)

DEFAULT_TITLE = 'Гонка'


@dataclass
class AffectedEntry:
    """Бронь или шаблонный выход, попавшие под гонку"""
    member_id: int
    boat_id: int
    start_time: datetime
    end_time: datetime
    booking_id: Optional[int] = None
    template_id: Optional[int] = None


class RaceEventService:
    """Гонки и уведомления о пересечениях с ними"""

    @staticmethod
    def create_event(actor: Actor, event_date: date, boat_ids: List[int],
                     title: Optional[str] = None) -> RaceEvent:
        """Создание гонки (только администраторы)"""
        if not actor.is_admin:
            raise PermissionDeniedError("Гонки создают только администраторы")

        boat_ids = list(dict.fromkeys(boat_ids))
        if not boat_ids:
            raise ValidationError("Укажите хотя бы одну лодку")
        for boat_id in boat_ids:
            if not BoatRepository.get_boat_by_id(boat_id):
                raise NotFoundError("Лодка", boat_id)

        event = RaceEvent(
            id=None,
            title=(title or '').strip() or DEFAULT_TITLE,
            event_date=event_date,
            boat_ids=boat_ids,
            created_by=actor.member_id
        )
        event.id = RaceEventRepository.create_event(event)
        logger.info(f"Создана гонка #{event.id} «{event.title}» на {event_date}: лодки {boat_ids}")
        return RaceEventRepository.get_event_by_id(event.id)

    @staticmethod
    def affected(event: RaceEvent) -> List[AffectedEntry]:
        """Брони и шаблонные выходы участников на лодках гонки в её день.

        Администраторы и записи без участника не включаются.
        """
        day_start = datetime.combine(event.event_date, time.min)
        day_end = day_start + timedelta(days=1)

        entries = []
        seen = set()
        for conflict in ConflictChecker.find_conflicts(event.boat_ids, day_start, day_end):
            key = (conflict.kind, conflict.booking_id or conflict.template_id)
            if key in seen:
                continue
            seen.add(key)

            if conflict.kind == 'booking':
                booking = BookingRepository.get_booking_by_id(conflict.booking_id)
                if not booking or booking.member_id is None:
                    continue
                entry = AffectedEntry(
                    member_id=booking.member_id,
                    boat_id=booking.boat_id,
                    start_time=booking.start_time,
                    end_time=booking.end_time,
                    booking_id=booking.id
                )
            else:
                template = TemplateRepository.get_template_by_id(conflict.template_id)
                if not template or template.member_id is None:
                    continue
                entry = AffectedEntry(
                    member_id=template.member_id,
                    boat_id=template.boat_id,
                    start_time=template.start_on(event.event_date),
                    end_time=template.end_on(event.event_date),
                    template_id=template.id
                )

            member = MemberRepository.get_member_by_id(entry.member_id)
            if not member or MemberService.actor_for(member, member.telegram_id).is_admin:
                continue
            entries.append(entry)

        return sorted(entries, key=lambda entry: entry.start_time)

    @staticmethod
    async def notify_conflicts(event: RaceEvent, notifier) -> int:
        """Уведомление владельцев пересекающихся броней; число доставленных"""
        sent = 0
        for entry in RaceEventService.affected(event):
            boat = BoatRepository.get_boat_by_id(entry.boat_id)
            delivered = await notifier.notify(
                entry.member_id,
                Notification(
                    title='Бронь пересекается с гонкой',
                    body=(
                        f"{boat.name if boat else 'Лодка'} отдана под «{event.title}» "
                        f"{event.event_date:%d.%m.%Y}. Ваша бронь "
                        f"{format_interval(entry.start_time, entry.end_time)} "
                        f"пересекается с гонкой."
                    )
                )
            )
            if delivered:
                sent += 1

        logger.info(f"Гонка #{event.id}: уведомлено {sent} участников о пересечениях")
        return sent

    @staticmethod
    def get_events_on(day: date) -> List[RaceEvent]:
        return RaceEventRepository.get_events_on(day)

    @staticmethod
    def delete_event(actor: Actor, event_id: int):
        if not actor.is_admin:
            raise PermissionDeniedError("Гонки удаляют только администраторы")
        if not RaceEventRepository.delete_event(event_id):
            raise NotFoundError("Гонка", event_id)
        logger.info(f"Гонка #{event_id} удалена")
