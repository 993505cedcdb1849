"""
Фоновые проверки: подтверждение выходов и шаблонных броней
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

from config import settings
from database.models import (
    Actor, Booking, BookingTemplate, CONFIRMATION_PENDING, CONFIRMATION_CONFIRMED,
    CONFIRMATION_CANCELLED
)
from database.repository import BoatRepository, BookingRepository, TemplateRepository
from keyboards.keyboards import get_template_confirmation_keyboard, get_usage_keyboard
from services.exceptions import BookingError
from services.notifier import Notification
from services.templates import TemplateService
from utils.time_utils import format_interval

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Сводка одного прогона всех проверок"""
    transitioned: int = 0
    usage_notified: int = 0
    confirmations_created: int = 0
    confirmations_notified: int = 0
    auto_cancelled: int = 0
    reminders_sent: int = 0


def _booking_boat_name(booking: Booking) -> str:
    boat = BoatRepository.get_boat_by_id(booking.boat_id)
    return boat.name if boat else 'Лодка'


def _template_boat_name(template: BookingTemplate) -> str:
    boat = BoatRepository.get_boat_by_id(template.boat_id) if template.boat_id else None
    return boat.name if boat else template.boat_label or 'Лодка'


def _occurrence_label(template: BookingTemplate, day: date) -> str:
    return format_interval(template.start_on(day), template.end_on(day))


class ConfirmationScheduler:
    """Периодические проверки; каждая безопасна при повторном запуске.

    Проверки одного планировщика выполняются по очереди под общей
    блокировкой, так что ручной запуск не пересекается с задачами
    по расписанию. Ошибка БД прерывает текущую проверку и пробрасывается
    вызывающему, уже сохранённые изменения остаются. Ошибки доставки
    уведомлений проверку не прерывают.
    """

    def __init__(self, notifier):
        self.notifier = notifier
        self.lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        """Сейчас выполняется какая-либо проверка"""
        return self.lock.locked()

    def transition_usage(self, now: Optional[datetime] = None) -> int:
        """Закончившиеся брони переходят в ожидание подтверждения"""
        count = BookingRepository.mark_finished_as_pending(now or datetime.now())
        if count > 0:
            logger.info(f"Ожидают подтверждения выхода: {count} броней")
        return count

    async def notify_pending_usage(self) -> int:
        """Однократное напоминание подтвердить, состоялся ли выход"""
        async with self.lock:
            return await self._notify_pending_usage()

    async def request_template_confirmations(self, now: Optional[datetime] = None) -> Tuple[int, int]:
        """Запрос подтверждений шаблонных выходов в окне уведомления"""
        async with self.lock:
            return await self._request_template_confirmations(now or datetime.now())

    async def auto_cancel_templates(self, now: Optional[datetime] = None) -> int:
        """Отмена неподтверждённых шаблонных выходов ближе дедлайна"""
        async with self.lock:
            return await self._auto_cancel_templates(now or datetime.now())

    async def send_booking_reminders(self, now: Optional[datetime] = None) -> int:
        """Напоминание незадолго до начала выхода"""
        async with self.lock:
            return await self._send_booking_reminders(now or datetime.now())

    async def run_all(self, now: Optional[datetime] = None) -> SweepReport:
        """Все проверки по порядку одним прогоном"""
        now = now or datetime.now()
        report = SweepReport()
        async with self.lock:
            report.transitioned = self.transition_usage(now)
            report.usage_notified = await self._notify_pending_usage()
            report.confirmations_created, report.confirmations_notified = (
                await self._request_template_confirmations(now)
            )
            report.auto_cancelled = await self._auto_cancel_templates(now)
            report.reminders_sent = await self._send_booking_reminders(now)
        return report

    async def _notify_pending_usage(self) -> int:
        sent = 0
        for booking in BookingRepository.get_pending_without_notification():
            if not BookingRepository.record_usage_notification(booking.id):
                continue

            delivered = await self.notifier.notify(
                booking.member_id,
                Notification(
                    title='Подтвердите выход',
                    body=(
                        f"{_booking_boat_name(booking)} • "
                        f"{format_interval(booking.start_time, booking.end_time)}. "
                        f"Подтвердите, состоялся ли выход."
                    )
                ),
                reply_markup=get_usage_keyboard(booking.id)
            )
            if delivered:
                sent += 1
        return sent

    async def _request_template_confirmations(self, now: datetime) -> Tuple[int, int]:
        window_end = now + timedelta(hours=settings.TEMPLATE_NOTICE_HOURS)

        created = 0
        notified = 0
        for template in TemplateRepository.get_templates_with_member():
            for day in TemplateService.occurrences_between(template, now, window_end):
                if TemplateRepository.create_pending_confirmation(
                    template.id, template.member_id, day
                ):
                    created += 1

                confirmation = TemplateRepository.get_confirmation(template.id, day)
                if confirmation.status != CONFIRMATION_PENDING or confirmation.notified_at:
                    continue

                await self.notifier.notify(
                    template.member_id,
                    Notification(
                        title='Шаблонная бронь ждёт подтверждения',
                        body=(
                            f"{_template_boat_name(template)} • "
                            f"{_occurrence_label(template, day)}. "
                            f"Подтвердите, что выход ещё нужен."
                        )
                    ),
                    reply_markup=get_template_confirmation_keyboard(template.id, day)
                )
                TemplateRepository.mark_notified(confirmation.id, now)
                notified += 1

        if created or notified:
            logger.info(f"Подтверждения шаблонов: создано {created}, отправлено {notified}")
        return created, notified

    async def _auto_cancel_templates(self, now: datetime) -> int:
        window_end = now + timedelta(hours=settings.AUTO_CANCEL_HOURS)

        cancelled = 0
        for template in TemplateRepository.get_templates_with_member():
            for day in TemplateService.occurrences_between(template, now, window_end):
                confirmation = TemplateRepository.get_confirmation(template.id, day)
                if confirmation and confirmation.status == CONFIRMATION_CONFIRMED:
                    continue

                try:
                    resolution = TemplateService.resolve(
                        template.id, Actor.system(), day, CONFIRMATION_CANCELLED, now
                    )
                except BookingError as e:
                    logger.warning(f"Шаблон #{template.id}, {day}: автоотмена пропущена: {e}")
                    continue

                if not resolution.changed:
                    continue
                cancelled += 1

                # Повторно об уже отменённом выходе не уведомляем
                if resolution.previous_status == CONFIRMATION_CANCELLED:
                    continue

                await self.notifier.notify(
                    template.member_id,
                    Notification(
                        title='Шаблонная бронь снята',
                        body=(
                            f"{_template_boat_name(template)} • "
                            f"{_occurrence_label(template, day)}. "
                            f"Выход не был подтверждён и отменён."
                        )
                    )
                )

        if cancelled:
            logger.info(f"Автоматически отменено шаблонных выходов: {cancelled}")
        return cancelled

    async def _send_booking_reminders(self, now: datetime) -> int:
        lead = timedelta(minutes=settings.REMINDER_LEAD_MINUTES)
        tolerance = timedelta(minutes=settings.REMINDER_TOLERANCE_MINUTES)

        sent = 0
        for booking in BookingRepository.get_bookings_starting_between(
            now + lead - tolerance, now + lead + tolerance
        ):
            if not BookingRepository.record_reminder(booking.id, booking.start_time):
                continue

            await self.notifier.notify(
                booking.member_id,
                Notification(
                    title='Скоро выход',
                    body=(
                        f"{_booking_boat_name(booking)} • "
                        f"{format_interval(booking.start_time, booking.end_time)}"
                    )
                )
            )
            sent += 1
        return sent
