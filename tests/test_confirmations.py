import asyncio
from datetime import date, datetime, time, timedelta

import pytest

from database.models import CONFIRMATION_CANCELLED, CONFIRMATION_CONFIRMED, CONFIRMATION_PENDING
from database.repository import BookingRepository, TemplateRepository
from services.bookings import BookingService
from handlers.admin_handlers import run_sweep
from services.confirmations import ConfirmationScheduler
from services.templates import TemplateService

WEDNESDAY = date(2024, 6, 12)
# За 23 часа до выхода в среду 09:00
DEADLINE = datetime(2024, 6, 11, 10, 0)


@pytest.fixture
def template(boat, anna, admin):
    return TemplateService.create_template(admin, 2, time(9, 0), time(10, 0), anna.id, boat.id)


@pytest.fixture
def sweeps(notifier):
    return ConfirmationScheduler(notifier)


@pytest.mark.asyncio
async def test_pending_usage_notified_once(boat, anna, anna_actor, sweeps, notifier, now):
    booking = BookingService.create(
        boat.id, anna.id, datetime(2024, 6, 10, 8, 0), datetime(2024, 6, 10, 9, 0), anna_actor, now
    )

    later = datetime(2024, 6, 10, 9, 5)
    assert sweeps.transition_usage(later) == 1
    assert await sweeps.notify_pending_usage() == 1
    assert await sweeps.notify_pending_usage() == 0
    assert sweeps.transition_usage(later) == 0

    member_id, notification, markup = notifier.sent[0]
    assert member_id == anna.id
    assert notification.title == 'Подтвердите выход'
    callbacks = [button.callback_data for row in markup.inline_keyboard for button in row]
    assert f"usage:confirmed:{booking.id}" in callbacks


@pytest.mark.asyncio
async def test_unfinished_booking_stays_scheduled(boat, anna, anna_actor, sweeps, now):
    booking = BookingService.create(
        boat.id, anna.id, datetime(2024, 6, 10, 8, 0), datetime(2024, 6, 10, 9, 0), anna_actor, now
    )
    assert sweeps.transition_usage(datetime(2024, 6, 10, 8, 30)) == 0
    assert BookingRepository.get_booking_by_id(booking.id).usage_status == 'scheduled'


@pytest.mark.asyncio
async def test_template_confirmation_requested_in_window(template, anna, sweeps, notifier, now):
    created, notified = await sweeps.request_template_confirmations(now)

    assert (created, notified) == (1, 1)
    confirmation = TemplateRepository.get_confirmation(template.id, WEDNESDAY)
    assert confirmation.status == CONFIRMATION_PENDING
    assert confirmation.notified_at == now
    assert notifier.titles(anna.id) == ['Шаблонная бронь ждёт подтверждения']

    # Повторный прогон ничего не дублирует
    assert await sweeps.request_template_confirmations(now + timedelta(minutes=15)) == (0, 0)
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_template_outside_window_not_requested(template, sweeps, notifier):
    too_early = datetime(2024, 6, 9, 8, 0)
    assert await sweeps.request_template_confirmations(too_early) == (0, 0)
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_failed_delivery_still_marks_notified(template, sweeps, notifier, now):
    notifier.delivered = False
    await sweeps.request_template_confirmations(now)

    confirmation = TemplateRepository.get_confirmation(template.id, WEDNESDAY)
    assert confirmation.notified_at == now
    assert await sweeps.request_template_confirmations(now) == (0, 0)


@pytest.mark.asyncio
async def test_auto_cancel_unconfirmed(template, boat, anna, sweeps, notifier, now):
    await sweeps.request_template_confirmations(now)

    assert await sweeps.auto_cancel_templates(DEADLINE) == 1

    confirmation = TemplateRepository.get_confirmation(template.id, WEDNESDAY)
    assert confirmation.status == CONFIRMATION_CANCELLED
    assert confirmation.responded_at == DEADLINE
    assert TemplateRepository.get_exception(template.id, WEDNESDAY) is not None
    assert notifier.titles(anna.id)[-1] == 'Шаблонная бронь снята'

    # Повторный прогон не отменяет и не уведомляет снова
    sent = len(notifier.sent)
    assert await sweeps.auto_cancel_templates(DEADLINE + timedelta(minutes=15)) == 0
    assert len(notifier.sent) == sent


@pytest.mark.asyncio
async def test_auto_cancel_without_confirmation_row(template, sweeps, notifier):
    assert await sweeps.auto_cancel_templates(DEADLINE) == 1
    assert TemplateRepository.get_confirmation(template.id, WEDNESDAY).status == CONFIRMATION_CANCELLED


@pytest.mark.asyncio
async def test_confirmed_occurrence_survives_deadline(template, anna_actor, sweeps, notifier, now):
    await sweeps.request_template_confirmations(now)
    resolution = TemplateService.resolve(template.id, anna_actor, WEDNESDAY, 'confirmed', now)

    assert await sweeps.auto_cancel_templates(DEADLINE) == 0

    confirmation = TemplateRepository.get_confirmation(template.id, WEDNESDAY)
    assert confirmation.status == CONFIRMATION_CONFIRMED
    assert BookingRepository.get_booking_by_id(resolution.booking_id).usage_status == 'scheduled'


@pytest.mark.asyncio
async def test_auto_cancel_outside_window(template, sweeps, now):
    assert await sweeps.auto_cancel_templates(now) == 0
    assert TemplateRepository.get_confirmation(template.id, WEDNESDAY) is None


@pytest.mark.asyncio
async def test_booking_reminder_sent_once(boat, anna, anna_actor, sweeps, notifier, now):
    BookingService.create(
        boat.id, anna.id, datetime(2024, 6, 10, 9, 0), datetime(2024, 6, 10, 10, 0), anna_actor, now
    )

    assert await sweeps.send_booking_reminders(datetime(2024, 6, 10, 7, 0)) == 0
    assert await sweeps.send_booking_reminders(datetime(2024, 6, 10, 8, 0)) == 1
    assert await sweeps.send_booking_reminders(datetime(2024, 6, 10, 8, 1)) == 0
    assert notifier.titles(anna.id) == ['Скоро выход']


@pytest.mark.asyncio
async def test_run_all(template, boat2, boris, boris_actor, sweeps, notifier, now):
    BookingService.create(
        boat2.id, boris.id, datetime(2024, 6, 10, 8, 0), datetime(2024, 6, 10, 9, 0),
        boris_actor, now
    )

    report = await sweeps.run_all(datetime(2024, 6, 10, 9, 5))

    assert report.transitioned == 1
    assert report.usage_notified == 1
    assert report.confirmations_created == 1
    assert report.confirmations_notified == 1
    assert report.auto_cancelled == 0
    assert report.reminders_sent == 0


class SlowNotifier:
    """Отправка уступает управление циклу событий, как настоящий запрос к Telegram"""

    def __init__(self):
        self.sent = []
        self.overlapped = False
        self._in_flight = 0

    async def notify(self, member_id, notification, reply_markup=None):
        self._in_flight += 1
        self.overlapped = self.overlapped or self._in_flight > 1
        await asyncio.sleep(0.01)
        self.sent.append((member_id, notification))
        self._in_flight -= 1
        return True


class StubMessage:
    def __init__(self):
        self.answers = []

    async def answer(self, text, **kwargs):
        self.answers.append(text)


@pytest.mark.asyncio
async def test_concurrent_template_sweeps_notify_once(template, anna, now):
    notifier = SlowNotifier()
    sweeps = ConfirmationScheduler(notifier)

    results = await asyncio.gather(
        sweeps.request_template_confirmations(now),
        sweeps.request_template_confirmations(now),
    )

    assert sorted(results) == [(0, 0), (1, 1)]
    assert len(notifier.sent) == 1
    assert not notifier.overlapped


@pytest.mark.asyncio
async def test_manual_run_waits_for_scheduled_sweep(template, boat2, boris, boris_actor, now):
    BookingService.create(
        boat2.id, boris.id, datetime(2024, 6, 10, 8, 0), datetime(2024, 6, 10, 9, 0),
        boris_actor, now
    )
    notifier = SlowNotifier()
    sweeps = ConfirmationScheduler(notifier)
    later = datetime(2024, 6, 10, 9, 5)

    sweeps.transition_usage(later)
    usage_sent, report = await asyncio.gather(
        sweeps.notify_pending_usage(),
        sweeps.run_all(later),
    )

    assert usage_sent + report.usage_notified == 1
    assert report.confirmations_notified == 1
    assert len(notifier.sent) == 2
    assert not notifier.overlapped
    assert not sweeps.running


@pytest.mark.asyncio
async def test_manual_sweep_refused_while_running(sweeps, notifier):
    message = StubMessage()

    async with sweeps.lock:
        assert sweeps.running
        await run_sweep(message, sweeps)

    assert message.answers == ["⏳ Проверки уже выполняются, попробуйте позже"]
    assert notifier.sent == []

    await run_sweep(message, sweeps)
    assert message.answers[-1].startswith("🔄 Проверки выполнены")


@pytest.mark.asyncio
async def test_skipped_occurrence_not_auto_cancelled(template, anna, anna_actor, sweeps,
                                                     notifier, now):
    await sweeps.request_template_confirmations(now)
    TemplateService.skip_occurrence(template.id, anna_actor, WEDNESDAY, now=now)

    assert TemplateRepository.get_confirmation(template.id, WEDNESDAY).status == (
        CONFIRMATION_CANCELLED
    )
    assert await sweeps.auto_cancel_templates(DEADLINE) == 0
    assert notifier.titles(anna.id) == ['Шаблонная бронь ждёт подтверждения']


@pytest.mark.asyncio
async def test_transition_respects_fractional_seconds(boat, anna, anna_actor, sweeps, now):
    booking = BookingService.create(
        boat.id, anna.id, datetime(2024, 6, 10, 8, 0), datetime(2024, 6, 10, 9, 0), anna_actor, now
    )

    assert sweeps.transition_usage(datetime(2024, 6, 10, 9, 0)) == 0
    assert sweeps.transition_usage(datetime(2024, 6, 10, 9, 0, 0, 500000)) == 1
    assert BookingRepository.get_booking_by_id(booking.id).usage_status == 'pending'
