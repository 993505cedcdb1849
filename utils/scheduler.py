"""
Планировщик периодических задач
"""
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import settings
from services.confirmations import ConfirmationScheduler

logger = logging.getLogger(__name__)


async def usage_job(sweeps: ConfirmationScheduler):
    """Перевод закончившихся броней в ожидание и напоминание подтвердить"""
    try:
        sweeps.transition_usage()
        await sweeps.notify_pending_usage()
    except Exception as e:
        logger.error(f"Ошибка при проверке выходов: {e}", exc_info=True)


async def templates_job(sweeps: ConfirmationScheduler):
    """Запрос подтверждений и автоотмена шаблонных выходов"""
    try:
        await sweeps.request_template_confirmations()
        await sweeps.auto_cancel_templates()
    except Exception as e:
        logger.error(f"Ошибка при проверке шаблонов: {e}", exc_info=True)


async def reminders_job(sweeps: ConfirmationScheduler):
    """Напоминания перед выходом"""
    try:
        sent = await sweeps.send_booking_reminders()
        if sent > 0:
            logger.info(f"Отправлено напоминаний о выходе: {sent}")
    except Exception as e:
        logger.error(f"Ошибка при отправке напоминаний: {e}", exc_info=True)


async def start_scheduler(sweeps: ConfirmationScheduler) -> AsyncIOScheduler:
    """Запуск планировщика задач"""
    scheduler = AsyncIOScheduler()

    jobs = [
        (usage_job, settings.USAGE_SWEEP_MINUTES, 'usage_sweep', 'Подтверждение выходов'),
        (templates_job, settings.TEMPLATE_SWEEP_MINUTES, 'template_sweep', 'Подтверждение шаблонов'),
        (reminders_job, settings.REMINDER_SWEEP_MINUTES, 'reminder_sweep', 'Напоминания о выходе'),
    ]
    for func, minutes, job_id, name in jobs:
        scheduler.add_job(
            func,
            trigger=IntervalTrigger(minutes=minutes),
            args=[sweeps],
            id=job_id,
            name=name,
            max_instances=1,
            coalesce=True,
            replace_existing=True
        )

    scheduler.start()
    logger.info("Планировщик задач запущен")

    return scheduler
