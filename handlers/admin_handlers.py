"""
Обработчики команд администраторов
"""
import logging
from datetime import date, datetime
from typing import List

from aiogram import Router, F
from aiogram.filters import Command, CommandObject
from aiogram.types import Message, CallbackQuery

from database.models import Actor, Boat, ROLE_COORDINATOR, normalize_usage_type
from database.repository import BoatRepository, MemberRepository, TemplateRepository
from keyboards.keyboards import get_admin_keyboard
from services.bookings import BookingService
from services.confirmations import ConfirmationScheduler
from services.exceptions import BookingError, NotFoundError
from services.members import MemberService
from services.notifier import Notification, TelegramNotifier
from services.race_events import RaceEventService
from services.schedule import get_day_schedule, group_by_boat
from services.templates import TemplateService, WEEKDAY_NAMES
from utils.time_utils import format_date, format_interval, format_time, parse_date, parse_time

logger = logging.getLogger(__name__)
router = Router()

MESSAGE_LIMIT = 4000


async def send_long(message: Message, header: str, blocks: List[str], footer: str = ""):
    """Отправка списка блоков с разбиением на сообщения"""
    parts = []
    current = header
    for block in blocks:
        if len(current) + len(block) > MESSAGE_LIMIT:
            parts.append(current)
            current = block
        else:
            current += block
    parts.append(current + footer)

    for part in parts:
        await message.answer(part)


async def deny(event) -> None:
    if isinstance(event, CallbackQuery):
        await event.answer("⚠️ У вас нет доступа", show_alert=True)
    else:
        await event.answer("⚠️ У вас нет доступа к этой команде")


@router.message(F.text == "⚙️ Админ-панель")
async def admin_panel(message: Message, actor: Actor):
    """Открытие админ-панели"""
    if not actor.is_admin:
        await message.answer("⚠️ У вас нет доступа к админ-панели")
        return

    await message.answer(
        "⚙️ Админ-панель\n\n"
        "/day YYYY-MM-DD - расписание на дату\n"
        "/cancel <id> - отменить бронь\n"
        "/move <id> YYYY-MM-DD HH:MM HH:MM [код лодки] - перенести бронь\n"
        "/templates <0-6> - шаблоны на день недели\n"
        "/addtemplate <0-6> HH:MM HH:MM <e-mail> [код лодки] - новый шаблон\n"
        "/deltemplate <id> - удалить шаблон\n"
        "/grant <код лодки> <e-mail> - допуск к лодке\n"
        "/allow <e-mail> <роль> <имя> - добавить в список допуска\n"
        "/addboat <код> <тип> <название> - добавить лодку\n"
        "/race YYYY-MM-DD <коды лодок через запятую> [название] - гонка\n"
        "/delrace <id> - удалить гонку\n"
        "/sweep - запустить фоновые проверки\n\n"
        "Выберите действие:",
        reply_markup=get_admin_keyboard()
    )


def race_lines(day: date) -> str:
    """Гонки дня с лодками"""
    lines = ""
    for event in RaceEventService.get_events_on(day):
        boats = [BoatRepository.get_boat_by_id(boat_id) for boat_id in event.boat_ids]
        names = ', '.join(boat.name for boat in boats if boat)
        lines += f"🏁 {event.title} (#{event.id}): {names}\n"
    return lines


async def show_day_schedule(message: Message, day: date):
    """Расписание дня по лодкам"""
    items = get_day_schedule(day)
    races = race_lines(day)
    if not items:
        await message.answer(
            f"📋 {format_date(day)}: бронирований нет" + (f"\n\n{races}" if races else "")
        )
        return

    blocks = []
    for boat_name, boat_items in group_by_boat(items).items():
        block = f"🚣 {boat_name}\n"
        for item in boat_items:
            mark = "🔁" if item.is_template else f"#{item.booking_id}"
            block += (
                f"   {format_time(item.start_time)}–{format_time(item.end_time)} "
                f"{item.member_name} ({mark})\n"
            )
        blocks.append(block + "\n")

    await send_long(
        message, f"📋 Расписание: {format_date(day)}\n\n" + (f"{races}\n" if races else ""), blocks,
        f"Всего: {len(items)}"
    )


@router.message(Command("today"))
async def cmd_today(message: Message, actor: Actor):
    """Команда /today - расписание на сегодня"""
    if not actor.is_admin:
        await deny(message)
        return
    await show_day_schedule(message, datetime.now().date())


@router.callback_query(F.data == "admin_today")
async def callback_today(callback: CallbackQuery, actor: Actor):
    """Callback для расписания на сегодня"""
    if not actor.is_admin:
        await deny(callback)
        return
    await show_day_schedule(callback.message, datetime.now().date())
    await callback.answer()


@router.message(Command("day"))
async def cmd_day(message: Message, command: CommandObject, actor: Actor):
    """Команда /day YYYY-MM-DD - расписание на дату"""
    if not actor.is_admin:
        await deny(message)
        return

    try:
        day = parse_date(command.args.strip()) if command.args else datetime.now().date()
    except ValueError:
        await message.answer("⚠️ Использование: /day YYYY-MM-DD\n\nПример: /day 2024-06-12")
        return
    await show_day_schedule(message, day)


@router.message(Command("cancel"))
async def cmd_cancel(message: Message, command: CommandObject, actor: Actor):
    """Команда /cancel <id> - отмена брони администратором"""
    if not actor.is_admin:
        await deny(message)
        return

    try:
        booking_id = int(command.args.split()[0])
    except (AttributeError, IndexError, ValueError):
        await message.answer("⚠️ Использование: /cancel <id>\n\nПример: /cancel 123")
        return

    try:
        booking = BookingService.delete(booking_id, actor)
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return

    boat = BoatRepository.get_boat_by_id(booking.boat_id)
    interval = format_interval(booking.start_time, booking.end_time)
    await message.answer(
        f"✅ Бронирование #{booking_id} отменено\n\n"
        f"📅 {interval}\n"
        f"🚣 {boat.name if boat else booking.boat_id}"
    )

    notifier = TelegramNotifier(message.bot)
    if booking.member_id and booking.member_id != actor.member_id:
        await notifier.notify(
            booking.member_id,
            Notification(
                title='❌ Бронирование отменено администратором',
                body=f"{interval}\n\nПо вопросам обращайтесь к администрации."
            )
        )
    await notifier.notify_admins(
        f"ℹ️ Администратор @{message.from_user.username or 'без username'} "
        f"отменил бронирование #{booking_id}\n📅 {interval}",
        exclude_id=message.from_user.id
    )


@router.message(Command("move"))
async def cmd_move(message: Message, command: CommandObject, actor: Actor):
    """Команда /move <id> YYYY-MM-DD HH:MM HH:MM [код лодки]"""
    if not actor.is_admin:
        await deny(message)
        return

    args = command.args.split() if command.args else []
    try:
        booking_id = int(args[0])
        day = parse_date(args[1])
        start_time = datetime.combine(day, parse_time(args[2]))
        end_time = datetime.combine(day, parse_time(args[3]))
    except (IndexError, ValueError):
        await message.answer(
            "⚠️ Использование: /move <id> YYYY-MM-DD HH:MM HH:MM [код лодки]\n\n"
            "Пример: /move 12 2024-06-12 09:00 10:30 K1"
        )
        return

    try:
        boat_id = None
        if len(args) > 4:
            boat = BoatRepository.get_boat_by_code(args[4])
            if not boat:
                raise NotFoundError("Лодка", args[4])
            boat_id = boat.id
        booking = BookingService.update(
            booking_id, actor, boat_id=boat_id, start_time=start_time, end_time=end_time
        )
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return

    interval = format_interval(booking.start_time, booking.end_time)
    await message.answer(f"✅ Бронирование #{booking_id} перенесено: {interval}")

    if booking.member_id and booking.member_id != actor.member_id:
        await TelegramNotifier(message.bot).notify(
            booking.member_id,
            Notification(title='🔄 Бронирование перенесено', body=interval)
        )


@router.message(Command("templates"))
async def cmd_templates(message: Message, command: CommandObject, actor: Actor):
    """Команда /templates <0-6> - шаблоны на день недели"""
    if not actor.is_admin:
        await deny(message)
        return

    try:
        weekday = int(command.args.strip())
        if not 0 <= weekday <= 6:
            raise ValueError(weekday)
    except (AttributeError, ValueError):
        await message.answer("⚠️ Использование: /templates <0-6>, где 0 - понедельник")
        return

    templates = TemplateRepository.get_templates_by_weekday(weekday)
    if not templates:
        await message.answer(f"🔁 {WEEKDAY_NAMES[weekday]}: шаблонов нет")
        return

    blocks = [
        f"#{template.id} {template.start_time:%H:%M}–{template.end_time:%H:%M} "
        f"{template.boat_label or 'Любая лодка'}, {template.member_label or 'Участник'}\n"
        for template in templates
    ]
    await send_long(message, f"🔁 {WEEKDAY_NAMES[weekday]}\n\n", blocks)


@router.message(Command("addtemplate"))
async def cmd_add_template(message: Message, command: CommandObject, actor: Actor):
    """Команда /addtemplate <0-6> HH:MM HH:MM <e-mail> [код лодки]"""
    if not actor.is_admin:
        await deny(message)
        return

    args = command.args.split() if command.args else []
    try:
        weekday = int(args[0])
        start_time = parse_time(args[1])
        end_time = parse_time(args[2])
        email = args[3]
    except (IndexError, ValueError):
        await message.answer(
            "⚠️ Использование: /addtemplate <0-6> HH:MM HH:MM <e-mail> [код лодки]\n\n"
            "Пример: /addtemplate 2 08:00 09:00 anna@club.org K1"
        )
        return

    try:
        member = MemberRepository.get_member_by_email(email)
        if not member:
            raise NotFoundError("Участник", email)
        boat_id = None
        if len(args) > 4:
            boat = BoatRepository.get_boat_by_code(args[4])
            if not boat:
                raise NotFoundError("Лодка", args[4])
            boat_id = boat.id
        template = TemplateService.create_template(
            actor, weekday, start_time, end_time, member.id, boat_id
        )
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return

    await message.answer(
        f"✅ Шаблон #{template.id}: {WEEKDAY_NAMES[weekday]} "
        f"{start_time:%H:%M}–{end_time:%H:%M}, {template.boat_label}, {template.member_label}"
    )


@router.message(Command("deltemplate"))
async def cmd_delete_template(message: Message, command: CommandObject, actor: Actor):
    """Команда /deltemplate <id>"""
    if not actor.is_admin:
        await deny(message)
        return

    try:
        template_id = int(command.args.strip())
    except (AttributeError, ValueError):
        await message.answer("⚠️ Использование: /deltemplate <id>")
        return

    try:
        TemplateService.delete_template(template_id, actor)
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return
    await message.answer(f"✅ Шаблон #{template_id} удалён")


@router.message(Command("grant"))
async def cmd_grant(message: Message, command: CommandObject, actor: Actor):
    """Команда /grant <код лодки> <e-mail>"""
    if not actor.is_admin:
        await deny(message)
        return

    args = command.args.split() if command.args else []
    if len(args) != 2:
        await message.answer("⚠️ Использование: /grant <код лодки> <e-mail>")
        return

    try:
        boat, member = MemberService.grant_boat(actor, args[0], args[1])
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return
    await message.answer(f"✅ {member.name} получил(а) допуск к лодке {boat.name}")


@router.message(Command("allow"))
async def cmd_allow(message: Message, command: CommandObject, actor: Actor):
    """Команда /allow <e-mail> <роль> <имя>"""
    if not actor.is_admin:
        await deny(message)
        return

    args = command.args.split(maxsplit=2) if command.args else []
    if len(args) < 3:
        await message.answer(
            f"⚠️ Использование: /allow <e-mail> <роль> <имя>\n\n"
            f"Пример: /allow anna@club.org {ROLE_COORDINATOR} Анна"
        )
        return

    try:
        allowed = MemberService.allow(actor, args[0], args[2], args[1])
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return
    await message.answer(f"✅ {allowed.name} ({allowed.email}) в списке допуска: {allowed.role}")


@router.message(Command("addboat"))
async def cmd_add_boat(message: Message, command: CommandObject, actor: Actor):
    """Команда /addboat <код> <тип> <название>"""
    if not actor.is_admin:
        await deny(message)
        return

    args = command.args.split(maxsplit=2) if command.args else []
    if len(args) < 3:
        await message.answer(
            "⚠️ Использование: /addboat <код> <general|restricted|captains-permission> <название>"
        )
        return

    if BoatRepository.get_boat_by_code(args[0]):
        await message.answer(f"⚠️ Лодка с кодом {args[0]} уже есть")
        return

    boat = Boat(id=None, code=args[0], name=args[2], usage_type=normalize_usage_type(args[1]))
    boat.id = BoatRepository.create_boat(boat)
    logger.info(f"Добавлена лодка {boat.code} ({boat.usage_type})")
    await message.answer(f"✅ Лодка {boat.name} ({boat.code}) добавлена: {boat.usage_type}")


@router.message(Command("race"))
async def cmd_race(message: Message, command: CommandObject, actor: Actor):
    """Команда /race YYYY-MM-DD <коды лодок> [название]"""
    if not actor.is_admin:
        await deny(message)
        return

    args = command.args.split(maxsplit=2) if command.args else []
    if len(args) < 2:
        await message.answer(
            "⚠️ Использование: /race YYYY-MM-DD <коды лодок через запятую> [название]\n\n"
            "Пример: /race 2024-06-15 K1,K2 Весенняя регата"
        )
        return

    try:
        event_date = parse_date(args[0])
    except ValueError:
        await message.answer("⚠️ Неверная дата. Формат: YYYY-MM-DD")
        return

    boat_ids = []
    for code in filter(None, (part.strip() for part in args[1].split(','))):
        boat = BoatRepository.get_boat_by_code(code)
        if not boat:
            await message.answer(f"⚠️ Лодка {code} не найдена")
            return
        boat_ids.append(boat.id)

    try:
        event = RaceEventService.create_event(
            actor, event_date, boat_ids, args[2] if len(args) > 2 else None
        )
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return

    sent = await RaceEventService.notify_conflicts(event, TelegramNotifier(message.bot))
    affected = RaceEventService.affected(event)
    await message.answer(
        f"🏁 Гонка «{event.title}» {event.event_date:%d.%m.%Y} добавлена\n"
        f"Лодок: {len(event.boat_ids)}\n"
        f"Пересекающихся броней: {len(affected)} (уведомлено {sent})"
    )


@router.message(Command("delrace"))
async def cmd_delete_race(message: Message, command: CommandObject, actor: Actor):
    """Команда /delrace <id>"""
    if not actor.is_admin:
        await deny(message)
        return

    if not command.args or not command.args.strip().isdigit():
        await message.answer("⚠️ Использование: /delrace <id гонки>")
        return

    try:
        RaceEventService.delete_event(actor, int(command.args.strip()))
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return
    await message.answer("✅ Гонка удалена")


async def run_sweep(message: Message, sweeps: ConfirmationScheduler):
    """Ручной запуск всех фоновых проверок"""
    if sweeps.running:
        await message.answer("⏳ Проверки уже выполняются, попробуйте позже")
        return

    report = await sweeps.run_all()
    await message.answer(
        f"🔄 Проверки выполнены\n\n"
        f"Ожидают подтверждения выхода: {report.transitioned}\n"
        f"Напоминаний о подтверждении: {report.usage_notified}\n"
        f"Запросов по шаблонам: {report.confirmations_created} "
        f"(отправлено {report.confirmations_notified})\n"
        f"Автоотмен шаблонов: {report.auto_cancelled}\n"
        f"Напоминаний о выходе: {report.reminders_sent}"
    )


@router.message(Command("sweep"))
async def cmd_sweep(message: Message, actor: Actor, sweeps: ConfirmationScheduler):
    """Команда /sweep"""
    if not actor.is_admin:
        await deny(message)
        return
    await run_sweep(message, sweeps)


@router.callback_query(F.data == "admin_sweep")
async def callback_sweep(callback: CallbackQuery, actor: Actor, sweeps: ConfirmationScheduler):
    if not actor.is_admin:
        await deny(callback)
        return
    await callback.answer()
    await run_sweep(callback.message, sweeps)
