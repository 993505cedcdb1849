"""
Обработчики команд и сообщений участников клуба
"""
import logging
from datetime import date, datetime, timedelta
from typing import List, Optional

from aiogram import Router, F
from aiogram.filters import Command, CommandObject
from aiogram.types import Message, CallbackQuery
from aiogram.fsm.context import FSMContext

from database.models import Actor, Member, CONFIRMATION_CONFIRMED, RISK_FIELDS
from database.repository import BoatRepository, BookingRepository, RiskAssessmentRepository
from keyboards.keyboards import (
    get_main_menu_keyboard, get_dates_keyboard, get_times_keyboard,
    get_duration_keyboard, get_boats_keyboard, get_confirmation_keyboard,
    get_bookings_keyboard, get_booking_actions_keyboard,
    get_template_occurrences_keyboard
)
from services.bookings import BookingService
from services.exceptions import BookingError, ConflictError
from services.members import MemberService
from services.notifier import TelegramNotifier
from services.risk_assessments import RISK_QUESTIONS, RiskAssessmentService
from services.templates import TemplateService
from states.booking_states import BookingStates, RegistrationStates, RiskAssessmentStates
from utils.time_utils import (
    get_available_dates, get_available_times, get_durations,
    format_datetime, format_duration, format_interval
)

logger = logging.getLogger(__name__)
router = Router()


async def ensure_member(event, member: Optional[Member]) -> bool:
    """Действия доступны только привязанным участникам"""
    if member:
        return True
    text = "⚠️ Сначала привяжите аккаунт: отправьте /start"
    if isinstance(event, CallbackQuery):
        await event.answer(text, show_alert=True)
    else:
        await event.answer(text)
    return False


@router.message(Command("start"))
async def cmd_start(message: Message, state: FSMContext, member: Optional[Member], actor: Actor):
    """Обработка команды /start"""
    await state.clear()

    if member is None:
        await message.answer(
            "👋 Добро пожаловать в бот бронирования лодок клуба!\n\n"
            "Чтобы начать, отправьте e-mail, под которым вы состоите в клубе."
        )
        await state.set_state(RegistrationStates.entering_email)
        return

    await message.answer(
        f"👋 {member.name}, добро пожаловать!\n\n"
        f"Здесь вы можете:\n"
        f"🚣 Забронировать одну или несколько лодок\n"
        f"📋 Просмотреть и подтвердить свои выходы\n"
        f"🔁 Подтвердить или пропустить шаблонные выходы\n"
        f"📝 Заполнить оценку рисков выхода: /risk <id брони>\n\n"
        f"Выберите действие:",
        reply_markup=get_main_menu_keyboard(actor.is_admin)
    )


@router.message(RegistrationStates.entering_email, F.text)
async def process_email(message: Message, state: FSMContext):
    """Привязка Telegram по e-mail из списка допуска"""
    try:
        member = MemberService.link_by_email(message.text, message.from_user.id)
    except BookingError as e:
        await message.answer(f"⚠️ {e}\n\nПопробуйте ещё раз или обратитесь к администратору.")
        return

    await state.clear()
    actor = MemberService.actor_for(member, message.from_user.id)
    await message.answer(
        f"✅ Готово, {member.name}! Аккаунт привязан.",
        reply_markup=get_main_menu_keyboard(actor.is_admin)
    )


@router.message(F.text == "🚣 Забронировать лодку")
async def start_booking(message: Message, state: FSMContext, member: Optional[Member], actor: Actor):
    """Начало процесса бронирования"""
    await state.clear()
    if not await ensure_member(message, member):
        return
    if actor.is_guest:
        await message.answer("⚠️ Гостевой доступ только для просмотра")
        return

    await message.answer(
        "📅 Выберите дату:",
        reply_markup=get_dates_keyboard(get_available_dates())
    )
    await state.set_state(BookingStates.choosing_date)


@router.callback_query(F.data.startswith("date:"), BookingStates.choosing_date)
async def process_date(callback: CallbackQuery, state: FSMContext):
    """Обработка выбора даты"""
    selected_date = datetime.strptime(callback.data.split(":")[1], "%Y-%m-%d")
    times = get_available_times(selected_date)

    if not times:
        await callback.answer("На эту дату нет доступных слотов", show_alert=True)
        return

    await state.update_data(selected_date=selected_date)
    await callback.message.edit_text(
        "🕐 Выберите время начала:",
        reply_markup=get_times_keyboard(times)
    )
    await state.set_state(BookingStates.choosing_time)
    await callback.answer()


@router.callback_query(F.data.startswith("time:"), BookingStates.choosing_time)
async def process_time(callback: CallbackQuery, state: FSMContext):
    """Обработка выбора времени"""
    selected_time = datetime.strptime(callback.data.split(":", 1)[1], "%Y-%m-%d-%H-%M")
    await state.update_data(selected_time=selected_time)

    await callback.message.edit_text(
        "⏱ Выберите длительность:",
        reply_markup=get_duration_keyboard(get_durations(selected_time))
    )
    await state.set_state(BookingStates.choosing_duration)
    await callback.answer()


@router.callback_query(F.data.startswith("duration:"), BookingStates.choosing_duration)
async def process_duration(callback: CallbackQuery, state: FSMContext):
    """Обработка выбора длительности"""
    minutes = int(callback.data.split(":")[1])
    data = await state.get_data()
    end_time = data['selected_time'] + timedelta(minutes=minutes)

    await state.update_data(duration=minutes, end_time=end_time, boat_ids=[])
    await callback.message.edit_text(
        "🚣 Выберите одну или несколько лодок:",
        reply_markup=get_boats_keyboard(BoatRepository.get_all_boats(), [])
    )
    await state.set_state(BookingStates.choosing_boats)
    await callback.answer()


@router.callback_query(F.data.startswith("boat:"), BookingStates.choosing_boats)
async def toggle_boat(callback: CallbackQuery, state: FSMContext):
    """Отметка лодки в списке"""
    boat_id = int(callback.data.split(":")[1])
    data = await state.get_data()

    boat_ids = list(data.get('boat_ids', []))
    if boat_id in boat_ids:
        boat_ids.remove(boat_id)
    else:
        boat_ids.append(boat_id)
    await state.update_data(boat_ids=boat_ids)

    await callback.message.edit_reply_markup(
        reply_markup=get_boats_keyboard(BoatRepository.get_all_boats(), boat_ids)
    )
    await callback.answer()


@router.callback_query(F.data == "boats_done", BookingStates.choosing_boats)
async def process_boats(callback: CallbackQuery, state: FSMContext):
    """Подтверждение выбора лодок"""
    data = await state.get_data()
    names = [
        boat.name for boat in BoatRepository.get_all_boats() if boat.id in data['boat_ids']
    ]

    await callback.message.edit_text(
        f"✅ Подтверждение бронирования:\n\n"
        f"📅 {format_datetime(data['selected_time'])}\n"
        f"⏱ Длительность: {format_duration(data['duration'])}\n"
        f"🚣 Лодки: {', '.join(names)}\n\n"
        f"Подтвердите бронирование:",
        reply_markup=get_confirmation_keyboard()
    )
    await state.set_state(BookingStates.confirming)
    await callback.answer()


@router.callback_query(F.data == "confirm_booking", BookingStates.confirming)
async def confirm_booking(callback: CallbackQuery, state: FSMContext,
                          member: Optional[Member], actor: Actor):
    """Создание бронирований по выбранным лодкам"""
    if not await ensure_member(callback, member):
        return
    data = await state.get_data()

    try:
        result = BookingService.create_many(
            data['boat_ids'], member.id, data['selected_time'], data['end_time'], actor
        )
    except BookingError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    lines = []
    for booking in result.created:
        boat = BoatRepository.get_boat_by_id(booking.boat_id)
        lines.append(f"✅ {boat.name}: бронь #{booking.id}")
    for boat_id, error in result.failed.items():
        boat = BoatRepository.get_boat_by_id(boat_id)
        name = boat.name if boat else f"Лодка #{boat_id}"
        reason = "занята" if isinstance(error, ConflictError) else str(error)
        lines.append(f"⚠️ {name}: {reason}")

    interval = format_interval(data['selected_time'], data['end_time'])
    await callback.message.edit_text(
        f"{'✅ Бронирование создано' if result.created else '⚠️ Бронирование не создано'}\n\n"
        f"📅 {interval}\n\n" + "\n".join(lines)
    )

    if result.created:
        notifier = TelegramNotifier(callback.bot)
        await notifier.notify_admins(
            f"📌 Новое бронирование: {member.name}\n📅 {interval}\n" + "\n".join(lines),
            exclude_id=callback.from_user.id
        )

    await callback.message.answer(
        "Выберите действие:",
        reply_markup=get_main_menu_keyboard(actor.is_admin)
    )
    await state.clear()
    await callback.answer()


async def show_my_bookings(message: Message, member: Member, edit: bool = False):
    bookings = BookingService.list_member_bookings(member.id)
    if not bookings:
        text, markup = "У вас пока нет активных бронирований.", None
    else:
        text, markup = "📋 Ваши бронирования:", get_bookings_keyboard(bookings)

    if edit:
        await message.edit_text(text, reply_markup=markup)
    else:
        await message.answer(text, reply_markup=markup)


@router.message(F.text == "📋 Мои бронирования")
async def my_bookings(message: Message, member: Optional[Member]):
    """Просмотр бронирований участника"""
    if not await ensure_member(message, member):
        return
    await show_my_bookings(message, member)


@router.callback_query(F.data == "my_bookings")
async def callback_my_bookings(callback: CallbackQuery, member: Optional[Member]):
    """Возврат к списку бронирований"""
    if not await ensure_member(callback, member):
        return
    await show_my_bookings(callback.message, member, edit=True)
    await callback.answer()


@router.callback_query(F.data.startswith("show_booking:"))
async def show_booking_details(callback: CallbackQuery, member: Optional[Member], actor: Actor):
    """Показать детали бронирования"""
    booking = BookingRepository.get_booking_by_id(int(callback.data.split(":")[1]))

    if not booking or not member or (booking.member_id != member.id and not actor.is_admin):
        await callback.answer("Бронирование не найдено", show_alert=True)
        return

    boat = BoatRepository.get_boat_by_id(booking.boat_id)
    assessment = RiskAssessmentRepository.get_for_booking(booking.id)
    risk = f"заполнена (#{assessment.id})" if assessment else "не заполнена"
    await callback.message.edit_text(
        f"📋 Бронирование #{booking.id}\n\n"
        f"📅 {format_interval(booking.start_time, booking.end_time)}\n"
        f"⏱ Длительность: {format_duration(booking.duration_minutes)}\n"
        f"🚣 Лодка: {boat.name if boat else booking.boat_id}\n"
        f"📝 Оценка рисков: {risk}",
        reply_markup=get_booking_actions_keyboard(booking, assessed=assessment is not None)
    )
    await callback.answer()


@router.callback_query(F.data.startswith("cancel_booking:"))
async def cancel_booking(callback: CallbackQuery, actor: Actor):
    """Удаление бронирования участником"""
    booking_id = int(callback.data.split(":")[1])
    try:
        booking = BookingService.delete(booking_id, actor)
    except BookingError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    notifier = TelegramNotifier(callback.bot)
    await notifier.notify_admins(
        f"❌ Бронирование #{booking_id} отменено участником\n"
        f"📅 {format_interval(booking.start_time, booking.end_time)}",
        exclude_id=callback.from_user.id
    )
    await callback.message.edit_text("✅ Бронирование успешно отменено")
    await callback.answer()


@router.callback_query(F.data.startswith("usage:"))
async def resolve_usage(callback: CallbackQuery, actor: Actor):
    """Подтверждение, состоялся ли выход"""
    _, outcome, booking_id = callback.data.split(":")
    try:
        BookingService.resolve_usage(int(booking_id), actor, outcome)
    except BookingError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    text = "✅ Спасибо, выход подтверждён" if outcome == 'confirmed' else "🚫 Отмечено: выход не состоялся"
    await callback.message.edit_text(text)
    await callback.answer()


async def start_risk_assessment(message: Message, state: FSMContext, actor: Actor,
                                booking_ids: List[int]):
    """Начало анкеты оценки рисков для броней одного выхода"""
    try:
        bookings = RiskAssessmentService.check_bookings(actor, booking_ids)
    except BookingError as e:
        await message.answer(f"⚠️ {e}")
        return

    await state.set_state(RiskAssessmentStates.answering)
    await state.update_data(risk_booking_ids=[booking.id for booking in bookings], risk_answers={})
    await message.answer(
        f"📝 Оценка рисков выхода\n"
        f"📅 {format_interval(bookings[0].start_time, bookings[0].end_time)}\n"
        f"Броней: {len(bookings)}\n\n"
        f"Ответьте на {len(RISK_FIELDS)} вопросов. Прервать: /start"
    )
    await message.answer(f"1/{len(RISK_FIELDS)}. {RISK_QUESTIONS[RISK_FIELDS[0]]}")


@router.message(Command("risk"))
async def cmd_risk(message: Message, command: CommandObject, state: FSMContext,
                   member: Optional[Member], actor: Actor):
    """Команда /risk <id брони>[,<id брони>...]"""
    if not await ensure_member(message, member):
        return

    parts = [part.strip() for part in (command.args or '').split(',') if part.strip()]
    if not parts or not all(part.isdigit() for part in parts):
        await message.answer(
            "⚠️ Использование: /risk <id брони>[,<id брони>...]\n\nПример: /risk 12,13"
        )
        return
    await start_risk_assessment(message, state, actor, [int(part) for part in parts])


@router.callback_query(F.data.startswith("risk:"))
async def callback_risk(callback: CallbackQuery, state: FSMContext,
                        member: Optional[Member], actor: Actor):
    """Оценка рисков из карточки бронирования"""
    if not await ensure_member(callback, member):
        return
    await callback.answer()
    await start_risk_assessment(callback.message, state, actor, [int(callback.data.split(":")[1])])


@router.message(RiskAssessmentStates.answering, F.text)
async def process_risk_answer(message: Message, state: FSMContext, actor: Actor):
    """Ответ на очередной вопрос анкеты"""
    data = await state.get_data()
    answers = dict(data.get('risk_answers', {}))
    answers[RISK_FIELDS[len(answers)]] = message.text.strip()

    if len(answers) < len(RISK_FIELDS):
        await state.update_data(risk_answers=answers)
        field = RISK_FIELDS[len(answers)]
        await message.answer(f"{len(answers) + 1}/{len(RISK_FIELDS)}. {RISK_QUESTIONS[field]}")
        return

    await state.clear()
    try:
        assessment = RiskAssessmentService.submit(actor, data['risk_booking_ids'], answers)
    except BookingError as e:
        await message.answer(f"⚠️ {e}", reply_markup=get_main_menu_keyboard(actor.is_admin))
        return

    await RiskAssessmentService.notify_admins(
        assessment, TelegramNotifier(message.bot), exclude_id=message.from_user.id
    )
    await message.answer(
        f"✅ Оценка рисков #{assessment.id} сохранена, администраторы уведомлены",
        reply_markup=get_main_menu_keyboard(actor.is_admin)
    )


@router.message(F.text == "🔁 Шаблонные выходы")
async def my_template_occurrences(message: Message, member: Optional[Member]):
    """Ближайшие шаблонные выходы участника"""
    if not await ensure_member(message, member):
        return

    occurrences = TemplateService.upcoming_occurrences(member.id)
    if not occurrences:
        await message.answer("На ближайшую неделю шаблонных выходов нет.")
        return

    await message.answer(
        "🔁 Ваши шаблонные выходы на неделю:\n\n"
        "✅ подтвердить • 🚫 отменить • ⏭ пропустить один раз",
        reply_markup=get_template_occurrences_keyboard(occurrences)
    )


@router.callback_query(F.data.startswith("tpl:"))
async def resolve_template(callback: CallbackQuery, actor: Actor):
    """Подтверждение или отмена шаблонного выхода"""
    _, outcome, template_id, day = callback.data.split(":")
    occurrence_date = date.fromisoformat(day)
    try:
        resolution = TemplateService.resolve(int(template_id), actor, occurrence_date, outcome)
    except BookingError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    if outcome == CONFIRMATION_CONFIRMED:
        text = f"✅ Выход {occurrence_date:%d.%m} подтверждён"
        if resolution.booking_id:
            text += f", бронь #{resolution.booking_id}"
    else:
        text = f"🚫 Выход {occurrence_date:%d.%m} отменён"
    await callback.message.edit_text(text)
    await callback.answer()


@router.callback_query(F.data.startswith("tpl_skip:"))
async def skip_template(callback: CallbackQuery, actor: Actor):
    """Разовый пропуск шаблонного выхода"""
    _, template_id, day = callback.data.split(":")
    occurrence_date = date.fromisoformat(day)
    try:
        TemplateService.skip_occurrence(int(template_id), actor, occurrence_date)
    except BookingError as e:
        await callback.answer(f"⚠️ {e}", show_alert=True)
        return

    await callback.message.edit_text(f"⏭ Выход {occurrence_date:%d.%m} пропущен")
    await callback.answer()


# Навигация назад
@router.callback_query(F.data == "back_to_date")
async def back_to_date(callback: CallbackQuery, state: FSMContext):
    """Возврат к выбору даты"""
    await callback.message.edit_text(
        "📅 Выберите дату:",
        reply_markup=get_dates_keyboard(get_available_dates())
    )
    await state.set_state(BookingStates.choosing_date)
    await callback.answer()


@router.callback_query(F.data == "back_to_time")
async def back_to_time(callback: CallbackQuery, state: FSMContext):
    """Возврат к выбору времени"""
    data = await state.get_data()
    await callback.message.edit_text(
        "🕐 Выберите время начала:",
        reply_markup=get_times_keyboard(get_available_times(data['selected_date']))
    )
    await state.set_state(BookingStates.choosing_time)
    await callback.answer()


@router.callback_query(F.data == "back_to_duration")
async def back_to_duration(callback: CallbackQuery, state: FSMContext):
    """Возврат к выбору длительности"""
    data = await state.get_data()
    await callback.message.edit_text(
        "⏱ Выберите длительность:",
        reply_markup=get_duration_keyboard(get_durations(data['selected_time']))
    )
    await state.set_state(BookingStates.choosing_duration)
    await callback.answer()


@router.callback_query(F.data == "back_to_boats")
async def back_to_boats(callback: CallbackQuery, state: FSMContext):
    """Возврат к выбору лодок"""
    data = await state.get_data()
    await callback.message.edit_text(
        "🚣 Выберите одну или несколько лодок:",
        reply_markup=get_boats_keyboard(BoatRepository.get_all_boats(), data.get('boat_ids', []))
    )
    await state.set_state(BookingStates.choosing_boats)
    await callback.answer()


@router.callback_query(F.data == "main_menu")
async def callback_main_menu(callback: CallbackQuery, state: FSMContext, actor: Actor):
    """Возврат в главное меню"""
    await state.clear()
    await callback.message.answer(
        "🏠 Главное меню",
        reply_markup=get_main_menu_keyboard(actor.is_admin)
    )
    await callback.answer()


@router.callback_query(F.data == "cancel")
async def cancel_booking_process(callback: CallbackQuery, state: FSMContext, actor: Actor):
    """Отмена процесса бронирования"""
    await state.clear()
    await callback.message.edit_text("❌ Бронирование отменено")
    await callback.message.answer(
        "Выберите действие:",
        reply_markup=get_main_menu_keyboard(actor.is_admin)
    )
    await callback.answer()
