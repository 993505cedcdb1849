"""
Клавиатуры для Telegram бота
"""
from datetime import date, datetime
from typing import Iterable, List, Tuple

from aiogram.types import InlineKeyboardMarkup, ReplyKeyboardMarkup, KeyboardButton
from aiogram.utils.keyboard import InlineKeyboardBuilder

from database.models import Boat, Booking, BookingTemplate, USAGE_PENDING
from utils.time_utils import format_date, format_duration, format_interval, format_time


def get_main_menu_keyboard(is_admin: bool = False) -> ReplyKeyboardMarkup:
    """Главное меню"""
    buttons = [
        [KeyboardButton(text="🚣 Забронировать лодку")],
        [KeyboardButton(text="📋 Мои бронирования")],
        [KeyboardButton(text="🔁 Шаблонные выходы")],
    ]

    if is_admin:
        buttons.append([KeyboardButton(text="⚙️ Админ-панель")])

    return ReplyKeyboardMarkup(keyboard=buttons, resize_keyboard=True)


def get_dates_keyboard(dates: List[datetime]) -> InlineKeyboardMarkup:
    """Клавиатура выбора даты"""
    builder = InlineKeyboardBuilder()

    for day in dates:
        builder.button(
            text=format_date(day),
            callback_data=f"date:{day.strftime('%Y-%m-%d')}"
        )

    builder.button(text="❌ Отмена", callback_data="cancel")
    builder.adjust(1)

    return builder.as_markup()


def get_times_keyboard(times: List[datetime]) -> InlineKeyboardMarkup:
    """Клавиатура выбора времени начала"""
    builder = InlineKeyboardBuilder()

    for slot in times:
        builder.button(
            text=format_time(slot),
            callback_data=f"time:{slot.strftime('%Y-%m-%d-%H-%M')}"
        )

    builder.adjust(4)
    nav = InlineKeyboardBuilder()
    nav.button(text="◀️ Назад", callback_data="back_to_date")
    nav.button(text="❌ Отмена", callback_data="cancel")
    builder.attach(nav)

    return builder.as_markup()


def get_duration_keyboard(durations: List[int]) -> InlineKeyboardMarkup:
    """Клавиатура выбора длительности (минуты)"""
    builder = InlineKeyboardBuilder()

    for minutes in durations:
        builder.button(text=format_duration(minutes), callback_data=f"duration:{minutes}")

    builder.adjust(2)
    nav = InlineKeyboardBuilder()
    nav.button(text="◀️ Назад", callback_data="back_to_time")
    nav.button(text="❌ Отмена", callback_data="cancel")
    builder.attach(nav)

    return builder.as_markup()


def get_boats_keyboard(boats: List[Boat], selected: Iterable[int]) -> InlineKeyboardMarkup:
    """Клавиатура выбора лодок: можно отметить несколько"""
    selected = set(selected)
    builder = InlineKeyboardBuilder()

    for boat in boats:
        mark = "✅ " if boat.id in selected else ""
        builder.button(text=f"{mark}{boat.name}", callback_data=f"boat:{boat.id}")

    builder.adjust(2)
    nav = InlineKeyboardBuilder()
    if selected:
        nav.button(text=f"➡️ Далее ({len(selected)})", callback_data="boats_done")
    nav.button(text="◀️ Назад", callback_data="back_to_duration")
    nav.button(text="❌ Отмена", callback_data="cancel")
    nav.adjust(1)
    builder.attach(nav)

    return builder.as_markup()


def get_confirmation_keyboard() -> InlineKeyboardMarkup:
    """Клавиатура подтверждения бронирования"""
    builder = InlineKeyboardBuilder()

    builder.button(text="✅ Подтвердить", callback_data="confirm_booking")
    builder.button(text="◀️ Изменить", callback_data="back_to_boats")
    builder.button(text="❌ Отмена", callback_data="cancel")
    builder.adjust(1)

    return builder.as_markup()


def get_bookings_keyboard(bookings: List[Booking]) -> InlineKeyboardMarkup:
    """Клавиатура списка бронирований пользователя"""
    builder = InlineKeyboardBuilder()

    for booking in bookings:
        mark = "❓" if booking.usage_status == USAGE_PENDING else "🗓"
        text = f"{mark} {format_date(booking.start_time)} {format_time(booking.start_time)}"
        builder.button(text=text, callback_data=f"show_booking:{booking.id}")

    builder.button(text="🏠 Главное меню", callback_data="main_menu")
    builder.adjust(1)

    return builder.as_markup()


def get_booking_actions_keyboard(booking: Booking, assessed: bool = False) -> InlineKeyboardMarkup:
    """Клавиатура действий с бронированием"""
    builder = InlineKeyboardBuilder()

    if booking.usage_status == USAGE_PENDING:
        builder.button(text="✅ Выход состоялся", callback_data=f"usage:confirmed:{booking.id}")
        builder.button(text="🚫 Не состоялся", callback_data=f"usage:cancelled:{booking.id}")
    else:
        if not assessed:
            builder.button(text="📝 Оценка рисков", callback_data=f"risk:{booking.id}")
        builder.button(text="🗑 Отменить бронь", callback_data=f"cancel_booking:{booking.id}")
    builder.button(text="◀️ Назад", callback_data="my_bookings")
    builder.adjust(1)

    return builder.as_markup()


def get_usage_keyboard(booking_id: int) -> InlineKeyboardMarkup:
    """Подтверждение, состоялся ли выход"""
    builder = InlineKeyboardBuilder()

    builder.button(text="✅ Выход состоялся", callback_data=f"usage:confirmed:{booking_id}")
    builder.button(text="🚫 Не состоялся", callback_data=f"usage:cancelled:{booking_id}")
    builder.adjust(2)

    return builder.as_markup()


def get_template_confirmation_keyboard(template_id: int, day: date) -> InlineKeyboardMarkup:
    """Подтверждение шаблонного выхода"""
    builder = InlineKeyboardBuilder()
    key = f"{template_id}:{day.isoformat()}"

    builder.button(text="✅ Подтвердить", callback_data=f"tpl:confirmed:{key}")
    builder.button(text="🚫 Отменить", callback_data=f"tpl:cancelled:{key}")
    builder.adjust(2)

    return builder.as_markup()


def get_template_occurrences_keyboard(
    occurrences: List[Tuple[BookingTemplate, date]]
) -> InlineKeyboardMarkup:
    """Ближайшие шаблонные выходы участника"""
    builder = InlineKeyboardBuilder()

    for template, day in occurrences:
        key = f"{template.id}:{day.isoformat()}"
        label = format_interval(template.start_on(day), template.end_on(day))
        builder.button(text=f"✅ {label}", callback_data=f"tpl:confirmed:{key}")
        builder.button(text="🚫", callback_data=f"tpl:cancelled:{key}")
        builder.button(text="⏭", callback_data=f"tpl_skip:{key}")

    builder.button(text="🏠 Главное меню", callback_data="main_menu")
    builder.adjust(*([3] * len(occurrences)), 1)

    return builder.as_markup()


def get_admin_keyboard() -> InlineKeyboardMarkup:
    """Клавиатура админ-панели"""
    builder = InlineKeyboardBuilder()

    builder.button(text="📋 Расписание на сегодня", callback_data="admin_today")
    builder.button(text="🔄 Запустить проверки", callback_data="admin_sweep")
    builder.button(text="🏠 Главное меню", callback_data="main_menu")
    builder.adjust(1)

    return builder.as_markup()
