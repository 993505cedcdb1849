"""
Состояния для FSM (Finite State Machine)
"""
from aiogram.fsm.state import State, StatesGroup


class BookingStates(StatesGroup):
    """Состояния процесса бронирования"""
    choosing_date = State()
    choosing_time = State()
    choosing_duration = State()
    choosing_boats = State()
    confirming = State()


class RegistrationStates(StatesGroup):
    """Привязка Telegram к участнику клуба"""
    entering_email = State()


class RiskAssessmentStates(StatesGroup):
    """Заполнение оценки рисков выхода"""
    answering = State()
