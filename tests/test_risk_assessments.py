from datetime import date, datetime

import pytest

from database.models import RISK_FIELDS
from database.repository import BookingRepository, RiskAssessmentRepository
from services.bookings import BookingService
from services.exceptions import (
    ConflictError, ImmutableStateError, NotFoundError, PermissionDeniedError, ValidationError
)
from services.risk_assessments import RISK_QUESTIONS, RiskAssessmentService

START = datetime(2024, 6, 12, 9, 0)
END = datetime(2024, 6, 12, 10, 0)

ANSWERS = {name: f"ответ: {name}" for name in RISK_FIELDS}


@pytest.fixture
def bookings(boat, boat2, anna, anna_actor, now):
    return [
        BookingService.create(boat.id, anna.id, START, END, anna_actor, now),
        BookingService.create(boat2.id, anna.id, START, END, anna_actor, now),
    ]


def test_every_field_has_question():
    assert set(RISK_QUESTIONS) == set(RISK_FIELDS)


def test_submit_links_all_bookings(bookings, anna, anna_actor):
    ids = [booking.id for booking in bookings]
    assessment = RiskAssessmentService.submit(anna_actor, ids, ANSWERS)

    assert assessment.member_id == anna.id
    assert assessment.coordinator_name == anna.name
    assert assessment.session_date == date(2024, 6, 12)
    assert assessment.session_time == '09:00'
    assert assessment.booking_ids == sorted(ids)
    assert assessment.answers == ANSWERS
    for booking_id in ids:
        assert RiskAssessmentService.get_for_booking(anna_actor, booking_id).id == assessment.id


def test_one_assessment_per_booking(bookings, anna_actor):
    RiskAssessmentService.submit(anna_actor, [bookings[0].id], ANSWERS)

    with pytest.raises(ConflictError) as exc_info:
        RiskAssessmentService.submit(anna_actor, [bookings[0].id, bookings[1].id], ANSWERS)
    assert exc_info.value.conflicts[0].booking_id == bookings[0].id
    # Вторая бронь не привязалась к отклонённой анкете
    assert RiskAssessmentRepository.get_for_booking(bookings[1].id) is None


def test_unique_link_enforced_by_db(bookings, anna_actor, monkeypatch):
    RiskAssessmentService.submit(anna_actor, [bookings[0].id], ANSWERS)
    monkeypatch.setattr(
        RiskAssessmentRepository, 'get_assessed_booking_ids',
        staticmethod(lambda booking_ids: set())
    )

    with pytest.raises(ConflictError):
        RiskAssessmentService.submit(anna_actor, [bookings[1].id, bookings[0].id], ANSWERS)
    assert RiskAssessmentRepository.get_for_booking(bookings[1].id) is None


def test_submit_requires_all_answers(bookings, anna_actor):
    answers = dict(ANSWERS, river_level='  ')
    with pytest.raises(ValidationError) as exc_info:
        RiskAssessmentService.submit(anna_actor, [bookings[0].id], answers)
    assert 'river_level' in str(exc_info.value)


def test_submit_permissions(bookings, boris_actor, guest, admin):
    with pytest.raises(PermissionDeniedError):
        RiskAssessmentService.submit(boris_actor, [bookings[0].id], ANSWERS)
    with pytest.raises(PermissionDeniedError):
        RiskAssessmentService.submit(guest, [bookings[0].id], ANSWERS)

    # Администратор может заполнить оценку за участника
    assessment = RiskAssessmentService.submit(
        admin, [bookings[0].id], ANSWERS, coordinator_name='Тренер'
    )
    assert assessment.member_id == admin.member_id
    assert assessment.coordinator_name == 'Тренер'


def test_submit_rejects_missing_and_cancelled(bookings, anna_actor):
    with pytest.raises(ValidationError):
        RiskAssessmentService.submit(anna_actor, [], ANSWERS)
    with pytest.raises(NotFoundError):
        RiskAssessmentService.submit(anna_actor, [999], ANSWERS)

    BookingRepository.mark_finished_as_pending(datetime(2024, 6, 12, 10, 5))
    BookingRepository.resolve_usage(bookings[0].id, 'cancelled', END, None)
    with pytest.raises(ImmutableStateError):
        RiskAssessmentService.submit(anna_actor, [bookings[0].id], ANSWERS)


@pytest.mark.asyncio
async def test_admins_notified(bookings, anna_actor, notifier):
    assessment = RiskAssessmentService.submit(anna_actor, [bookings[0].id], ANSWERS)

    await RiskAssessmentService.notify_admins(assessment, notifier, exclude_id=1001)

    text, exclude_id = notifier.admin_messages[0]
    assert exclude_id == 1001
    assert f"#{assessment.id}" in text
    assert 'Анна заполнил(а) оценку рисков' in text
    assert 'Катран' in text
