from datetime import datetime, time, timedelta

import pytest

from database.models import Actor, ROLE_COORDINATOR, USAGE_CONFIRMED, USAGE_CANCELLED, USAGE_PENDING
from database.repository import BoatRepository, BookingRepository
from services.bookings import BookingService
from services.confirmations import ConfirmationScheduler
from services.exceptions import (
    ConflictError, ImmutableStateError, NotFoundError, PermissionDeniedError, ValidationError
)
from services.templates import TemplateService

START = datetime(2024, 6, 12, 9, 0)
END = datetime(2024, 6, 12, 10, 0)


def test_create_booking(boat, anna, anna_actor, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)

    stored = BookingRepository.get_booking_by_id(booking.id)
    assert stored.boat_id == boat.id
    assert stored.member_id == anna.id
    assert stored.start_time == START
    assert stored.end_time == END
    assert stored.usage_status == 'scheduled'
    assert stored.duration_minutes == 60


def test_create_rejects_overlap(boat, anna, boris, anna_actor, boris_actor, now):
    BookingService.create(boat.id, anna.id, START, END, anna_actor, now)

    with pytest.raises(ConflictError) as exc_info:
        BookingService.create(
            boat.id, boris.id, START + timedelta(minutes=30), END + timedelta(minutes=30),
            boris_actor, now
        )
    assert exc_info.value.boat_ids == [boat.id]
    assert 'Катран' in str(exc_info.value)


def test_create_adjacent_is_allowed(boat, anna, boris, anna_actor, boris_actor, now):
    BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    booking = BookingService.create(boat.id, boris.id, END, END + timedelta(hours=1), boris_actor, now)
    assert booking.id is not None


def test_create_rejects_template_occurrence(boat, anna, boris, admin, boris_actor, now):
    TemplateService.create_template(admin, 2, time(9, 0), time(10, 0), anna.id, boat.id)

    with pytest.raises(ConflictError) as exc_info:
        BookingService.create(boat.id, boris.id, START, END, boris_actor, now)
    assert exc_info.value.conflicts[0].kind == 'template'


@pytest.mark.parametrize('start, end', [
    (END, START),
    (START, START),
    (datetime(2024, 6, 12, 7, 0), datetime(2024, 6, 12, 8, 0)),
    (datetime(2024, 6, 9, 9, 0), datetime(2024, 6, 9, 10, 0)),
])
def test_create_validates_interval(boat, anna, anna_actor, now, start, end):
    with pytest.raises(ValidationError):
        BookingService.create(boat.id, anna.id, start, end, anna_actor, now)


def test_create_at_earliest_start(boat, anna, anna_actor, now):
    start = datetime(2024, 6, 12, 7, 30)
    booking = BookingService.create(boat.id, anna.id, start, start + timedelta(hours=1), anna_actor, now)
    assert booking.start_time == start


def test_guest_cannot_book(boat, guest_member, guest, now):
    with pytest.raises(PermissionDeniedError):
        BookingService.create(boat.id, guest_member.id, START, END, guest, now)


def test_cannot_book_for_someone_else(boat, boris, anna_actor, now):
    with pytest.raises(PermissionDeniedError):
        BookingService.create(boat.id, boris.id, START, END, anna_actor, now)


def test_admin_books_for_member(boat, anna, admin, now):
    booking = BookingService.create(boat.id, anna.id, START, END, admin, now)
    assert booking.member_id == anna.id


def test_unknown_boat_and_member(boat, anna, admin, now):
    with pytest.raises(NotFoundError):
        BookingService.create(999, anna.id, START, END, admin, now)
    with pytest.raises(NotFoundError):
        BookingService.create(boat.id, 999, START, END, admin, now)


def test_restricted_boat(restricted_boat, anna, anna_actor, admin, now):
    with pytest.raises(PermissionDeniedError):
        BookingService.create(restricted_boat.id, anna.id, START, END, anna_actor, now)
    with pytest.raises(PermissionDeniedError):
        BookingService.create(restricted_boat.id, anna.id, START, END, admin, now)


def test_captains_boat_requires_permission(captains_boat, anna, anna_actor, now):
    with pytest.raises(PermissionDeniedError):
        BookingService.create(captains_boat.id, anna.id, START, END, anna_actor, now)

    BoatRepository.grant_permission(captains_boat.id, anna.id)
    booking = BookingService.create(captains_boat.id, anna.id, START, END, anna_actor, now)
    assert booking.boat_id == captains_boat.id


def test_captains_boat_admin_bypass(captains_boat, anna, admin, now):
    booking = BookingService.create(captains_boat.id, anna.id, START, END, admin, now)
    assert booking.id is not None


def test_create_many_partial_success(boat, boat2, anna, boris, anna_actor, boris_actor, now):
    BookingService.create(boat2.id, boris.id, START, END, boris_actor, now)

    result = BookingService.create_many([boat.id, boat2.id], anna.id, START, END, anna_actor, now)

    assert [b.boat_id for b in result.created] == [boat.id]
    assert list(result.failed) == [boat2.id]
    assert isinstance(result.failed[boat2.id], ConflictError)
    assert not result.ok


def test_create_many_all_boats(boat, boat2, anna, anna_actor, now):
    result = BookingService.create_many(
        [boat.id, boat2.id, boat.id], anna.id, START, END, anna_actor, now
    )
    assert result.ok
    assert sorted(b.boat_id for b in result.created) == sorted([boat.id, boat2.id])


def test_create_many_requires_boats(anna, anna_actor, now):
    with pytest.raises(ValidationError):
        BookingService.create_many([], anna.id, START, END, anna_actor, now)


def test_update_moves_booking(boat, boat2, anna, anna_actor, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)

    moved = BookingService.update(
        booking.id, anna_actor, boat_id=boat2.id,
        start_time=START + timedelta(hours=2), end_time=END + timedelta(hours=2), now=now
    )

    assert moved.boat_id == boat2.id
    assert moved.start_time == START + timedelta(hours=2)


def test_update_within_own_slot(boat, anna, anna_actor, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    moved = BookingService.update(
        booking.id, anna_actor, end_time=END + timedelta(minutes=30), now=now
    )
    assert moved.end_time == END + timedelta(minutes=30)


def test_update_conflict(boat, anna, boris, anna_actor, boris_actor, now):
    BookingService.create(boat.id, boris.id, END, END + timedelta(hours=1), boris_actor, now)
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)

    with pytest.raises(ConflictError):
        BookingService.update(booking.id, anna_actor, end_time=END + timedelta(minutes=30), now=now)


def test_update_by_other_member(boat, anna, anna_actor, boris_actor, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    with pytest.raises(PermissionDeniedError):
        BookingService.update(booking.id, boris_actor, start_time=START, end_time=END, now=now)


def test_past_booking_is_immutable(boat, anna, anna_actor, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    later = START + timedelta(minutes=5)

    with pytest.raises(ImmutableStateError):
        BookingService.delete(booking.id, anna_actor, now=later)
    with pytest.raises(ImmutableStateError):
        BookingService.update(booking.id, anna_actor, end_time=END + timedelta(hours=1), now=later)


def test_delete_booking(boat, anna, anna_actor, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    BookingService.delete(booking.id, anna_actor, now)

    assert BookingRepository.get_booking_by_id(booking.id) is None
    with pytest.raises(NotFoundError):
        BookingService.delete(booking.id, anna_actor, now)


def test_usage_confirmation_scenario(boat, anna, anna_actor, boris_actor):
    created_at = datetime(2024, 6, 10, 7, 0)
    booking = BookingService.create(
        boat.id, anna.id, datetime(2024, 6, 10, 8, 0), datetime(2024, 6, 10, 9, 0),
        anna_actor, created_at
    )

    sweeps = ConfirmationScheduler(notifier=None)
    assert sweeps.transition_usage(datetime(2024, 6, 10, 9, 5)) == 1
    assert BookingRepository.get_booking_by_id(booking.id).usage_status == USAGE_PENDING

    with pytest.raises(PermissionDeniedError):
        BookingService.resolve_usage(booking.id, boris_actor, 'confirmed')

    resolved_at = datetime(2024, 6, 10, 9, 30)
    resolved = BookingService.resolve_usage(booking.id, anna_actor, 'confirmed', resolved_at)
    assert resolved.usage_status == USAGE_CONFIRMED
    assert resolved.usage_confirmed_at == resolved_at
    assert resolved.usage_confirmed_by == anna.id

    with pytest.raises(ImmutableStateError):
        BookingService.resolve_usage(booking.id, anna_actor, 'cancelled')


def test_resolve_usage_requires_pending(boat, anna, anna_actor, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    with pytest.raises(ImmutableStateError):
        BookingService.resolve_usage(booking.id, anna_actor, 'confirmed', now)


def test_resolve_usage_unknown_outcome(boat, anna, anna_actor, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    with pytest.raises(ValidationError):
        BookingService.resolve_usage(booking.id, anna_actor, 'maybe', now)


def test_admin_cancels_usage(boat, anna, anna_actor, admin, now):
    booking = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    BookingRepository.mark_finished_as_pending(END + timedelta(minutes=1))

    resolved = BookingService.resolve_usage(booking.id, admin, 'cancelled', END + timedelta(hours=1))
    assert resolved.usage_status == USAGE_CANCELLED


def test_list_member_bookings(boat, anna, boris, anna_actor, boris_actor, now):
    mine = BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    BookingService.create(boat.id, boris.id, END, END + timedelta(hours=1), boris_actor, now)

    bookings = BookingService.list_member_bookings(anna.id, now)
    assert [b.id for b in bookings] == [mine.id]


def test_actor_without_member_cannot_book(boat, anna, now):
    actor = Actor(member_id=None, role=ROLE_COORDINATOR)
    with pytest.raises(PermissionDeniedError):
        BookingService.create(boat.id, anna.id, START, END, actor, now)


def test_db_trigger_overlap_maps_to_conflict(boat, anna, boris, anna_actor, boris_actor, now,
                                             db_guard_only):
    BookingService.create(boat.id, anna.id, START, END, anna_actor, now)

    with pytest.raises(ConflictError) as exc_info:
        BookingService.create(
            boat.id, boris.id, START + timedelta(minutes=30), END, boris_actor, now
        )
    assert exc_info.value.boat_ids == [boat.id]
    assert len(BookingRepository.find_overlapping([boat.id], START, END)) == 1


def test_db_trigger_overlap_on_update_maps_to_conflict(boat, anna, boris, anna_actor, boris_actor,
                                                       now, db_guard_only):
    BookingService.create(boat.id, anna.id, START, END, anna_actor, now)
    later = BookingService.create(
        boat.id, boris.id, END, END + timedelta(hours=1), boris_actor, now
    )

    with pytest.raises(ConflictError):
        BookingService.update(later.id, boris_actor, start_time=START + timedelta(minutes=30), now=now)
    assert BookingRepository.get_booking_by_id(later.id).start_time == END
