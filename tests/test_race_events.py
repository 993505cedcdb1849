from datetime import date, datetime, time

import pytest

from database.models import Booking
from database.repository import BookingRepository
from services.bookings import BookingService
from services.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from services.race_events import RaceEventService
from services.templates import TemplateService

WEDNESDAY = date(2024, 6, 12)


def at(hour, day=WEDNESDAY):
    return datetime.combine(day, time(hour, 0))


@pytest.fixture
def race(boat, boat2, admin):
    return RaceEventService.create_event(admin, WEDNESDAY, [boat.id, boat2.id, boat.id], ' Регата ')


def test_create_event(race, boat, boat2):
    assert race.id is not None
    assert race.title == 'Регата'
    assert race.event_date == WEDNESDAY
    assert race.boat_ids == [boat.id, boat2.id]
    assert [event.id for event in RaceEventService.get_events_on(WEDNESDAY)] == [race.id]
    assert RaceEventService.get_events_on(date(2024, 6, 13)) == []


def test_create_event_validation(boat, admin, anna_actor):
    with pytest.raises(PermissionDeniedError):
        RaceEventService.create_event(anna_actor, WEDNESDAY, [boat.id])
    with pytest.raises(ValidationError):
        RaceEventService.create_event(admin, WEDNESDAY, [])
    with pytest.raises(NotFoundError):
        RaceEventService.create_event(admin, WEDNESDAY, [999])

    assert RaceEventService.create_event(admin, WEDNESDAY, [boat.id]).title == 'Гонка'


def test_affected_bookings_and_templates(boat, boat2, anna, boris, admin_member, admin,
                                         anna_actor, boris_actor, now):
    mine = BookingService.create(boat.id, anna.id, at(9), at(10), anna_actor, now)
    template = TemplateService.create_template(admin, 2, time(11, 0), time(12, 0), boris.id, boat2.id)

    # Не попадают: другой день, бронь администратора, бронь без участника
    BookingService.create(boat.id, anna.id, at(9, date(2024, 6, 13)), at(10, date(2024, 6, 13)),
                          anna_actor, now)
    BookingService.create(boat.id, admin_member.id, at(14), at(15), admin, now)
    BookingRepository.create_booking(Booking(
        id=None, boat_id=boat2.id, member_id=None, start_time=at(16), end_time=at(17)
    ))

    event = RaceEventService.create_event(admin, WEDNESDAY, [boat.id, boat2.id])
    affected = RaceEventService.affected(event)

    assert [(entry.member_id, entry.booking_id, entry.template_id) for entry in affected] == [
        (anna.id, mine.id, None),
        (boris.id, None, template.id),
    ]


def test_skipped_template_not_affected(boat, boris, admin, boris_actor):
    template = TemplateService.create_template(admin, 2, time(11, 0), time(12, 0), boris.id, boat.id)
    TemplateService.skip_occurrence(template.id, boris_actor, WEDNESDAY)

    event = RaceEventService.create_event(admin, WEDNESDAY, [boat.id])
    assert RaceEventService.affected(event) == []


@pytest.mark.asyncio
async def test_notify_conflicts(race, boat, boat2, anna, boris, anna_actor, boris_actor,
                                notifier, now):
    BookingService.create(boat.id, anna.id, at(9), at(10), anna_actor, now)
    BookingService.create(boat2.id, boris.id, at(9), at(10), boris_actor, now)

    assert await RaceEventService.notify_conflicts(race, notifier) == 2

    assert notifier.titles(anna.id) == ['Бронь пересекается с гонкой']
    assert notifier.titles(boris.id) == ['Бронь пересекается с гонкой']
    notification = next(n for member_id, n, _ in notifier.sent if member_id == anna.id)
    assert '«Регата» 12.06.2024' in notification.body
    assert 'Катран' in notification.body


@pytest.mark.asyncio
async def test_notify_conflicts_counts_delivered_only(race, boat, anna, anna_actor, notifier, now):
    BookingService.create(boat.id, anna.id, at(9), at(10), anna_actor, now)
    notifier.delivered = False

    assert await RaceEventService.notify_conflicts(race, notifier) == 0
    assert len(notifier.sent) == 1


def test_delete_event(race, admin, anna_actor):
    with pytest.raises(PermissionDeniedError):
        RaceEventService.delete_event(anna_actor, race.id)

    RaceEventService.delete_event(admin, race.id)
    assert RaceEventService.get_events_on(WEDNESDAY) == []
    with pytest.raises(NotFoundError):
        RaceEventService.delete_event(admin, race.id)
