import pytest

from config import settings
from database.models import AllowedMember, ROLE_ADMIN, ROLE_COORDINATOR, ROLE_GUEST
from database.repository import AllowedMemberRepository, BoatRepository, MemberRepository
from services.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from services.members import MemberService


@pytest.fixture
def allowed():
    AllowedMemberRepository.add(
        AllowedMember(id=None, email='Vera@Club.org', name='Вера', role=ROLE_COORDINATOR)
    )


def test_link_creates_member(allowed):
    member = MemberService.link_by_email(' VERA@club.org ', 555)

    assert member.name == 'Вера'
    assert member.email == 'vera@club.org'
    assert MemberRepository.get_member_by_telegram_id(555).id == member.id
    assert MemberService.actor_for(member).role == ROLE_COORDINATOR


def test_link_existing_member_moves_telegram(allowed):
    first = MemberService.link_by_email('vera@club.org', 555)
    second = MemberService.link_by_email('vera@club.org', 777)

    assert first.id == second.id
    assert MemberRepository.get_member_by_telegram_id(555) is None
    assert MemberRepository.get_member_by_telegram_id(777).id == first.id


def test_link_requires_allow_list():
    with pytest.raises(PermissionDeniedError):
        MemberService.link_by_email('stranger@club.org', 555)
    with pytest.raises(ValidationError):
        MemberService.link_by_email('not-an-email', 555)


def test_actor_for_unknown_user_is_guest():
    actor = MemberService.actor_for(None, 123)
    assert actor.role == ROLE_GUEST
    assert actor.member_id is None


def test_admin_ids_override_role(allowed, monkeypatch):
    member = MemberService.link_by_email('vera@club.org', 555)
    monkeypatch.setattr(settings, 'ADMIN_IDS', [555])

    assert MemberService.actor_for(member, 555).role == ROLE_ADMIN


def test_allow_and_grant(admin, anna, anna_actor, captains_boat):
    with pytest.raises(PermissionDeniedError):
        MemberService.allow(anna_actor, 'new@club.org', 'Новый', ROLE_COORDINATOR)
    with pytest.raises(ValidationError):
        MemberService.allow(admin, 'new@club.org', 'Новый', 'captain')

    allowed = MemberService.allow(admin, 'New@club.org', 'Новый', ROLE_GUEST)
    assert allowed.email == 'new@club.org'
    assert allowed.role == ROLE_GUEST

    boat, member = MemberService.grant_boat(admin, captains_boat.code, anna.email)
    assert BoatRepository.has_permission(boat.id, member.id)
    with pytest.raises(NotFoundError):
        MemberService.grant_boat(admin, 'XX', anna.email)
