import pytest

from models import db, Guest
from services import booking as svc
from services.errors import PolicyViolation, ValidationError
from tests.conftest import NOW, TOMORROW, local, make_user


def _slots(court, *hours):
    return [{"court_id": court.id, "start_time": local(2026, 3, 3, h).isoformat()} for h in hours]


@pytest.fixture
def guest_org(org):
    org.allow_guest_bookings = True
    db.session.commit()
    return org


GUEST = {"name": "Walk In", "email": "Walk.In@Example.com", "phone": "+65 8000 0000"}


def test_guest_bookings_disallowed_by_default(org, court):
    with pytest.raises(PolicyViolation):
        svc.create_guest_booking(org.id, GUEST, _slots(court, 10), now=NOW)
    assert Guest.query.count() == 0


def test_guest_booking_uses_guest_identity(guest_org, court):
    booking = svc.create_guest_booking(guest_org.id, GUEST, _slots(court, 10, 11), now=NOW)

    assert booking.user_id is None
    guest = db.session.get(Guest, booking.guest_id)
    assert guest.email == "walk.in@example.com"
    assert guest.total_bookings == 1
    assert guest.last_booking_at == NOW
    assert booking.total_cents == 4000


def test_returning_guest_is_reused_and_capped(guest_org, court):
    first = svc.create_guest_booking(guest_org.id, GUEST, _slots(court, 10, 11), now=NOW)
    second = svc.create_guest_booking(guest_org.id, dict(GUEST, email="walk.in@example.com"), _slots(court, 14), now=NOW)

    assert first.guest_id == second.guest_id
    assert Guest.query.count() == 1
    assert db.session.get(Guest, first.guest_id).total_bookings == 2

    with pytest.raises(PolicyViolation):
        svc.create_guest_booking(guest_org.id, GUEST, _slots(court, 16), now=NOW)


def test_converted_guest_cap_includes_account_bookings(guest_org, court):
    member = make_user("walk.in.member@example.com", guest_org)
    svc.create_booking(guest_org.id, member.id, court.id, TOMORROW, "08:00", 2, now=NOW)
    db.session.add(Guest(
        organization_id=guest_org.id,
        email="walk.in@example.com",
        name="Walk In",
        converted_to_user_id=member.id,
    ))
    db.session.commit()

    with pytest.raises(PolicyViolation):
        svc.create_guest_booking(guest_org.id, GUEST, _slots(court, 14, 15), now=NOW)

    booking = svc.create_guest_booking(guest_org.id, GUEST, _slots(court, 14), now=NOW)
    assert booking.user_id == member.id


@pytest.mark.parametrize("info", [
    {"name": "", "email": "a@example.com"},
    {"name": "No Email", "email": "not-an-email"},
    None,
])
def test_guest_details_validated(guest_org, court, info):
    with pytest.raises(ValidationError):
        svc.create_guest_booking(guest_org.id, info, _slots(court, 10), now=NOW)
