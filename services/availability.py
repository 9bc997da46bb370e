import logging

from sqlalchemy.exc import SQLAlchemyError

from services.catalog import get_court, get_organization, list_active_courts
from services.errors import PersistenceError, ValidationError
from services.ledger import ReservationLedger
from services.slots import generate_slots, in_booking_window, mark_availability
from services.sweeper import expire_stale_bookings
from utils.timeutil import iso, parse_date, utcnow

logger = logging.getLogger(__name__)


def _local_date(value):
    try:
        return parse_date(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _court_slots(ledger, court, org, local_date, now) -> list:
    if not court.is_active:
        return []
    slots = generate_slots(court, org, local_date)
    if not slots:
        return []
    try:
        occupied = ledger.occupied_intervals(court.id, slots[0].start, slots[-1].end)
    except SQLAlchemyError as exc:
        logger.exception("Failed to load occupancy for court %s", court.id)
        raise PersistenceError("Failed to load availability") from exc
    return mark_availability(slots, occupied, now, bookable=in_booking_window(org, local_date, now))


def get_availability(org_id, court_id, date, now=None) -> list:
    """
    Slots of one court on a local date with is_available computed against
    committed bookings, blocks and the current time.
    """
    now = now or utcnow()
    local_date = _local_date(date)
    org = get_organization(org_id)
    court = get_court(org.id, court_id)

    expire_stale_bookings(now)
    return _court_slots(ReservationLedger(), court, org, local_date, now)


def get_aggregated_availability(org_id, date, now=None) -> dict:
    """
    Availability of every active court of the organization, grouped by slot
    start: one row per start time with the per-court breakdown.
    """
    now = now or utcnow()
    local_date = _local_date(date)
    org = get_organization(org_id)

    expire_stale_bookings(now)
    ledger = ReservationLedger()
    courts = list_active_courts(org.id)

    rows = {}
    for court in courts:
        for slot in _court_slots(ledger, court, org, local_date, now):
            row = rows.setdefault(slot.start, {
                "start_time": iso(slot.start),
                "end_time": iso(slot.end),
                "available_count": 0,
                "total_courts": 0,
                "is_peak": slot.is_peak,
                "price_cents": slot.price_cents,
                "courts": [],
            })
            row["total_courts"] += 1
            if slot.is_available:
                row["available_count"] += 1
            # Headline price is the cheapest court
            row["price_cents"] = min(row["price_cents"], slot.price_cents)
            row["courts"].append({
                "court_id": court.id,
                "court_name": court.name,
                "is_available": slot.is_available,
                "price_cents": slot.price_cents,
            })

    return {
        "organization_id": org.id,
        "date": local_date.isoformat(),
        "timezone": org.timezone,
        "bookable": in_booking_window(org, local_date, now),
        "total_courts": len(courts),
        "slots": [rows[start] for start in sorted(rows)],
    }
