"""
Slot grid for one court on one local calendar date.

Everything here is pure: inputs are the court, its organization (policy and
timezone), a local date and, for availability, the occupied intervals and
the current instant. No database access.
"""
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone

from services.pricing import price
from utils.timeutil import get_zone, iso


@dataclass(frozen=True)
class SlotView:
    start: datetime
    end: datetime
    price_cents: int
    is_peak: bool
    is_available: bool = True

    def to_dict(self) -> dict:
        return {
            "start_time": iso(self.start),
            "end_time": iso(self.end),
            "price_cents": self.price_cents,
            "is_peak": self.is_peak,
            "is_available": self.is_available,
        }


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    # Half-open intervals: touching endpoints are not an overlap
    return a_start < b_end and a_end > b_start


def slot_duration(court, org) -> int:
    return court.slot_duration_minutes or org.slot_duration_minutes


def generate_slots(court, org, local_date: date) -> list:
    """
    Every slot of the day from open_time to close_time, ordered by start.
    A trailing partial slot is dropped.

    Slots are laid out in UTC from the opening instant, so on a DST change
    the day gains or loses slots instead of producing empty or repeated ones.
    """
    duration = slot_duration(court, org)
    if not duration or duration <= 0:
        return []

    tz = get_zone(org.timezone)
    opening = datetime.combine(local_date, court.open_time, tzinfo=tz).astimezone(timezone.utc)
    closing = datetime.combine(local_date, court.close_time, tzinfo=tz).astimezone(timezone.utc)
    step = timedelta(minutes=duration)

    slots = []
    start = opening
    while start + step <= closing:
        cents, peak = price(court, org, start, duration)
        slots.append(SlotView(start=start, end=start + step, price_cents=cents, is_peak=peak))
        start += step
    return slots


def mark_availability(slots, occupied, now=None, bookable: bool = True) -> list:
    """
    occupied: iterable of (start, end) instants held by committed booking
    slots or court blocks. Slots that already started are unavailable too,
    and so is every slot of a date outside the booking window.
    """
    occupied = list(occupied)
    out = []
    for slot in slots:
        taken = any(overlaps(slot.start, slot.end, s, e) for s, e in occupied)
        past = now is not None and slot.start < now
        out.append(replace(slot, is_available=bookable and not taken and not past))
    return out


def local_today(org, now: datetime) -> date:
    return now.astimezone(get_zone(org.timezone)).date()


def booking_window(org, now: datetime):
    """First and last bookable local dates, both inclusive."""
    today = local_today(org, now)
    return today, today + timedelta(days=org.booking_window_days)


def in_booking_window(org, local_date: date, now: datetime) -> bool:
    first, last = booking_window(org, now)
    return first <= local_date <= last


def bookable_dates(org, now: datetime) -> list:
    first, last = booking_window(org, now)
    return [first + timedelta(days=i) for i in range((last - first).days + 1)]


def local_day_bounds(org, local_date: date):
    """UTC [start, end) of a local calendar day."""
    tz = get_zone(org.timezone)
    start = datetime.combine(local_date, time(0, 0), tzinfo=tz)
    end = datetime.combine(local_date + timedelta(days=1), time(0, 0), tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def local_date_of(org, instant: datetime) -> date:
    return instant.astimezone(get_zone(org.timezone)).date()
