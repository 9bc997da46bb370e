from datetime import datetime

from utils.timeutil import get_zone

SATURDAY = 5
SUNDAY = 6


def is_peak(org, slot_start: datetime) -> bool:
    """
    Weekend slots are peak all day when the organization says so. Any
    other slot is peak when its local start hour is inside
    [peak_start_hour, peak_end_hour).
    """
    local = slot_start.astimezone(get_zone(org.timezone))
    if org.weekend_is_peak and local.weekday() in (SATURDAY, SUNDAY):
        return True
    return org.peak_start_hour <= local.hour < org.peak_end_hour


def hourly_rate(court, peak: bool) -> int:
    standard = court.price_per_hour_cents or 0
    if not peak or court.peak_price_per_hour_cents is None:
        return standard
    # Peak never undercuts the standard rate
    return max(court.peak_price_per_hour_cents, standard)


def price(court, org, slot_start: datetime, duration_minutes: int):
    """
    Returns (price_cents, is_peak) for one slot. The hourly rate is
    pro-rated to the slot length, rounding half up to whole cents.
    """
    peak = is_peak(org, slot_start)
    rate = hourly_rate(court, peak)
    cents = (rate * duration_minutes * 2 + 60) // 120
    return cents, peak
