from flask import Blueprint, request, jsonify

from security.rate_limit import rate_limited
from services.availability import get_aggregated_availability, get_availability
from services.catalog import get_organization, list_active_courts
from services.slots import bookable_dates, slot_duration
from utils.timeutil import utcnow

availability_bp = Blueprint("availability", __name__, url_prefix="/orgs/<int:org_id>")


@availability_bp.get("/courts")
def list_courts(org_id):
    org = get_organization(org_id)
    courts = list_active_courts(org.id)
    return jsonify(
        organization={
            "id": org.id,
            "name": org.name,
            "timezone": org.timezone,
            "currency": org.currency,
            "booking_window_days": org.booking_window_days,
            "max_consecutive_slots": org.max_consecutive_slots,
            "allow_guest_bookings": org.allow_guest_bookings,
        },
        bookable_dates=[d.isoformat() for d in bookable_dates(org, utcnow())],
        courts=[
            {
                "id": c.id,
                "name": c.name,
                "description": c.description,
                "open_time": c.open_time.strftime("%H:%M"),
                "close_time": c.close_time.strftime("%H:%M"),
                "slot_duration_minutes": slot_duration(c, org),
                "price_per_hour_cents": c.price_per_hour_cents,
                "peak_price_per_hour_cents": c.peak_price_per_hour_cents,
            }
            for c in courts
        ],
    ), 200


@availability_bp.get("/courts/<int:court_id>/availability")
@rate_limited("AVAILABILITY")
def court_availability(org_id, court_id):
    date_str = request.args.get("date")
    if not date_str:
        return jsonify(error="date is required (YYYY-MM-DD)"), 400

    slots = get_availability(org_id, court_id, date_str)
    return jsonify(
        court_id=court_id,
        date=date_str,
        slots=[s.to_dict() for s in slots],
    ), 200


@availability_bp.get("/availability")
@rate_limited("AVAILABILITY")
def aggregated_availability(org_id):
    date_str = request.args.get("date")
    if not date_str:
        return jsonify(error="date is required (YYYY-MM-DD)"), 400

    return jsonify(get_aggregated_availability(org_id, date_str)), 200
