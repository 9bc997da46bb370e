from flask import Blueprint, request, jsonify, g

from security.rate_limit import rate_limited
from security.rbac import is_org_admin
from services import booking as booking_service
from utils.auth_context import login_required
from utils.timeutil import iso

booking_bp = Blueprint("booking", __name__, url_prefix="/orgs/<int:org_id>")


def booking_to_dict(b) -> dict:
    payment = b.payment
    return {
        "id": b.id,
        "organization_id": b.organization_id,
        "user_id": b.user_id,
        "guest_id": b.guest_id,
        "status": b.status,
        "total_cents": b.total_cents,
        "currency": b.currency,
        "expires_at": iso(b.expires_at),
        "created_at": iso(b.created_at),
        "cancelled_at": iso(b.cancelled_at),
        "cancel_reason": b.cancel_reason,
        "slots": [
            {
                "court_id": s.court_id,
                "start_time": iso(s.start_time),
                "end_time": iso(s.end_time),
                "price_cents": s.price_in_cents,
            }
            for s in b.slots
        ],
        "payment": {
            "status": payment.status,
            "provider": payment.provider,
            "amount_cents": payment.amount_cents,
            "gateway_reference": payment.gateway_reference,
            "paid_at": iso(payment.paid_at),
        } if payment else None,
    }


# ---------- PLAYERS: book ----------
@booking_bp.post("/bookings")
@login_required
@rate_limited("BOOKING")
def create_booking(org_id):
    data = request.get_json(silent=True) or {}

    # Grid selection: {"slots": [{court_id, start_time, end_time}, ...]}
    if isinstance(data.get("slots"), list):
        booking = booking_service.create_booking_from_slots(org_id, g.user.id, data["slots"])
    else:
        court_id = data.get("court_id")
        date_str = data.get("date")
        start_time = data.get("start_time")
        if not court_id or not date_str or not start_time:
            return jsonify(error="court_id, date, start_time are required"), 400
        booking = booking_service.create_booking(
            org_id,
            g.user.id,
            court_id,
            date_str,
            start_time,
            data.get("slots", 1),
        )

    return jsonify(booking_to_dict(booking)), 201


@booking_bp.post("/guest-bookings")
@rate_limited("BOOKING")
def create_guest_booking(org_id):
    data = request.get_json(silent=True) or {}
    booking = booking_service.create_guest_booking(org_id, data.get("guest"), data.get("slots"))
    return jsonify(booking_to_dict(booking)), 201


# ---------- PLAYERS: my bookings ----------
@booking_bp.get("/bookings/me")
@login_required
def my_bookings(org_id):
    status = request.args.get("status")
    bookings = booking_service.list_user_bookings(org_id, g.user.id, status=status)
    return jsonify([booking_to_dict(b) for b in bookings]), 200


@booking_bp.get("/bookings/<int:booking_id>")
@login_required
def get_booking(org_id, booking_id):
    booking = booking_service.get_booking(org_id, booking_id, g.user.id, is_admin=is_org_admin(org_id))
    return jsonify(booking_to_dict(booking)), 200


@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(org_id, booking_id):
    data = request.get_json(silent=True) or {}
    booking = booking_service.cancel_booking(org_id, booking_id, g.user.id, reason=data.get("reason"))
    return jsonify(message="Booking cancelled", booking=booking_to_dict(booking)), 200
