import hmac
import logging

import stripe
from flask import Blueprint, request, jsonify, g, current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import BookingStatus
from services import booking as booking_service
from services.errors import PersistenceError, ValidationError
from utils.auth_context import login_required
from utils.audit import log_event
from utils.timeutil import iso

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/orgs/<int:org_id>")


@payments_bp.post("/bookings/<int:booking_id>/checkout")
@login_required
def start_checkout(org_id, booking_id):
    stripe.api_key = current_app.config.get("STRIPE_SECRET_KEY")
    success_url = current_app.config.get("STRIPE_SUCCESS_URL")
    cancel_url = current_app.config.get("STRIPE_CANCEL_URL")
    if not stripe.api_key:
        return jsonify(error="Stripe secret key missing (STRIPE_SECRET_KEY)"), 500
    if not success_url or not cancel_url:
        return jsonify(error="Stripe success/cancel URLs not configured"), 500

    booking = booking_service.get_booking(org_id, booking_id, g.user.id)
    if booking.status != BookingStatus.PENDING_PAYMENT:
        raise ValidationError("Booking is not awaiting payment", status=booking.status)

    first = booking.slots[0]
    session = stripe.checkout.Session.create(
        mode="payment",
        line_items=[{
            "price_data": {
                "currency": booking.currency.lower(),
                "product_data": {"name": f"Court booking #{booking.id} ({len(booking.slots)} slots)"},
                "unit_amount": booking.total_cents,
            },
            "quantity": 1,
        }],
        success_url=success_url,
        cancel_url=cancel_url,
        client_reference_id=str(booking.id),
        metadata={
            "booking_id": str(booking.id),
            "organization_id": str(org_id),
            "court_id": str(first.court_id),
        },
    )

    payment = booking.payment
    payment.gateway_reference = session["id"]
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        raise PersistenceError("Failed to record checkout session") from exc

    logger.info("Checkout session %s created for booking %s", session["id"], booking.id)
    log_event(
        "PAYMENT_SESSION_CREATED",
        user_id=g.user.id,
        organization_id=org_id,
        entity="booking",
        entity_id=booking.id,
        metadata={"stripe_session_id": session["id"]},
    )
    return jsonify(checkout_url=session["url"], expires_at=iso(booking.expires_at)), 200


@payments_bp.post("/payments/outcome")
def payment_outcome(org_id):
    """
    Gateway-agnostic bridge: a trusted payment worker posts
    {booking_id, outcome, gateway_reference, amount_cents}.
    """
    secret = current_app.config.get("PAYMENT_BRIDGE_SECRET")
    if not secret:
        return jsonify(error="Payment bridge not configured"), 500

    auth = request.headers.get("Authorization", "")
    supplied = auth[len("Bearer "):] if auth.startswith("Bearer ") else ""
    if not hmac.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8")):
        return jsonify(error="Unauthorized"), 401

    data = request.get_json(silent=True) or {}
    booking_id = data.get("booking_id")
    if not booking_id or not data.get("outcome"):
        return jsonify(error="booking_id and outcome are required"), 400

    # Tenant check before touching the booking
    booking_service.get_booking(org_id, booking_id, is_admin=True)

    result = booking_service.apply_payment_outcome(
        booking_id,
        data.get("outcome"),
        gateway_reference=data.get("gateway_reference"),
        amount_cents=data.get("amount_cents"),
    )
    return jsonify(booking_id=result.booking_id, status=result.status, applied=result.applied), 200
