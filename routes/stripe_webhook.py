import json
import logging

import stripe
from flask import Blueprint, request, jsonify, current_app

from services.booking import OUTCOME_COMPLETED, OUTCOME_FAILED, apply_payment_outcome
from services.errors import NotFound, ValidationError

logger = logging.getLogger(__name__)

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")

EVENT_OUTCOMES = {
    "checkout.session.completed": OUTCOME_COMPLETED,
    "checkout.session.async_payment_succeeded": OUTCOME_COMPLETED,
    "checkout.session.async_payment_failed": OUTCOME_FAILED,
    "checkout.session.expired": OUTCOME_FAILED,
}


def _booking_id(session):
    meta = session.get("metadata") or {}
    raw = meta.get("booking_id") or session.get("client_reference_id")
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.data

    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except (ValueError, stripe.SignatureVerificationError):
        return jsonify(error="Invalid webhook signature"), 400

    # Signature verified; read the payload as plain JSON
    event = json.loads(payload)
    event_type = event.get("type")
    outcome = EVENT_OUTCOMES.get(event_type)
    if outcome is None:
        return jsonify(received=True), 200

    session = event["data"]["object"]
    session_id = session.get("id")
    booking_id = _booking_id(session)
    if booking_id is None:
        logger.warning("Stripe %s for session %s carries no booking id", event_type, session_id)
        return jsonify(received=True), 200

    # A completed checkout whose payment is still processing settles later
    if event_type == "checkout.session.completed" and session.get("payment_status") == "unpaid":
        return jsonify(received=True), 200

    try:
        result = apply_payment_outcome(
            booking_id,
            outcome,
            gateway_reference=session_id,
            amount_cents=session.get("amount_total"),
        )
    except (NotFound, ValidationError) as exc:
        # Acknowledge so Stripe stops redelivering an event we can never apply
        logger.warning("Stripe %s for booking %s rejected: %s", event_type, booking_id, exc.message)
        return jsonify(received=True, applied=False, error=exc.message), 200

    return jsonify(received=True, booking_id=result.booking_id, status=result.status, applied=result.applied), 200
