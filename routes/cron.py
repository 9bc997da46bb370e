import hmac

from flask import Blueprint, request, jsonify, current_app

from services.sweeper import sweep_expired_bookings

cron_bp = Blueprint("cron", __name__, url_prefix="/cron")


@cron_bp.route("/expire-bookings", methods=["GET", "POST"])
def expire_bookings():
    # Open when CRON_SECRET is unset (local development)
    secret = current_app.config.get("CRON_SECRET")
    if secret:
        expected = f"Bearer {secret}"
        supplied = request.headers.get("Authorization", "")
        if not hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8")):
            return jsonify(error="Unauthorized"), 401

    result = sweep_expired_bookings()
    return jsonify(success=True, **result.to_dict()), 200
