from flask import Blueprint, jsonify, g, request

from routes.booking import booking_to_dict
from security.rbac import ROLE_ADMIN, require_org_roles
from services import booking as booking_service
from services import catalog
from utils.timeutil import iso

admin_bp = Blueprint("admin", __name__, url_prefix="/orgs/<int:org_id>/admin")


def _block_to_dict(block) -> dict:
    return {
        "id": block.id,
        "court_id": block.court_id,
        "start_time": iso(block.start_time),
        "end_time": iso(block.end_time),
        "reason": block.reason,
        "created_by_id": block.created_by_id,
    }


@admin_bp.post("/bookings/<int:booking_id>/cancel")
@require_org_roles(ROLE_ADMIN)
def admin_cancel_booking(org_id, booking_id):
    data = request.get_json(silent=True) or {}
    booking = booking_service.cancel_booking(
        org_id,
        booking_id,
        g.user.id,
        reason=data.get("reason"),
        is_admin=True,
    )
    return jsonify(message="Booking cancelled", booking=booking_to_dict(booking)), 200


@admin_bp.get("/courts/<int:court_id>/blocks")
@require_org_roles(ROLE_ADMIN)
def list_court_blocks(org_id, court_id):
    blocks = catalog.court_blocks(org_id, court_id)
    return jsonify([_block_to_dict(b) for b in blocks]), 200


@admin_bp.post("/courts/<int:court_id>/blocks")
@require_org_roles(ROLE_ADMIN)
def create_court_block(org_id, court_id):
    data = request.get_json(silent=True) or {}
    start_time = data.get("start_time")
    end_time = data.get("end_time")
    if not start_time or not end_time:
        return jsonify(error="start_time and end_time are required"), 400

    block = catalog.create_court_block(
        org_id,
        court_id,
        start_time,
        end_time,
        reason=data.get("reason"),
        actor_id=g.user.id,
    )
    return jsonify(_block_to_dict(block)), 201


@admin_bp.delete("/blocks/<int:block_id>")
@require_org_roles(ROLE_ADMIN)
def delete_court_block(org_id, block_id):
    catalog.delete_court_block(org_id, block_id, actor_id=g.user.id)
    return jsonify(message="Court block deleted"), 200


@admin_bp.delete("/courts/<int:court_id>")
@require_org_roles(ROLE_ADMIN)
def delete_court(org_id, court_id):
    catalog.delete_court(org_id, court_id, actor_id=g.user.id)
    return jsonify(message="Court deleted"), 200
