import logging

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from models import db
from models.booking import BookingSlot
from models.court import BLOCK_REASONS, Court, CourtBlock
from models.organization import Organization
from services.errors import NotFound, PersistenceError, PolicyViolation, SlotUnavailable, ValidationError
from services.ledger import ReservationLedger
from utils.audit import log_event
from utils.timeutil import parse_instant, utcnow

logger = logging.getLogger(__name__)


def get_organization(org_id) -> Organization:
    org = db.session.get(Organization, org_id) if org_id is not None else None
    if not org or not org.is_active:
        raise NotFound("Organization not found")
    return org


def get_court(org_id, court_id) -> Court:
    # Always scoped by organization: a court id from another tenant is "not found"
    court = Court.query.filter_by(id=court_id, organization_id=org_id).first()
    if not court:
        raise NotFound("Court not found")
    return court


def list_active_courts(org_id) -> list:
    return (
        Court.query
        .filter_by(organization_id=org_id, is_active=True)
        .order_by(Court.sort_order.asc(), Court.id.asc())
        .all()
    )


def create_court_block(org_id, court_id, start_time, end_time, reason=None, actor_id=None):
    try:
        start = parse_instant(start_time)
        end = parse_instant(end_time)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    if start >= end:
        raise ValidationError("end_time must be after start_time")

    reason = (reason or "OTHER").strip().upper()
    if reason not in BLOCK_REASONS:
        raise ValidationError("Invalid block reason", allowed=list(BLOCK_REASONS))

    org = get_organization(org_id)
    court = get_court(org.id, court_id)

    ledger = ReservationLedger()
    try:
        ledger.lock_court(court.id, current_app.config.get("BOOKING_LOCK_TIMEOUT_MS"))
        if ledger.find_confirmed_overlap(court.id, start, end) is not None:
            db.session.rollback()
            raise SlotUnavailable("There are confirmed bookings during this time period")

        block = CourtBlock(
            organization_id=org.id,
            court_id=court.id,
            start_time=start,
            end_time=end,
            reason=reason,
            created_by_id=actor_id,
        )
        db.session.add(block)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to create court block on court %s", court.id)
        raise PersistenceError("Failed to create court block") from exc

    log_event(
        "COURT_BLOCK_CREATE",
        user_id=actor_id,
        organization_id=org.id,
        entity="court_block",
        entity_id=block.id,
        metadata={"court_id": court.id, "start_time": start.isoformat(), "end_time": end.isoformat(), "reason": reason},
    )
    return block


def delete_court_block(org_id, block_id, actor_id=None) -> None:
    block = CourtBlock.query.filter_by(id=block_id, organization_id=org_id).first()
    if not block:
        raise NotFound("Court block not found")

    court_id = block.court_id
    db.session.delete(block)
    db.session.commit()

    log_event(
        "COURT_BLOCK_DELETE",
        user_id=actor_id,
        organization_id=org_id,
        entity="court_block",
        entity_id=block_id,
        metadata={"court_id": court_id},
    )


def delete_court(org_id, court_id, actor_id=None) -> None:
    court = get_court(org_id, court_id)

    ledger = ReservationLedger()
    active = ledger.count_active_slots(court.id)
    if active:
        raise PolicyViolation(
            f"Cannot delete court with {active} active booking slots. Deactivate it instead.",
            active_slots=active,
        )
    has_history = db.session.execute(
        select(BookingSlot.id).where(BookingSlot.court_id == court.id).limit(1)
    ).scalar()
    if has_history is not None:
        raise PolicyViolation("Court has booking history. Deactivate it instead.")

    name = court.name
    CourtBlock.query.filter_by(court_id=court.id).delete()
    db.session.delete(court)
    db.session.commit()

    log_event(
        "COURT_DELETE",
        user_id=actor_id,
        organization_id=org_id,
        entity="court",
        entity_id=court_id,
        metadata={"name": name},
    )


def court_blocks(org_id, court_id, now=None) -> list:
    """Current and upcoming blocks of a court, earliest first."""
    now = now or utcnow()
    court = get_court(org_id, court_id)
    return (
        CourtBlock.query
        .filter(CourtBlock.court_id == court.id, CourtBlock.end_time > now)
        .order_by(CourtBlock.start_time.asc())
        .all()
    )
