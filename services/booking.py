"""
Booking lifecycle: admission control, cancellation and payment outcomes.

State machine::

    PENDING_PAYMENT --payment completed--> CONFIRMED --all slots ended--> COMPLETED
    PENDING_PAYMENT --expires_at passed--> EXPIRED
    PENDING_PAYMENT --payment failed-----> PENDING_PAYMENT (retry until expiry)
    CONFIRMED / PENDING_PAYMENT --cancel--> CANCELLED

Every mutation re-checks the current status inside its own transaction
(compare-and-swap through ``ReservationLedger.compare_and_set_status``).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from models import db
from models.booking import OVERLAP_CONSTRAINT_NAME, Booking, BookingStatus
from models.guest import Guest
from models.payment import Payment, PaymentStatus
from services.catalog import get_court, get_organization
from services.errors import (
    BookingError,
    NotCancelable,
    NotFound,
    PersistenceError,
    PolicyViolation,
    SlotUnavailable,
    ValidationError,
)
from services.ledger import ReservationLedger
from services.slots import generate_slots, in_booking_window, booking_window, local_date_of, local_day_bounds
from utils.audit import log_event
from utils.retry import retry_on_persistence_error
from utils.timeutil import get_zone, parse_date, parse_hhmm, parse_instant, utcnow

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"


@dataclass(frozen=True)
class PaymentOutcomeResult:
    booking_id: int
    status: str
    applied: bool


# ---------- request validation ----------
def _slot_count(value) -> int:
    if isinstance(value, bool):
        raise ValidationError("slots must be an integer")
    try:
        count = int(value)
    except (TypeError, ValueError):
        raise ValidationError("slots must be an integer") from None
    if count < 1:
        raise ValidationError("At least 1 slot required")
    return count


def _check_consecutive_cap(org, count: int) -> None:
    if count > org.max_consecutive_slots:
        raise PolicyViolation(
            f"Maximum {org.max_consecutive_slots} consecutive slots allowed",
            max_consecutive_slots=org.max_consecutive_slots,
        )


def _bookable_court(org, court_id):
    court = get_court(org.id, court_id)
    if not court.is_active:
        raise ValidationError("Court not available")
    return court


def _slots_from_start(org, court, local_date, start_local, count) -> list:
    grid = generate_slots(court, org, local_date)
    start = datetime.combine(local_date, start_local, tzinfo=get_zone(org.timezone)).astimezone(timezone.utc)
    index = next((i for i, s in enumerate(grid) if s.start == start), None)
    if index is None:
        raise ValidationError("Start time is not on the court's slot grid")
    chosen = grid[index:index + count]
    if len(chosen) < count:
        raise ValidationError("Requested slots run past closing time")
    return chosen


def _resolve_slot_selection(org, slots):
    """
    Validates a client-side slot selection: one court, one local date,
    grid-aligned, unique and contiguous. Returns (court, local_date, slots)
    with server-side prices.
    """
    if not isinstance(slots, list) or not slots:
        raise ValidationError("At least one slot is required")

    court_ids = set()
    requested = []
    for item in slots:
        if not isinstance(item, dict):
            raise ValidationError("Each slot must be an object")
        court_ids.add(item.get("court_id"))
        try:
            start = parse_instant(item.get("start_time"))
            end = parse_instant(item["end_time"]) if item.get("end_time") is not None else None
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        requested.append((start, end, item.get("price_cents")))

    if len(court_ids) != 1:
        raise ValidationError("All slots must be on the same court")
    court = _bookable_court(org, court_ids.pop())

    dates = {local_date_of(org, start) for start, _, _ in requested}
    if len(dates) != 1:
        raise ValidationError("All slots must be on the same date")
    local_date = dates.pop()

    grid = {s.start: s for s in generate_slots(court, org, local_date)}
    chosen = []
    for start, end, client_price in sorted(requested, key=lambda r: r[0]):
        slot = grid.get(start)
        if slot is None or (end is not None and end != slot.end):
            raise ValidationError("Slot is not on the court's slot grid", start_time=start.isoformat())
        if client_price is not None and client_price != slot.price_cents:
            raise ValidationError("Slot price does not match current pricing", start_time=start.isoformat())
        if chosen and chosen[-1].start == slot.start:
            raise ValidationError("Duplicate slot in request", start_time=start.isoformat())
        if chosen and chosen[-1].end != slot.start:
            raise ValidationError("Slots must be contiguous")
        chosen.append(slot)

    _check_consecutive_cap(org, len(chosen))
    return court, local_date, chosen


def _is_valid_email(email: str) -> bool:
    return isinstance(email, str) and "@" in email and len(email) <= 255


def _validate_guest(guest_info):
    guest_info = guest_info or {}
    name = (guest_info.get("name") or "").strip()
    email = (guest_info.get("email") or "").strip().lower()
    phone = (guest_info.get("phone") or "").strip() or None
    if not name:
        raise ValidationError("Name is required")
    if not _is_valid_email(email):
        raise ValidationError("Invalid email")
    return name, email, phone


def _resolve_guest(org, name: str, email: str, phone) -> Guest:
    guest = Guest.query.filter_by(organization_id=org.id, email=email).first()
    if guest:
        return guest

    guest = Guest(organization_id=org.id, email=email, name=name[:120], phone=phone)
    db.session.add(guest)
    try:
        db.session.commit()
    except IntegrityError:
        # Created concurrently by another request for the same email
        db.session.rollback()
        guest = Guest.query.filter_by(organization_id=org.id, email=email).first()
        if not guest:
            raise PersistenceError("Failed to create guest record") from None
    return guest


# ---------- admission control ----------
def _reserve(org, court, local_date, chosen, now, user_id=None, guest=None) -> Booking:
    if not in_booking_window(org, local_date, now):
        first, last = booking_window(org, now)
        raise ValidationError(
            "Date is outside the booking window",
            first_date=first.isoformat(),
            last_date=last.isoformat(),
        )
    if chosen[0].start < now:
        raise ValidationError("Cannot book past/started slots")

    guest_id = guest.id if guest is not None else None
    day_start, day_end = local_day_bounds(org, local_date)
    expires_at = now + timedelta(minutes=org.payment_timeout_minutes)
    ledger = ReservationLedger()

    try:
        ledger.lock_court(court.id, current_app.config.get("BOOKING_LOCK_TIMEOUT_MS"))
        ledger.lock_requester(user_id=user_id, guest_id=guest_id)

        used = ledger.count_requester_slots(org.id, day_start, day_end, user_id=user_id, guest_id=guest_id)
        cap = org.max_consecutive_slots
        if used + len(chosen) > cap:
            remaining = max(0, cap - used)
            if remaining == 0:
                message = f"You've reached the daily booking limit of {cap} slots for this date."
            else:
                message = f"You can only book {remaining} more slots on this date ({used}/{cap} used)."
            raise PolicyViolation(message, used=used, max_daily_slots=cap)

        for slot in chosen:
            if ledger.find_overlapping(court.id, slot.start, slot.end) is not None:
                raise SlotUnavailable(
                    "One or more slots are no longer available",
                    start_time=slot.start.isoformat(),
                )

        booking = ledger.insert_booking_with_slots(
            org,
            court,
            chosen,
            expires_at,
            user_id=user_id,
            guest_id=guest_id,
        )
        if guest is not None:
            db.session.execute(
                update(Guest)
                .where(Guest.id == guest.id)
                .values(total_bookings=Guest.total_bookings + 1, last_booking_at=now)
                .execution_options(synchronize_session=False)
            )
        db.session.commit()
    except BookingError:
        db.session.rollback()
        raise
    except IntegrityError as exc:
        db.session.rollback()
        if OVERLAP_CONSTRAINT_NAME in str(exc.orig):
            logger.info("Overlap guard rejected booking on court %s: %s", court.id, exc.orig)
            raise SlotUnavailable("One or more slots are no longer available") from exc
        logger.exception("Integrity error creating booking on court %s", court.id)
        raise PersistenceError("Failed to create booking") from exc
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to create booking on court %s", court.id)
        raise PersistenceError("Failed to create booking") from exc

    logger.info(
        "Booking %s created: org=%s court=%s slots=%d total=%d expires_at=%s",
        booking.id, org.id, court.id, len(chosen), booking.total_cents, expires_at.isoformat(),
    )
    log_event(
        "BOOKING_CREATE",
        user_id=user_id,
        organization_id=org.id,
        entity="booking",
        entity_id=booking.id,
        metadata={
            "court_id": court.id,
            "guest_id": guest_id,
            "start_time": chosen[0].start.isoformat(),
            "slots": len(chosen),
            "total_cents": booking.total_cents,
        },
    )
    return booking


def create_booking(org_id, user_id, court_id, date, start_time, slot_count, now=None) -> Booking:
    """
    Books ``slot_count`` contiguous slots on ``court_id`` starting at local
    ``start_time`` ("HH:MM") on local ``date`` ("YYYY-MM-DD").
    """
    now = now or utcnow()
    if user_id is None:
        raise ValidationError("A requester is required")
    count = _slot_count(slot_count)
    try:
        local_date = parse_date(date)
        start_local = parse_hhmm(start_time)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc

    org = get_organization(org_id)
    _check_consecutive_cap(org, count)
    court = _bookable_court(org, court_id)
    chosen = _slots_from_start(org, court, local_date, start_local, count)
    return _reserve(org, court, local_date, chosen, now, user_id=user_id)


def create_booking_from_slots(org_id, user_id, slots, now=None) -> Booking:
    now = now or utcnow()
    if user_id is None:
        raise ValidationError("A requester is required")
    org = get_organization(org_id)
    court, local_date, chosen = _resolve_slot_selection(org, slots)
    return _reserve(org, court, local_date, chosen, now, user_id=user_id)


def create_guest_booking(org_id, guest_info, slots, now=None) -> Booking:
    now = now or utcnow()
    org = get_organization(org_id)
    if not org.allow_guest_bookings:
        raise PolicyViolation("Guest bookings are not allowed for this organization")

    name, email, phone = _validate_guest(guest_info)
    court, local_date, chosen = _resolve_slot_selection(org, slots)
    guest = _resolve_guest(org, name, email, phone)
    return _reserve(org, court, local_date, chosen, now, user_id=guest.converted_to_user_id, guest=guest)


# ---------- reads ----------
def _load_booking(org_id, booking_id) -> Booking:
    booking = Booking.query.filter_by(id=booking_id, organization_id=org_id).first()
    if not booking:
        raise NotFound("Booking not found")
    return booking


def get_booking(org_id, booking_id, actor_id=None, is_admin=False) -> Booking:
    booking = _load_booking(org_id, booking_id)
    if not is_admin and (actor_id is None or booking.user_id != actor_id):
        raise NotFound("Booking not found")
    return booking


def list_user_bookings(org_id, user_id, status=None, limit=200) -> list:
    q = Booking.query.filter_by(organization_id=org_id, user_id=user_id)
    if status:
        q = q.filter_by(status=status)
    return q.order_by(Booking.created_at.desc()).limit(limit).all()


# ---------- cancellation ----------
def cancel_booking(org_id, booking_id, actor_id, reason=None, is_admin=False, now=None) -> Booking:
    """
    Owners cancel CONFIRMED bookings whose first slot has not started yet
    (minus CANCEL_CUTOFF_HOURS). Admins cancel PENDING_PAYMENT or CONFIRMED
    bookings at any time.
    """
    now = now or utcnow()
    booking = _load_booking(org_id, booking_id)

    if is_admin:
        allowed = BookingStatus.ACTIVE
        reason = (reason or "").strip() or "Admin cancellation"
    else:
        if actor_id is None or booking.user_id != actor_id:
            raise NotFound("Booking not found")
        if booking.status != BookingStatus.CONFIRMED:
            raise NotCancelable("Booking not cancellable")
        cutoff_hours = current_app.config.get("CANCEL_CUTOFF_HOURS", 0)
        first = booking.first_start
        if first is None or first <= now + timedelta(hours=cutoff_hours):
            if cutoff_hours:
                raise NotCancelable(f"Cancellation not allowed within {cutoff_hours} hours of start")
            raise NotCancelable("Booking has already started")
        allowed = (BookingStatus.CONFIRMED,)
        reason = (reason or "").strip() or None

    if booking.status not in allowed:
        raise NotCancelable("Booking not cancellable")

    ledger = ReservationLedger()
    try:
        swapped = ledger.compare_and_set_status(
            booking.id,
            allowed,
            status=BookingStatus.CANCELLED,
            cancelled_at=now,
            cancel_reason=reason[:120] if reason else None,
            expires_at=None,
        )
        if not swapped:
            db.session.rollback()
            raise NotCancelable("Booking not cancellable")
        ledger.release_slots([booking.id], now)
        ledger.settle_payments([booking.id], (PaymentStatus.PENDING, PaymentStatus.FAILED), PaymentStatus.EXPIRED, now)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to cancel booking %s", booking_id)
        raise PersistenceError("Failed to cancel booking") from exc

    db.session.refresh(booking)
    logger.info("Booking %s cancelled by %s (admin=%s)", booking.id, actor_id, is_admin)
    log_event(
        "ADMIN_BOOKING_CANCEL" if is_admin else "BOOKING_CANCEL",
        user_id=actor_id,
        organization_id=org_id,
        entity="booking",
        entity_id=booking.id,
        metadata={"reason": reason},
    )
    return booking


# ---------- payment bridge ----------
@retry_on_persistence_error()
def apply_payment_outcome(booking_id, outcome, gateway_reference=None, amount_cents=None, now=None) -> PaymentOutcomeResult:
    """
    Applies a terminal gateway outcome. Safe to call any number of times:
    it only acts while the booking is PENDING_PAYMENT.

    A success arriving after the booking expired or was cancelled is not
    honoured; it is recorded on the payment and audited for refund.
    """
    now = now or utcnow()
    if outcome not in (OUTCOME_COMPLETED, OUTCOME_FAILED):
        raise ValidationError("outcome must be completed or failed")

    booking = db.session.get(Booking, booking_id) if booking_id is not None else None
    if not booking:
        raise NotFound("Booking not found")
    payment = Payment.query.filter_by(booking_id=booking.id).first()
    if not payment:
        raise NotFound("Payment record not found")

    if amount_cents is not None:
        try:
            amount_cents = int(amount_cents)
        except (TypeError, ValueError):
            raise ValidationError("amount_cents must be an integer") from None
    if amount_cents is not None and amount_cents != booking.total_cents:
        logger.warning(
            "Payment amount mismatch for booking %s: got %s, expected %s",
            booking.id, amount_cents, booking.total_cents,
        )
        raise ValidationError("Payment amount does not match booking total")

    # Keep the checkout session id when the caller sends no reference
    reference = {"gateway_reference": gateway_reference} if gateway_reference else {}

    ledger = ReservationLedger()
    try:
        if outcome == OUTCOME_COMPLETED:
            applied = ledger.compare_and_set_status(
                booking.id,
                (BookingStatus.PENDING_PAYMENT,),
                status=BookingStatus.CONFIRMED,
                expires_at=None,
            )
            if applied:
                ledger.settle_payments(
                    [booking.id],
                    (PaymentStatus.PENDING, PaymentStatus.FAILED),
                    PaymentStatus.COMPLETED,
                    now,
                    paid_at=now,
                    **reference,
                )
        else:
            pending = select(Booking.id).where(
                Booking.id == booking.id,
                Booking.status == BookingStatus.PENDING_PAYMENT,
            )
            result = db.session.execute(
                update(Payment)
                .where(
                    Payment.booking_id == booking.id,
                    Payment.status == PaymentStatus.PENDING,
                    Payment.booking_id.in_(pending),
                )
                .values(status=PaymentStatus.FAILED, updated_at=now, **reference)
                .execution_options(synchronize_session=False)
            )
            applied = result.rowcount == 1
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to apply payment outcome for booking %s", booking_id)
        raise PersistenceError("Failed to apply payment outcome") from exc

    db.session.refresh(booking)
    db.session.refresh(payment)

    if applied:
        action = "PAYMENT_COMPLETED" if outcome == OUTCOME_COMPLETED else "PAYMENT_FAILED"
        logger.info("Booking %s payment %s (reference=%s)", booking.id, outcome, gateway_reference)
        log_event(
            action,
            user_id=booking.user_id,
            organization_id=booking.organization_id,
            entity="booking",
            entity_id=booking.id,
            metadata={"gateway_reference": gateway_reference, "status": booking.status},
        )
        if outcome == OUTCOME_COMPLETED:
            _flag_blocked_confirmation(booking)
    elif outcome == OUTCOME_COMPLETED and booking.status in BookingStatus.RELEASED:
        _record_late_success(booking, payment, gateway_reference, now)

    return PaymentOutcomeResult(booking_id=booking.id, status=booking.status, applied=applied)


def _flag_blocked_confirmation(booking) -> None:
    # A block added while the hold was pending does not stop the payment
    ledger = ReservationLedger()
    blocked = [
        s for s in booking.slots
        if ledger.find_block(s.court_id, s.start_time, s.end_time) is not None
    ]
    if not blocked:
        return
    logger.warning(
        "Booking %s confirmed with %d slots under a court block; needs admin attention",
        booking.id, len(blocked),
    )
    log_event(
        "BOOKING_CONFIRMED_UNDER_BLOCK",
        user_id=booking.user_id,
        organization_id=booking.organization_id,
        entity="booking",
        entity_id=booking.id,
        metadata={"start_times": [s.start_time.isoformat() for s in blocked]},
    )


def _record_late_success(booking, payment, gateway_reference, now) -> None:
    logger.warning(
        "Late payment success for %s booking %s (reference=%s); needs refund",
        booking.status, booking.id, gateway_reference,
    )
    if gateway_reference and not payment.gateway_reference:
        try:
            payment.gateway_reference = gateway_reference
            payment.updated_at = now
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError("Failed to record late payment") from exc
    log_event(
        "PAYMENT_LATE_SUCCESS",
        user_id=booking.user_id,
        organization_id=booking.organization_id,
        entity="booking",
        entity_id=booking.id,
        metadata={"gateway_reference": gateway_reference, "status": booking.status},
    )


# ---------- batch ----------
def complete_finished_bookings(now=None) -> list:
    """Moves CONFIRMED bookings whose last slot has ended to COMPLETED."""
    now = now or utcnow()
    try:
        ids = ReservationLedger().complete_finished(now)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Failed to complete finished bookings")
        raise PersistenceError("Failed to complete bookings") from exc

    if ids:
        logger.info("Completed %d finished bookings", len(ids))
        log_event("BOOKINGS_COMPLETED", entity="booking", metadata={"booking_ids": sorted(ids)})
    return sorted(ids)
