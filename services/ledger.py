"""
Reservation ledger: the committed booking slots and court blocks of a court.

All reads and writes of occupancy go through ``ReservationLedger`` so the
admission-control transaction in ``services.booking`` is the only place that
inserts slots. The database backs it up with an overlap guard on
``booking_slots`` (see ``models.booking``).
"""
from sqlalchemy import func, or_, select, text, update

from models import db
from models.booking import Booking, BookingSlot, BookingStatus
from models.court import Court, CourtBlock
from models.guest import Guest
from models.payment import Payment, PaymentStatus
from models.user import User

PAYMENT_TIMEOUT_REASON = "payment timeout"


class ReservationLedger:

    def __init__(self, session=None):
        self.session = session or db.session

    @property
    def dialect(self) -> str:
        return self.session.get_bind().dialect.name

    # ---------- locking ----------
    def lock_court(self, court_id: int, timeout_ms: int = None):
        """
        Serializes writers on one court for the rest of the transaction.

        PostgreSQL takes a row lock on the court and fails fast after
        ``timeout_ms``. SQLite ignores FOR UPDATE; ``lock_requester`` takes
        its write lock instead.
        """
        if timeout_ms and self.dialect == "postgresql":
            self.session.execute(text(f"SET LOCAL lock_timeout = {int(timeout_ms)}"))
            self.session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))
        return self.session.execute(
            select(Court.id).where(Court.id == court_id).with_for_update()
        ).scalar_one_or_none()

    def lock_requester(self, user_id=None, guest_id=None):
        """
        Serializes one requester's admissions across courts so the daily cap
        is counted against committed bookings only. PostgreSQL row-locks the
        user and guest rows. SQLite has no row locks; a no-op update there
        takes the database write lock for the rest of the transaction.
        """
        for model, key in ((User, user_id), (Guest, guest_id)):
            if key is None:
                continue
            if self.dialect == "sqlite":
                self.session.execute(
                    update(model)
                    .where(model.id == key)
                    .values(id=model.id)
                    .execution_options(synchronize_session=False)
                )
            else:
                self.session.execute(select(model.id).where(model.id == key).with_for_update())

    # ---------- reads ----------
    def _committed_slots(self, court_id: int, start, end):
        return (
            select(BookingSlot)
            .join(Booking, BookingSlot.booking_id == Booking.id)
            .where(
                BookingSlot.court_id == court_id,
                Booking.status.notin_(BookingStatus.RELEASED),
                BookingSlot.start_time < end,
                BookingSlot.end_time > start,
            )
        )

    def _blocks(self, court_id: int, start, end):
        return select(CourtBlock).where(
            CourtBlock.court_id == court_id,
            CourtBlock.start_time < end,
            CourtBlock.end_time > start,
        )

    def find_overlapping(self, court_id: int, start, end):
        """First committed booking slot or block intersecting [start, end), else None."""
        slot = self.session.execute(self._committed_slots(court_id, start, end).limit(1)).scalar()
        if slot is not None:
            return slot
        return self.find_block(court_id, start, end)

    def find_block(self, court_id: int, start, end):
        return self.session.execute(self._blocks(court_id, start, end).limit(1)).scalar()

    def find_confirmed_overlap(self, court_id: int, start, end):
        stmt = (
            self._committed_slots(court_id, start, end)
            .where(Booking.status == BookingStatus.CONFIRMED)
            .limit(1)
        )
        return self.session.execute(stmt).scalar()

    def occupied_intervals(self, court_id: int, start, end) -> list:
        slots = self.session.execute(self._committed_slots(court_id, start, end)).scalars().all()
        blocks = self.session.execute(self._blocks(court_id, start, end)).scalars().all()
        return [(s.start_time, s.end_time) for s in slots] + [(b.start_time, b.end_time) for b in blocks]

    def count_requester_slots(self, organization_id: int, day_start, day_end, user_id=None, guest_id=None) -> int:
        stmt = (
            select(func.count(BookingSlot.id))
            .join(Booking, BookingSlot.booking_id == Booking.id)
            .where(
                BookingSlot.organization_id == organization_id,
                Booking.status.notin_(BookingStatus.RELEASED),
                BookingSlot.start_time >= day_start,
                BookingSlot.start_time < day_end,
            )
        )
        # A converted guest also answers for the bookings of its user account
        owners = []
        if user_id is not None:
            owners.append(Booking.user_id == user_id)
        if guest_id is not None:
            owners.append(Booking.guest_id == guest_id)
        if not owners:
            return 0
        stmt = stmt.where(or_(*owners))
        return self.session.execute(stmt).scalar() or 0

    def count_active_slots(self, court_id: int) -> int:
        stmt = (
            select(func.count(BookingSlot.id))
            .join(Booking, BookingSlot.booking_id == Booking.id)
            .where(BookingSlot.court_id == court_id, Booking.status.in_(BookingStatus.ACTIVE))
        )
        return self.session.execute(stmt).scalar() or 0

    # ---------- writes ----------
    def insert_booking_with_slots(self, org, court, slots, expires_at, user_id=None, guest_id=None, provider="STRIPE"):
        """
        Adds the booking, its slots and its pending payment, then flushes so
        the overlap guard fires inside the caller's transaction.
        """
        total = sum(s.price_cents for s in slots)
        booking = Booking(
            organization_id=org.id,
            user_id=user_id,
            guest_id=guest_id,
            status=BookingStatus.PENDING_PAYMENT,
            total_cents=total,
            currency=org.currency,
            expires_at=expires_at,
        )
        self.session.add(booking)
        self.session.flush()

        for s in slots:
            self.session.add(BookingSlot(
                booking_id=booking.id,
                court_id=court.id,
                organization_id=org.id,
                start_time=s.start,
                end_time=s.end,
                price_in_cents=s.price_cents,
            ))
        self.session.add(Payment(
            booking_id=booking.id,
            organization_id=org.id,
            provider=provider,
            amount_cents=total,
            currency=org.currency,
            status=PaymentStatus.PENDING,
        ))
        self.session.flush()
        return booking

    def compare_and_set_status(self, booking_id: int, expected, **values) -> bool:
        """Applies ``values`` only if the booking is still in one of ``expected``."""
        result = self.session.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(tuple(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release_slots(self, booking_ids, now) -> None:
        self.session.execute(
            update(BookingSlot)
            .where(BookingSlot.booking_id.in_(list(booking_ids)), BookingSlot.released_at.is_(None))
            .values(released_at=now)
            .execution_options(synchronize_session=False)
        )

    def settle_payments(self, booking_ids, from_statuses, to_status, now, **values) -> int:
        result = self.session.execute(
            update(Payment)
            .where(Payment.booking_id.in_(list(booking_ids)), Payment.status.in_(tuple(from_statuses)))
            .values(status=to_status, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def expire_due(self, now, limit: int) -> list:
        """
        Expires one batch of PENDING_PAYMENT bookings whose hold lapsed
        before ``now``. Booking, payment and slot release change together in
        the caller's transaction. Returns the ids actually expired.
        """
        candidates = self.session.execute(
            select(Booking.id)
            .where(Booking.status == BookingStatus.PENDING_PAYMENT, Booking.expires_at < now)
            .order_by(Booking.expires_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        ).scalars().all()
        if not candidates:
            return []

        # Re-checked status: a payment confirmation may have won the race
        expired = self.session.execute(
            update(Booking)
            .where(Booking.id.in_(candidates), Booking.status == BookingStatus.PENDING_PAYMENT)
            .values(
                status=BookingStatus.EXPIRED,
                cancelled_at=now,
                cancel_reason=PAYMENT_TIMEOUT_REASON,
                expires_at=None,
            )
            .returning(Booking.id)
            .execution_options(synchronize_session=False)
        ).scalars().all()
        if not expired:
            return []

        self.settle_payments(
            expired,
            (PaymentStatus.PENDING, PaymentStatus.FAILED),
            PaymentStatus.EXPIRED,
            now,
        )
        self.release_slots(expired, now)
        return sorted(expired)

    def complete_finished(self, now) -> list:
        last_end = (
            select(BookingSlot.booking_id, func.max(BookingSlot.end_time).label("last_end"))
            .group_by(BookingSlot.booking_id)
            .subquery()
        )
        finished = select(last_end.c.booking_id).where(last_end.c.last_end <= now)
        return self.session.execute(
            update(Booking)
            .where(Booking.status == BookingStatus.CONFIRMED, Booking.id.in_(finished))
            .values(status=BookingStatus.COMPLETED)
            .returning(Booking.id)
            .execution_options(synchronize_session=False)
        ).scalars().all()
