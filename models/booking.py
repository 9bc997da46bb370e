from sqlalchemy import DDL, event

from models.db import db
from models.types import UTCDateTime
from utils.timeutil import utcnow


class BookingStatus:
    PENDING_PAYMENT = "PENDING_PAYMENT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"

    # Statuses whose slots no longer hold inventory
    RELEASED = (CANCELLED, EXPIRED)
    ACTIVE = (PENDING_PAYMENT, CONFIRMED)


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Exactly one identity is usually set; a converted guest carries both
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    guest_id = db.Column(db.Integer, db.ForeignKey("guests.id"), nullable=True, index=True)

    status = db.Column(db.String(20), nullable=False, default=BookingStatus.PENDING_PAYMENT)
    total_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(10), nullable=False)

    # Only set while PENDING_PAYMENT
    expires_at = db.Column(UTCDateTime, nullable=True)

    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False)
    cancelled_at = db.Column(UTCDateTime, nullable=True)
    cancel_reason = db.Column(db.String(120), nullable=True)
    reminder_sent_at = db.Column(UTCDateTime, nullable=True)

    slots = db.relationship(
        "BookingSlot",
        back_populates="booking",
        order_by="BookingSlot.start_time",
        lazy="selectin",
    )
    payment = db.relationship("Payment", back_populates="booking", uselist=False, lazy="selectin")

    __table_args__ = (
        # Sweeper lookup
        db.Index("ix_bookings_status_expires_at", "status", "expires_at"),
        db.CheckConstraint("user_id IS NOT NULL OR guest_id IS NOT NULL", name="ck_booking_has_requester"),
    )

    @property
    def first_start(self):
        return self.slots[0].start_time if self.slots else None

    @property
    def last_end(self):
        return max((s.end_time for s in self.slots), default=None)


class BookingSlot(db.Model):
    __tablename__ = "booking_slots"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, index=True)
    court_id = db.Column(db.Integer, db.ForeignKey("courts.id"), nullable=False)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    # Half-open [start_time, end_time)
    start_time = db.Column(UTCDateTime, nullable=False)
    end_time = db.Column(UTCDateTime, nullable=False)
    price_in_cents = db.Column(db.Integer, nullable=False)

    # Set in the same transaction that cancels or expires the booking
    released_at = db.Column(UTCDateTime, nullable=True)

    booking = db.relationship("Booking", back_populates="slots")

    __table_args__ = (
        db.Index("ix_booking_slots_court_range", "court_id", "start_time", "end_time"),
        db.CheckConstraint("end_time > start_time", name="ck_booking_slot_positive"),
    )


# Hard business rule: unreleased slots on one court never overlap.
# PostgreSQL enforces it with an exclusion constraint, SQLite with a trigger.
event.listen(
    BookingSlot.__table__,
    "before_create",
    DDL("CREATE EXTENSION IF NOT EXISTS btree_gist").execute_if(dialect="postgresql"),
)
event.listen(
    BookingSlot.__table__,
    "after_create",
    DDL(
        "ALTER TABLE booking_slots ADD CONSTRAINT booking_slots_no_overlap "
        "EXCLUDE USING gist (court_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
        "WHERE (released_at IS NULL)"
    ).execute_if(dialect="postgresql"),
)
event.listen(
    BookingSlot.__table__,
    "after_create",
    DDL(
        "CREATE TRIGGER IF NOT EXISTS booking_slots_no_overlap "
        "BEFORE INSERT ON booking_slots "
        "FOR EACH ROW WHEN NEW.released_at IS NULL "
        "BEGIN "
        "SELECT RAISE(ABORT, 'booking_slots_no_overlap') WHERE EXISTS ("
        "SELECT 1 FROM booking_slots "
        "WHERE court_id = NEW.court_id AND released_at IS NULL "
        "AND start_time < NEW.end_time AND end_time > NEW.start_time"
        "); "
        "END"
    ).execute_if(dialect="sqlite"),
)

OVERLAP_CONSTRAINT_NAME = "booking_slots_no_overlap"
