from models.db import db
from models.types import UTCDateTime
from utils.timeutil import utcnow


class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(80), unique=True, nullable=False, index=True)

    timezone = db.Column(db.String(64), nullable=False, default="Asia/Singapore")
    currency = db.Column(db.String(10), nullable=False, default="SGD")

    # Booking policy
    booking_window_days = db.Column(db.Integer, nullable=False, default=7)
    slot_duration_minutes = db.Column(db.Integer, nullable=False, default=60)
    max_consecutive_slots = db.Column(db.Integer, nullable=False, default=3)
    payment_timeout_minutes = db.Column(db.Integer, nullable=False, default=15)
    allow_guest_bookings = db.Column(db.Boolean, nullable=False, default=False)

    # Peak pricing; end hour is exclusive
    weekend_is_peak = db.Column(db.Boolean, nullable=False, default=True)
    peak_start_hour = db.Column(db.Integer, nullable=False, default=18)
    peak_end_hour = db.Column(db.Integer, nullable=False, default=21)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False)


class Membership(db.Model):
    __tablename__ = "memberships"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    role = db.Column(db.String(20), nullable=False, default="MEMBER")
    # role values: MEMBER, ADMIN

    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_membership_org_user"),
    )
