from models.db import db
from models.types import UTCDateTime
from utils.timeutil import utcnow


class Guest(db.Model):
    __tablename__ = "guests"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    phone = db.Column(db.String(30), nullable=True)

    # Set once the guest signs up; their later bookings carry the user id too
    converted_to_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    total_bookings = db.Column(db.Integer, nullable=False, default=0)
    last_booking_at = db.Column(UTCDateTime, nullable=True)
    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("organization_id", "email", name="uq_guest_org_email"),
    )
