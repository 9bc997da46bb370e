from models.db import db
from models.types import UTCDateTime
from utils.timeutil import utcnow


class PaymentStatus:
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    booking_id = db.Column(db.Integer, db.ForeignKey("bookings.id"), nullable=False, unique=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    provider = db.Column(db.String(20), nullable=False, default="STRIPE")
    amount_cents = db.Column(db.Integer, nullable=False)   # smallest unit
    currency = db.Column(db.String(10), nullable=False)

    status = db.Column(db.String(20), nullable=False, default=PaymentStatus.PENDING)
    gateway_reference = db.Column(db.String(255), nullable=True, index=True)

    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False)
    paid_at = db.Column(UTCDateTime, nullable=True)
    updated_at = db.Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    booking = db.relationship("Booking", back_populates="payment")
