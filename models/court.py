from datetime import time

from models.db import db
from models.types import UTCDateTime
from utils.timeutil import utcnow


class Court(db.Model):
    __tablename__ = "courts"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)

    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)

    # Local wall-clock hours in the organization's timezone
    open_time = db.Column(db.Time, nullable=False, default=time(7, 0))
    close_time = db.Column(db.Time, nullable=False, default=time(22, 0))
    # Falls back to the organization's slot duration when null
    slot_duration_minutes = db.Column(db.Integer, nullable=True)

    price_per_hour_cents = db.Column(db.Integer, nullable=False, default=0)
    peak_price_per_hour_cents = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False)

    organization = db.relationship("Organization", lazy="joined")


class CourtBlock(db.Model):
    __tablename__ = "court_blocks"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id"), nullable=False, index=True)
    court_id = db.Column(db.Integer, db.ForeignKey("courts.id"), nullable=False, index=True)

    start_time = db.Column(UTCDateTime, nullable=False)
    end_time = db.Column(UTCDateTime, nullable=False)
    reason = db.Column(db.String(40), nullable=False, default="OTHER")
    # reason values: MAINTENANCE, TOURNAMENT, PRIVATE_EVENT, OTHER

    created_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.Index("ix_court_blocks_court_range", "court_id", "start_time", "end_time"),
    )


BLOCK_REASONS = ("MAINTENANCE", "TOURNAMENT", "PRIVATE_EVENT", "OTHER")
