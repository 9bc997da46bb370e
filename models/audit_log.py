from models.db import db
from models.types import UTCDateTime
from utils.timeutil import utcnow


class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True)  # nullable for guest, webhook and cron events
    action = db.Column(db.String(80), nullable=False)  # e.g. BOOKING_CREATE, BOOKINGS_EXPIRED
    entity = db.Column(db.String(80), nullable=True)   # e.g. booking, court_block
    entity_id = db.Column(db.String(80), nullable=True)

    ip = db.Column(db.String(64), nullable=True)
    user_agent = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.Text, nullable=True)

    timestamp = db.Column(UTCDateTime, default=utcnow, nullable=False)
