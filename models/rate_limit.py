from models.db import db
from models.types import UTCDateTime
from utils.timeutil import utcnow


class RateLimit(db.Model):
    __tablename__ = "rate_limits"

    id = db.Column(db.Integer, primary_key=True)
    # bucket: BOOKING or AVAILABILITY; key: user id or client ip
    bucket = db.Column(db.String(40), nullable=False)
    key = db.Column(db.String(64), nullable=False)

    window_start = db.Column(UTCDateTime, nullable=False)
    count = db.Column(db.Integer, default=0, nullable=False)

    updated_at = db.Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint("bucket", "key", name="uq_rate_limit_bucket_key"),
    )
