from models.db import db
from models.types import UTCDateTime
from utils.timeutil import utcnow


class User(db.Model):
    """
    Identity record for an authenticated caller.

    Credentials live with the authentication provider; this row only anchors
    bookings, sessions and memberships.
    """
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(120), nullable=True)
    phone_number = db.Column(db.String(30), nullable=True)

    created_at = db.Column(UTCDateTime, default=utcnow, nullable=False)

    memberships = db.relationship("Membership", backref="user", lazy="selectin")

    def role_in(self, organization_id: int):
        for m in self.memberships:
            if m.organization_id == organization_id:
                return m.role
        return None
