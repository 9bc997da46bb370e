from .db import db
from .user import User
from .organization import Organization, Membership
from .session import Session
from .audit_log import AuditLog
from .rate_limit import RateLimit
from .court import Court, CourtBlock
from .guest import Guest
from .booking import Booking, BookingSlot, BookingStatus
from .payment import Payment, PaymentStatus
