from .health import health_bp
from .availability import availability_bp
from .booking import booking_bp
from .admin import admin_bp
from .payments import payments_bp
from .stripe_webhook import webhook_bp
from .cron import cron_bp
