import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))

class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # SQLite database file stored beside this file as courtslot.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "courtslot.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Session cookie name for our auth token (Bearer header also accepted)
    AUTH_COOKIE_NAME = "courtslot_session"

    # 8 hours session lifetime
    SESSION_LIFETIME_SECONDS = 8 * 60 * 60

    # Idle timeout: 20 minutes
    IDLE_TIMEOUT_SECONDS = 20 * 60

    # Defaults for new organizations
    DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "Asia/Singapore")
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "SGD")

    # Cancellation policy: owners may cancel until this many hours before start
    CANCEL_CUTOFF_HOURS = int(os.getenv("CANCEL_CUTOFF_HOURS", "0"))

    # Admission control fails fast instead of queueing on a busy court
    BOOKING_LOCK_TIMEOUT_MS = int(os.getenv("BOOKING_LOCK_TIMEOUT_MS", "3000"))

    # Expiration sweeper
    SWEEP_BATCH_SIZE = int(os.getenv("SWEEP_BATCH_SIZE", "500"))
    SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "300"))

    # Retry for idempotent writes (sweep, payment outcome)
    PERSISTENCE_RETRY_ATTEMPTS = int(os.getenv("PERSISTENCE_RETRY_ATTEMPTS", "3"))
    PERSISTENCE_RETRY_BACKOFF_SECONDS = float(os.getenv("PERSISTENCE_RETRY_BACKOFF_SECONDS", "0.2"))

    # Rate limits, shared across workers through the database
    BOOKING_RATE_WINDOW_SECONDS = 60
    BOOKING_RATE_MAX_REQUESTS = 10          # booking attempts per user per window
    AVAILABILITY_RATE_WINDOW_SECONDS = 60
    AVAILABILITY_RATE_MAX_REQUESTS = 60     # availability reads per IP per window

    # Scheduled sweep trigger
    CRON_SECRET = os.getenv("CRON_SECRET")

    # Payments
    STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
    STRIPE_SUCCESS_URL = os.getenv("STRIPE_SUCCESS_URL")
    STRIPE_CANCEL_URL = os.getenv("STRIPE_CANCEL_URL")
    PAYMENT_BRIDGE_SECRET = os.getenv("PAYMENT_BRIDGE_SECRET")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Basic app settings
    DEBUG = False


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    # Threads share the file database in concurrency tests
    SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"check_same_thread": False, "timeout": 30}}

    CRON_SECRET = "test-cron-secret"
    STRIPE_WEBHOOK_SECRET = "whsec_test"
    PAYMENT_BRIDGE_SECRET = "test-bridge-secret"

    PERSISTENCE_RETRY_BACKOFF_SECONDS = 0
    LOG_LEVEL = "DEBUG"
