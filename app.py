import logging
import logging.config

from flask import Flask, jsonify
from config import Config
from routes import health_bp, availability_bp, booking_bp, admin_bp, payments_bp, webhook_bp, cron_bp

from models import db
from flask_migrate import Migrate
from services.errors import BookingError
from utils.auth_context import load_current_user

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "default"},
        },
        "root": {"level": level, "handlers": ["console"]},
        "loggers": {
            # SQL echo stays off unless asked for explicitly
            "sqlalchemy.engine": {"level": "WARNING"},
        },
    })


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(availability_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(cron_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        if exc.status >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        return jsonify(exc.to_dict()), exc.status

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        # API only; the frontend is served separately
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------
import click
from models.user import User
from models.organization import Membership
from security.rbac import ROLE_ADMIN
from security.session import create_session
from services.booking import complete_finished_bookings
from services.sweeper import run_sweeper, sweep_expired_bookings
from utils.seed import seed_demo

def register_cli(app):
    @app.cli.command("sweep-expired")
    def sweep_expired():
        """Expire unpaid bookings whose payment window lapsed."""
        result = sweep_expired_bookings()
        click.echo(f"Expired {result.expired_count} bookings")

    @app.cli.command("run-sweeper")
    @click.option("--interval", type=float, default=None, help="Seconds between sweeps.")
    @click.option("--iterations", type=int, default=None, help="Stop after N sweeps.")
    def sweeper(interval, iterations):
        """Run the expiration sweeper in a loop."""
        total = run_sweeper(interval=interval, iterations=iterations)
        click.echo(f"Sweeper stopped; expired {total} bookings")

    @app.cli.command("complete-bookings")
    def complete_bookings():
        """Mark confirmed bookings whose slots have ended as COMPLETED."""
        ids = complete_finished_bookings()
        click.echo(f"Completed {len(ids)} bookings")

    @app.cli.command("seed-demo")
    @click.option("--slug", default="demo")
    def seed(slug):
        """Create a demo organization with courts."""
        org = seed_demo(slug)
        click.echo(f"Organization {org.slug} ready (id={org.id})")

    @app.cli.command("make-admin")
    @click.argument("email")
    @click.argument("org_id", type=int)
    def make_admin(email, org_id):
        """Grant ADMIN membership of an organization (bootstrap)."""
        email = email.strip().lower()
        user = User.query.filter_by(email=email).first()
        if not user:
            user = User(email=email)
            db.session.add(user)
            db.session.flush()

        membership = Membership.query.filter_by(organization_id=org_id, user_id=user.id).first()
        if not membership:
            membership = Membership(organization_id=org_id, user_id=user.id)
            db.session.add(membership)
        membership.role = ROLE_ADMIN
        db.session.commit()

        click.echo(f"{user.email} is ADMIN of organization {org_id}")

    @app.cli.command("issue-session")
    @click.argument("email")
    def issue_session(email):
        """Print a session token for a user (development)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            raise click.ClickException("User not found")
        click.echo(create_session(user.id))

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
