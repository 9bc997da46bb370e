from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app import create_app
from config import TestConfig
from models import db, Court, Membership, Organization, User
from security.session import create_session

SGT = ZoneInfo("Asia/Singapore")

# Monday 2026-03-02, 08:00 in Singapore
NOW = datetime(2026, 3, 2, 0, 0, tzinfo=timezone.utc)
TOMORROW = "2026-03-03"


def local(y, m, d, hh, mm=0):
    """UTC instant of a Singapore wall-clock time."""
    return datetime(y, m, d, hh, mm, tzinfo=SGT).astimezone(timezone.utc)


def real_tomorrow() -> str:
    """Local date the route tests book on (routes use the real clock)."""
    return (datetime.now(SGT).date() + timedelta(days=1)).isoformat()


@pytest.fixture
def app(tmp_path):
    # A file database so threads in concurrency tests share it
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "courtslot.db")

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def org(app):
    o = Organization(name="Test Club", slug="test-club", timezone="Asia/Singapore", currency="SGD")
    db.session.add(o)
    db.session.commit()
    return o


@pytest.fixture
def other_org(app):
    o = Organization(name="Other Club", slug="other-club", timezone="Asia/Singapore", currency="SGD")
    db.session.add(o)
    db.session.commit()
    return o


def make_court(org, name="Court 1", **kwargs):
    values = dict(
        organization_id=org.id,
        name=name,
        open_time=time(7, 0),
        close_time=time(22, 0),
        price_per_hour_cents=2000,
        peak_price_per_hour_cents=3000,
    )
    values.update(kwargs)
    c = Court(**values)
    db.session.add(c)
    db.session.commit()
    return c


@pytest.fixture
def court(org):
    return make_court(org)


def make_user(email, org=None, role="MEMBER"):
    u = User(email=email, full_name=email.split("@")[0])
    db.session.add(u)
    db.session.flush()
    if org is not None:
        db.session.add(Membership(organization_id=org.id, user_id=u.id, role=role))
    db.session.commit()
    return u


@pytest.fixture
def user(org):
    return make_user("player@example.com", org)


@pytest.fixture
def other_user(org):
    return make_user("other@example.com", org)


@pytest.fixture
def admin(org):
    return make_user("admin@example.com", org, role="ADMIN")


@pytest.fixture
def auth_headers(app):
    def _headers(u):
        return {"Authorization": f"Bearer {create_session(u.id)}"}
    return _headers
