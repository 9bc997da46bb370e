from datetime import time

from flask import current_app

from models import db
from models.court import Court
from models.organization import Organization

DEMO_COURTS = [
    # name, standard, peak (cents per hour)
    ("Court 1", 2000, 3000),
    ("Court 2", 2000, 3000),
    ("Court 3 (indoor)", 2500, 3500),
]

def seed_demo(slug: str = "demo") -> Organization:
    """Creates a demo organization with courts. Safe to run repeatedly."""
    org = Organization.query.filter_by(slug=slug).first()
    if not org:
        org = Organization(
            name="Demo Sports Club",
            slug=slug,
            timezone=current_app.config.get("DEFAULT_TIMEZONE", "Asia/Singapore"),
            currency=current_app.config.get("DEFAULT_CURRENCY", "SGD"),
        )
        db.session.add(org)
        db.session.flush()

    existing = {c.name for c in Court.query.filter_by(organization_id=org.id).all()}
    for order, (name, standard, peak) in enumerate(DEMO_COURTS):
        if name in existing:
            continue
        db.session.add(Court(
            organization_id=org.id,
            name=name,
            sort_order=order,
            open_time=time(7, 0),
            close_time=time(22, 0),
            price_per_hour_cents=standard,
            peak_price_per_hour_cents=peak,
        ))
    db.session.commit()
    return org
