"""booking slot overlap guard

Revision ID: 2b3c4d5e6f7a
Revises: 1a2b3c4d5e6f
Create Date: 2026-10-01 00:10:00.000000

"""
from alembic import op


# revision identifiers, used by Alembic.
revision = "2b3c4d5e6f7a"
down_revision = "1a2b3c4d5e6f"
branch_labels = None
depends_on = None


def upgrade():
    dialect = op.get_bind().dialect.name
    if dialect == "postgresql":
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE booking_slots ADD CONSTRAINT booking_slots_no_overlap "
            "EXCLUDE USING gist (court_id WITH =, tsrange(start_time, end_time, '[)') WITH &&) "
            "WHERE (released_at IS NULL)"
        )
    elif dialect == "sqlite":
        op.execute(
            "CREATE TRIGGER IF NOT EXISTS booking_slots_no_overlap "
            "BEFORE INSERT ON booking_slots "
            "FOR EACH ROW WHEN NEW.released_at IS NULL "
            "BEGIN "
            "SELECT RAISE(ABORT, 'booking_slots_no_overlap') WHERE EXISTS ("
            "SELECT 1 FROM booking_slots "
            "WHERE court_id = NEW.court_id AND released_at IS NULL "
            "AND start_time < NEW.end_time AND end_time > NEW.start_time"
            "); "
            "END"
        )


def downgrade():
    dialect = op.get_bind().dialect.name
    if dialect == "postgresql":
        op.execute("ALTER TABLE booking_slots DROP CONSTRAINT IF EXISTS booking_slots_no_overlap")
    elif dialect == "sqlite":
        op.execute("DROP TRIGGER IF EXISTS booking_slots_no_overlap")
