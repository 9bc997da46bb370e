"""
Expiration sweeper: releases slots held by bookings whose payment window
lapsed. Runs from ``flask sweep-expired``, ``flask run-sweeper``, the cron
endpoint, and lazily before availability reads.
"""
import logging
import threading
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from models import db
from services.errors import PersistenceError
from services.ledger import ReservationLedger
from utils.audit import log_event
from utils.retry import retry_on_persistence_error
from utils.timeutil import utcnow

logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    expired_count: int = 0
    booking_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"expired_count": self.expired_count, "booking_ids": self.booking_ids}


def _expire_batch(now, batch_size: int) -> list:
    try:
        ids = ReservationLedger().expire_due(now, batch_size)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Expiration batch failed: %s", exc)
        raise PersistenceError("Failed to expire bookings") from exc
    return ids


def sweep_expired_bookings(now=None, batch_size: int = None, retry: bool = True) -> SweepResult:
    """
    Expires every PENDING_PAYMENT booking with expires_at before ``now``,
    one batch per transaction. Idempotent: a second run finds nothing.
    """
    now = now or utcnow()
    batch_size = batch_size or current_app.config.get("SWEEP_BATCH_SIZE", 500)
    run_batch = retry_on_persistence_error()(_expire_batch) if retry else _expire_batch

    result = SweepResult()
    while True:
        ids = run_batch(now, batch_size)
        if not ids:
            break
        result.booking_ids.extend(ids)
        result.expired_count += len(ids)
        if len(ids) < batch_size:
            break

    if result.expired_count:
        logger.info("Expired %d unpaid bookings", result.expired_count)
        log_event(
            "BOOKINGS_EXPIRED",
            entity="booking",
            metadata={"booking_ids": result.booking_ids, "count": result.expired_count},
        )
    return result


def expire_stale_bookings(now=None) -> int:
    """
    Best-effort sweep before availability reads. A failure here must not
    break the read, so it is logged and reported as zero.
    """
    try:
        return sweep_expired_bookings(now=now, retry=False).expired_count
    except Exception:
        db.session.rollback()
        logger.exception("Lazy expiration sweep failed")
        return 0


def run_sweeper(interval: float = None, stop_event: threading.Event = None, iterations: int = None) -> int:
    """
    Sweeps every ``interval`` seconds until ``stop_event`` is set or
    ``iterations`` runs completed. Returns the total expired.
    """
    interval = interval or current_app.config.get("SWEEP_INTERVAL_SECONDS", 300)
    stop_event = stop_event or threading.Event()
    total = 0
    runs = 0

    logger.info("Expiration sweeper started (interval=%ss)", interval)
    while not stop_event.is_set():
        try:
            total += sweep_expired_bookings().expired_count
        except PersistenceError:
            logger.exception("Sweep run failed; will retry next interval")
        runs += 1
        if iterations is not None and runs >= iterations:
            break
        stop_event.wait(interval)

    logger.info("Expiration sweeper stopped after %d runs, %d expired", runs, total)
    return total
