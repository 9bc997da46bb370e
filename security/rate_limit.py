from datetime import timedelta
from functools import wraps
from flask import g, jsonify, request, current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.rate_limit import RateLimit
from utils.timeutil import utcnow

def _client_ip() -> str:
    return request.headers.get("X-Forwarded-For", request.remote_addr) or "unknown"

def _caller_key() -> str:
    user = getattr(g, "user", None)
    if user is not None:
        return f"user:{user.id}"
    return f"ip:{_client_ip()}"[:64]

def check_and_increment(bucket: str, key: str, window_seconds: int, max_requests: int) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    Fixed window per (bucket, key), stored in the database so every worker
    process shares the same counters.
    """
    now = utcnow()

    row = RateLimit.query.filter_by(bucket=bucket, key=key).first()
    if not row:
        row = RateLimit(bucket=bucket, key=key, window_start=now, count=0)
        db.session.add(row)
        try:
            db.session.flush()
        except IntegrityError:
            # Another worker created the counter first
            db.session.rollback()
            row = RateLimit.query.filter_by(bucket=bucket, key=key).first()

    window_end = row.window_start + timedelta(seconds=window_seconds)

    # Reset window if expired
    if now >= window_end:
        row.window_start = now
        row.count = 0
        window_end = row.window_start + timedelta(seconds=window_seconds)

    row.count += 1
    db.session.commit()

    if row.count > max_requests:
        retry_after = int((window_end - now).total_seconds())
        return False, max(retry_after, 1)

    return True, 0

def rate_limited(bucket: str):
    """
    Usage: @rate_limited("BOOKING") reads BOOKING_RATE_WINDOW_SECONDS and
    BOOKING_RATE_MAX_REQUESTS from config.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            window = current_app.config.get(f"{bucket}_RATE_WINDOW_SECONDS", 60)
            max_requests = current_app.config.get(f"{bucket}_RATE_MAX_REQUESTS", 60)
            allowed, retry_after = check_and_increment(bucket, _caller_key(), window, max_requests)
            if not allowed:
                resp = jsonify(error="Too many requests. Try again later.", retry_after=retry_after)
                resp.status_code = 429
                resp.headers["Retry-After"] = str(retry_after)
                return resp
            return fn(*args, **kwargs)
        return wrapper
    return decorator
