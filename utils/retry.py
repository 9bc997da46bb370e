import logging
import time
from functools import wraps

from flask import current_app

from services.errors import PersistenceError

logger = logging.getLogger(__name__)


def retry_on_persistence_error(max_attempts: int = None, backoff_seconds: float = None):
    """
    Retries the wrapped call on PersistenceError with exponential backoff.

    Only for idempotent operations (expiration sweep, payment outcome).
    Defaults come from PERSISTENCE_RETRY_ATTEMPTS and
    PERSISTENCE_RETRY_BACKOFF_SECONDS.
    """
    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            attempts = max_attempts or current_app.config.get("PERSISTENCE_RETRY_ATTEMPTS", 3)
            backoff = backoff_seconds
            if backoff is None:
                backoff = current_app.config.get("PERSISTENCE_RETRY_BACKOFF_SECONDS", 0.2)

            for attempt in range(1, attempts + 1):
                try:
                    return fn(*args, **kwargs)
                except PersistenceError as exc:
                    if attempt == attempts:
                        logger.error("All %d attempts failed for %s: %s", attempts, fn.__name__, exc)
                        raise
                    wait = backoff * (2 ** (attempt - 1))
                    logger.warning(
                        "Attempt %d/%d failed for %s: %s. Retrying in %.2fs",
                        attempt, attempts, fn.__name__, exc, wait,
                    )
                    time.sleep(wait)
        return wrapper
    return decorator
