"""Infrastructure persistence layer."""

from .database import Database, SessionScope
from .models import Base, ensure_utc_aware, utc_now
from .retry import is_lock_error, with_db_retry

__all__ = [
    "Base",
    "Database",
    "SessionScope",
    "ensure_utc_aware",
    "is_lock_error",
    "utc_now",
    "with_db_retry",
]
