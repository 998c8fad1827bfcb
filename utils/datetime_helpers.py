"""
Datetime helper utilities to ensure consistent timezone handling across the engine.

All trade timestamps are stored as timezone-naive UTC (DateTime(timezone=False)).
The lifecycle manager takes a Clock so tests can pin "now".
"""

from datetime import datetime, timezone
from typing import Callable, Optional
import logging

logger = logging.getLogger(__name__)

# Zero-argument callable returning naive UTC "now"
Clock = Callable[[], datetime]


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert timezone-aware datetime to naive UTC datetime.

    Args:
        dt: Datetime that may be timezone-aware or naive

    Returns:
        Naive datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)

    return dt


def get_naive_utc_now() -> datetime:
    """Get current UTC time as naive datetime"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
