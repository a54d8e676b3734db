"""
Datetime helper utilities to ensure consistent timezone handling across the application.

All ledger columns are timezone-naive UTC (DateTime(timezone=False)). Values
arriving from HTTP payloads or gateways may be timezone-aware; convert them
here before they reach the store or a time-window comparison.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

logger = logging.getLogger(__name__)


def ensure_naive_datetime(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Convert timezone-aware datetime to naive UTC datetime.

    Args:
        dt: Datetime that may be timezone-aware or naive

    Returns:
        Naive datetime in UTC, or None if input is None

    Example:
        >>> aware_dt = datetime.now(timezone.utc)
        >>> naive_dt = ensure_naive_datetime(aware_dt)
        >>> assert naive_dt.tzinfo is None
    """
    if dt is None:
        return None

    if dt.tzinfo is not None:
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)

    return dt


def get_naive_utc_now() -> datetime:
    """Current UTC time as naive datetime (the ledger's clock)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_isoformat(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a ledger timestamp for JSON output ('Z'-suffixed UTC)"""
    if dt is None:
        return None
    return ensure_naive_datetime(dt).isoformat() + "Z"
