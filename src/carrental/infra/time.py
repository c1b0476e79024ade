"""Time utilities for consistent timestamp handling."""

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return current UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Return the current UTC calendar date.

    Rental dates are plain calendar dates; the sweeper compares them
    against this value, never against local server time.
    """
    return utc_now().date()
