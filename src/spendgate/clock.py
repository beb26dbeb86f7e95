"""Injectable wall clock."""

from datetime import datetime, UTC
from typing import Callable


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)
