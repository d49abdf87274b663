"""Wall clock helpers shared by the services."""

from datetime import datetime, timezone
from typing import Callable, Optional

from dateutil import tz

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(now: datetime, timezone_name: Optional[str] = None) -> datetime:
    """Return the most recent midnight in the given zone, as an aware datetime.

    ``timezone_name`` of None uses the host's local zone.
    """
    zone = tz.gettz(timezone_name) if timezone_name else tz.tzlocal()
    if zone is None:
        raise ValueError(f"Unknown timezone: {timezone_name}")
    local_now = now.astimezone(zone)
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    # Zones that skip midnight on a DST change start the day at the first valid instant.
    return tz.resolve_imaginary(midnight)
