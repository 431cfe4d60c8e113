"""Time-of-day directives embedded in issue titles.

An issue titled ``"PM7 Deploy the release"`` should not be processed before
19:00 local time. Titles without a directive (or with an invalid one) are
processed immediately.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

TIME_PATTERN = re.compile(r"(?:^|\s)(AM|PM)\s*(\d{1,2})(?:\s|$)", re.IGNORECASE)

# How late we may be and still fire "today" instead of rolling to tomorrow.
GRACE_WINDOW = timedelta(hours=1)


@dataclass(frozen=True)
class TimeDirective:
    """A parsed ``AM``/``PM`` directive."""

    hour: int
    period: str  # "AM" or "PM"


@dataclass(frozen=True)
class ScheduledWait:
    """How long to wait before an issue may be processed."""

    wait_ms: int
    target_time: datetime

    @property
    def wait_seconds(self) -> float:
        return self.wait_ms / 1000


def parse_time_from_title(title: str) -> Optional[TimeDirective]:
    """Find the first ``AM``/``PM`` hour directive in a title.

    Args:
        title: Issue title

    Returns:
        TimeDirective, or None if there is no directive or the hour is not 1-12
    """
    match = TIME_PATTERN.search(title or "")
    if not match:
        return None

    period = match.group(1).upper()
    hour = int(match.group(2))
    if hour < 1 or hour > 12:
        return None

    return TimeDirective(hour=hour, period=period)


def to_24_hour(hour: int, period: str) -> int:
    """Convert a 12-hour clock value to 24-hour form."""
    if period == "PM" and hour != 12:
        return hour + 12
    if period == "AM" and hour == 12:
        return 0
    return hour


def calculate_target_time(
    hour: int, period: str, now: Optional[datetime] = None
) -> datetime:
    """Compute when a directive should fire relative to ``now``.

    The target is today at the given hour. If ``now`` is more than an hour
    past it, the target moves to the same hour tomorrow.

    Args:
        hour: Hour on the 12-hour clock (1-12)
        period: "AM" or "PM"
        now: Reference time (defaults to the current local time)

    Returns:
        Target datetime (same tz-awareness as ``now``)
    """
    if now is None:
        now = datetime.now()

    target = now.replace(
        hour=to_24_hour(hour, period.upper()), minute=0, second=0, microsecond=0
    )

    if now - target > GRACE_WINDOW:
        target += timedelta(days=1)

    return target


def get_wait(title: str, now: Optional[datetime] = None) -> Optional[ScheduledWait]:
    """Work out how long to wait before processing an issue with this title.

    Returns:
        ScheduledWait, or None when the caller should proceed immediately
        (no directive, invalid directive, or target already passed within
        the grace window)
    """
    directive = parse_time_from_title(title)
    if directive is None:
        return None

    if now is None:
        now = datetime.now()

    target = calculate_target_time(directive.hour, directive.period, now)
    wait_ms = int((target - now).total_seconds() * 1000)

    if wait_ms < 0:
        return None

    return ScheduledWait(wait_ms=wait_ms, target_time=target)
