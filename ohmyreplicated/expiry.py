"""Expiration dates for the ``expires-on`` label."""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta

NEVER = "never"
DEFAULT_DURATION = "1d"

_DURATION_RE = re.compile(r"^\+?(\d+)\s*([A-Za-z]*)$")

_UNITS = {
    "": "d",
    "d": "d",
    "day": "d",
    "days": "d",
    "w": "w",
    "week": "w",
    "weeks": "w",
    "m": "m",
    "month": "m",
    "months": "m",
    "y": "y",
    "year": "y",
    "years": "y",
    "h": "h",
    "hour": "h",
    "hours": "h",
}


def _add_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class Duration:
    """A non-negative count of calendar units (d, w, m, y or h)."""

    count: int
    unit: str = "d"

    def apply(self, moment: datetime) -> datetime:
        if self.unit == "h":
            return moment + timedelta(hours=self.count)
        if self.unit == "d":
            return moment + timedelta(days=self.count)
        if self.unit == "w":
            return moment + timedelta(weeks=self.count)
        if self.unit == "m":
            return _add_months(moment, self.count)
        return _add_months(moment, 12 * self.count)


def parse_duration(token: str) -> Duration:
    """Parse ``3d``, ``2w``, ``1m``, ``1y``, ``12h`` or a bare day count.

    Single-letter units are lowercase only, so ``M`` (minutes to BSD ``date``)
    is rejected rather than read as months.

    :raises ValueError: If the token is not a recognised duration
    """
    match = _DURATION_RE.match(token.strip())
    if not match:
        raise ValueError(f"Invalid duration: {token}")
    count, unit = match.groups()
    normalized = _UNITS.get(unit if len(unit) <= 1 else unit.lower())
    if normalized is None:
        raise ValueError(f"Invalid duration unit '{unit}' in: {token}")
    return Duration(int(count), normalized)


@dataclass(frozen=True)
class ExpiresOn:
    date: date

    @property
    def label(self) -> str:
        return self.date.isoformat()


@dataclass(frozen=True)
class NeverExpires:
    @property
    def label(self) -> str:
        return NEVER


Expiration = ExpiresOn | NeverExpires


def compute_expiration(duration: str = DEFAULT_DURATION, now: datetime | None = None) -> ExpiresOn:
    """Today's date advanced by ``duration``.

    :raises ValueError: If the token is invalid or lands past year 9999
    """
    moment = now or datetime.now()
    try:
        return ExpiresOn(parse_duration(duration).apply(moment).date())
    except (OverflowError, ValueError) as e:
        raise ValueError(f"Invalid duration: {duration}") from e


def resolve_expiration(token: str | None = None, now: datetime | None = None) -> Expiration:
    """Resolve a ``-d`` option value into an expiration.

    ``None`` means the default of one day. ``never`` skips date arithmetic.

    :raises ValueError: If the token is neither ``never`` nor a duration
    """
    if token is None:
        return compute_expiration(DEFAULT_DURATION, now)
    if token == NEVER:
        return NeverExpires()
    return compute_expiration(token, now)
