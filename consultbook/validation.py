import re
from datetime import datetime, date, time

import pytz

from consultbook.errors import ValidationError


_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TIME_RE = re.compile(r"^\d{2}:\d{2}(:\d{2})?$")


def parse_id(value, field: str = "id") -> int:
    """Accept positive integers or strings of digits."""
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field} format")
    if isinstance(value, int):
        if value > 0:
            return value
        raise ValidationError(f"Invalid {field} format")
    if isinstance(value, str) and value.isdigit() and int(value) > 0:
        return int(value)
    raise ValidationError(f"Invalid {field} format")


def parse_date(value, field: str = "date") -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationError(f"Invalid {field} format. Expected YYYY-MM-DD")
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value}")


def parse_time(value, field: str = "time") -> time:
    if isinstance(value, time):
        return value
    if not isinstance(value, str) or not _TIME_RE.match(value):
        raise ValidationError(f"Invalid {field} format. Expected HH:MM")
    fmt = "%H:%M:%S" if value.count(":") == 2 else "%H:%M"
    try:
        return datetime.strptime(value, fmt).time()
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value}")


def parse_timezone(value, default: str = "UTC") -> str:
    tzname = (value or default).strip() or default
    try:
        pytz.timezone(tzname)
    except pytz.UnknownTimeZoneError:
        raise ValidationError(f"Unknown timezone: {tzname}")
    return tzname


def parse_capacity(value) -> int:
    if value is None:
        return 1
    if isinstance(value, bool):
        raise ValidationError("max_bookings must be a positive integer")
    try:
        capacity = int(value)
    except (TypeError, ValueError):
        raise ValidationError("max_bookings must be a positive integer")
    if capacity < 1:
        raise ValidationError("max_bookings must be a positive integer")
    return capacity


def require_fields(data: dict, *fields: str) -> None:
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
