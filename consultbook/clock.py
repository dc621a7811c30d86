from datetime import datetime, timezone

from flask import current_app


EXTENSION_KEY = "consultbook.clock"


class SystemClock:
    """Wall clock; every read of "now" in the booking code goes through a clock."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def init_clock(app, clock=None):
    app.extensions[EXTENSION_KEY] = clock or SystemClock()


def get_clock():
    return current_app.extensions[EXTENSION_KEY]


def now_utc() -> datetime:
    return get_clock().now().astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    # DateTime columns hold naive UTC
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def from_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
