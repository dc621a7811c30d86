"""Derived bookability of availability slots.

A slot's status is never stored. It is computed from the slot, the
bookings that reference it and the current instant every time a slot is
read, so a cancellation frees capacity the moment it is committed.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import pytz

from consultbook.clock import from_naive_utc
from consultbook.models.booking import BookingStatus


EXPIRED = "expired"
FULLY_BOOKED = "fully_booked"
RECENTLY_AVAILABLE = "recently_available"
AVAILABLE = "available"

BOOKABLE = (AVAILABLE, RECENTLY_AVAILABLE)

RECENT_CANCELLATION_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class SlotAvailability:
    status: str
    active_bookings: int
    available_spots: int
    is_expired: bool
    is_fully_booked: bool
    recently_cancelled: bool
    booking_summary: dict = field(default_factory=dict)

    @property
    def is_bookable(self) -> bool:
        return self.status in BOOKABLE

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "current_bookings": self.active_bookings,
            "available_spots": self.available_spots,
            "is_expired": self.is_expired,
            "is_fully_booked": self.is_fully_booked,
            "recently_cancelled": self.recently_cancelled,
            "booking_summary": dict(self.booking_summary),
        }


def summarize_bookings(bookings) -> dict:
    counts = Counter(b.status for b in bookings)
    summary = {"total": len(bookings)}
    for status in BookingStatus.ALL:
        summary[status] = counts.get(status, 0)
    return summary


def derive_status(slot, bookings, now: datetime) -> SlotAvailability:
    """Classify ``slot`` given its ``bookings`` at instant ``now``.

    ``now`` may be naive (taken as UTC) or aware. Expiry is judged on the
    slot's own wall clock, so "today" is the date in ``slot.timezone``.
    First match wins: expired, fully_booked, recently_available, available.
    """
    bookings = list(bookings or [])
    summary = summarize_bookings(bookings)
    active = summary[BookingStatus.SCHEDULED]
    available_spots = slot.max_bookings - active

    now_utc = from_naive_utc(now)
    local_now = now_utc.astimezone(pytz.timezone(slot.timezone or "UTC"))
    today = local_now.date()
    is_expired = slot.date < today or (
        slot.date == today and slot.start_time <= local_now.time()
    )

    recently_cancelled = any(
        b.status == BookingStatus.CANCELLED
        and b.cancelled_at is not None
        and now_utc - from_naive_utc(b.cancelled_at) <= RECENT_CANCELLATION_WINDOW
        for b in bookings
    )

    if is_expired:
        status = EXPIRED
    elif available_spots <= 0:
        status = FULLY_BOOKED
    elif recently_cancelled:
        status = RECENTLY_AVAILABLE
    else:
        status = AVAILABLE

    return SlotAvailability(
        status=status,
        active_bookings=active,
        available_spots=available_spots,
        is_expired=is_expired,
        is_fully_booked=available_spots <= 0,
        recently_cancelled=recently_cancelled,
        booking_summary=summary,
    )


def enrich(slot, now: datetime, bookings=None) -> dict:
    """Slot dict merged with its derived availability."""
    if bookings is None:
        bookings = slot.bookings
    availability = derive_status(slot, bookings, now)
    data = slot.to_dict()
    data.update(availability.to_dict())
    return data


def count_by_status(enriched_slots) -> dict:
    counts = Counter(s["status"] for s in enriched_slots)
    return {
        "total_slots": len(enriched_slots),
        "available_count": counts.get(AVAILABLE, 0),
        "recently_available_count": counts.get(RECENTLY_AVAILABLE, 0),
        "fully_booked_count": counts.get(FULLY_BOOKED, 0),
        "expired_count": counts.get(EXPIRED, 0),
    }
