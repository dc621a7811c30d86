import logging
from datetime import date, timedelta

import pytz
from sqlalchemy import exists
from sqlalchemy.orm import selectinload

from consultbook import db
from consultbook.clock import now_utc
from consultbook.errors import ValidationError, NotFound, Conflict
from consultbook.models import AvailabilitySlot, Booking, BookingStatus
from consultbook.validation import parse_date, parse_time, parse_timezone, parse_capacity


log = logging.getLogger(__name__)

PERIODS = ("day", "week", "month", "all")
UPDATABLE_FIELDS = ("date", "start_time", "end_time", "timezone", "max_bookings", "is_available")
PAST_DATE_MESSAGE = "Cannot schedule availability slots for past dates"


def intervals_overlap(start_a, end_a, start_b, end_b) -> bool:
    # Half-open intervals: touching endpoints do not overlap.
    return start_a < end_b and end_a > start_b


def _local_today(tzname: str) -> date:
    return now_utc().astimezone(pytz.timezone(tzname)).date()


def _build_slot(
    owner_id: int, raw: dict, default_tz: str, position: int = None, allow_past: bool = False,
) -> AvailabilitySlot:
    """Validate one raw slot payload and return an unsaved AvailabilitySlot."""
    prefix = f"Slot {position}: " if position is not None else ""
    try:
        the_date = raw.get("date")
        start = raw.get("start_time", raw.get("startTime"))
        end = raw.get("end_time", raw.get("endTime"))
        if not the_date or not start or not end:
            raise ValidationError("Missing required fields: date, start_time, end_time")
        the_date = parse_date(the_date)
        start = parse_time(start, "start_time")
        end = parse_time(end, "end_time")
        if start >= end:
            raise ValidationError("Start time must be before end time")
        tzname = parse_timezone(raw.get("timezone"), default_tz)
        capacity = parse_capacity(raw.get("max_bookings", raw.get("maxBookings")))
        if not allow_past and the_date < _local_today(tzname):
            raise ValidationError(PAST_DATE_MESSAGE)
    except ValidationError as e:
        raise ValidationError(prefix + e.message)

    return AvailabilitySlot(
        owner_id=owner_id,
        date=the_date,
        start_time=start,
        end_time=end,
        timezone=tzname,
        max_bookings=capacity,
        is_available=True,
    )


def _check_overlap(slot: AvailabilitySlot, exclude_id: int = None) -> None:
    query = AvailabilitySlot.query.filter_by(owner_id=slot.owner_id, date=slot.date)
    if exclude_id is not None:
        query = query.filter(AvailabilitySlot.id != exclude_id)
    for existing in query.all():
        if intervals_overlap(slot.start_time, slot.end_time, existing.start_time, existing.end_time):
            raise Conflict(
                f"Time slot {slot.start_time:%H:%M}-{slot.end_time:%H:%M} on {slot.date.isoformat()} "
                f"overlaps with an existing slot ({existing.start_time:%H:%M}-{existing.end_time:%H:%M})"
            )


def _check_batch_overlap(slots) -> None:
    for i, a in enumerate(slots):
        for j in range(i + 1, len(slots)):
            b = slots[j]
            if a.date == b.date and intervals_overlap(a.start_time, a.end_time, b.start_time, b.end_time):
                raise Conflict(
                    f"Slot {i + 1} and slot {j + 1} overlap each other on {a.date.isoformat()}"
                )


def create(owner_id: int, the_date, start, end, timezone=None, capacity=None, default_tz: str = "UTC"):
    slot = _build_slot(
        owner_id,
        {"date": the_date, "start_time": start, "end_time": end, "timezone": timezone, "max_bookings": capacity},
        default_tz,
    )
    _check_overlap(slot)
    db.session.add(slot)
    db.session.commit()
    log.info("Created slot %s for owner %s on %s", slot.id, owner_id, slot.date)
    return slot


def create_many(owner_id: int, raw_slots, default_tz: str = "UTC"):
    """Validate every slot first; persist all or none."""
    if not isinstance(raw_slots, list) or not raw_slots:
        raise ValidationError("Invalid slots data - must be a non-empty array")

    slots = []
    for index, raw in enumerate(raw_slots, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Slot {index}: must be an object")
        slots.append(_build_slot(owner_id, raw, default_tz, position=index))

    _check_batch_overlap(slots)
    for index, slot in enumerate(slots, start=1):
        try:
            _check_overlap(slot)
        except Conflict as e:
            raise Conflict(f"Slot {index}: {e.message}")

    db.session.add_all(slots)
    db.session.commit()
    log.info("Created %d availability slots for owner %s", len(slots), owner_id)
    return slots


def get_owned(slot_id: int, owner_id: int, lock: bool = False) -> AvailabilitySlot:
    query = AvailabilitySlot.query.filter_by(id=slot_id, owner_id=owner_id)
    if lock:
        query = query.with_for_update()
    slot = query.first()
    if not slot:
        raise NotFound("Availability slot not found or unauthorized")
    return slot


def scheduled_count(slot_id: int) -> int:
    return Booking.query.filter_by(slot_id=slot_id, status=BookingStatus.SCHEDULED).count()


def _unbooked(slot_id: int):
    return ~exists().where(Booking.slot_id == slot_id, Booking.status == BookingStatus.SCHEDULED)


def update(slot_id: int, owner_id: int, fields: dict, default_tz: str = "UTC") -> AvailabilitySlot:
    """Change an unbooked slot.

    The no-scheduled-bookings rule is checked up front for a precise
    error, then enforced again by the UPDATE itself, which only matches
    while the slot has no scheduled booking.
    """
    slot = get_owned(slot_id, owner_id, lock=True)
    active = scheduled_count(slot.id)
    if active:
        db.session.rollback()
        raise Conflict("Cannot modify slot with existing bookings", booking_count=active)

    unknown = set(fields) - set(UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported fields: {', '.join(sorted(unknown))}")

    merged = {
        "date": fields.get("date", slot.date),
        "start_time": fields.get("start_time", slot.start_time),
        "end_time": fields.get("end_time", slot.end_time),
        "timezone": fields.get("timezone", slot.timezone),
        "max_bookings": fields.get("max_bookings", slot.max_bookings),
    }
    if "is_available" in fields and not isinstance(fields["is_available"], bool):
        raise ValidationError("is_available must be a boolean")
    candidate = _build_slot(owner_id, merged, default_tz, allow_past=True)
    # A slot left where it is may already lie in the past; moving one there is refused.
    moved = (candidate.date, candidate.start_time, candidate.timezone) != (
        slot.date, slot.start_time, slot.timezone
    )
    if moved and candidate.date < _local_today(candidate.timezone):
        raise ValidationError(PAST_DATE_MESSAGE)
    _check_overlap(candidate, exclude_id=slot.id)

    values = {
        "date": candidate.date,
        "start_time": candidate.start_time,
        "end_time": candidate.end_time,
        "timezone": candidate.timezone,
        "max_bookings": candidate.max_bookings,
    }
    if "is_available" in fields:
        values["is_available"] = fields["is_available"]
    updated = (
        AvailabilitySlot.query.filter(AvailabilitySlot.id == slot.id, _unbooked(slot.id))
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.session.rollback()
        raise Conflict("Cannot modify slot with existing bookings")
    db.session.commit()
    log.info("Updated slot %s for owner %s", slot_id, owner_id)
    return db.session.get(AvailabilitySlot, slot_id)


def delete(slot_id: int, owner_id: int) -> None:
    slot = get_owned(slot_id, owner_id, lock=True)
    active = scheduled_count(slot.id)
    if active:
        db.session.rollback()
        raise Conflict("Cannot delete slot with existing bookings", booking_count=active)

    # Historical bookings keep their own copy of the window.
    Booking.query.filter(
        Booking.slot_id == slot_id, Booking.status != BookingStatus.SCHEDULED
    ).update({"slot_id": None}, synchronize_session=False)
    deleted = (
        AvailabilitySlot.query.filter(AvailabilitySlot.id == slot_id, _unbooked(slot_id))
        .delete(synchronize_session=False)
    )
    if deleted != 1:
        db.session.rollback()
        raise Conflict("Cannot delete slot with existing bookings")
    db.session.commit()
    log.info("Deleted slot %s for owner %s", slot_id, owner_id)


def query(owner_id: int = None, start_date: date = None, end_date: date = None):
    """Slots with their bookings (all statuses) eager-loaded.

    With ``owner_id`` the owner's slots are returned; without it, every
    open slot across owners.
    """
    q = AvailabilitySlot.query.options(
        selectinload(AvailabilitySlot.bookings),
        selectinload(AvailabilitySlot.owner),
    )
    if owner_id is not None:
        q = q.filter(AvailabilitySlot.owner_id == owner_id)
    else:
        q = q.filter(AvailabilitySlot.is_available.is_(True))
    if start_date is not None:
        q = q.filter(AvailabilitySlot.date >= start_date)
    if end_date is not None:
        q = q.filter(AvailabilitySlot.date <= end_date)
    return q.order_by(AvailabilitySlot.date.asc(), AvailabilitySlot.start_time.asc()).all()


def load_open_slot(slot_id: int, owner_id: int) -> AvailabilitySlot:
    slot = (
        AvailabilitySlot.query.options(selectinload(AvailabilitySlot.bookings))
        .filter_by(id=slot_id, owner_id=owner_id, is_available=True)
        .populate_existing()
        .first()
    )
    if not slot:
        raise NotFound("Availability slot not found or no longer available")
    return slot


def resolve_date_range(period: str = "all", filter_date=None, today: date = None):
    """Translate a named period into an inclusive (start, end) date pair."""
    period = (period or "all").lower()
    if period not in PERIODS:
        raise ValidationError(f"Invalid period. Expected one of: {', '.join(PERIODS)}")
    today = today or now_utc().date()
    base = parse_date(filter_date, "filterDate") if filter_date else today

    if period == "day":
        return base, base
    if period == "week":
        start = base - timedelta(days=base.weekday())
        return start, start + timedelta(days=6)
    if period == "month":
        start = base.replace(day=1)
        next_month = (start + timedelta(days=32)).replace(day=1)
        return start, next_month - timedelta(days=1)
    try:
        one_year = today.replace(year=today.year + 1)
    except ValueError:
        # Feb 29
        one_year = today.replace(year=today.year + 1, day=28)
    # Zones behind UTC can still be on the previous calendar day.
    return today - timedelta(days=1), one_year


def date_range_from_params(params, today: date = None, default_period: str = "all"):
    """(start, end, period) from request-style params.

    Explicit ``startDate``/``endDate`` win over ``period``/``filterDate``.
    """
    start_raw = params.get("startDate") or params.get("start_date")
    end_raw = params.get("endDate") or params.get("end_date")
    if start_raw and end_raw:
        start = parse_date(start_raw, "startDate")
        end = parse_date(end_raw, "endDate")
        if start > end:
            raise ValidationError("startDate must not be after endDate")
        return start, end, "custom"
    period = params.get("period") or default_period
    start, end = resolve_date_range(period, params.get("filterDate"), today)
    return start, end, period
