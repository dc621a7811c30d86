"""Reserving a slot for a counterpart.

The capacity and duplicate checks made against the loaded slot are a
fast path that gives callers a precise error. They do not make booking
safe on their own: two requests can pass them at the same time. The
insert itself is guarded in storage, by a lock on the slot row, an
``INSERT ... SELECT ... WHERE scheduled < capacity`` statement and a
partial unique index on (slot_id, counterpart_id) for scheduled rows.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select, insert, func, literal
from sqlalchemy.exc import IntegrityError

from consultbook import db
from consultbook import notifications
from consultbook.clock import now_utc, to_naive_utc
from consultbook.errors import Conflict, NotFound
from consultbook.integrations.meeting_links import (
    MeetingLink, MeetingRequest, PrimaryLink, get_provisioner,
)
from consultbook.models import AvailabilitySlot, Booking, BookingStatus, User
from consultbook.slots import repository
from consultbook.validation import parse_id, parse_date, parse_time


log = logging.getLogger(__name__)

DEFAULT_TITLE = "CV Review Meeting"
DEFAULT_DESCRIPTION = "Professional CV review and feedback session"


@dataclass
class BookingResult:
    booking: Booking
    meeting: MeetingLink

    @property
    def method_used(self) -> str:
        return self.meeting.method


def _scheduled_for(slot, counterpart_id=None):
    return [
        b for b in slot.bookings
        if b.status == BookingStatus.SCHEDULED
        and (counterpart_id is None or b.counterpart_id == counterpart_id)
    ]


def _insert_guarded(slot_id: int, values: dict) -> bool:
    """Insert a scheduled booking only while the slot has room.

    Returns False when the slot was full at write time. Raises
    IntegrityError when the counterpart already holds a scheduled
    booking on the slot.
    """
    # Serializes concurrent bookers of one slot where row locks exist.
    locked = db.session.query(AvailabilitySlot.id).filter_by(id=slot_id).with_for_update().first()
    if locked is None:
        raise NotFound("Availability slot not found or no longer available")

    scheduled = (
        select(func.count(Booking.id))
        .where(Booking.slot_id == slot_id, Booking.status == BookingStatus.SCHEDULED)
        .correlate(None)
        .scalar_subquery()
    )
    capacity = (
        select(AvailabilitySlot.max_bookings)
        .where(AvailabilitySlot.id == slot_id)
        .correlate(None)
        .scalar_subquery()
    )
    columns = list(values)
    table = Booking.__table__
    source = select(*[literal(values[c], table.c[c].type) for c in columns]).where(scheduled < capacity)
    result = db.session.execute(insert(table).from_select(columns, source))
    return result.rowcount == 1


def _log_orphan(meeting: MeetingLink, slot_id: int, counterpart_id: int, why: str) -> None:
    if not isinstance(meeting, PrimaryLink):
        return
    log.error(
        "Orphaned calendar event %s: booking insert for slot %s / counterpart %s failed (%s)",
        meeting.event_id, slot_id, counterpart_id, why,
    )
    get_provisioner().release(meeting.event_id)


def book(
    counterpart_id,
    slot_id,
    owner_id,
    meeting_date,
    start_time,
    end_time,
    meeting_type: str = "google_meet",
    title: str = None,
    description: str = None,
) -> BookingResult:
    counterpart_id = parse_id(counterpart_id, "user ID")
    slot_id = parse_id(slot_id, "availabilityId")
    owner_id = parse_id(owner_id, "expertId")
    meeting_date = parse_date(meeting_date, "meetingDate")
    start_time = parse_time(start_time, "startTime")
    end_time = parse_time(end_time, "endTime")
    title = title or DEFAULT_TITLE
    description = description or DEFAULT_DESCRIPTION

    slot = repository.load_open_slot(slot_id, owner_id)

    now = now_utc()
    if slot.start_at() <= now:
        raise Conflict("Cannot book slots in the past")

    if len(_scheduled_for(slot)) >= slot.max_bookings:
        raise Conflict("This time slot is fully booked")

    if _scheduled_for(slot, counterpart_id):
        raise Conflict("You already have a booking for this time slot")

    if (slot.date, slot.start_time, slot.end_time) != (meeting_date, start_time, end_time):
        raise Conflict("The slot's time window has changed; refresh availability and try again")

    owner = slot.owner
    counterpart = db.session.get(User, counterpart_id)
    if counterpart is None:
        raise NotFound("Applicant account not found")

    meeting = get_provisioner().provision(
        MeetingRequest(
            owner_email=owner.email,
            owner_name=owner.full_name,
            counterpart_email=counterpart.email,
            counterpart_name=counterpart.full_name,
            meeting_date=slot.date,
            start_time=slot.start_time,
            end_time=slot.end_time,
            timezone=slot.timezone,
            title=title,
            description=description,
        ),
        now,
    )

    stamp = to_naive_utc(now)
    values = {
        "slot_id": slot.id,
        "owner_id": owner.id,
        "counterpart_id": counterpart.id,
        "meeting_date": slot.date,
        "start_time": slot.start_time,
        "end_time": slot.end_time,
        "status": BookingStatus.SCHEDULED,
        "meeting_type": meeting_type or "google_meet",
        "title": title,
        "description": description,
        "meeting_link": meeting.link,
        "external_event_id": meeting.event_id,
        "created_at": stamp,
        "updated_at": stamp,
    }
    try:
        inserted = _insert_guarded(slot.id, values)
        if inserted:
            db.session.commit()
    except IntegrityError:
        db.session.rollback()
        _log_orphan(meeting, slot.id, counterpart.id, "duplicate booking")
        raise Conflict("You already have a booking for this time slot")
    except Exception as e:
        db.session.rollback()
        _log_orphan(meeting, slot.id, counterpart.id, str(e) or type(e).__name__)
        raise
    if not inserted:
        db.session.rollback()
        _log_orphan(meeting, slot.id, counterpart.id, "slot full at write time")
        raise Conflict("This time slot is fully booked")

    booking = Booking.query.filter_by(
        slot_id=slot.id, counterpart_id=counterpart.id, status=BookingStatus.SCHEDULED
    ).one()
    log.info(
        "Booking %s created: slot %s, counterpart %s, meeting via %s",
        booking.id, slot.id, counterpart.id, meeting.method,
    )

    try:
        notifications.send_meeting_invitations(booking, owner, counterpart, meeting.method)
    except Exception as e:
        log.warning("Failed to send meeting invitations for booking %s: %s", booking.id, e)

    return BookingResult(booking=booking, meeting=meeting)
