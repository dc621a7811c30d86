import logging

from consultbook import db
from consultbook import notifications
from consultbook.clock import now_utc, to_naive_utc
from consultbook.errors import Conflict, NotFound, Unauthorized, ValidationError
from consultbook.integrations.meeting_links import get_provisioner
from consultbook.models import Booking, BookingStatus, User
from consultbook.validation import parse_id


log = logging.getLogger(__name__)


def _transition(booking_id: int, values: dict) -> bool:
    # Only a scheduled row may move; a concurrent transition leaves rowcount 0.
    updated = (
        Booking.query.filter_by(id=booking_id, status=BookingStatus.SCHEDULED)
        .update(values, synchronize_session=False)
    )
    if updated != 1:
        db.session.rollback()
        return False
    db.session.commit()
    return True


def cancel(booking_id, actor_id, reason: str = None) -> Booking:
    """Cancel a scheduled booking on behalf of its owner or its counterpart.

    The slot row is left alone: capacity comes back because derived
    status only counts scheduled bookings.
    """
    booking_id = parse_id(booking_id, "meeting ID")
    actor_id = parse_id(actor_id, "user ID")

    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("Meeting not found")

    owner_ids = {booking.owner_id}
    if booking.slot is not None:
        owner_ids.add(booking.slot.owner_id)
    if actor_id not in owner_ids and actor_id != booking.counterpart_id:
        raise Unauthorized("You do not have permission to cancel this meeting")

    if booking.status != BookingStatus.SCHEDULED:
        raise Conflict(f"Cannot cancel a meeting that is {booking.status}")

    stamp = to_naive_utc(now_utc())
    reason = (reason or "").strip() or None
    if not _transition(booking_id, {
        "status": BookingStatus.CANCELLED,
        "cancelled_at": stamp,
        "cancelled_by": actor_id,
        "cancellation_reason": reason,
        "updated_at": stamp,
    }):
        raise Conflict("Meeting is no longer scheduled")

    booking = db.session.get(Booking, booking_id)
    log.info("Booking %s cancelled by user %s", booking.id, actor_id)

    if booking.external_event_id:
        get_provisioner().release(booking.external_event_id)

    try:
        actor = db.session.get(User, actor_id)
        notifications.send_cancellation_notice(booking, actor, reason)
    except Exception as e:
        log.warning("Failed to send cancellation notice for booking %s: %s", booking.id, e)

    return booking


def complete(booking_id, owner_id) -> Booking:
    booking_id = parse_id(booking_id, "meeting ID")
    owner_id = parse_id(owner_id, "user ID")

    booking = Booking.query.filter_by(id=booking_id, owner_id=owner_id).first()
    if booking is None:
        raise NotFound("Meeting not found or access denied")
    if booking.status != BookingStatus.SCHEDULED:
        raise Conflict("Only scheduled meetings can be marked as completed")

    stamp = to_naive_utc(now_utc())
    if not _transition(booking_id, {"status": BookingStatus.COMPLETED, "updated_at": stamp}):
        raise Conflict("Only scheduled meetings can be marked as completed")

    booking = db.session.get(Booking, booking_id)
    log.info("Booking %s marked completed by owner %s", booking.id, owner_id)
    return booking


def set_notes(booking_id, owner_id, notes) -> Booking:
    """Attach the owner's private notes to one of their bookings, in any status."""
    booking_id = parse_id(booking_id, "meeting ID")
    owner_id = parse_id(owner_id, "user ID")
    if not isinstance(notes, str):
        raise ValidationError("Notes must be a string")

    booking = Booking.query.filter_by(id=booking_id, owner_id=owner_id).first()
    if booking is None:
        raise NotFound("Meeting not found or access denied")

    booking.notes = notes.strip()
    booking.updated_at = to_naive_utc(now_utc())
    db.session.commit()
    log.info("Notes updated on booking %s by owner %s", booking.id, owner_id)
    return booking
