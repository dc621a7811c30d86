from flask import Blueprint, request
from flask_login import current_user

from consultbook.auth.routes import roles_required
from consultbook.bookings import cancellation, coordinator
from consultbook.clock import now_utc
from consultbook.errors import ValidationError, success
from consultbook.models import Booking
from consultbook.slots import repository, status
from consultbook.validation import require_fields


counterpart_bp = Blueprint("counterpart", __name__, url_prefix="/api/counterpart")


@counterpart_bp.route("/slots", methods=["GET"])
@roles_required("counterpart")
def available_slots():
    now = now_utc()
    start = end = None
    if any(request.args.get(k) for k in ("period", "filterDate", "startDate", "endDate")):
        start, end, _ = repository.date_range_from_params(request.args, today=now.date())

    enriched = []
    for slot in repository.query(start_date=start, end_date=end):
        row = status.enrich(slot, now)
        row["expert_name"] = slot.owner.full_name if slot.owner else "Unknown Expert"
        enriched.append(row)

    bookable = [s for s in enriched if s["status"] in status.BOOKABLE]
    return success(bookable, total=len(bookable), metadata=status.count_by_status(enriched))


@counterpart_bp.route("/bookings", methods=["POST"])
@roles_required("counterpart")
def book_meeting():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    require_fields(data, "availabilityId", "expertId", "meetingDate", "startTime", "endTime")

    result = coordinator.book(
        counterpart_id=current_user.id,
        slot_id=data["availabilityId"],
        owner_id=data["expertId"],
        meeting_date=data["meetingDate"],
        start_time=data["startTime"],
        end_time=data["endTime"],
        meeting_type=data.get("meetingType") or "google_meet",
        title=data.get("title"),
        description=data.get("description"),
    )
    if result.method_used == "google_meet":
        message = "Meeting booked successfully! A Google Meet link has been created and calendar invitations sent."
    else:
        message = "Meeting booked successfully! A Jitsi Meet room has been created for your video call."
    return success(result.booking.to_dict(), status=201, method_used=result.method_used, message=message)


@counterpart_bp.route("/meetings", methods=["GET"])
@roles_required("counterpart")
def my_meetings():
    meetings = (
        Booking.query.filter_by(counterpart_id=current_user.id)
        .order_by(Booking.meeting_date.asc(), Booking.start_time.asc())
        .all()
    )
    rows = []
    for b in meetings:
        row = b.to_dict()
        row["expert_name"] = b.owner.full_name if b.owner else "Unknown Expert"
        rows.append(row)
    return success(rows, total=len(rows))


@counterpart_bp.route("/meetings/<int:booking_id>/cancel", methods=["POST"])
@roles_required("counterpart")
def cancel_meeting(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = data.get("reason") or data.get("cancellationReason")
    booking = cancellation.cancel(booking_id, current_user.id, reason)
    return success(booking.to_dict(), message="Meeting cancelled successfully. The expert has been notified.")
