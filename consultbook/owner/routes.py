import logging

from flask import Blueprint, current_app, request
from flask_login import current_user

from consultbook.auth.routes import roles_required
from consultbook.bookings import cancellation
from consultbook.clock import now_utc
from consultbook.errors import ValidationError, success
from consultbook.models import Booking, BookingStatus
from consultbook.slots import repository, status


log = logging.getLogger(__name__)

owner_bp = Blueprint("owner", __name__, url_prefix="/api/owner")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@owner_bp.route("/slots", methods=["GET"])
@roles_required("owner")
def list_slots():
    now = now_utc()
    start, end, period = repository.date_range_from_params(request.args, today=now.date())
    slots = repository.query(owner_id=current_user.id, start_date=start, end_date=end)
    enriched = [status.enrich(s, now) for s in slots]
    log.info("Found %d availability slots for owner %s (%s)", len(enriched), current_user.id, period)
    return success(
        enriched,
        metadata=status.count_by_status(enriched),
        filter={
            "period": period,
            "filterDate": request.args.get("filterDate"),
            "startDate": start.isoformat(),
            "endDate": end.isoformat(),
            "total_slots": len(enriched),
        },
    )


@owner_bp.route("/slots", methods=["POST"])
@roles_required("owner")
def create_slots():
    data = _json_body()
    slots = repository.create_many(
        current_user.id, data.get("slots"), default_tz=current_app.config["DEFAULT_SLOT_TIMEZONE"]
    )
    now = now_utc()
    return success([status.enrich(s, now, bookings=[]) for s in slots], status=201)


@owner_bp.route("/slots/<int:slot_id>", methods=["PUT"])
@roles_required("owner")
def update_slot(slot_id: int):
    data = _json_body()
    data.pop("id", None)
    slot = repository.update(
        slot_id, current_user.id, data, default_tz=current_app.config["DEFAULT_SLOT_TIMEZONE"]
    )
    return success(status.enrich(slot, now_utc()))


@owner_bp.route("/slots/<int:slot_id>", methods=["DELETE"])
@roles_required("owner")
def delete_slot(slot_id: int):
    repository.delete(slot_id, current_user.id)
    return success({"id": slot_id}, message="Availability slot deleted successfully")


@owner_bp.route("/meetings", methods=["GET"])
@roles_required("owner")
def list_meetings():
    query = Booking.query.filter_by(owner_id=current_user.id)
    wanted = request.args.get("status")
    if wanted:
        if wanted not in BookingStatus.ALL:
            raise ValidationError(f"Invalid status. Expected one of: {', '.join(BookingStatus.ALL)}")
        query = query.filter_by(status=wanted)
    meetings = query.order_by(Booking.meeting_date.asc(), Booking.start_time.asc()).all()
    rows = []
    for b in meetings:
        row = b.to_dict()
        row["applicant_name"] = b.counterpart.full_name if b.counterpart else "Unknown Applicant"
        rows.append(row)
    return success(rows, total=len(rows))


@owner_bp.route("/meetings/<int:booking_id>/cancel", methods=["POST"])
@roles_required("owner")
def cancel_meeting(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = data.get("reason") or data.get("cancellationReason")
    booking = cancellation.cancel(booking_id, current_user.id, reason)
    return success(booking.to_dict(), message="Meeting cancelled successfully. The applicant has been notified.")


@owner_bp.route("/meetings/<int:booking_id>/complete", methods=["POST"])
@roles_required("owner")
def complete_meeting(booking_id: int):
    booking = cancellation.complete(booking_id, current_user.id)
    return success(booking.to_dict(), message="Meeting marked as completed successfully")


@owner_bp.route("/meetings/<int:booking_id>/notes", methods=["POST"])
@roles_required("owner")
def meeting_notes(booking_id: int):
    data = _json_body()
    booking = cancellation.set_notes(booking_id, current_user.id, data.get("notes"))
    return success(booking.to_dict(), message="Meeting notes saved successfully")
