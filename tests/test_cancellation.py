import pytest

from consultbook import db, notifications
from consultbook.bookings import cancellation
from consultbook.errors import Conflict, NotFound, Unauthorized
from consultbook.models import AvailabilitySlot, Booking

from conftest import book, make_slot


@pytest.fixture
def booked(client, headers, users):
    slot = make_slot(client, headers["owner"])
    resp = book(client, headers["alice"], slot, users["owner"])
    assert resp.status_code == 201
    return resp.get_json()["data"]


def counterpart_cancel(client, h, booking_id, **body):
    return client.post(f"/api/counterpart/meetings/{booking_id}/cancel", json=body, headers=h)


def owner_cancel(client, h, booking_id, **body):
    return client.post(f"/api/owner/meetings/{booking_id}/cancel", json=body, headers=h)


def test_counterpart_cancels_own_booking(app, client, headers, users, booked, clock):
    clock.advance(hours=2)
    resp = counterpart_cancel(client, headers["alice"], booked["id"], reason="  found another slot ")
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["status"] == "cancelled"
    assert data["cancelled_by"] == users["alice"]
    assert data["cancellation_reason"] == "found another slot"
    assert data["cancelled_at"] == "2025-02-20T14:00:00"


def test_cancel_leaves_slot_row_untouched(app, client, headers, booked):
    with app.app_context():
        before = db.session.get(AvailabilitySlot, booked["slot_id"]).to_dict()
    counterpart_cancel(client, headers["alice"], booked["id"])
    with app.app_context():
        assert db.session.get(AvailabilitySlot, booked["slot_id"]).to_dict() == before


def test_blank_reason_is_stored_as_none(client, headers, booked):
    resp = owner_cancel(client, headers["owner"], booked["id"], cancellationReason="   ")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["cancellation_reason"] is None


def test_owner_cancels_booking(client, headers, users, booked):
    resp = owner_cancel(client, headers["owner"], booked["id"], reason="sick")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["cancelled_by"] == users["owner"]


def test_cancelling_twice_is_a_conflict(client, headers, booked):
    assert counterpart_cancel(client, headers["alice"], booked["id"]).status_code == 200
    resp = counterpart_cancel(client, headers["alice"], booked["id"])
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Cannot cancel a meeting that is cancelled"


def test_cancelling_completed_meeting_is_a_conflict(client, headers, booked):
    resp = client.post(f"/api/owner/meetings/{booked['id']}/complete", headers=headers["owner"])
    assert resp.status_code == 200
    assert resp.get_json()["data"]["status"] == "completed"

    resp = counterpart_cancel(client, headers["alice"], booked["id"])
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Cannot cancel a meeting that is completed"


def test_unrelated_users_cannot_cancel(client, headers, booked):
    resp = counterpart_cancel(client, headers["bob"], booked["id"])
    assert resp.status_code == 401
    assert resp.get_json()["error"] == "You do not have permission to cancel this meeting"
    assert owner_cancel(client, headers["owner2"], booked["id"]).status_code == 401


def test_unknown_booking(client, headers):
    assert counterpart_cancel(client, headers["alice"], 4242).status_code == 404


def test_cancel_releases_calendar_event(client, headers, users, calendar, google_connected):
    slot = make_slot(client, headers["owner"])
    booking = book(client, headers["alice"], slot, users["owner"]).get_json()["data"]
    assert booking["external_event_id"] == "evt-1"
    counterpart_cancel(client, headers["alice"], booking["id"])
    assert calendar.cancelled == ["evt-1"]


def test_notification_failure_does_not_undo_cancellation(app, client, headers, booked, monkeypatch):
    def broken(*args, **kwargs):
        raise OSError("smtp down")

    monkeypatch.setattr(notifications, "send_email", broken)
    assert counterpart_cancel(client, headers["alice"], booked["id"]).status_code == 200
    with app.app_context():
        assert db.session.get(Booking, booked["id"]).status == "cancelled"


def test_complete_rules(client, headers, booked):
    assert client.post(
        f"/api/owner/meetings/{booked['id']}/complete", headers=headers["owner2"]
    ).status_code == 404
    counterpart_cancel(client, headers["alice"], booked["id"])
    resp = client.post(f"/api/owner/meetings/{booked['id']}/complete", headers=headers["owner"])
    assert resp.status_code == 409
    assert resp.get_json()["error"] == "Only scheduled meetings can be marked as completed"


def test_service_level_errors(app, users, booked):
    with app.app_context():
        with pytest.raises(NotFound):
            cancellation.cancel(999, users["alice"])
        with pytest.raises(Unauthorized):
            cancellation.cancel(booked["id"], users["bob"])
        cancellation.cancel(booked["id"], users["alice"], "conflict")
        with pytest.raises(Conflict):
            cancellation.cancel(booked["id"], users["owner"])
        with pytest.raises(Conflict):
            cancellation.complete(booked["id"], users["owner"])


def test_meeting_listings(client, headers, users, booked):
    mine = client.get("/api/counterpart/meetings", headers=headers["alice"]).get_json()
    assert mine["total"] == 1
    assert mine["data"][0]["expert_name"] == "Ada Expert"

    theirs = client.get("/api/owner/meetings?status=scheduled", headers=headers["owner"]).get_json()
    assert [m["id"] for m in theirs["data"]] == [booked["id"]]
    assert theirs["data"][0]["applicant_name"] == "Alice Applicant"

    assert client.get("/api/owner/meetings?status=cancelled", headers=headers["owner"]).get_json()["total"] == 0
    assert client.get("/api/owner/meetings?status=bogus", headers=headers["owner"]).status_code == 400


def save_notes(client, h, booking_id, body):
    return client.post(f"/api/owner/meetings/{booking_id}/notes", json=body, headers=h)


def test_owner_saves_trimmed_notes(app, client, headers, booked):
    resp = save_notes(client, headers["owner"], booked["id"], {"notes": "  Strong CV, tighten summary  "})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["notes"] == "Strong CV, tighten summary"
    with app.app_context():
        assert db.session.get(Booking, booked["id"]).notes == "Strong CV, tighten summary"


def test_notes_allowed_after_completion(client, headers, booked):
    client.post(f"/api/owner/meetings/{booked['id']}/complete", headers=headers["owner"])
    resp = save_notes(client, headers["owner"], booked["id"], {"notes": "Follow up in a month"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["status"] == "completed"


@pytest.mark.parametrize("body", [{}, {"notes": 42}, {"notes": ["a"]}])
def test_notes_must_be_a_string(client, headers, booked, body):
    resp = save_notes(client, headers["owner"], booked["id"], body)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Notes must be a string"


def test_notes_only_on_own_bookings(client, headers, booked):
    resp = save_notes(client, headers["owner2"], booked["id"], {"notes": "x"})
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "Meeting not found or access denied"
    assert save_notes(client, headers["alice"], booked["id"], {"notes": "x"}).status_code == 401


def test_set_notes_service(app, users, booked):
    with app.app_context():
        assert cancellation.set_notes(booked["id"], users["owner"], "").notes == ""
        with pytest.raises(NotFound):
            cancellation.set_notes(booked["id"], users["owner2"], "x")
