import itertools
from datetime import datetime, timedelta, timezone

import pytest

from consultbook import create_app, db
from consultbook.auth.routes import issue_token
from consultbook.integrations.meeting_links import MeetingLinkProvisioner
from consultbook.models import IntegrationToken, User


START = datetime(2025, 2, 20, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def set(self, now: datetime) -> None:
        self.current = now

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


class FakeCalendar:
    """Stands in for the Google Calendar client functions."""

    def __init__(self):
        self.created = []
        self.cancelled = []
        self.error = None
        self._ids = itertools.count(1)

    def create_event(self, creds_json, summary, start, end, attendees, description="", timeout=None):
        if self.error is not None:
            raise self.error
        n = next(self._ids)
        event_id = f"evt-{n}"
        self.created.append({
            "event_id": event_id,
            "summary": summary,
            "start": start,
            "end": end,
            "attendees": attendees,
            "timeout": timeout,
        })
        return event_id, f"https://meet.google.com/aaa-bbbb-{n:03d}"

    def cancel_event(self, creds_json, event_id, timeout=None):
        self.cancelled.append(event_id)
        return True


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def app(tmp_path, clock, calendar):
    provisioner = MeetingLinkProvisioner(
        create_event=calendar.create_event,
        cancel_event=calendar.cancel_event,
        timeout=2,
    )
    app = create_app(
        {
            "TESTING": True,
            "SECRET_KEY": "test-secret",
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
            "DEFAULT_SLOT_TIMEZONE": "UTC",
            "SMTP_HOST": None,
            "GOOGLE_CLIENT_ID": None,
            "GOOGLE_CLIENT_SECRET": None,
        },
        clock=clock,
        provisioner=provisioner,
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def users(app):
    people = {
        "owner": ("expert@example.com", "Ada", "Expert", "owner"),
        "owner2": ("other.expert@example.com", "Grace", "Reviewer", "owner"),
        "alice": ("alice@example.com", "Alice", "Applicant", "counterpart"),
        "bob": ("bob@example.com", "Bob", "Applicant", "counterpart"),
        "admin": ("admin@example.com", "Ann", "Admin", "admin"),
    }
    ids = {}
    with app.app_context():
        for key, (email, first, last, role) in people.items():
            user = User(email=email, first_name=first, last_name=last, role=role)
            user.set_password("secret-pass")
            db.session.add(user)
            db.session.flush()
            ids[key] = user.id
        db.session.commit()
    return ids


def bearer(app, user_id: int) -> dict:
    with app.app_context():
        token = issue_token(db.session.get(User, user_id))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def headers(app, users):
    return {key: bearer(app, uid) for key, uid in users.items()}


@pytest.fixture
def google_connected(app, users):
    with app.app_context():
        db.session.add(IntegrationToken(
            provider="google",
            token_json='{"token": "t", "refresh_token": "r"}',
            connected_by=users["admin"],
        ))
        db.session.commit()


def make_slot(client, headers, date="2025-03-01", start="09:00", end="09:30", capacity=1, **extra):
    payload = {"date": date, "startTime": start, "endTime": end, "maxBookings": capacity}
    payload.update(extra)
    resp = client.post("/api/owner/slots", json={"slots": [payload]}, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["data"][0]


def book(client, headers, slot, owner_id, **overrides):
    payload = {
        "availabilityId": slot["id"],
        "expertId": owner_id,
        "meetingDate": slot["date"],
        "startTime": slot["start_time"],
        "endTime": slot["end_time"],
    }
    payload.update(overrides)
    return client.post("/api/counterpart/bookings", json=payload, headers=headers)


def owner_slot(client, headers, slot_id):
    resp = client.get("/api/owner/slots?period=all", headers=headers)
    assert resp.status_code == 200
    for row in resp.get_json()["data"]:
        if row["id"] == slot_id:
            return row
    raise AssertionError(f"slot {slot_id} not listed")
