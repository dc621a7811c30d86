import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Optional, List

import httplib2
import google_auth_httplib2
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError


log = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


class MeetLinkMissing(RuntimeError):
    pass


def creds_from_json(creds_json: Optional[str]) -> Optional[Credentials]:
    if not creds_json:
        return None
    data = json.loads(creds_json)
    return Credentials.from_authorized_user_info(data, SCOPES)


def creds_to_json(creds: Credentials) -> str:
    return json.dumps({
        "token": creds.token,
        "refresh_token": creds.refresh_token,
        "token_uri": creds.token_uri,
        "client_id": creds.client_id,
        "client_secret": creds.client_secret,
        "scopes": list(creds.scopes or SCOPES),
    })


def to_rfc3339(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _calendar(creds: Credentials, timeout: Optional[float]):
    # Socket timeout bounds every request the client makes.
    http = google_auth_httplib2.AuthorizedHttp(creds, http=httplib2.Http(timeout=timeout))
    return build("calendar", "v3", http=http, cache_discovery=False)


def create_event_with_meet(
    creds_json: str,
    summary: str,
    start: datetime,
    end: datetime,
    attendees: List[dict],
    description: str = "",
    calendar_id: str = "primary",
    timeout: Optional[float] = 10,
):
    """Insert a calendar event with a Meet conference; return (event_id, meet_link)."""
    creds = creds_from_json(creds_json)
    if not creds:
        raise RuntimeError("Google not connected")
    service = _calendar(creds, timeout)
    event = {
        "summary": summary,
        "description": description,
        "start": {"dateTime": to_rfc3339(start), "timeZone": "UTC"},
        "end": {"dateTime": to_rfc3339(end), "timeZone": "UTC"},
        "attendees": attendees,
        "conferenceData": {
            "createRequest": {
                "requestId": f"req-{int(datetime.now(timezone.utc).timestamp())}-{secrets.token_hex(3)}",
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        },
        "reminders": {
            "useDefault": False,
            "overrides": [
                {"method": "email", "minutes": 24 * 60},
                {"method": "popup", "minutes": 30},
            ],
        },
    }
    created = service.events().insert(
        calendarId=calendar_id,
        body=event,
        conferenceDataVersion=1,
        sendUpdates="all",
    ).execute()
    meet_link = None
    conf = created.get("conferenceData", {})
    for ep in conf.get("entryPoints", []) or []:
        if ep.get("entryPointType") == "video":
            meet_link = ep.get("uri")
            break
    if not meet_link:
        try:
            service.events().delete(calendarId=calendar_id, eventId=created.get("id")).execute()
        except HttpError as e:
            log.warning("Could not remove event %s without Meet link: %s", created.get("id"), e)
        raise MeetLinkMissing(f"Event {created.get('id')} was created without a Meet link")
    return created.get("id"), meet_link


def cancel_event(creds_json: str, event_id: str, calendar_id: str = "primary", timeout: Optional[float] = 10):
    creds = creds_from_json(creds_json)
    if not creds:
        return False
    service = _calendar(creds, timeout)
    try:
        service.events().delete(calendarId=calendar_id, eventId=event_id, sendUpdates="all").execute()
    except HttpError as e:
        if e.resp.status in (404, 410):
            # already gone
            return True
        raise
    return True
