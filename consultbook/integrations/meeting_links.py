"""Join-link provisioning for booked meetings.

Google Calendar (with a Meet conference) is tried first using the
deployment's stored credential. Any failure there, including a missing
or expired credential and socket timeouts, falls back to an ad-hoc Jitsi
room so a booking always gets a usable link.
"""
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, date, time
from typing import ClassVar, Optional, Union

import pytz
from flask import current_app
from slugify import slugify

from consultbook.integrations import google_service


log = logging.getLogger(__name__)

EXTENSION_KEY = "consultbook.provisioner"


class ProviderUnavailable(RuntimeError):
    pass


@dataclass(frozen=True)
class MeetingRequest:
    owner_email: str
    owner_name: str
    counterpart_email: str
    counterpart_name: str
    meeting_date: date
    start_time: time
    end_time: time
    timezone: str = "UTC"
    title: str = "Consultation"
    description: str = ""

    def window(self):
        tz = pytz.timezone(self.timezone or "UTC")
        start = tz.localize(datetime.combine(self.meeting_date, self.start_time))
        end = tz.localize(datetime.combine(self.meeting_date, self.end_time))
        return start, end


@dataclass(frozen=True)
class PrimaryLink:
    link: str
    event_id: str
    method: ClassVar[str] = "google_meet"


@dataclass(frozen=True)
class FallbackLink:
    link: str
    event_id: ClassVar[None] = None
    method: ClassVar[str] = "jitsi"


MeetingLink = Union[PrimaryLink, FallbackLink]


def _base36(number: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
        if not number:
            return out


def _stored_google_credential():
    from consultbook.models import IntegrationToken

    return IntegrationToken.query.filter_by(provider="google").first()


class MeetingLinkProvisioner:
    def __init__(
        self,
        create_event=None,
        cancel_event=None,
        load_credential=None,
        timeout: Optional[float] = 10,
        fallback_base_url: str = "https://meet.jit.si",
        room_prefix: str = "consultation",
    ):
        self.create_event = create_event or google_service.create_event_with_meet
        self.cancel_event = cancel_event or google_service.cancel_event
        self.load_credential = load_credential or _stored_google_credential
        self.timeout = timeout
        self.fallback_base_url = fallback_base_url.rstrip("/")
        self.room_prefix = room_prefix

    def provision(self, request: MeetingRequest, now: datetime) -> MeetingLink:
        try:
            return self._primary(request, now)
        except Exception as e:
            log.warning("Google Meet provisioning failed, falling back to Jitsi: %s", e)
        link = FallbackLink(self.fallback_link(request.title, now))
        log.info("Provisioned fallback meeting room %s", link.link)
        return link

    def _primary(self, request: MeetingRequest, now: datetime) -> PrimaryLink:
        token = self.load_credential()
        if token is None:
            raise ProviderUnavailable("no Google credential stored")
        if token.is_expired(now):
            raise ProviderUnavailable("stored Google credential has expired")

        start, end = request.window()
        description = (
            f"{request.description}\n\n"
            f"Expert: {request.owner_name} ({request.owner_email})\n"
            f"Applicant: {request.counterpart_name} ({request.counterpart_email})"
        ).strip()
        event_id, link = self.create_event(
            token.token_json,
            summary=request.title,
            start=start,
            end=end,
            attendees=[
                {"email": request.owner_email, "displayName": request.owner_name},
                {"email": request.counterpart_email, "displayName": request.counterpart_name},
            ],
            description=description,
            timeout=self.timeout,
        )
        log.info("Created Google Meet event %s", event_id)
        return PrimaryLink(link=link, event_id=event_id)

    def fallback_link(self, title: Optional[str], now: datetime) -> str:
        # millisecond timestamp plus 24 random bits keeps rooms unique
        stamp = _base36(int(now.timestamp() * 1000))
        prefix = slugify(title or "", max_length=40) or self.room_prefix
        return f"{self.fallback_base_url}/{prefix}-{stamp}-{secrets.token_hex(3)}"

    def release(self, event_id: str) -> bool:
        """Best-effort removal of a provider event; never raises."""
        if not event_id:
            return False
        try:
            token = self.load_credential()
            if token is None:
                return False
            return bool(self.cancel_event(token.token_json, event_id, timeout=self.timeout))
        except Exception as e:
            log.warning("Could not delete calendar event %s: %s", event_id, e)
            return False


def init_provisioner(app, provisioner: MeetingLinkProvisioner = None):
    if provisioner is None:
        provisioner = MeetingLinkProvisioner(
            timeout=app.config["MEETING_PROVIDER_TIMEOUT"],
            fallback_base_url=app.config["JITSI_BASE_URL"],
            room_prefix=app.config["JITSI_ROOM_PREFIX"],
        )
    app.extensions[EXTENSION_KEY] = provisioner


def get_provisioner() -> MeetingLinkProvisioner:
    return current_app.extensions[EXTENSION_KEY]
