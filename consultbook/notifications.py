import logging
import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart

from flask import current_app


log = logging.getLogger(__name__)


def send_email(subject: str, body: str, to_emails: list[str]) -> bool:
    cfg = current_app.config
    host = cfg.get("SMTP_HOST")
    port = cfg.get("SMTP_PORT", 587)
    user = cfg.get("SMTP_USER")
    pwd = cfg.get("SMTP_PASS")
    sender = cfg.get("MAIL_FROM") or user

    if not (host and user and pwd and sender):
        # Skip actual sending in dev if not configured
        log.debug("SMTP not configured; skipping '%s' to %s", subject, to_emails)
        return False

    msg = MIMEMultipart()
    msg["From"] = sender
    msg["To"] = ", ".join(to_emails)
    msg["Subject"] = subject
    msg.attach(MIMEText(body, "plain"))

    with smtplib.SMTP(host, port, timeout=cfg.get("SMTP_TIMEOUT", 10)) as server:
        if cfg.get("SMTP_USE_TLS", True):
            server.starttls()
        server.login(user, pwd)
        server.sendmail(sender, to_emails, msg.as_string())
    return True


def _window(booking) -> str:
    return f"{booking.meeting_date.isoformat()} {booking.start_time:%H:%M}-{booking.end_time:%H:%M}"


def send_meeting_invitations(booking, owner, counterpart, method: str) -> bool:
    subject = f"Meeting booked: {booking.title or 'Consultation'} on {booking.meeting_date.isoformat()}"
    provider = "Google Meet" if method == "google_meet" else "Jitsi Meet"
    body = (
        f"Your session is booked.\n\n"
        f"Expert: {owner.full_name}\nApplicant: {counterpart.full_name}\n"
        f"When: {_window(booking)}"
        f"{f' ({booking.slot.timezone})' if booking.slot else ''}\n"
        f"Join ({provider}): {booking.meeting_link}\n\n"
        f"{booking.description or ''}\n"
    )
    return send_email(subject, body, [owner.email, counterpart.email])


def send_cancellation_notice(booking, cancelled_by, reason: str = None) -> bool:
    subject = f"Meeting cancelled: {booking.title or 'Consultation'} on {booking.meeting_date.isoformat()}"
    body = (
        f"The session scheduled for {_window(booking)} has been cancelled by {cancelled_by.full_name}.\n"
        f"Reason: {reason or 'No reason given'}\n"
    )
    return send_email(subject, body, [booking.owner.email, booking.counterpart.email])
