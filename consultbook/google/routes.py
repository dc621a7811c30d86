import json
import logging

import requests
from flask import Blueprint, current_app, redirect, request, session, url_for
from flask_login import current_user
from google_auth_oauthlib.flow import Flow

from consultbook import db
from consultbook.auth.routes import roles_required
from consultbook.clock import now_utc
from consultbook.errors import NotFound, UpstreamError, ValidationError, success
from consultbook.integrations.google_service import SCOPES, creds_to_json
from consultbook.models import IntegrationToken


log = logging.getLogger(__name__)

google_bp = Blueprint("google", __name__, url_prefix="/google")


def _redirect_uri() -> str:
    # Build an external redirect URI; force https in production if requested
    if current_app.config["FORCE_HTTPS_URLS"]:
        return url_for("google.callback", _external=True, _scheme="https")
    return url_for("google.callback", _external=True)


def _flow(state=None) -> Flow:
    client_id = current_app.config["GOOGLE_CLIENT_ID"]
    client_secret = current_app.config["GOOGLE_CLIENT_SECRET"]
    if not client_id or not client_secret:
        raise ValidationError(
            "Google OAuth is not configured. Please set GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET."
        )
    return Flow.from_client_config(
        {
            "web": {
                "client_id": client_id,
                "client_secret": client_secret,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token",
            }
        },
        scopes=SCOPES,
        state=state,
        redirect_uri=_redirect_uri(),
    )


@google_bp.route("/connect")
@roles_required("admin")
def connect():
    flow = _flow()
    auth_url, state = flow.authorization_url(
        access_type="offline", include_granted_scopes="true", prompt="consent"
    )
    session["google_oauth_state"] = state
    return redirect(auth_url)


@google_bp.route("/callback")
@roles_required("admin")
def callback():
    state = session.pop("google_oauth_state", None)
    if not state:
        raise ValidationError("Invalid OAuth state.")

    flow = _flow(state=state)
    try:
        flow.fetch_token(authorization_response=request.url)
    except Exception as e:
        log.warning("Google token exchange failed: %s", e)
        raise UpstreamError("Could not complete Google authorization. Please try again.")
    creds = flow.credentials

    record = IntegrationToken.query.filter_by(provider="google").first()
    if record is None:
        record = IntegrationToken(provider="google", token_json="{}")
        db.session.add(record)
    record.token_json = creds_to_json(creds)
    # A refresh token keeps the credential usable past the access token's expiry.
    record.expires_at = None if creds.refresh_token else creds.expiry
    record.connected_by = current_user.id
    db.session.commit()
    log.info("Google Calendar connected by admin %s", current_user.id)
    return success({"connected": True}, message="Google Calendar connected.")


@google_bp.route("/status")
@roles_required("admin")
def status():
    record = IntegrationToken.query.filter_by(provider="google").first()
    if record is None:
        return success({"connected": False, "expired": False})
    return success({
        "connected": True,
        "expired": record.is_expired(now_utc()),
        "expires_at": record.expires_at.isoformat() if record.expires_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    })


@google_bp.route("/disconnect", methods=["POST"])
@roles_required("admin")
def disconnect():
    record = IntegrationToken.query.filter_by(provider="google").first()
    if record is None:
        raise NotFound("Google Calendar is not connected.")

    # Attempt token revocation (best-effort)
    try:
        data = json.loads(record.token_json)
        token = data.get("token") or data.get("access_token") or data.get("refresh_token")
        if token:
            requests.post(
                "https://oauth2.googleapis.com/revoke",
                params={"token": token},
                headers={"content-type": "application/x-www-form-urlencoded"},
                timeout=5,
            )
    except (ValueError, requests.RequestException) as e:
        log.warning("Google token revocation failed: %s", e)

    db.session.delete(record)
    db.session.commit()
    log.info("Google Calendar disconnected by admin %s", current_user.id)
    return success({"connected": False}, message="Google Calendar disconnected.")
