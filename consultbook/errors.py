import logging

from flask import jsonify
from werkzeug.exceptions import HTTPException


log = logging.getLogger(__name__)


class BookingError(Exception):
    """Base for failures that carry a client-facing message and status code."""

    status_code = 500
    kind = "internal"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self):
        body = {"success": False, "error": self.message, "kind": self.kind}
        if self.details:
            body["details"] = self.details
        return jsonify(body), self.status_code


class ValidationError(BookingError):
    status_code = 400
    kind = "validation"


class Unauthorized(BookingError):
    status_code = 401
    kind = "unauthorized"


class NotFound(BookingError):
    status_code = 404
    kind = "not_found"


class Conflict(BookingError):
    status_code = 409
    kind = "conflict"


class UpstreamError(BookingError):
    status_code = 502
    kind = "upstream"


def success(data=None, status: int = 200, **extra):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status


def register_error_handlers(app):
    @app.errorhandler(BookingError)
    def _booking_error(err: BookingError):
        return err.to_response()

    @app.errorhandler(HTTPException)
    def _http_error(err: HTTPException):
        return jsonify({"success": False, "error": err.description, "kind": "http"}), err.code

    @app.errorhandler(Exception)
    def _unexpected(err: Exception):
        log.exception("Unhandled error: %s", err)
        return jsonify({"success": False, "error": "Internal server error", "kind": "internal"}), 500
