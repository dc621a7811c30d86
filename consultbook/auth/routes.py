from functools import wraps

from flask import Blueprint, current_app, request
from flask_login import current_user
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from consultbook import db, login_manager
from consultbook.errors import Unauthorized, ValidationError, success
from consultbook.models import User


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")

TOKEN_SALT = "consultbook-auth"


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.config["SECRET_KEY"], salt=TOKEN_SALT)


def issue_token(user: User) -> str:
    return _serializer().dumps({"id": user.id, "role": user.role})


def verify_token(token: str) -> User:
    """Resolve an opaque bearer token to its user or raise Unauthorized."""
    if not token:
        raise Unauthorized("No authentication token found")
    try:
        data = _serializer().loads(token, max_age=current_app.config["AUTH_TOKEN_MAX_AGE"])
    except SignatureExpired:
        raise Unauthorized("Authentication token has expired")
    except BadSignature:
        raise Unauthorized("Invalid authentication token")

    user = db.session.get(User, data.get("id")) if isinstance(data, dict) else None
    if user is None or user.role != data.get("role"):
        raise Unauthorized("Invalid authentication token")
    return user


def _token_from_request():
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get("auth_token")


@login_manager.request_loader
def load_user_from_request(req):
    token = _token_from_request()
    if not token:
        return None
    try:
        return verify_token(token)
    except Unauthorized:
        return None


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


def roles_required(*roles):
    def decorator(view):
        @wraps(view)
        def wrapped(*args, **kwargs):
            if not current_user.is_authenticated:
                token = _token_from_request()
                # surface the precise reason (expired, bad signature, ...)
                verify_token(token)
                raise Unauthorized("Unauthorized")
            if current_user.role not in roles:
                raise Unauthorized(f"Unauthorized - {' or '.join(r.title() for r in roles)} access required")
            return view(*args, **kwargs)

        return wrapped

    return decorator


@auth_bp.route("/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    if not email or not password:
        raise ValidationError("Email and password are required")
    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        raise Unauthorized("Invalid email or password")
    return success({"token": issue_token(user), "user": _user_dict(user)})


@auth_bp.route("/me")
@roles_required("owner", "counterpart", "admin")
def me():
    return success(_user_dict(current_user))


def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
    }
