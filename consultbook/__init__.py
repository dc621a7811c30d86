from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
import logging
import os
import click
from dotenv import load_dotenv

db = SQLAlchemy()
login_manager = LoginManager()


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def create_app(test_config=None, clock=None, provisioner=None):
    # Load .env if present to simplify local setup
    load_dotenv()
    app = Flask(__name__)

    # Basic config (override via env in production)
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret-change-me")
    app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv(
        "DATABASE_URL", f"sqlite:///{os.path.join(app.root_path, 'app.db')}"
    )
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["AUTH_TOKEN_MAX_AGE"] = int(os.getenv("AUTH_TOKEN_MAX_AGE", str(7 * 24 * 3600)))
    app.config["DEFAULT_SLOT_TIMEZONE"] = os.getenv("DEFAULT_SLOT_TIMEZONE", "UTC")

    # Meeting provider
    app.config["MEETING_PROVIDER_TIMEOUT"] = float(os.getenv("MEETING_PROVIDER_TIMEOUT", "10"))
    app.config["JITSI_BASE_URL"] = os.getenv("JITSI_BASE_URL", "https://meet.jit.si")
    app.config["JITSI_ROOM_PREFIX"] = os.getenv("JITSI_ROOM_PREFIX", "consultation")
    app.config["GOOGLE_CLIENT_ID"] = os.getenv("GOOGLE_CLIENT_ID")
    app.config["GOOGLE_CLIENT_SECRET"] = os.getenv("GOOGLE_CLIENT_SECRET")
    app.config["FORCE_HTTPS_URLS"] = _env_bool("FORCE_HTTPS_URLS")

    # Email (optional; sending is skipped unless host and credentials are set)
    app.config["SMTP_HOST"] = os.getenv("SMTP_HOST")
    app.config["SMTP_PORT"] = int(os.getenv("SMTP_PORT", "587"))
    app.config["SMTP_USER"] = os.getenv("SMTP_USER")
    app.config["SMTP_PASS"] = os.getenv("SMTP_PASS")
    app.config["SMTP_USE_TLS"] = _env_bool("SMTP_USE_TLS", "1")
    app.config["MAIL_FROM"] = os.getenv("MAIL_FROM")
    app.config["LOG_LEVEL"] = os.getenv("LOG_LEVEL", "INFO")

    if test_config:
        app.config.update(test_config)

    logging.getLogger(__name__).setLevel(app.config["LOG_LEVEL"])

    # Init extensions
    db.init_app(app)
    login_manager.init_app(app)

    from .errors import register_error_handlers
    from .clock import init_clock
    from .integrations.meeting_links import init_provisioner

    register_error_handlers(app)
    init_clock(app, clock)
    init_provisioner(app, provisioner)

    # Models import for SQLAlchemy configuration
    from . import models  # noqa: F401

    # Blueprints
    from .auth.routes import auth_bp
    from .owner.routes import owner_bp
    from .counterpart.routes import counterpart_bp
    from .google.routes import google_bp
    app.register_blueprint(auth_bp)
    app.register_blueprint(owner_bp)
    app.register_blueprint(counterpart_bp)
    app.register_blueprint(google_bp)

    # Create tables if not exist
    with app.app_context():
        db.create_all()

    # CLI helpers
    from .models.user import ROLES

    @app.cli.command("create-user")
    @click.option("--email", prompt=True)
    @click.option("--first-name", prompt=True)
    @click.option("--last-name", default="")
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--role", type=click.Choice(ROLES), default="counterpart")
    def create_user(email, first_name, last_name, password, role):
        """Create a user account."""
        from .models import User

        if User.query.filter_by(email=email.lower()).first():
            click.echo("User already exists")
            return
        user = User(
            email=email.lower().strip(),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            role=role,
        )
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo(f"Created {role} user: {email}")

    @app.cli.command("issue-token")
    @click.option("--email", prompt=True)
    def issue_token_command(email):
        """Print a bearer token for an existing user."""
        from .models import User
        from .auth.routes import issue_token

        user = User.query.filter_by(email=email.lower().strip()).first()
        if not user:
            raise click.ClickException(f"No user with email {email}")
        click.echo(issue_token(user))

    return app
