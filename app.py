import click
from flask import Flask, request
from flask_migrate import Migrate

from config import Config, check_production_settings
from models import db
from routes import health_bp, auth_bp
from services import EXTENSION_KEY, get_container
from services.container import ServiceContainer
from utils.error_handler import register_error_handlers
from utils.errors import RateLimitError
from utils.log_config import configure_logging

RATE_LIMIT_EXEMPT_PATHS = {"/health"}


def create_app(config_object=Config, mailer=None):
    app = Flask(__name__)
    app.config.from_object(config_object)
    check_production_settings(app.config)
    configure_logging(app)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    app.extensions[EXTENSION_KEY] = ServiceContainer(app.config, mailer=mailer)

    register_error_handlers(app)

    @app.before_request
    def _global_rate_limit():
        if not app.config.get("RATE_LIMIT_ENABLED", True):
            return None
        if request.path in RATE_LIMIT_EXEMPT_PATHS:
            return None

        allowed, retry_after = get_container().global_limiter.hit()
        if not allowed:
            raise RateLimitError(retry_after, "Too many requests, please try again later")
        return None

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        # JSON-only API, nothing to load
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        resp.headers["Cache-Control"] = "no-store"
        return resp

    register_cli(app)

    app.logger.info(
        "Auth engine ready (environment=%s, storage=%s, email=%s)",
        app.config.get("ENVIRONMENT"),
        get_container_for(app).backend,
        app.config.get("EMAIL_PROVIDER"),
    )
    return app


def get_container_for(app) -> ServiceContainer:
    return app.extensions[EXTENSION_KEY]


#-------------------------

def register_cli(app):
    @app.cli.command("init-db")
    def init_db():
        """Create the auth tables without running migrations (local use)."""
        db.create_all()
        click.echo("Tables created")

    @app.cli.command("cleanup")
    def cleanup():
        """Remove expired OTPs, refresh tokens and rate-limit windows. Run from cron."""
        result = get_container_for(app).run_cleanup_tasks()
        for name, count in result.items():
            click.echo(f"{name}: {count} removed")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
