"""Application factory for the flow tree backend."""
from __future__ import annotations

import time

from flask import Flask, jsonify
from sqlalchemy.exc import OperationalError

from .config import Config
from .extensions import cors, db, limiter
from .flows.errors import FlowError


def create_app(config_class: type[Config] = Config) -> Flask:
    """Create and configure the Flask application instance."""
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)

    if cors is not None:
        allowed_origins = [
            origin.strip()
            for origin in (app.config.get("CORS_ALLOWED_ORIGINS") or "").split(",")
            if origin.strip()
        ]
        cors.init_app(
            app,
            resources={r"/api/*": {"origins": allowed_origins}},
            allow_headers=["Content-Type", "Authorization"],
        )

    limiter.init_app(app)

    from .api.auth import bp as auth_bp
    from .api.export import bp as export_bp
    from .api.flows import bp as flows_bp
    from .api.health import bp as health_bp
    from .api.logs import bp as logs_bp
    from .api.templates import bp as templates_bp

    app.register_blueprint(health_bp, url_prefix="/api")
    app.register_blueprint(logs_bp, url_prefix="/api")
    app.register_blueprint(flows_bp, url_prefix="/api")
    app.register_blueprint(templates_bp, url_prefix="/api")
    app.register_blueprint(export_bp, url_prefix="/api")
    app.register_blueprint(auth_bp, url_prefix="/api")

    app.register_error_handler(FlowError, _handle_flow_error)

    with app.app_context():
        # Import models to ensure they are registered with SQLAlchemy before creating tables.
        from .models import auth, flow, logs, template  # noqa: F401

        _initialize_database(app)

    return app


def _handle_flow_error(exc: FlowError):
    """Render flow tree errors as JSON with their HTTP status."""

    response = jsonify(exc.to_dict())
    response.status_code = exc.status_code
    if exc.retryable:
        response.headers["Retry-After"] = "1"
    return response


def _initialize_database(app: Flask) -> None:
    """Initialize the database with retry logic to handle delayed availability."""

    max_retries = int(app.config.get("DB_INIT_MAX_RETRIES", 30))
    retry_delay = float(app.config.get("DB_INIT_RETRY_DELAY", 2))

    for attempt in range(1, max_retries + 1):
        try:
            db.create_all()
            return
        except OperationalError as exc:
            if attempt >= max_retries:
                app.logger.exception("Database initialization failed after %s attempts.", attempt)
                raise

            app.logger.warning(
                "Database initialization attempt %s/%s failed: %s", attempt, max_retries, exc
            )
            time.sleep(retry_delay)
