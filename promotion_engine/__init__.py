"""
Application factory for the Academic Session & Promotion Engine.

This module provides create_app() which initializes Flask, extensions,
logging, error handlers, and registers blueprints.
"""

import os
import logging
from logging.handlers import RotatingFileHandler

from flask import Flask
from dotenv import load_dotenv

from promotion_engine.utils.constants import DEFAULT_DIRECTORY_TIMEOUT_SECONDS

# Load environment variables
load_dotenv()

REQUIRED_ENV_VARS = ["SECRET_KEY", "DATABASE_URL"]


def create_app(config_overrides=None):
    """
    Application factory function.

    Creates and configures the Flask application, initializes extensions,
    sets up logging, and registers blueprints and CLI commands.

    Args:
        config_overrides: mapping applied after the environment, used by
            tests and scripts. SECRET_KEY / SQLALCHEMY_DATABASE_URI given
            here satisfy the required environment variables.

    Returns:
        Flask: Configured Flask application instance
    """
    config_overrides = dict(config_overrides or {})

    # Validate required environment variables
    provided = {
        "SECRET_KEY": config_overrides.get("SECRET_KEY"),
        "DATABASE_URL": config_overrides.get("SQLALCHEMY_DATABASE_URI"),
    }
    missing_vars = [var for var in REQUIRED_ENV_VARS if not (provided[var] or os.getenv(var))]
    if missing_vars:
        raise RuntimeError(
            "Missing required environment variables: " + ", ".join(missing_vars)
        )

    app = Flask(__name__)

    # -------------------- CONFIGURATION --------------------
    app.config.from_mapping(
        DEBUG=False,
        ENV=os.getenv("FLASK_ENV", "production"),
        SECRET_KEY=os.getenv("SECRET_KEY"),
        SQLALCHEMY_DATABASE_URI=os.getenv("DATABASE_URL"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        DIRECTORY_TIMEOUT_SECONDS=float(
            os.getenv("DIRECTORY_TIMEOUT_SECONDS", DEFAULT_DIRECTORY_TIMEOUT_SECONDS)
        ),
        STUDENT_DIRECTORY_URL=os.getenv("STUDENT_DIRECTORY_URL"),
        STUDENT_DIRECTORY_TOKEN=os.getenv("STUDENT_DIRECTORY_TOKEN"),
        RATELIMIT_STORAGE_URI=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
        DEFAULT_TIMEZONE=os.getenv("DEFAULT_TIMEZONE", "Asia/Kolkata"),
    )
    app.config.update(config_overrides)

    # -------------------- EXTENSIONS --------------------
    from promotion_engine.extensions import db, migrate, csrf, limiter

    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    limiter.init_app(app)

    # -------------------- LOGGING --------------------
    log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    log_level = getattr(logging, log_level_name, logging.INFO)
    log_format = os.getenv(
        "LOG_FORMAT",
        "[%(asctime)s] %(levelname)s in %(module)s: %(message)s",
    )

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(log_level)
    stream_handler.setFormatter(logging.Formatter(log_format))

    app.logger.setLevel(log_level)
    # Prevent duplicate log entries by clearing handlers first
    app.logger.handlers.clear()
    app.logger.addHandler(stream_handler)

    if app.config.get("ENV") == "production" and not app.config.get("TESTING"):
        log_file = os.getenv("LOG_FILE", "app.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=1_000_000, backupCount=5)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(log_format))
        app.logger.addHandler(file_handler)

    # -------------------- ERRORS --------------------
    from promotion_engine.errors import register_error_handlers
    register_error_handlers(app)

    # -------------------- BLUEPRINTS --------------------
    from promotion_engine.routes.main import main_bp
    from promotion_engine.routes.sessions import sessions_bp
    from promotion_engine.routes.students import students_bp
    from promotion_engine.routes.ledger import ledger_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(sessions_bp)
    app.register_blueprint(students_bp)
    app.register_blueprint(ledger_bp)

    # JSON API called server-to-server; no browser forms to protect
    for blueprint in (sessions_bp, students_bp, ledger_bp):
        csrf.exempt(blueprint)

    # -------------------- SECURITY HEADERS --------------------
    @app.after_request
    def set_security_headers(response):
        """Add the headers that still apply to a JSON-only API."""
        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['Referrer-Policy'] = 'no-referrer'
        if app.config.get("ENV") == "production":
            response.headers['Strict-Transport-Security'] = 'max-age=31536000; includeSubDomains'
        return response

    # -------------------- CLI COMMANDS --------------------
    from promotion_engine import cli_commands
    cli_commands.init_app(app)

    return app
