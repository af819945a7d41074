"""Database setup and utilities using Flask-SQLAlchemy."""

import logging
from typing import Tuple

from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import text

from .config import get_database_url

logger = logging.getLogger(__name__)

# SQLAlchemy instance - imported by models and app
db = SQLAlchemy()


def init_database(app: Flask, config: dict) -> bool:
    """
    Initialize the SQLite mirror and create its tables.

    Args:
        app: Flask application instance
        config: Application configuration dictionary

    Returns:
        True if the database is usable, False otherwise
    """
    database_url = get_database_url(config)

    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
        "connect_args": {
            "timeout": 5,  # busy timeout in seconds
            "check_same_thread": False,
        },
    }

    db.init_app(app)

    # Import models so their tables are registered on db.metadata
    from . import models  # noqa: F401

    try:
        with app.app_context():
            db.create_all()
    except Exception as e:
        logger.error(f"Database table creation failed: {e}")
        return False

    connected = verify_connection(app)

    if connected:
        logger.info(f"Database ready at {database_url}")
    else:
        logger.error(f"Database connection failed: {database_url}")

    return connected


def verify_connection(app: Flask) -> bool:
    """
    Verify database connectivity by executing a simple query.

    Args:
        app: Flask application instance

    Returns:
        True if connection successful, False otherwise
    """
    try:
        with app.app_context():
            db.session.execute(text("SELECT 1"))
            db.session.commit()
        return True
    except Exception as e:
        logger.error(f"Database connection verification failed: {e}")
        return False


def check_database_health() -> Tuple[bool, str | None]:
    """
    Check database connectivity for health checks.

    Returns:
        Tuple of (is_connected, error_message)
        - (True, None) if connected
        - (False, error_string) if disconnected
    """
    try:
        db.session.execute(text("SELECT 1"))
        db.session.commit()
        return True, None
    except Exception as e:
        # Don't expose full error details, just the type and brief message
        error_msg = f"{type(e).__name__}: {str(e)[:100]}"
        return False, error_msg
