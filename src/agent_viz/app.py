"""Flask application factory."""

import logging
import logging.config
import threading
from pathlib import Path

from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError

from . import __version__
from .config import get_database_url, get_legacy_state_file, get_value, load_config
from .database import init_database


def setup_logging(config: dict, app_root: Path) -> None:
    """Configure structured logging to console and file."""
    log_level = get_value(config, "logging", "level", default="INFO")
    log_file = get_value(config, "logging", "file", default="logs/app.log")
    max_bytes = get_value(config, "logging", "max_bytes", default=10_000_000)  # 10MB
    backup_count = get_value(config, "logging", "backup_count", default=5)

    # Ensure logs directory exists
    log_path = app_root / log_file
    log_path.parent.mkdir(parents=True, exist_ok=True)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "%(asctime)s - %(levelname)s - %(name)s - %(message)s",
                "datefmt": "%Y-%m-%dT%H:%M:%S%z",
            },
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "standard",
                "stream": "ext://sys.stdout",
            },
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": log_level,
                "formatter": "standard",
                "filename": str(log_path),
                "maxBytes": max_bytes,
                "backupCount": backup_count,
            },
        },
        "root": {
            "level": log_level,
            "handlers": ["console", "file"],
        },
    }

    logging.config.dictConfig(logging_config)


def create_app(
    config_path: str = "config.yaml",
    testing: bool = False,
    clock=None,
    timer_factory=None,
) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_path: Path to the YAML configuration file
        testing: If True, skip the cleanup sweeper and apply store writes
            synchronously. Must be passed before creation so nothing
            starts in the background first.
        clock: Optional ``() -> datetime`` used by the tracker (tests)
        timer_factory: Optional auto-reset timer factory (tests)

    Returns:
        Configured Flask application instance
    """
    app_root = Path(config_path).parent.absolute()
    if not app_root.exists():
        app_root = Path.cwd()

    config = load_config(config_path)

    app = Flask(__name__)

    if testing:
        app.config["TESTING"] = True

    app.config["DEBUG"] = get_value(config, "server", "debug", default=False)
    app.config["APP_CONFIG"] = config
    app.config["APP_VERSION"] = __version__
    app.config["APP_ROOT"] = str(app_root)

    setup_logging(config, app_root)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting agent-viz v{__version__}")

    # Initialize database (continues memory-only if it cannot be opened)
    db_connected = init_database(app, config)
    app.config["DATABASE_CONNECTED"] = db_connected

    from .services.agent_store import AgentStore, StoreWriter
    store = None
    if db_connected:
        try:
            store = AgentStore(get_database_url(config))
        except SQLAlchemyError as e:
            logger.warning(f"Agent store initialization failed (non-fatal): {e}")
    else:
        logger.warning("Agent store disabled (no database connection), running memory-only")
    app.extensions["agent_store"] = store

    async_writes = get_value(config, "database", "async_writes", default=True) and not testing
    writer = StoreWriter(store, async_writes=async_writes)
    app.extensions["store_writer"] = writer

    # Initialize broadcaster for SSE
    from .services.broadcaster import init_broadcaster, shutdown_broadcaster
    broadcaster = init_broadcaster(config)
    app.extensions["broadcaster"] = broadcaster
    logger.info("SSE broadcaster initialized")

    # Initialize tracker and restore the previous run's state
    from .services.tracker import AgentTracker
    tracker_kwargs = {}
    if clock is not None:
        tracker_kwargs["clock"] = clock
    tracker = AgentTracker.from_config(
        config,
        writer=writer,
        broadcaster=broadcaster,
        timer_factory=timer_factory,
        **tracker_kwargs,
    )
    if store is not None:
        tracker.load_from_store(store, legacy_state_file=get_legacy_state_file(config))
    app.extensions["tracker"] = tracker

    # Initialize cleanup sweeper (only in non-testing environments)
    from .services.cleanup import CleanupSweeper
    sweeper = CleanupSweeper(tracker, config)
    app.extensions["cleanup_sweeper"] = sweeper
    if not app.config.get("TESTING"):
        sweeper.start()

    def _get_background_thread_status():
        """Get the alive status of all background threads."""
        status = {}
        for name in ("cleanup_sweeper", "store_writer"):
            svc = app.extensions.get(name)
            thread = getattr(svc, "_thread", None) if svc is not None else None
            if svc is None or thread is None:
                status[name] = "disabled"
            elif isinstance(thread, threading.Thread):
                status[name] = "alive" if thread.is_alive() else "dead"
            else:
                status[name] = "unknown"
        return status

    app.extensions["_get_background_thread_status"] = _get_background_thread_status

    # Register shutdown cleanup
    import atexit

    @atexit.register
    def cleanup():
        # Wrap in try-except as logging may be shut down during atexit
        try:
            sweeper.stop()
            tracker.shutdown()
            shutdown_broadcaster()
            writer.stop()
            if store is not None:
                store.dispose()
        except Exception as e:
            logger.warning(f"Error during shutdown cleanup: {e}")

    register_error_handlers(app)
    register_blueprints(app)

    return app


def register_error_handlers(app: Flask) -> None:
    """Register JSON error handlers for 404 and 500 errors."""

    @app.errorhandler(404)
    def not_found_error(error):
        return jsonify({"status": "error", "message": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed_error(error):
        return jsonify({"status": "error", "message": "Method not allowed"}), 405

    @app.errorhandler(500)
    def internal_error(error):
        # In production, don't expose error details
        if not app.debug:
            return jsonify({"status": "error", "message": "Internal server error"}), 500
        # In debug mode, let Flask's default handler show details
        raise error


def register_blueprints(app: Flask) -> None:
    """Register application blueprints."""
    from .routes.approval import approval_bp
    from .routes.complete import complete_bp
    from .routes.health import health_bp
    from .routes.hooks import hooks_bp
    from .routes.sse import sse_bp
    from .routes.state import state_bp

    app.register_blueprint(approval_bp)
    app.register_blueprint(complete_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(hooks_bp)
    app.register_blueprint(sse_bp)
    app.register_blueprint(state_bp)
