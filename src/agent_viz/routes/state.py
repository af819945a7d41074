"""State snapshot, controller heartbeat and manual reset endpoints."""

import logging

from flask import Blueprint, current_app, jsonify

from ..services.hook_receiver import process_heartbeat

logger = logging.getLogger(__name__)

state_bp = Blueprint("state", __name__)


@state_bp.route("/state", methods=["GET"])
def get_state():
    """Current snapshot for polling clients (menu bar app)."""
    return jsonify(current_app.extensions["tracker"].snapshot())


@state_bp.route("/heartbeat", methods=["POST"])
def heartbeat():
    """Lightweight controller activity signal."""
    process_heartbeat(current_app.extensions["tracker"])
    return jsonify({"ok": True})


@state_bp.route("/reset", methods=["POST"])
def reset():
    current_app.extensions["tracker"].reset()
    logger.info("State reset requested via API")
    return jsonify({"ok": True, "message": "State cleared"})
