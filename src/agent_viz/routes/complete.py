"""Out-of-band completion endpoint for background agents."""

import logging

from flask import Blueprint, current_app, jsonify, request

from ..services.event_schemas import parse_completion_signal
from ..services.hook_receiver import process_completion

logger = logging.getLogger(__name__)

complete_bp = Blueprint("complete", __name__)


@complete_bp.route("/complete", methods=["POST"])
def complete():
    """
    Controller reports that a background agent finished.

    Always answers ``{"ok": true}`` once the payload is valid, including
    when no running agent matches.
    """
    data = request.get_json(silent=True)
    if data is None:
        return jsonify({"status": "error", "message": "Invalid JSON payload"}), 400

    signal, error = parse_completion_signal(data)
    if error:
        logger.warning(f"Rejected completion signal: {error}")
        return jsonify({"status": "error", "message": error}), 400

    process_completion(current_app.extensions["tracker"], signal)
    return jsonify({"ok": True}), 200
