"""Hook receiver endpoint for Claude Code PreToolUse/PostToolUse events."""

import logging
import time

from flask import Blueprint, current_app, jsonify, request

from ..services.event_schemas import parse_hook_event
from ..services.hook_receiver import process_hook_event

logger = logging.getLogger(__name__)

hooks_bp = Blueprint("hooks", __name__)


def _validate_json_body() -> tuple[dict | None, str | None]:
    """
    Read the request body as a JSON object.

    Returns:
        Tuple of (payload, error_message). If validation fails, payload is None.
    """
    if not request.is_json:
        return None, "Content-Type must be application/json"

    data = request.get_json(silent=True)
    if data is None:
        return None, "Invalid JSON payload"

    return data, None


@hooks_bp.route("/event", methods=["POST"])
def hook_event():
    """
    Receive a tool-use hook event.

    Expected payload:
    {
        "session_id": "...",
        "hook_phase": "pre" | "post",
        "tool_name": "Task",
        "tool_use_id": "toolu_..."  (optional),
        "tool_input": {"description": "...", "prompt": "...", ...},
        "tool_output": "..." | null,
        "is_error": false  (optional)
    }
    """
    start_time = time.time()

    data, error = _validate_json_body()
    if error is None:
        event, error = parse_hook_event(data)
    if error:
        logger.warning(f"Rejected hook event: {error}")
        return jsonify({"status": "error", "message": error}), 400

    tracker = current_app.extensions["tracker"]
    result = process_hook_event(tracker, event)

    latency_ms = int((time.time() - start_time) * 1000)
    logger.debug(
        f"hook_received: tool={event.tool_name}, phase={event.hook_phase}, "
        f"session_id={event.session_id}, agent={result.agent_id}, latency_ms={latency_ms}"
    )
    return jsonify({"ok": True}), 200
