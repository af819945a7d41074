"""Tool-use approval endpoints: hook request, long-poll, decision, toggle."""

import logging

from flask import Blueprint, current_app, jsonify, request

from ..services.approval_gate import ApprovalStatus
from ..services.event_schemas import parse_approval_request, parse_approval_response

logger = logging.getLogger(__name__)

approval_bp = Blueprint("approval", __name__, url_prefix="/approval")


def _tracker():
    return current_app.extensions["tracker"]


def _parse_wait(value: str | None) -> int:
    try:
        return int(float(value)) if value else 0
    except (ValueError, OverflowError):
        return 0


@approval_bp.route("/request", methods=["POST"])
def request_approval():
    """File an approval request from a permission hook."""
    tracker = _tracker()
    gate = tracker.approval
    if not gate.enabled:
        return jsonify({"status": "auto_approved"})

    payload, error = parse_approval_request(request.get_json(silent=True))
    if error:
        return jsonify({"status": "error", "message": error}), 400

    approval = gate.create_request(
        tool_name=payload.tool_name,
        tool_input=payload.tool_input,
        session_id=payload.session_id,
    )
    tracker.notify()
    return jsonify({"status": "pending", "requestId": approval.request_id})


@approval_bp.route("/response/<request_id>", methods=["GET"])
def approval_response(request_id: str):
    """
    Report the decision for a request, optionally long-polling for it.

    Query Parameters:
        wait: Seconds to hold the connection open (clamped to the gate maximum)

    The waiter is released when the wait ends or a decision arrives. Werkzeug
    does not report a client that disconnects mid-wait, so its waiter stays
    registered until the wait runs out.
    """
    gate = _tracker().approval

    status, decision = gate.get_status(request_id)
    if status == ApprovalStatus.DECIDED:
        return jsonify({"status": "decided", "decision": decision.value})
    if status == ApprovalStatus.UNKNOWN:
        return jsonify({"status": "unknown"})

    wait_seconds = gate.clamp_wait(_parse_wait(request.args.get("wait")))
    if not wait_seconds:
        return jsonify({"status": "pending"})

    waiter = gate.add_waiter(request_id)
    try:
        decision = waiter.wait(wait_seconds)
    finally:
        gate.discard_waiter(waiter)

    if decision is not None:
        return jsonify({"status": "decided", "decision": decision.value})
    return jsonify({"status": "pending"})


@approval_bp.route("/respond", methods=["POST"])
def respond():
    """Record the menu bar's allow/deny decision."""
    payload, error = parse_approval_response(request.get_json(silent=True))
    if error:
        return jsonify({"status": "error", "message": error}), 400

    tracker = _tracker()
    if not tracker.approval.respond(payload.request_id, payload.decision):
        return jsonify({"status": "error", "message": "Unknown or expired request"}), 404

    tracker.notify()
    return jsonify({"ok": True})


@approval_bp.route("/toggle", methods=["POST"])
def toggle():
    """Flip approval mode. Turning it off allows everything still pending."""
    tracker = _tracker()
    enabled = tracker.approval.toggle()
    tracker.notify()
    return jsonify({"ok": True, "enabled": enabled})
