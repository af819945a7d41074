"""Read-only state snapshot served by GET /state."""

from datetime import datetime

from .agent_registry import AgentRecord
from .approval_gate import ApprovalRequest
from .message_log import Message
from .usage import SessionUsage

DEFAULT_MAX_AGENTS = 200

UNKNOWN_SESSION = "unknown"


class ControllerStatus:
    RUNNING = "running"
    DONE = "done"
    IDLE = "idle"


def controller_status(records: list[AgentRecord], controller_active: bool) -> str:
    """running if work is in flight or the controller spoke recently, done if
    anything ever ran, otherwise idle."""
    if any(r.is_running for r in records) or controller_active:
        return ControllerStatus.RUNNING
    if records:
        return ControllerStatus.DONE
    return ControllerStatus.IDLE


def summarize(records: list[AgentRecord]) -> dict:
    summary = {"total": len(records), "running": 0, "completed": 0, "errored": 0}
    for record in records:
        summary[record.status.value] += 1
    return summary


def session_rollups(records: list[AgentRecord]) -> list[dict]:
    """Per-session counts in first-seen order."""
    sessions: dict[str, dict] = {}
    for record in records:
        session_id = record.session_id or UNKNOWN_SESSION
        entry = sessions.get(session_id)
        if entry is None:
            entry = sessions[session_id] = {
                "session_id": session_id,
                "agent_count": 0,
                "running": 0,
                "completed": 0,
                "errored": 0,
            }
        entry["agent_count"] += 1
        entry[record.status.value] += 1
    return list(sessions.values())


def build_snapshot(
    records: list[AgentRecord],
    messages: list[Message],
    usage: SessionUsage,
    controller_active: bool,
    controller_model: str,
    approval_enabled: bool,
    pending_approvals: list[ApprovalRequest],
    max_agents: int = DEFAULT_MAX_AGENTS,
) -> dict:
    """
    Assemble the JSON-ready snapshot.

    Must be called with the tracker lock held (or over copies), since it
    reads the live records. The result shares no mutable state with them.

    Args:
        records: Every agent in registry order
        messages: Message log contents, oldest first
        usage: Session aggregate
        controller_active: Whether the controller signalled activity recently
        controller_model: Model name reported for the controller
        approval_enabled: Approval gate switch
        pending_approvals: Requests awaiting a decision
        max_agents: Cap on the ``agents`` list (newest started first)
    """
    newest_first = sorted(records, key=lambda r: r.started_at, reverse=True)
    usage_dict = usage.to_dict()
    usage_dict["usage_available"] = usage.usage_available

    return {
        "type": "state",
        "summary": summarize(records),
        "controller": {
            "status": controller_status(records, controller_active),
            "model": controller_model,
        },
        "agents": [r.to_dict() for r in newest_first[:max_agents]],
        "messages": [m.to_dict() for m in messages],
        "tasks": [
            {
                "id": r.id,
                "name": r.description,
                "status": r.status.value,
                "subagent_type": r.subagent_type,
            }
            for r in records
        ],
        "sessions": session_rollups(records),
        "usage": usage_dict,
        "approval": {
            "enabled": approval_enabled,
            "pending": [p.to_dict() for p in pending_approvals],
        },
    }


def snapshot_timestamp(now: datetime) -> int:
    """Milliseconds since the epoch, as carried by change notifications."""
    return int(now.timestamp() * 1000)
