"""Matching engine: resolve an inbound signal to an existing AgentRecord.

Three protocols, each used by a different event channel:

- pre-phase creation: key derivation and parent (call-depth) inference
- post-phase resolution: exact key, then session+description re-key candidate
- out-of-band completion / TaskOutput: explicit ids, then (TaskOutput only)
  the oldest running background agent in the session

All functions are pure reads over the registry.
"""

import logging

from .agent_registry import AgentRecord, AgentRegistry
from .output_parsing import make_key

logger = logging.getLogger(__name__)


def resolve_key(tool_use_id: str | None, session_id: str, description: str) -> str:
    """Explicit correlation id when supplied, else the derived content hash."""
    if tool_use_id:
        return tool_use_id
    return make_key(session_id, description)


def find_deepest_running_agent(
    registry: AgentRegistry,
    session_id: str,
    exclude_key: str,
) -> AgentRecord | None:
    """Most recently started running agent in the session, excluding one key.

    The deepest live call frame is the latest one started, which makes it
    the parent of anything spawned now. Equal start times are not broken.
    """
    best = None
    for record in registry.iterate():
        if record.id == exclude_key:
            continue
        if record.session_id != session_id or not record.is_running:
            continue
        if best is None or record.started_at > best.started_at:
            best = record
    return best


def find_rekey_candidate(
    registry: AgentRegistry,
    session_id: str,
    description: str,
) -> AgentRecord | None:
    """Record a post event should adopt when its key is unknown.

    Matches session and description on a record that is still running, or
    that was only marked errored because the server restarted mid-flight.
    """
    for record in registry.iterate():
        if record.session_id != session_id or record.description != description:
            continue
        if record.is_running or record.is_restart_casualty:
            return record
    return None


def find_matching_agent(
    registry: AgentRegistry,
    tool_use_id: str | None,
    agent_id: str | None,
) -> AgentRecord | None:
    """Two-tier match for the out-of-band completion call.

    Tier 1: registry key equals ``tool_use_id``.
    Tier 2: stored background correlation id equals ``agent_id``.
    Only running records are eligible.
    """
    if tool_use_id:
        record = registry.get(tool_use_id)
        if record is not None and record.is_running:
            return record

    if agent_id:
        for record in registry.iterate():
            if record.is_running and record.correlation_id == agent_id:
                return record

    if not tool_use_id and not agent_id:
        logger.warning("Completion signal carried neither tool_use_id nor agent_id")

    return None


def find_task_output_agent(
    registry: AgentRegistry,
    task_id: str | None,
    session_id: str,
) -> AgentRecord | None:
    """Match a TaskOutput result to a running background agent.

    Tries ``task_id`` as a registry key, then as a stored background
    correlation id. Failing both, falls back to
    the oldest running background agent of the session: background work is
    assumed to finish roughly in launch order. The fallback is a last
    resort, not a precise match.
    """
    if task_id:
        record = registry.get(task_id)
        if record is not None and record.is_running and record.background:
            return record
        for record in registry.iterate():
            if record.is_running and record.background and record.correlation_id == task_id:
                return record

    oldest = None
    for record in registry.iterate():
        if not (record.is_running and record.background and record.session_id == session_id):
            continue
        if oldest is None or record.started_at < oldest.started_at:
            oldest = record
    return oldest
