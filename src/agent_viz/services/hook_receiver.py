"""Hook event processing: the three channels that drive agent lifecycles.

- PreToolUse / PostToolUse for trackable tools (``process_task_pre`` / ``process_task_post``)
- PostToolUse for the TaskOutput tool, which finishes background agents
- the out-of-band POST /complete call (``process_completion``)

Each process_* function takes the tracker lock for the whole mutation,
re-evaluates auto-reset where an agent may have finished, and notifies
subscribers once the mutation is done.
"""

import logging
from datetime import datetime
from typing import NamedTuple

from .agent_registry import CONTROLLER_ID, AgentRecord, AgentStatus
from .event_schemas import CompletionSignal, HookEvent, HookPhase
from .matching import (
    find_deepest_running_agent,
    find_matching_agent,
    find_rekey_candidate,
    find_task_output_agent,
    resolve_key,
)
from .message_log import MessageType
from .output_parsing import (
    ERROR_LIMIT,
    OUTPUT_PREVIEW_LIMIT,
    PROMPT_LIMIT,
    extract_background_agent_id,
    extract_output_file,
    is_background_launch,
    is_error_output,
    parse_usage,
    truncate,
)
from .tracker import AgentTracker
from .usage import AgentUsage

logger = logging.getLogger(__name__)

# Wall-clock durations below this are not trusted when usage reports one
MIN_RELIABLE_DURATION_MS = 1000


class HookEventResult(NamedTuple):
    success: bool
    agent_id: str | None = None
    status: str | None = None
    matched: bool = False


def _elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


def _finish(
    tracker: AgentTracker,
    record: AgentRecord,
    errored: bool,
    output: str | None,
    duration_ms: int,
    usage: AgentUsage | None,
) -> None:
    """Move a running record to its terminal state and account for it."""
    now = tracker.now()
    record.status = AgentStatus.ERRORED if errored else AgentStatus.COMPLETED
    record.ended_at = now
    record.last_activity = now
    record.duration_ms = duration_ms
    record.error = truncate(output, ERROR_LIMIT) if errored else None
    record.output_preview = truncate(output, OUTPUT_PREVIEW_LIMIT)
    if usage is not None:
        record.usage = usage

    tracker.record_completion(record)
    tracker.add_message(record.id, record.parent_id or CONTROLLER_ID, MessageType.RESPONSE)
    tracker.registry.upsert(record.id, record)
    logger.info(
        f"Agent {record.status.value}: {record.id} "
        f"({record.description!r}, {record.duration_ms}ms)"
    )


def process_task_pre(tracker: AgentTracker, event: HookEvent) -> HookEventResult:
    """Create a running record for a spawned agent."""
    with tracker.lock:
        tracker.cancel_auto_reset()

        if tracker.batch_expired():
            logger.info("New batch detected, clearing previous agents")
            tracker.reset()

        description = event.description
        key = resolve_key(event.tool_use_id, event.session_id, description)
        parent = find_deepest_running_agent(tracker.registry, event.session_id, key)
        parent_id = parent.id if parent else CONTROLLER_ID

        now = tracker.now()
        record = AgentRecord(
            id=key,
            session_id=event.session_id,
            description=description,
            prompt=truncate(event.tool_input.get("prompt"), PROMPT_LIMIT) or "",
            subagent_type=event.input_str("subagent_type") or "unknown",
            background=bool(event.tool_input.get("run_in_background")),
            started_at=now,
            last_activity=now,
            output_file=event.input_str("output_file"),
            parent_id=parent_id,
        )
        tracker.registry.upsert(key, record)

        message_type = MessageType.PROMPT if parent_id == CONTROLLER_ID else MessageType.TASK_CREATE
        tracker.add_message(parent_id, key, message_type)

    logger.info(
        f"Agent started: {key} session={event.session_id} parent={parent_id} "
        f"background={record.background}"
    )
    tracker.notify()
    return HookEventResult(success=True, agent_id=key, status=record.status.value)


def process_task_post(tracker: AgentTracker, event: HookEvent) -> HookEventResult:
    """Finish the matching record, or capture launch details for a background agent."""
    with tracker.lock:
        description = event.description
        key = resolve_key(event.tool_use_id, event.session_id, description)
        registry = tracker.registry

        record = registry.get(key)
        matched = record is not None
        if record is None:
            candidate = find_rekey_candidate(registry, event.session_id, description)
            if candidate is not None:
                record = registry.rekey(candidate.id, key)
                matched = True

        if record is not None and record.is_terminal and not record.is_restart_casualty:
            logger.debug(f"Ignoring duplicate post for finished agent {key}")
            result = HookEventResult(
                success=True, agent_id=key, status=record.status.value, matched=True,
            )
        else:
            now = tracker.now()
            if record is None:
                logger.warning(
                    f"Post event with no matching pre: {key} ({description!r}), "
                    f"creating placeholder"
                )
                record = AgentRecord(
                    id=key,
                    session_id=event.session_id,
                    description=description,
                    subagent_type=event.input_str("subagent_type") or "unknown",
                    background=bool(event.tool_input.get("run_in_background")),
                    started_at=now,
                    last_activity=now,
                )
            elif record.is_restart_casualty:
                # The agent outlived the restart; the real outcome replaces the demotion
                record.status = AgentStatus.RUNNING
                record.error = None
                record.ended_at = None

            record.last_activity = now
            output = event.tool_output

            if is_background_launch(record.background, output):
                record.output_file = extract_output_file(output) or record.output_file
                record.correlation_id = extract_background_agent_id(output) or record.correlation_id
                registry.upsert(key, record)
                logger.info(
                    f"Background agent launched: {key} correlation_id={record.correlation_id}"
                )
            else:
                usage = parse_usage(output)
                duration_ms = _elapsed_ms(record.started_at, now)
                if duration_ms < MIN_RELIABLE_DURATION_MS and usage and usage.duration_ms:
                    duration_ms = usage.duration_ms
                record.output_file = extract_output_file(output) or record.output_file
                _finish(
                    tracker, record,
                    errored=is_error_output(event.is_error, output),
                    output=output,
                    duration_ms=duration_ms,
                    usage=usage,
                )
                tracker.recheck_auto_reset()

            result = HookEventResult(
                success=True, agent_id=key, status=record.status.value, matched=matched,
            )

    tracker.notify()
    return result


def process_task_output(tracker: AgentTracker, event: HookEvent) -> HookEventResult:
    """Finish a background agent from the result of a TaskOutput tool call."""
    with tracker.lock:
        task_id = event.input_str("task_id")
        record = find_task_output_agent(tracker.registry, task_id, event.session_id)

        if record is None:
            logger.warning(
                f"TaskOutput with no running background agent: task_id={task_id} "
                f"session={event.session_id}"
            )
            result = HookEventResult(success=True, matched=False)
        else:
            output = event.tool_output
            usage = parse_usage(output)
            duration_ms = _elapsed_ms(record.started_at, tracker.now())
            if usage and usage.duration_ms:
                duration_ms = usage.duration_ms
            _finish(
                tracker, record,
                errored=is_error_output(event.is_error, output),
                output=output,
                duration_ms=duration_ms,
                usage=usage,
            )
            tracker.recheck_auto_reset()
            result = HookEventResult(
                success=True, agent_id=record.id, status=record.status.value, matched=True,
            )

    tracker.notify()
    return result


def process_hook_event(tracker: AgentTracker, event: HookEvent) -> HookEventResult:
    """
    Route a validated hook event.

    Any valid event counts as controller activity. Events for tools that
    are not tracked only refresh subscribers.
    """
    tracker.touch_controller()

    if tracker.is_task_output(event.tool_name):
        if event.hook_phase == HookPhase.POST:
            return process_task_output(tracker, event)
        tracker.notify()
        return HookEventResult(success=True)

    if not tracker.is_trackable(event.tool_name):
        logger.debug(f"hook_event: tool={event.tool_name!r} phase={event.hook_phase} (activity only)")
        tracker.notify()
        return HookEventResult(success=True)

    if event.hook_phase == HookPhase.PRE:
        return process_task_pre(tracker, event)
    return process_task_post(tracker, event)


def process_completion(tracker: AgentTracker, signal: CompletionSignal) -> HookEventResult:
    """Finish an agent from an out-of-band completion call.

    No record is created when nothing matches.
    """
    tracker.touch_controller()

    with tracker.lock:
        record = find_matching_agent(tracker.registry, signal.tool_use_id, signal.agent_id)
        if record is None:
            logger.warning(
                f"[/complete] No matching agent for description={signal.description!r}, "
                f"agent_id={signal.agent_id}, tool_use_id={signal.tool_use_id}"
            )
            result = HookEventResult(success=True, matched=False)
        else:
            now = tracker.now()
            duration_ms = int(signal.duration_ms or 0) or _elapsed_ms(record.started_at, now)
            usage = AgentUsage(
                total_tokens=int(signal.tokens or 0),
                tool_uses=int(signal.tool_uses or 0),
                duration_ms=int(signal.duration_ms or 0),
            )
            _finish(
                tracker, record,
                errored=signal.is_error is True,
                output=signal.result,
                duration_ms=duration_ms,
                usage=usage,
            )
            tracker.recheck_auto_reset()
            result = HookEventResult(
                success=True, agent_id=record.id, status=record.status.value, matched=True,
            )

    tracker.notify()
    return result


def process_heartbeat(tracker: AgentTracker) -> HookEventResult:
    """Controller is alive; keeps an armed auto-reset from clearing the view."""
    tracker.touch_controller()
    tracker.notify()
    return HookEventResult(success=True)
