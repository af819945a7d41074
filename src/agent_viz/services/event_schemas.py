"""Inbound payload schemas for hook events, completion signals and approvals.

Each parse_* function returns ``(value, None)`` on success or
``(None, error_message)`` on failure, and never raises for bad input.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


class HookPhase:
    """Hook invocation phases."""

    PRE = "pre"
    POST = "post"

    ALL = (PRE, POST)


@dataclass
class HookEvent:
    """A PreToolUse/PostToolUse notification forwarded by the hook shim."""

    hook_phase: str
    session_id: str = ""
    tool_name: str = ""
    tool_use_id: Optional[str] = None
    tool_input: dict[str, Any] = field(default_factory=dict)
    tool_output: Optional[str] = None
    is_error: Optional[bool] = None

    @property
    def description(self) -> str:
        """Free-text task description, falling back to the tool name."""
        value = self.tool_input.get("description")
        if isinstance(value, str) and value:
            return value
        return self.tool_name or ""

    def input_str(self, key: str) -> Optional[str]:
        value = self.tool_input.get(key)
        return value if isinstance(value, str) and value else None


@dataclass
class CompletionSignal:
    """Out-of-band completion call made by the controller for a background agent."""

    description: Optional[str] = None
    result: Optional[str] = None
    tokens: Optional[float] = None
    tool_uses: Optional[float] = None
    duration_ms: Optional[float] = None
    is_error: Optional[bool] = None
    agent_id: Optional[str] = None
    tool_use_id: Optional[str] = None


@dataclass
class ApprovalRequestPayload:
    tool_name: str = "unknown"
    tool_input: dict[str, Any] = field(default_factory=dict)
    session_id: str = ""


@dataclass
class ApprovalResponsePayload:
    request_id: str
    decision: str


def _is_number(value: Any) -> bool:
    # bool is an int subclass; JSON true/false are not counts
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _optional_str(data: dict, name: str) -> tuple[Optional[str], Optional[str]]:
    value = data.get(name)
    if value is None or isinstance(value, str):
        return value, None
    return None, f"Field '{name}' must be a string"


def _with_alias(data: dict, name: str, alias: str) -> Any:
    value = data.get(name)
    if value is None:
        value = data.get(alias)
    return value


def parse_hook_event(data: Any) -> tuple[Optional[HookEvent], Optional[str]]:
    """
    Validate a hook event payload.

    ``phase`` is accepted in place of ``hook_phase`` and ``correlation_id``
    in place of ``tool_use_id``.
    """
    if not isinstance(data, dict):
        return None, "Payload must be a JSON object"

    phase = _with_alias(data, "hook_phase", "phase")
    if phase is None:
        return None, "Missing required field: hook_phase"
    if phase not in HookPhase.ALL:
        return None, f"Invalid hook_phase: {phase!r} (expected 'pre' or 'post')"

    session_id = data.get("session_id")
    if session_id is None:
        session_id = ""
    elif not isinstance(session_id, str):
        return None, "Field 'session_id' must be a string"

    tool_name = data.get("tool_name")
    if tool_name is None:
        tool_name = ""
    elif not isinstance(tool_name, str):
        return None, "Field 'tool_name' must be a string"

    tool_use_id = _with_alias(data, "tool_use_id", "correlation_id")
    if tool_use_id is not None and not isinstance(tool_use_id, str):
        return None, "Field 'tool_use_id' must be a string"

    tool_input = data.get("tool_input")
    if tool_input is None:
        tool_input = {}
    elif not isinstance(tool_input, dict):
        return None, "Field 'tool_input' must be an object"

    tool_output, error = _optional_str(data, "tool_output")
    if error:
        return None, error

    is_error = data.get("is_error")
    if is_error is not None and not isinstance(is_error, bool):
        return None, "Field 'is_error' must be a boolean"

    return HookEvent(
        hook_phase=phase,
        session_id=session_id,
        tool_name=tool_name,
        tool_use_id=tool_use_id or None,
        tool_input=tool_input,
        tool_output=tool_output,
        is_error=is_error,
    ), None


def parse_completion_signal(data: Any) -> tuple[Optional[CompletionSignal], Optional[str]]:
    """Validate a /complete payload. Every field is optional."""
    if not isinstance(data, dict):
        return None, "Payload must be a JSON object"

    strings = {}
    for name in ("description", "result", "agent_id"):
        value, error = _optional_str(data, name)
        if error:
            return None, error
        strings[name] = value

    tool_use_id = _with_alias(data, "tool_use_id", "correlation_id")
    if tool_use_id is not None and not isinstance(tool_use_id, str):
        return None, "Field 'tool_use_id' must be a string"

    numbers = {}
    for name in ("tokens", "tool_uses", "duration_ms"):
        value = data.get(name)
        if value is not None:
            if not _is_number(value):
                return None, f"Field '{name}' must be a number"
            if value < 0:
                return None, f"Field '{name}' must not be negative"
        numbers[name] = value

    is_error = data.get("is_error")
    if is_error is not None and not isinstance(is_error, bool):
        return None, "Field 'is_error' must be a boolean"

    return CompletionSignal(
        description=strings["description"],
        result=strings["result"],
        agent_id=strings["agent_id"] or None,
        tool_use_id=tool_use_id or None,
        is_error=is_error,
        **numbers,
    ), None


def parse_approval_request(data: Any) -> tuple[Optional[ApprovalRequestPayload], Optional[str]]:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        return None, "Payload must be a JSON object"

    tool_name = data.get("toolName", "unknown")
    if not isinstance(tool_name, str):
        return None, "Field 'toolName' must be a string"
    tool_input = data.get("toolInput", {})
    if not isinstance(tool_input, dict):
        return None, "Field 'toolInput' must be an object"
    session_id = data.get("sessionId", "")
    if not isinstance(session_id, str):
        return None, "Field 'sessionId' must be a string"

    return ApprovalRequestPayload(
        tool_name=tool_name,
        tool_input=tool_input,
        session_id=session_id,
    ), None


def parse_approval_response(data: Any) -> tuple[Optional[ApprovalResponsePayload], Optional[str]]:
    if not isinstance(data, dict):
        return None, "Payload must be a JSON object"

    request_id = data.get("requestId")
    if not isinstance(request_id, str) or not request_id:
        return None, "Missing required field: requestId"
    decision = data.get("decision")
    if decision not in ("allow", "deny"):
        return None, "Field 'decision' must be 'allow' or 'deny'"

    return ApprovalResponsePayload(request_id=request_id, decision=decision), None
