"""Pure parsing functions for free-text tool output.

Claude Code reports sub-agent results as plain text. The fields the
tracker needs are embedded with loose ``name: value`` conventions:

    Async agent launched            background launch acknowledgment
    output_file: /tmp/abc.output    path of the full output
    agentId: a1b2c3                 background task id
    <usage>                         self-reported usage block
    total_tokens: 5000
    tool_uses: 12
    duration_ms: 30000
    </usage>

None of these functions touch tracker state.
"""

import hashlib
import re

from .usage import AgentUsage

PROMPT_LIMIT = 1500
ERROR_LIMIT = 300
OUTPUT_PREVIEW_LIMIT = 2000
ERROR_SNIFF_LIMIT = 500

_USAGE_BLOCK_RE = re.compile(r"<usage>(.*?)</usage>", re.DOTALL)
_TOTAL_TOKENS_RE = re.compile(r"total_tokens[:\s]+(\d+)")
_TOOL_USES_RE = re.compile(r"tool_uses[:\s]+(\d+)")
_DURATION_RE = re.compile(r"duration_ms[:\s]+(\d+)")
_OUTPUT_FILE_RE = re.compile(r"output_file:\s*(\S+)")
_AGENT_ID_RE = re.compile(r"agentId:\s*(\S+)")
_ASYNC_LAUNCH_RE = re.compile(r"Async agent launched", re.IGNORECASE)
_ERROR_RE = re.compile(r"\berror[:;\s]|\bfailed\b|\bexception\b|\btraceback\b")


def make_key(session_id: str, description: str) -> str:
    """Stable 12-hex-char key for an agent without an explicit tool_use_id."""
    digest = hashlib.sha1(f"{session_id}:{description}".encode("utf-8")).hexdigest()
    return digest[:12]


def truncate(text: object, limit: int) -> str | None:
    """Return the first ``limit`` chars of a string, None for non-strings."""
    if not isinstance(text, str):
        return None
    return text[:limit]


def parse_usage(output: object) -> AgentUsage | None:
    """Extract usage counters, preferring a ``<usage>`` block when present."""
    if not isinstance(output, str):
        return None
    block = _USAGE_BLOCK_RE.search(output)
    text = block.group(1) if block else output

    total = _TOTAL_TOKENS_RE.search(text)
    tools = _TOOL_USES_RE.search(text)
    duration = _DURATION_RE.search(text)
    if not (total or tools or duration):
        return None

    return AgentUsage(
        total_tokens=int(total.group(1)) if total else 0,
        tool_uses=int(tools.group(1)) if tools else 0,
        duration_ms=int(duration.group(1)) if duration else 0,
    )


def is_error_output(is_error: bool | None, output: object) -> bool:
    """Decide whether a result is a failure.

    An explicit flag wins. Otherwise the first 500 characters of a string
    output are sniffed for error vocabulary.
    """
    if is_error is not None:
        return is_error
    if isinstance(output, str):
        return bool(_ERROR_RE.search(output[:ERROR_SNIFF_LIMIT].lower()))
    return False


def extract_output_file(output: object) -> str | None:
    if not isinstance(output, str):
        return None
    match = _OUTPUT_FILE_RE.search(output)
    return match.group(1) if match else None


def extract_background_agent_id(output: object) -> str | None:
    if not isinstance(output, str):
        return None
    match = _AGENT_ID_RE.search(output)
    return match.group(1) if match else None


def is_background_launch(background: bool, output: object) -> bool:
    """True when a post event only acknowledges that a background agent started."""
    if not background:
        return False
    if output is None:
        return True
    return isinstance(output, str) and bool(_ASYNC_LAUNCH_RE.search(output))
