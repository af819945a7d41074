"""Agent registry: the canonical key -> AgentRecord mapping.

Records are held under a stable internal reference; the external key
(tool_use_id or derived hash) is an index entry pointing at it. Re-keying
moves the index entry and leaves the referenced record untouched, so a
logical agent is never represented by two live entries.

The registry is not thread-safe on its own. AgentTracker serializes all
access behind its lock.
"""

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Iterator

from .usage import AgentUsage, SessionUsage

logger = logging.getLogger(__name__)

# Parent id of top-level agents (spawned directly by the controller session)
CONTROLLER_ID = "__user__"

# Error text given to agents that were running when the server went down
RESTARTED_ERROR = "Server restarted while agent was running"


class AgentStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass
class AgentRecord:
    """One tracked tool invocation."""

    id: str
    session_id: str
    description: str
    started_at: datetime
    last_activity: datetime
    prompt: str = ""
    subagent_type: str = "unknown"
    background: bool = False
    status: AgentStatus = AgentStatus.RUNNING
    ended_at: datetime | None = None
    duration_ms: int | None = None
    error: str | None = None
    output_preview: str | None = None
    output_file: str | None = None
    parent_id: str = CONTROLLER_ID
    usage: AgentUsage | None = None
    # Background task id reported in the launch acknowledgment ("agentId: ...")
    correlation_id: str | None = None

    @property
    def is_running(self) -> bool:
        return self.status == AgentStatus.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self.status != AgentStatus.RUNNING

    @property
    def is_restart_casualty(self) -> bool:
        """Errored only because the server restarted underneath it."""
        return self.status == AgentStatus.ERRORED and self.error == RESTARTED_ERROR

    def copy(self) -> "AgentRecord":
        usage = dataclasses.replace(self.usage) if self.usage else None
        return dataclasses.replace(self, usage=usage)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "description": self.description,
            "prompt": self.prompt,
            "subagent_type": self.subagent_type,
            "background": self.background,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_ms": self.duration_ms,
            "error": self.error,
            "output_preview": self.output_preview,
            "output_file": self.output_file,
            "parent_id": self.parent_id,
            "usage": self.usage.to_dict() if self.usage else None,
            "correlation_id": self.correlation_id,
        }


class AgentRegistry:
    """Owns every AgentRecord and the SessionUsage aggregate."""

    def __init__(self, writer=None) -> None:
        """
        Args:
            writer: Fire-and-forget persistence facade (StoreWriter).
                None runs the registry memory-only.
        """
        self.writer = writer
        self.usage = SessionUsage()
        self._records: dict[int, AgentRecord] = {}
        self._index: dict[str, int] = {}
        self._next_ref = 0

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: str) -> bool:
        return key in self._index

    def __iter__(self) -> Iterator[AgentRecord]:
        return iter(self.iterate())

    def upsert(self, key: str, record: AgentRecord) -> AgentRecord:
        """Insert or replace the record under ``key`` and persist it."""
        record.id = key
        ref = self._index.get(key)
        if ref is None:
            ref = self._next_ref
            self._next_ref += 1
            self._index[key] = ref
        self._records[ref] = record
        self._persist(record)
        return record

    def get(self, key: str) -> AgentRecord | None:
        ref = self._index.get(key)
        if ref is None:
            return None
        return self._records.get(ref)

    def iterate(self) -> list[AgentRecord]:
        """All records in insertion order (a list, safe to mutate the registry while looping)."""
        return [self._records[ref] for ref in sorted(self._records)]

    def keys(self) -> list[str]:
        return list(self._index)

    def running(self) -> list[AgentRecord]:
        return [r for r in self.iterate() if r.is_running]

    def has_running(self) -> bool:
        return any(r.is_running for r in self._records.values())

    def remove(self, key: str) -> AgentRecord | None:
        """Delete from memory and durable storage. Used by the cleanup sweep only."""
        ref = self._index.pop(key, None)
        if ref is None:
            return None
        record = self._records.pop(ref)
        if self.writer is not None:
            self.writer.delete_agent(key)
        return record

    def rekey(self, old_key: str, new_key: str) -> AgentRecord:
        """Move a record to a new external key without copying it.

        Raises:
            KeyError: old_key is unknown or new_key is already taken
        """
        if new_key in self._index:
            raise KeyError(f"key already registered: {new_key}")
        ref = self._index.pop(old_key)
        self._index[new_key] = ref
        record = self._records[ref]
        record.id = new_key
        if self.writer is not None:
            self.writer.delete_agent(old_key)
        self._persist(record)
        logger.info(f"Agent re-keyed: {old_key} -> {new_key}")
        return record

    def load(self, records: list[AgentRecord]) -> None:
        """Populate from storage without writing back."""
        for record in records:
            ref = self._index.get(record.id)
            if ref is None:
                ref = self._next_ref
                self._next_ref += 1
                self._index[record.id] = ref
            self._records[ref] = record

    def clear(self) -> None:
        """Drop all records and zero the usage counters (memory only)."""
        self._records.clear()
        self._index.clear()
        self.usage.reset()

    def _persist(self, record: AgentRecord) -> None:
        if self.writer is not None:
            self.writer.save_agent(record)
