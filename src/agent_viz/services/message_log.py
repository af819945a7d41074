"""Bounded append-only log of controller/agent communication edges."""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_MAX_MESSAGES = 200


class MessageType(str, Enum):
    PROMPT = "Prompt"
    TASK_CREATE = "TaskCreate"
    RESPONSE = "Response"


@dataclass(frozen=True)
class Message:
    """A directed edge in the agent communication graph."""

    id: str
    from_id: str
    to_id: str
    type: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_id": self.from_id,
            "to_id": self.to_id,
            "type": self.type,
            "timestamp": self.timestamp.isoformat(),
        }


class MessageLog:
    """
    FIFO-trimmed message list with a monotonically increasing id counter.

    The counter is never rewound by trimming, only by clear(), so ids stay
    unique for the lifetime of a batch. Not thread-safe on its own; the
    tracker lock serializes access.
    """

    def __init__(self, max_messages: int = DEFAULT_MAX_MESSAGES, writer=None) -> None:
        self._max_messages = max_messages
        self._writer = writer
        self._messages: list[Message] = []
        self._counter = 0

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def counter(self) -> int:
        return self._counter

    @property
    def max_messages(self) -> int:
        return self._max_messages

    def append(
        self,
        from_id: str,
        to_id: str,
        message_type: MessageType | str,
        timestamp: datetime,
    ) -> Message:
        """Record an edge, then drop the oldest entries beyond the cap."""
        self._counter += 1
        message = Message(
            id=str(self._counter),
            from_id=from_id,
            to_id=to_id,
            type=MessageType(message_type).value,
            timestamp=timestamp,
        )
        self._messages.append(message)
        overflow = len(self._messages) - self._max_messages
        if overflow > 0:
            del self._messages[:overflow]

        if self._writer is not None:
            self._writer.save_message(message)
            self._writer.save_meta("messageCounter", str(self._counter))
        return message

    def messages(self) -> list[Message]:
        return list(self._messages)

    def trim_before(self, cutoff: datetime) -> int:
        """Drop leading messages older than ``cutoff``. Returns the number dropped."""
        dropped = 0
        while self._messages and self._messages[0].timestamp < cutoff:
            self._messages.pop(0)
            dropped += 1
        if dropped and self._writer is not None:
            self._writer.delete_messages_before(cutoff)
        return dropped

    def load(self, messages: list[Message], counter: int) -> None:
        """Restore from storage, keeping only the newest ``max_messages``."""
        self._messages = list(messages[-self._max_messages:]) if self._max_messages else []
        highest = max((int(m.id) for m in messages), default=0)
        self._counter = max(counter, highest)

    def clear(self) -> None:
        self._messages.clear()
        self._counter = 0
