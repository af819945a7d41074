"""Database models package.

SQLAlchemy tables backing the durable mirror of the in-memory tracker.

Models:
    - AgentRow: One tracked agent invocation
    - MessageRow: Communication edge between controller and agents
    - SessionMetaRow: Key/value store for counters and session usage
"""

from .agent import AgentRow
from .message import MessageRow
from .session_meta import SessionMetaRow

__all__ = [
    "AgentRow",
    "MessageRow",
    "SessionMetaRow",
]
