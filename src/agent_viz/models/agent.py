"""Agent model."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..database import db


class AgentRow(db.Model):
    """
    Persisted copy of an AgentRecord.

    The in-memory registry is authoritative while the process runs; rows
    are only read back on startup. Usage is flattened into three nullable
    columns (all NULL when the agent never reported usage).
    """

    __tablename__ = "agents"
    __table_args__ = (
        Index("idx_agents_status", "status"),
        Index("idx_agents_session_id", "session_id"),
    )

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    session_id: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    subagent_type: Mapped[str] = mapped_column(String(128), nullable=False, default="unknown")
    background: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_activity: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_preview: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_file: Mapped[str | None] = mapped_column(Text, nullable=True)
    parent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    usage_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_tool_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    def __repr__(self) -> str:
        return f"<AgentRow id={self.id} status={self.status}>"
