"""Message model."""

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ..database import db


class MessageRow(db.Model):
    """A directed communication edge (Prompt, TaskCreate or Response)."""

    __tablename__ = "messages"
    __table_args__ = (
        Index("idx_messages_timestamp", "timestamp"),
    )

    # Decimal string; ordering uses CAST(id AS INTEGER)
    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    from_id: Mapped[str] = mapped_column(String(128), nullable=False)
    to_id: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<MessageRow id={self.id} {self.from_id}->{self.to_id} type={self.type}>"
