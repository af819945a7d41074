"""Session metadata model."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..database import db


class SessionMetaRow(db.Model):
    """Key/value pairs such as the message counter and session usage JSON."""

    __tablename__ = "session_meta"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self) -> str:
        return f"<SessionMetaRow key={self.key}>"
