"""Outbox of rows awaiting replication to the remote mirror."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Integer, Index
from sqlalchemy.orm import Mapped, mapped_column

from windi.database import Base


class MirrorOutbox(Base):
    """
    Dirty marker written in the same transaction as a ledger mutation.

    The drain job pushes undrained markers once they are older than the
    debounce window and stamps drained_at.
    """
    __tablename__ = "mirror_outbox"
    __table_args__ = (
        Index("ix_mirror_outbox_pending", "drained_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    row_id: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    drained_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<MirrorOutbox({self.table_name}#{self.row_id})>"
