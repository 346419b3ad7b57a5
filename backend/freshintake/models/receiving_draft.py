"""In-progress receiving wizard drafts.

One row per draft.  ``payload`` holds the whole serialized Draft and is
replaced wholesale on every save; ``current_step`` is duplicated out of
the payload so stale drafts can be listed without decoding JSON.
Rows are deleted on successful commit or explicit abandonment.
"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from freshintake.database import Base


class ReceivingDraft(Base):
    __tablename__ = "receiving_drafts"

    draft_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    current_step: Mapped[int] = mapped_column(Integer, default=1)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, index=True
    )
