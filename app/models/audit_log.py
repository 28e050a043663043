from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.datetime_utils import now_utc_naive
from app.db.base import Base

CREATE = "CREATE"
UPDATE = "UPDATE"
DELETE = "DELETE"
STAGE_CHANGE = "STAGE_CHANGE"
STATUS_CHANGE = "STATUS_CHANGE"
EMAIL_SENT = "EMAIL_SENT"
VIEW = "VIEW"

ACTION_TYPES: tuple[str, ...] = (CREATE, UPDATE, DELETE, STAGE_CHANGE, STATUS_CHANGE, EMAIL_SENT, VIEW)


class AuditLog(Base):
    """Append-only history. Rows are never updated or deleted."""

    __tablename__ = "audit_log"

    # Monotonic id doubles as the logical order of entries written in one unit.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    person_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("person.id"), nullable=True, index=True)
    application_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("application.id"), nullable=True, index=True
    )
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    action_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, index=True)
