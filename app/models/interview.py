from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.datetime_utils import now_utc_naive
from app.db.base import Base, new_uuid

OUTCOME_PENDING = "PENDING"
OUTCOME_ACCEPT = "ACCEPT"
OUTCOME_REJECT = "REJECT"


class Interview(Base):
    __tablename__ = "interview"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    application_id: Mapped[str] = mapped_column(String(36), ForeignKey("application.id"), nullable=False, index=True)
    interviewer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    interviewer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    scheduling_link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[str] = mapped_column(String(20), nullable=False, default=OUTCOME_PENDING)
    email_sent_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, index=True)
