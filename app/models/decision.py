from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.datetime_utils import now_utc_naive
from app.db.base import Base, new_uuid

DECISION_ACCEPT = "ACCEPT"
DECISION_REJECT = "REJECT"

# Distinguishes an offer withdrawal from an ordinary rejection.
OFFER_WITHDRAWN_MARKER = "Offer withdrawn at agreement stage"


class Decision(Base):
    __tablename__ = "decision"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    application_id: Mapped[str] = mapped_column(String(36), ForeignKey("application.id"), nullable=False, index=True)
    decision: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    decided_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, index=True)

    @property
    def is_offer_withdrawal(self) -> bool:
        return self.notes == OFFER_WITHDRAWN_MARKER
