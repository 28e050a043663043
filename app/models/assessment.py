from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.datetime_utils import now_utc_naive
from app.db.base import Base, new_uuid

GENERAL_COMPETENCIES = "GENERAL_COMPETENCIES"
SPECIALIZED_COMPETENCIES = "SPECIALIZED_COMPETENCIES"


class Assessment(Base):
    """
    GC rows hang off a person; SC rows hang off an application (one per named competency).
    Awaiting review means completed_at is set while passed is still null.
    """

    __tablename__ = "assessment"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    assessment_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    person_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("person.id"), nullable=True, index=True)
    application_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("application.id"), nullable=True, index=True
    )
    specialized_competency_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    specialized_competency_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    submission_urls: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    raw_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    tally_submission_id: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)

    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, index=True)

    @property
    def awaiting_review(self) -> bool:
        return self.completed_at is not None and self.passed is None
