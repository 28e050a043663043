from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.datetime_utils import now_utc_naive
from app.core.stage_machine import Stage, Status
from app.db.base import Base, new_uuid


class Application(Base):
    __tablename__ = "application"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    person_id: Mapped[str] = mapped_column(String(36), ForeignKey("person.id"), nullable=False, index=True)
    position: Mapped[str] = mapped_column(String(255), nullable=False)
    current_stage: Mapped[str] = mapped_column(String(50), nullable=False, default=Stage.APPLICATION.value, index=True)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default=Status.ACTIVE.value, index=True)

    has_resume: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_academic_bg: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_video_intro: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_previous_experience: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_other_file: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    resume_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    academic_background: Mapped[str | None] = mapped_column(Text, nullable=True)
    previous_experience: Mapped[str | None] = mapped_column(Text, nullable=True)
    video_link: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    other_file_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    tally_submission_id: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    tally_response_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tally_respondent_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    tally_form_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    agreement_tally_submission_id: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)
    agreement_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    agreement_signed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, onupdate=now_utc_naive)
