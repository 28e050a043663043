from datetime import datetime

from sqlalchemy import Boolean, DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from app.core.datetime_utils import now_utc_naive
from app.db.base import Base, new_uuid


class Person(Base):
    __tablename__ = "person"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    portfolio_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    education_level: Mapped[str | None] = mapped_column(String(255), nullable=True)
    tally_respondent_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    general_competencies_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    general_competencies_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    general_competencies_passed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc_naive, onupdate=now_utc_naive)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
