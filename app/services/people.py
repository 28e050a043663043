from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.assessment import GENERAL_COMPETENCIES, Assessment
from app.models.person import Person


@dataclass(frozen=True)
class PersonContact:
    email: str
    first_name: str
    last_name: str
    phone_number: str | None = None
    country: str | None = None
    portfolio_url: str | None = None
    education_level: str | None = None
    tally_respondent_id: str | None = None


async def get_person(session: AsyncSession, person_id: str) -> Person | None:
    return (await session.execute(select(Person).where(Person.id == person_id))).scalars().first()


async def find_person_by_email(session: AsyncSession, email: str) -> Person | None:
    normalized = email.strip().lower()
    return (await session.execute(select(Person).where(Person.email == normalized))).scalars().first()


async def find_person_by_respondent(session: AsyncSession, respondent_id: str) -> Person | None:
    return (
        await session.execute(
            select(Person)
            .where(Person.tally_respondent_id == respondent_id)
            .order_by(Person.created_at.desc())
            .limit(1)
        )
    ).scalars().first()


async def find_or_create_person(session: AsyncSession, contact: PersonContact) -> tuple[Person, bool]:
    """Return the person for this email, creating it on first contact. Blank fields are filled in."""
    person = await find_person_by_email(session, contact.email)
    if person is None:
        person = Person(
            email=contact.email.strip().lower(),
            first_name=contact.first_name,
            last_name=contact.last_name,
            phone_number=contact.phone_number,
            country=contact.country,
            portfolio_url=contact.portfolio_url,
            education_level=contact.education_level,
            tally_respondent_id=contact.tally_respondent_id,
        )
        session.add(person)
        await session.flush()
        return person, True

    for attr in ("phone_number", "country", "portfolio_url", "education_level", "tally_respondent_id"):
        incoming = getattr(contact, attr)
        if incoming and not getattr(person, attr):
            setattr(person, attr, incoming)
    return person, False


async def latest_gc_assessment(session: AsyncSession, person_id: str) -> Assessment | None:
    return (
        await session.execute(
            select(Assessment)
            .where(
                Assessment.person_id == person_id,
                Assessment.assessment_type == GENERAL_COMPETENCIES,
                Assessment.completed_at.is_not(None),
            )
            .order_by(Assessment.completed_at.desc())
            .limit(1)
        )
    ).scalars().first()
