from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NotFound
from app.core.stage_machine import Stage, Status
from app.models.application import Application
from app.models.assessment import SPECIALIZED_COMPETENCIES, Assessment
from app.models.decision import OFFER_WITHDRAWN_MARKER, Decision
from app.models.interview import Interview
from app.models.person import Person

GC_PENDING_STAGES = (Stage.APPLICATION.value, Stage.GENERAL_COMPETENCIES.value)


def application_summary(application: Application) -> dict[str, Any]:
    return {
        "applicationId": application.id,
        "currentStage": application.current_stage,
        "status": application.status,
    }


async def get_application(session: AsyncSession, application_id: str) -> Application | None:
    return (
        await session.execute(select(Application).where(Application.id == application_id))
    ).scalars().first()


async def get_application_or_404(session: AsyncSession, application_id: str) -> Application:
    application = await get_application(session, application_id)
    if application is None:
        raise NotFound("Application not found")
    return application


async def find_active_application_for_position(
    session: AsyncSession, *, person_id: str, position: str
) -> Application | None:
    return (
        await session.execute(
            select(Application).where(
                Application.person_id == person_id,
                func.lower(Application.position) == position.strip().lower(),
                Application.status == Status.ACTIVE.value,
            )
        )
    ).scalars().first()


async def applications_awaiting_gc(session: AsyncSession, person_id: str) -> list[Application]:
    rows = (
        await session.execute(
            select(Application)
            .where(
                Application.person_id == person_id,
                Application.status == Status.ACTIVE.value,
                Application.current_stage.in_(GC_PENDING_STAGES),
            )
            .order_by(Application.created_at.asc())
        )
    ).scalars().all()
    return list(rows)


async def find_application_by_respondent(session: AsyncSession, respondent_id: str) -> Application | None:
    """
    Resolve the application an SC submission belongs to when the form omitted its id.

    Prefers the application holding the most recent pending SC assessment, then the
    most recent active application of the respondent sitting at the specialized
    competencies stage.
    """
    person_ids = select(Person.id).where(Person.tally_respondent_id == respondent_id)
    respondent_match = or_(
        Application.tally_respondent_id == respondent_id,
        Application.person_id.in_(person_ids),
    )

    pending = (
        await session.execute(
            select(Application)
            .join(Assessment, Assessment.application_id == Application.id)
            .where(
                respondent_match,
                Application.status == Status.ACTIVE.value,
                Assessment.assessment_type == SPECIALIZED_COMPETENCIES,
                Assessment.completed_at.is_(None),
            )
            .order_by(Assessment.created_at.desc())
            .limit(1)
        )
    ).scalars().first()
    if pending is not None:
        return pending

    return (
        await session.execute(
            select(Application)
            .where(
                respondent_match,
                Application.status == Status.ACTIVE.value,
                Application.current_stage == Stage.SPECIALIZED_COMPETENCIES.value,
            )
            .order_by(Application.created_at.desc())
            .limit(1)
        )
    ).scalars().first()


async def passed_sc_count(session: AsyncSession, application_id: str) -> int:
    count = (
        await session.execute(
            select(func.count(Assessment.id)).where(
                Assessment.application_id == application_id,
                Assessment.assessment_type == SPECIALIZED_COMPETENCIES,
                Assessment.passed.is_(True),
            )
        )
    ).scalar_one()
    return int(count or 0)


async def latest_open_interview(session: AsyncSession, application_id: str) -> Interview | None:
    return (
        await session.execute(
            select(Interview)
            .where(Interview.application_id == application_id, Interview.completed_at.is_(None))
            .order_by(Interview.created_at.desc())
            .limit(1)
        )
    ).scalars().first()


async def latest_interview(session: AsyncSession, application_id: str) -> Interview | None:
    return (
        await session.execute(
            select(Interview)
            .where(Interview.application_id == application_id)
            .order_by(Interview.created_at.desc())
            .limit(1)
        )
    ).scalars().first()


async def active_decision(session: AsyncSession, application_id: str) -> Decision | None:
    """The ordinary accept/reject ruling; offer withdrawals are tracked separately."""
    return (
        await session.execute(
            select(Decision)
            .where(
                Decision.application_id == application_id,
                or_(Decision.notes.is_(None), Decision.notes != OFFER_WITHDRAWN_MARKER),
            )
            .order_by(Decision.decided_at.desc())
            .limit(1)
        )
    ).scalars().first()


async def offer_was_withdrawn(session: AsyncSession, application_id: str) -> bool:
    marker = (
        await session.execute(
            select(Decision.id)
            .where(Decision.application_id == application_id, Decision.notes == OFFER_WITHDRAWN_MARKER)
            .limit(1)
        )
    ).scalars().first()
    return marker is not None
