from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.datetime_utils import isoformat_or_none, now_utc_naive, to_utc_naive
from app.core.errors import InvariantViolation, NotFound, RequiredFieldError
from app.core.sanitize import sanitize_text
from app.core.stage_machine import GuardContext, PipelineEvent, Stage, Status
from app.models.application import Application
from app.models.assessment import SPECIALIZED_COMPETENCIES, Assessment
from app.models.decision import DECISION_ACCEPT, DECISION_REJECT, OFFER_WITHDRAWN_MARKER, Decision
from app.models.interview import OUTCOME_ACCEPT, OUTCOME_PENDING, OUTCOME_REJECT, Interview
from app.models.person import Person
from app.schemas.user import UserContext
from app.services.applications import (
    active_decision,
    application_summary,
    latest_interview,
    latest_open_interview,
    passed_sc_count,
)
from app.services.audit import (
    log_assessment_completed,
    log_decision,
    log_interview_completed,
    log_interview_scheduled,
    log_record_created,
)
from app.services.email import (
    GC_INVITATION,
    INTERVIEW_INVITATION,
    OFFER_LETTER,
    REJECTION,
    SC_INVITATION,
    PendingEmail,
)
from app.services.people import get_person
from app.services.stage_transitions import apply_pipeline_event

logger = logging.getLogger("rp.pipeline")

INTERVIEW_NOTES_MAX_LENGTH = 2000
DEFAULT_ACCEPT_REASON = "Application accepted"
DEFAULT_START_DELAY = timedelta(days=14)
RESENDABLE_TEMPLATES = (GC_INVITATION, SC_INVITATION, INTERVIEW_INVITATION, REJECTION)


@dataclass
class ActionOutcome:
    data: dict[str, Any]
    emails: list[PendingEmail] = field(default_factory=list)


@dataclass(frozen=True)
class CompetencyInvite:
    competency_id: str
    name: str
    form_url: str | None = None


def _require_text(value: str | None, field_name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise RequiredFieldError(field_name)
    return cleaned


async def _person_for(session: AsyncSession, application: Application) -> Person:
    person = await get_person(session, application.person_id)
    if person is None:
        raise NotFound("Person not found")
    return person


def _email(
    template_name: str,
    person: Person,
    application: Application,
    settings: Settings,
    **extra: Any,
) -> PendingEmail:
    context: dict[str, Any] = {
        "first_name": person.first_name,
        "last_name": person.last_name,
        "position": application.position,
        "application_id": application.id,
        "sender_name": settings.email_sender_name,
    }
    context.update(extra)
    return PendingEmail(
        template_name=template_name,
        to=person.email,
        context=context,
        person_id=person.id,
        application_id=application.id,
    )


def _require_active(application: Application) -> None:
    if application.status != Status.ACTIVE.value:
        raise InvariantViolation("Application is not active")


async def invite_specialized_competencies(
    session: AsyncSession,
    *,
    application: Application,
    competencies: list[CompetencyInvite],
    user: UserContext,
    settings: Settings,
) -> ActionOutcome:
    _require_active(application)
    if application.current_stage != Stage.SPECIALIZED_COMPETENCIES.value:
        raise InvariantViolation("Application is not at the specialized competencies stage")
    if not competencies:
        raise RequiredFieldError("competencies")

    existing = (
        await session.execute(
            select(Assessment).where(
                Assessment.application_id == application.id,
                Assessment.assessment_type == SPECIALIZED_COMPETENCIES,
            )
        )
    ).scalars().all()
    known = {item.specialized_competency_id for item in existing}

    created: list[Assessment] = []
    for competency in competencies:
        if competency.competency_id in known:
            continue
        assessment = Assessment(
            assessment_type=SPECIALIZED_COMPETENCIES,
            application_id=application.id,
            specialized_competency_id=competency.competency_id,
            specialized_competency_name=competency.name,
        )
        session.add(assessment)
        created.append(assessment)
        known.add(competency.competency_id)
    await session.flush()

    if created:
        await log_record_created(
            session,
            action="Specialized competency assessments requested",
            details={"competencies": [item.specialized_competency_id for item in created]},
            person_id=application.person_id,
            application_id=application.id,
            user_id=user.user_id,
        )

    person = await _person_for(session, application)
    links = "<br>".join(
        f'<a href="{item.form_url}">{item.name}</a>' if item.form_url else item.name for item in competencies
    )
    return ActionOutcome(
        data={
            **application_summary(application),
            "assessmentIds": [item.id for item in created],
        },
        emails=[_email(SC_INVITATION, person, application, settings, competencies=links)],
    )


async def review_sc_assessment(
    session: AsyncSession,
    *,
    application: Application,
    assessment_id: str,
    passed: bool,
    user: UserContext,
) -> ActionOutcome:
    assessment = (
        await session.execute(select(Assessment).where(Assessment.id == assessment_id))
    ).scalars().first()
    if (
        assessment is None
        or assessment.application_id != application.id
        or assessment.assessment_type != SPECIALIZED_COMPETENCIES
    ):
        raise NotFound("Assessment not found")
    if assessment.completed_at is None:
        raise InvariantViolation("Cannot review an assessment that has not been submitted")

    assessment.passed = passed
    assessment.reviewed_by = user.user_id
    assessment.reviewed_at = now_utc_naive()
    await session.flush()

    await log_assessment_completed(
        session,
        assessment_type=SPECIALIZED_COMPETENCIES,
        score=assessment.score,
        passed=passed,
        person_id=application.person_id,
        application_id=application.id,
        user_id=user.user_id,
    )
    return ActionOutcome(
        data={
            **application_summary(application),
            "assessmentId": assessment.id,
            "passed": passed,
            "reviewedAt": isoformat_or_none(assessment.reviewed_at),
        }
    )


async def advance_to_interview(
    session: AsyncSession,
    *,
    application: Application,
    user: UserContext,
    reason: str | None = None,
) -> ActionOutcome:
    context = GuardContext(passed_sc_count=await passed_sc_count(session, application.id))
    await apply_pipeline_event(
        session,
        application=application,
        event=PipelineEvent.SC_ADVANCED,
        reason=reason or "Specialized competencies reviewed",
        actor_user_id=user.user_id,
        context=context,
    )
    return ActionOutcome(data=application_summary(application))


async def schedule_interview(
    session: AsyncSession,
    *,
    application: Application,
    interviewer_id: str,
    interviewer_name: str | None,
    scheduling_link: str | None,
    scheduled_at: datetime | None,
    send_email: bool,
    user: UserContext,
    settings: Settings,
) -> ActionOutcome:
    _require_active(application)
    interviewer_id = _require_text(interviewer_id, "interviewerId")
    if application.current_stage == Stage.SPECIALIZED_COMPETENCIES.value:
        await advance_to_interview(session, application=application, user=user)
    if application.current_stage != Stage.INTERVIEW.value:
        raise InvariantViolation("Application is not at the interview stage")
    if await latest_open_interview(session, application.id) is not None:
        raise InvariantViolation("An interview is already scheduled; reschedule it instead")

    now = now_utc_naive()
    interview = Interview(
        application_id=application.id,
        interviewer_id=interviewer_id,
        interviewer_name=interviewer_name,
        scheduling_link=scheduling_link,
        scheduled_at=to_utc_naive(scheduled_at) if scheduled_at else None,
        outcome=OUTCOME_PENDING,
        email_sent_at=now if send_email else None,
    )
    session.add(interview)
    await session.flush()

    await log_interview_scheduled(
        session,
        application_id=application.id,
        person_id=application.person_id,
        interview_id=interview.id,
        interviewer_id=interviewer_id,
        scheduling_link=scheduling_link,
        user_id=user.user_id,
    )

    emails: list[PendingEmail] = []
    if send_email:
        person = await _person_for(session, application)
        emails.append(
            _email(
                INTERVIEW_INVITATION,
                person,
                application,
                settings,
                interviewer_name=interviewer_name or interviewer_id,
                scheduling_link=scheduling_link,
            )
        )
    return ActionOutcome(
        data={**application_summary(application), "interviewId": interview.id, "outcome": interview.outcome},
        emails=emails,
    )


async def reschedule_interview(
    session: AsyncSession,
    *,
    application: Application,
    interviewer_id: str,
    interviewer_name: str | None,
    scheduling_link: str | None,
    scheduled_at: datetime | None,
    send_email: bool,
    user: UserContext,
    settings: Settings,
) -> ActionOutcome:
    _require_active(application)
    interviewer_id = _require_text(interviewer_id, "interviewerId")
    interview = await latest_open_interview(session, application.id)
    if interview is None:
        raise NotFound("No pending interview found for this application")

    interview.interviewer_id = interviewer_id
    interview.interviewer_name = interviewer_name
    interview.scheduling_link = scheduling_link
    interview.scheduled_at = to_utc_naive(scheduled_at) if scheduled_at else None
    if send_email:
        interview.email_sent_at = now_utc_naive()
    await session.flush()

    await log_interview_scheduled(
        session,
        application_id=application.id,
        person_id=application.person_id,
        interview_id=interview.id,
        interviewer_id=interviewer_id,
        scheduling_link=scheduling_link,
        rescheduled=True,
        user_id=user.user_id,
    )

    emails: list[PendingEmail] = []
    if send_email:
        person = await _person_for(session, application)
        emails.append(
            _email(
                INTERVIEW_INVITATION,
                person,
                application,
                settings,
                interviewer_name=interviewer_name or interviewer_id,
                scheduling_link=scheduling_link,
            )
        )
    return ActionOutcome(
        data={**application_summary(application), "interviewId": interview.id},
        emails=emails,
    )


async def complete_interview(
    session: AsyncSession,
    *,
    application: Application,
    notes: str,
    user: UserContext,
) -> ActionOutcome:
    notes = _require_text(notes, "notes")
    if len(notes) > INTERVIEW_NOTES_MAX_LENGTH:
        raise InvariantViolation(f"notes must be at most {INTERVIEW_NOTES_MAX_LENGTH} characters")
    interview = await latest_open_interview(session, application.id)
    if interview is None:
        raise NotFound("No pending interview found for this application")

    await apply_pipeline_event(
        session,
        application=application,
        event=PipelineEvent.INTERVIEW_COMPLETED,
        reason="Interview completed",
        actor_user_id=user.user_id,
    )
    interview.completed_at = now_utc_naive()
    interview.notes = sanitize_text(notes, INTERVIEW_NOTES_MAX_LENGTH)
    await session.flush()

    await log_interview_completed(
        session,
        application_id=application.id,
        person_id=application.person_id,
        interview_id=interview.id,
        user_id=user.user_id,
    )
    return ActionOutcome(
        data={
            **application_summary(application),
            "interviewId": interview.id,
            "completedAt": isoformat_or_none(interview.completed_at),
        }
    )


async def record_decision(
    session: AsyncSession,
    *,
    application: Application,
    decision: str,
    reason: str | None,
    notes: str | None,
    user: UserContext,
    settings: Settings,
    start_date: date | None = None,
) -> ActionOutcome:
    decision = decision.strip().upper()
    if decision not in (DECISION_ACCEPT, DECISION_REJECT):
        raise InvariantViolation("Decision must be ACCEPT or REJECT")
    if await active_decision(session, application.id) is not None:
        raise InvariantViolation("A decision has already been made for this application")

    if decision == DECISION_REJECT:
        reason = _require_text(reason, "reason")
        event = PipelineEvent.DECISION_REJECT
        transition_reason = reason
    else:
        reason = (reason or "").strip() or DEFAULT_ACCEPT_REASON
        event = PipelineEvent.DECISION_ACCEPT
        transition_reason = "Auto-advanced: Application accepted"

    # Validates stage and status before anything is written.
    await apply_pipeline_event(
        session,
        application=application,
        event=event,
        reason=transition_reason,
        actor_user_id=user.user_id,
    )

    record = Decision(
        application_id=application.id,
        decision=decision,
        reason=sanitize_text(reason),
        notes=sanitize_text(notes),
        decided_by=user.user_id,
    )
    session.add(record)
    await session.flush()
    await log_decision(
        session,
        application_id=application.id,
        person_id=application.person_id,
        decision=decision,
        reason=record.reason,
        notes=record.notes,
        user_id=user.user_id,
    )

    interview = await latest_interview(session, application.id)
    if interview is not None and interview.outcome == OUTCOME_PENDING:
        interview.outcome = OUTCOME_ACCEPT if decision == DECISION_ACCEPT else OUTCOME_REJECT
        await session.flush()

    person = await _person_for(session, application)
    data = {**application_summary(application), "decisionId": record.id, "decision": decision}
    if decision == DECISION_ACCEPT:
        start_date = start_date or (now_utc_naive() + DEFAULT_START_DELAY).date()
        data["startDate"] = start_date.isoformat()
        email = _email(
            OFFER_LETTER,
            person,
            application,
            settings,
            agreement_url=settings.agreement_form_url,
            start_date=start_date.strftime("%B %d, %Y"),
        )
    else:
        email = _email(REJECTION, person, application, settings)
    return ActionOutcome(data=data, emails=[email])


async def withdraw_offer(
    session: AsyncSession,
    *,
    application: Application,
    reason: str | None,
    user: UserContext,
    settings: Settings,
) -> ActionOutcome:
    reason = _require_text(reason, "reason")
    await apply_pipeline_event(
        session,
        application=application,
        event=PipelineEvent.OFFER_WITHDRAWN,
        reason=reason,
        actor_user_id=user.user_id,
    )

    record = Decision(
        application_id=application.id,
        decision=DECISION_REJECT,
        reason=sanitize_text(reason),
        notes=OFFER_WITHDRAWN_MARKER,
        decided_by=user.user_id,
    )
    session.add(record)
    await session.flush()
    await log_decision(
        session,
        application_id=application.id,
        person_id=application.person_id,
        decision=DECISION_REJECT,
        reason=record.reason,
        notes=OFFER_WITHDRAWN_MARKER,
        user_id=user.user_id,
    )

    person = await _person_for(session, application)
    return ActionOutcome(
        data={**application_summary(application), "decisionId": record.id, "offerWithdrawn": True},
        emails=[_email(REJECTION, person, application, settings)],
    )


async def withdraw_application(
    session: AsyncSession,
    *,
    application: Application,
    reason: str | None,
    user: UserContext,
) -> ActionOutcome:
    await apply_pipeline_event(
        session,
        application=application,
        event=PipelineEvent.CANDIDATE_WITHDREW,
        reason=(reason or "").strip() or "Candidate withdrew",
        actor_user_id=user.user_id,
    )
    return ActionOutcome(data=application_summary(application))


def _require_url(value: str | None, field_name: str) -> str:
    url = _require_text(value, field_name)
    parsed = urlparse(url)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise InvariantViolation(f"Invalid {field_name} format")
    return url


async def send_stage_email(
    session: AsyncSession,
    *,
    application: Application,
    template_name: str,
    user: UserContext,
    settings: Settings,
    assessment_form_url: str | None = None,
    interviewer_name: str | None = None,
    scheduling_link: str | None = None,
) -> ActionOutcome:
    """Re-send one of the stage emails through the same delivery and audit path as the automatic ones."""
    if application.status not in (Status.ACTIVE.value, Status.ACCEPTED.value):
        raise InvariantViolation("Cannot send emails to inactive applications")
    if template_name not in RESENDABLE_TEMPLATES:
        raise InvariantViolation(f"Invalid template. Must be one of: {', '.join(RESENDABLE_TEMPLATES)}")

    person = await _person_for(session, application)
    if template_name == GC_INVITATION:
        if person.general_competencies_completed:
            raise InvariantViolation("Person has already completed general competencies assessment")
        email = _email(GC_INVITATION, person, application, settings, assessment_url=settings.gc_assessment_url)
    elif template_name == SC_INVITATION:
        form_url = _require_url(assessment_form_url, "assessmentFormUrl")
        email = _email(
            SC_INVITATION,
            person,
            application,
            settings,
            competencies=f'<a href="{form_url}">{form_url}</a>',
        )
    elif template_name == INTERVIEW_INVITATION:
        name = sanitize_text(_require_text(interviewer_name, "interviewerName"), max_length=100)
        link = _require_url(scheduling_link, "schedulingLink")
        email = _email(INTERVIEW_INVITATION, person, application, settings, interviewer_name=name, scheduling_link=link)
    else:
        email = _email(REJECTION, person, application, settings)

    logger.info(
        "stage_email_requested",
        extra={"application_id": application.id, "template": template_name, "user_id": user.user_id},
    )
    return ActionOutcome(data={**application_summary(application), "template": template_name}, emails=[email])
