from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.auth import require_roles
from app.core.config import Settings
from app.core.roles import Role
from app.schemas.pipeline import (
    ActionOut,
    AdvanceIn,
    AssessmentReviewIn,
    AuditEntryOut,
    DecisionIn,
    InterviewCompleteIn,
    InterviewScheduleIn,
    ReasonIn,
    ScInvitationIn,
    SendEmailIn,
)
from app.schemas.user import UserContext
from app.services import pipeline_actions
from app.services.applications import get_application_or_404
from app.services.audit import list_audit_entries, log_record_viewed
from app.services.audit_display import humanize_audit_action
from app.services.email import EmailSender, deliver_pending_emails
from app.services.pipeline_actions import ActionOutcome, CompetencyInvite

router = APIRouter(prefix="/api/applications", tags=["applications"])

_admin = require_roles([Role.ADMIN])
_interviewers = require_roles([Role.HIRING_MANAGER])
_viewers = require_roles([Role.VIEWER])


async def _finish(session: AsyncSession, email_sender: EmailSender, outcome: ActionOutcome) -> ActionOut:
    await session.commit()
    if outcome.emails:
        await deliver_pending_emails(session, email_sender, outcome.emails)
    return ActionOut(data=outcome.data)


@router.post("/{application_id}/specialized-competencies/invite", response_model=ActionOut)
async def invite_specialized_competencies(
    application_id: str,
    payload: ScInvitationIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_admin),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.invite_specialized_competencies(
        session,
        application=application,
        competencies=[
            CompetencyInvite(competency_id=item.id, name=item.name, form_url=item.form_url)
            for item in payload.competencies
        ],
        user=user,
        settings=settings,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/assessments/{assessment_id}/review", response_model=ActionOut)
async def review_assessment(
    application_id: str,
    assessment_id: str,
    payload: AssessmentReviewIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_admin),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.review_sc_assessment(
        session,
        application=application,
        assessment_id=assessment_id,
        passed=payload.passed,
        user=user,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/advance-to-interview", response_model=ActionOut)
async def advance_to_interview(
    application_id: str,
    payload: AdvanceIn | None = None,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_admin),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.advance_to_interview(
        session,
        application=application,
        user=user,
        reason=payload.reason if payload else None,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/interviews", response_model=ActionOut)
async def schedule_interview(
    application_id: str,
    payload: InterviewScheduleIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_interviewers),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.schedule_interview(
        session,
        application=application,
        interviewer_id=payload.interviewer_id,
        interviewer_name=payload.interviewer_name,
        scheduling_link=payload.scheduling_link,
        scheduled_at=payload.scheduled_at,
        send_email=payload.send_email,
        user=user,
        settings=settings,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/interviews/reschedule", response_model=ActionOut)
async def reschedule_interview(
    application_id: str,
    payload: InterviewScheduleIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_interviewers),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.reschedule_interview(
        session,
        application=application,
        interviewer_id=payload.interviewer_id,
        interviewer_name=payload.interviewer_name,
        scheduling_link=payload.scheduling_link,
        scheduled_at=payload.scheduled_at,
        send_email=payload.send_email,
        user=user,
        settings=settings,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/interviews/complete", response_model=ActionOut)
async def complete_interview(
    application_id: str,
    payload: InterviewCompleteIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_interviewers),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.complete_interview(
        session,
        application=application,
        notes=payload.notes,
        user=user,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/decision", response_model=ActionOut)
async def record_decision(
    application_id: str,
    payload: DecisionIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_admin),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.record_decision(
        session,
        application=application,
        decision=payload.decision,
        reason=payload.reason,
        notes=payload.notes,
        user=user,
        settings=settings,
        start_date=payload.start_date,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/withdraw-offer", response_model=ActionOut)
async def withdraw_offer(
    application_id: str,
    payload: ReasonIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_admin),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.withdraw_offer(
        session,
        application=application,
        reason=payload.reason,
        user=user,
        settings=settings,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/withdraw", response_model=ActionOut)
async def withdraw_application(
    application_id: str,
    payload: ReasonIn | None = None,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_admin),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.withdraw_application(
        session,
        application=application,
        reason=payload.reason if payload else None,
        user=user,
    )
    return await _finish(session, email_sender, outcome)


@router.post("/{application_id}/send-email", response_model=ActionOut)
async def send_email(
    application_id: str,
    payload: SendEmailIn,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_interviewers),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    application = await get_application_or_404(session, application_id)
    outcome = await pipeline_actions.send_stage_email(
        session,
        application=application,
        template_name=payload.template_name,
        user=user,
        settings=settings,
        assessment_form_url=payload.assessment_form_url,
        interviewer_name=payload.interviewer_name,
        scheduling_link=payload.scheduling_link,
    )
    return await _finish(session, email_sender, outcome)


@router.get("/{application_id}/audit-log", response_model=list[AuditEntryOut], response_model_by_alias=True)
async def application_audit_log(
    application_id: str,
    session: AsyncSession = Depends(deps.get_db_session),
    user: UserContext = Depends(_viewers),
    settings: Settings = Depends(deps.get_app_settings),
):
    application = await get_application_or_404(session, application_id)
    entries = await list_audit_entries(session, application_id=application.id)
    await log_record_viewed(
        session,
        view_type="application_detail",
        user_id=user.user_id,
        person_id=application.person_id,
        application_id=application.id,
    )
    await session.commit()

    stage_names = settings.stage_display_names
    return [
        AuditEntryOut(
            id=entry.id,
            action=entry.action,
            action_type=entry.action_type,
            humanized=humanize_audit_action(entry.action, entry.action_type, entry.details, stage_names),
            details=entry.details,
            user_id=entry.user_id,
            created_at=entry.created_at,
        )
        for entry in entries
    ]
