from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import (
    CREATE,
    DELETE,
    EMAIL_SENT,
    STAGE_CHANGE,
    STATUS_CHANGE,
    UPDATE,
    VIEW,
    AuditLog,
)

logger = logging.getLogger("rp.audit")


async def record_audit(
    session: AsyncSession,
    *,
    action: str,
    action_type: str,
    details: dict[str, Any] | None = None,
    person_id: str | None = None,
    application_id: str | None = None,
    user_id: str | None = None,
) -> AuditLog:
    entry = AuditLog(
        action=action,
        action_type=action_type,
        details=details,
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )
    session.add(entry)
    await session.flush()
    logger.debug("audit_recorded", extra={"action_type": action_type, "application_id": application_id})
    return entry


async def log_webhook_received(
    session: AsyncSession,
    *,
    webhook_type: str,
    submission_id: str,
    person_id: str | None = None,
    application_id: str | None = None,
    extra: dict[str, Any] | None = None,
) -> AuditLog:
    details: dict[str, Any] = {"webhookType": webhook_type, "submissionId": submission_id}
    if extra:
        details.update(extra)
    return await record_audit(
        session,
        action=f"Webhook received: {webhook_type}",
        action_type=CREATE,
        details=details,
        person_id=person_id,
        application_id=application_id,
    )


async def log_record_created(
    session: AsyncSession,
    *,
    action: str,
    details: dict[str, Any] | None = None,
    person_id: str | None = None,
    application_id: str | None = None,
    user_id: str | None = None,
) -> AuditLog:
    return await record_audit(
        session,
        action=action,
        action_type=CREATE,
        details=details,
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def log_stage_change(
    session: AsyncSession,
    *,
    application_id: str,
    person_id: str | None,
    from_stage: str,
    to_stage: str,
    reason: str | None = None,
    user_id: str | None = None,
) -> AuditLog:
    return await record_audit(
        session,
        action=f"Stage changed from {from_stage} to {to_stage}",
        action_type=STAGE_CHANGE,
        details={"fromStage": from_stage, "toStage": to_stage, "reason": reason},
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def log_status_change(
    session: AsyncSession,
    *,
    application_id: str,
    person_id: str | None,
    from_status: str,
    to_status: str,
    reason: str | None = None,
    user_id: str | None = None,
) -> AuditLog:
    return await record_audit(
        session,
        action=f"Status changed from {from_status} to {to_status}",
        action_type=STATUS_CHANGE,
        details={"fromStatus": from_status, "toStatus": to_status, "reason": reason},
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def log_decision(
    session: AsyncSession,
    *,
    application_id: str,
    person_id: str | None,
    decision: str,
    reason: str,
    notes: str | None = None,
    user_id: str | None = None,
) -> AuditLog:
    details: dict[str, Any] = {"decision": decision, "reason": reason}
    if notes:
        details["notes"] = notes
    return await record_audit(
        session,
        action=f"Decision made: {decision}",
        action_type=UPDATE,
        details=details,
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def log_assessment_completed(
    session: AsyncSession,
    *,
    assessment_type: str,
    score: float | None,
    passed: bool | None,
    person_id: str | None = None,
    application_id: str | None = None,
    threshold: float | None = None,
    user_id: str | None = None,
) -> AuditLog:
    label = "General Competencies" if assessment_type == "GENERAL_COMPETENCIES" else "Specialized Competencies"
    details: dict[str, Any] = {"assessmentType": assessment_type, "score": score, "passed": passed}
    if threshold is not None:
        details["threshold"] = threshold
    return await record_audit(
        session,
        action=f"{label} assessment completed",
        action_type=UPDATE,
        details=details,
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def log_email_sent(
    session: AsyncSession,
    *,
    template_name: str,
    recipient_email: str,
    status: str,
    person_id: str | None = None,
    application_id: str | None = None,
    error: str | None = None,
) -> AuditLog:
    details: dict[str, Any] = {"templateName": template_name, "recipientEmail": recipient_email, "status": status}
    if error:
        details["error"] = error
    return await record_audit(
        session,
        action=f"Email sent: {template_name}",
        action_type=EMAIL_SENT,
        details=details,
        person_id=person_id,
        application_id=application_id,
    )


async def log_record_viewed(
    session: AsyncSession,
    *,
    view_type: str,
    user_id: str | None,
    person_id: str | None = None,
    application_id: str | None = None,
) -> AuditLog:
    return await record_audit(
        session,
        action=f"Record viewed: {view_type}",
        action_type=VIEW,
        details={"viewType": view_type},
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def log_interview_scheduled(
    session: AsyncSession,
    *,
    application_id: str,
    person_id: str | None,
    interview_id: str,
    interviewer_id: str,
    scheduling_link: str | None,
    rescheduled: bool = False,
    user_id: str | None = None,
) -> AuditLog:
    return await record_audit(
        session,
        action="Interview rescheduled" if rescheduled else "Interview scheduled",
        action_type=UPDATE if rescheduled else CREATE,
        details={
            "interviewId": interview_id,
            "interviewerId": interviewer_id,
            "schedulingLink": scheduling_link,
        },
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def log_interview_completed(
    session: AsyncSession,
    *,
    application_id: str,
    person_id: str | None,
    interview_id: str,
    user_id: str | None = None,
) -> AuditLog:
    return await record_audit(
        session,
        action="Interview marked as completed",
        action_type=UPDATE,
        details={"interviewId": interview_id},
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def log_record_deleted(
    session: AsyncSession,
    *,
    entity: str,
    entity_id: str,
    person_id: str | None = None,
    application_id: str | None = None,
    user_id: str | None = None,
) -> AuditLog:
    return await record_audit(
        session,
        action=f"{entity} deleted",
        action_type=DELETE,
        details={"entity": entity, "entityId": entity_id},
        person_id=person_id,
        application_id=application_id,
        user_id=user_id,
    )


async def list_audit_entries(session: AsyncSession, *, application_id: str, limit: int = 200) -> list[AuditLog]:
    rows = (
        await session.execute(
            select(AuditLog)
            .where(AuditLog.application_id == application_id)
            .order_by(AuditLog.id.desc())
            .limit(limit)
        )
    ).scalars().all()
    return list(rows)
