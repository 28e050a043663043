from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.datetime_utils import isoformat_or_none, now_utc_naive
from app.core.errors import ExtractionError, InternalError, InvariantViolation, NotFound, PipelineError
from app.core.sanitize import sanitize_for_log, sanitize_text
from app.core.stage_machine import PipelineEvent, Stage, Status
from app.models.application import Application
from app.models.assessment import GENERAL_COMPETENCIES, SPECIALIZED_COMPETENCIES, Assessment
from app.models.person import Person
from app.services.applications import (
    application_summary,
    applications_awaiting_gc,
    find_active_application_for_position,
    find_application_by_respondent,
    get_application,
    offer_was_withdrawn,
)
from app.services.audit import (
    log_assessment_completed,
    log_record_created,
    log_record_deleted,
    log_webhook_received,
)
from app.services.email import (
    APPLICATION_RECEIVED,
    GC_INVITATION,
    EmailSender,
    PendingEmail,
    deliver_pending_emails,
)
from app.services.people import (
    PersonContact,
    find_or_create_person,
    find_person_by_email,
    find_person_by_respondent,
    get_person,
    latest_gc_assessment,
)
from app.services.stage_transitions import apply_pipeline_event
from app.services.webhook_receipts import get_receipt, receipt_body, store_receipt
from app.webhooks.extractors import (
    AgreementRecord,
    ApplicationRecord,
    GeneralCompetenciesRecord,
    SpecializedCompetenciesRecord,
)
from app.webhooks.fields import DriftWarning
from app.webhooks.intake import InboundWebhook

logger = logging.getLogger("rp.webhooks")

SOURCE_APPLICATION = "application"
SOURCE_GENERAL_COMPETENCIES = "general-competencies"
SOURCE_SPECIALIZED_COMPETENCIES = "specialized-competencies"
SOURCE_AGREEMENT = "agreement"

NEXT_STEP_AWAITING_GC = "awaiting_gc"
NEXT_STEP_ADVANCE_TO_SPECIALIZED = "advance_to_specialized"
NEXT_STEP_AWAITING_GC_DECISION = "awaiting_gc_decision"


@dataclass
class WebhookOutcome:
    message: str
    data: dict[str, Any]
    emails: list[PendingEmail] = field(default_factory=list)

    def body(self) -> dict[str, Any]:
        return {"success": True, "message": self.message, "data": self.data}


Extractor = Callable[[Any], Any]
Handler = Callable[[AsyncSession, InboundWebhook, Any, Settings], Awaitable[WebhookOutcome]]


def format_score(value: float | None) -> str:
    if value is None:
        return "n/a"
    return str(int(value)) if float(value).is_integer() else f"{value:.2f}"


def _log_drift(source: str, warnings: Sequence[DriftWarning]) -> None:
    for warning in warnings:
        logger.warning(
            "webhook_field_drift",
            extra={
                "source": source,
                "form_context": warning.form_context,
                "expected_label": warning.expected_label,
                "fallback_key": warning.fallback_key,
                "matched_key": warning.matched_key,
                "matched_label": warning.matched_label,
                "detail": warning.message,
            },
        )


def _attach_headers(exc: PipelineError, headers: dict[str, str]) -> PipelineError:
    exc.headers = {**headers, **exc.headers}
    return exc


async def _replay(session: AsyncSession, inbound: InboundWebhook) -> JSONResponse | None:
    existing = await get_receipt(session, source=inbound.source, submission_id=inbound.submission_id)
    if existing is None:
        return None
    logger.info(
        "webhook_duplicate",
        extra={"source": inbound.source, "submission_id": inbound.submission_id},
    )
    return JSONResponse(receipt_body(existing), status_code=existing.status_code, headers=inbound.headers())


async def run_webhook(
    session: AsyncSession,
    inbound: InboundWebhook,
    *,
    extractor: Extractor,
    handler: Handler,
    settings: Settings,
    email_sender: EmailSender,
) -> JSONResponse:
    """Extract, deduplicate and apply one verified delivery as a single unit of work."""
    headers = inbound.headers()
    try:
        record = extractor(inbound.payload)
    except PipelineError as exc:
        logger.warning(
            "webhook_extraction_failed",
            extra={"source": inbound.source, "submission_id": inbound.submission_id, "error": exc.message},
        )
        raise _attach_headers(exc, headers)
    _log_drift(inbound.source, record.warnings)

    replay = await _replay(session, inbound)
    if replay is not None:
        return replay

    try:
        outcome = await handler(session, inbound, record, settings)
        body = outcome.body()
        await store_receipt(
            session,
            source=inbound.source,
            submission_id=inbound.submission_id,
            body=body,
            event_id=inbound.payload.event_id,
            ip_address=inbound.ip,
        )
        await session.commit()
    except IntegrityError:
        # A concurrent delivery of the same submission committed first.
        await session.rollback()
        replay = await _replay(session, inbound)
        if replay is not None:
            return replay
        logger.error(
            "webhook_integrity_error",
            extra={"source": inbound.source, "submission_id": inbound.submission_id},
        )
        raise InternalError("Internal server error", headers=headers)
    except PipelineError as exc:
        await session.rollback()
        logger.warning(
            "webhook_not_applied",
            extra={
                "source": inbound.source,
                "submission_id": inbound.submission_id,
                "status_code": exc.status_code,
                "error": sanitize_for_log(exc.message),
            },
        )
        raise _attach_headers(exc, headers)
    except Exception as exc:
        await session.rollback()
        logger.error(
            "webhook_processing_failed",
            extra={
                "source": inbound.source,
                "submission_id": inbound.submission_id,
                "error_type": type(exc).__name__,
                "error": sanitize_for_log(str(exc)),
            },
        )
        raise InternalError("Internal server error", headers=headers) from exc

    if outcome.emails:
        await deliver_pending_emails(session, email_sender, outcome.emails)
    return JSONResponse(body, status_code=200, headers=headers)


def _email_context(person: Person, application: Application, settings: Settings, **extra: Any) -> dict[str, Any]:
    context: dict[str, Any] = {
        "first_name": person.first_name,
        "last_name": person.last_name,
        "position": application.position,
        "application_id": application.id,
        "sender_name": settings.email_sender_name,
    }
    context.update(extra)
    return context


async def handle_application(
    session: AsyncSession,
    inbound: InboundWebhook,
    record: ApplicationRecord,
    settings: Settings,
) -> WebhookOutcome:
    submission = record.submission
    person, person_created = await find_or_create_person(
        session,
        PersonContact(
            email=record.email,
            first_name=record.first_name,
            last_name=record.last_name,
            phone_number=record.phone_number,
            country=record.country,
            portfolio_url=record.portfolio_link,
            education_level=record.education_level,
            tally_respondent_id=submission.respondent_id,
        ),
    )

    duplicate = await find_active_application_for_position(session, person_id=person.id, position=record.position)
    if duplicate is not None:
        raise InvariantViolation(f"An active application for {record.position} already exists for this candidate")

    application = Application(
        person_id=person.id,
        position=record.position,
        current_stage=Stage.APPLICATION.value,
        status=Status.ACTIVE.value,
        has_resume=record.has_resume,
        has_academic_bg=record.has_academic_bg,
        has_video_intro=record.has_video_intro,
        has_previous_experience=record.has_previous_experience,
        has_other_file=record.has_other_file,
        resume_url=record.resume_url,
        academic_background=sanitize_text(record.academic_background),
        previous_experience=sanitize_text(record.previous_experience),
        video_link=record.video_link,
        other_file_url=record.other_file_url,
        tally_submission_id=submission.submission_id,
        tally_response_id=submission.response_id,
        tally_respondent_id=submission.respondent_id,
        tally_form_id=submission.form_id,
    )
    session.add(application)
    await session.flush()

    await log_webhook_received(
        session,
        webhook_type=SOURCE_APPLICATION,
        submission_id=submission.submission_id,
        person_id=person.id,
        application_id=application.id,
    )
    if person_created:
        await log_record_created(
            session,
            action="Person record created",
            details={"email": person.email, "source": SOURCE_APPLICATION},
            person_id=person.id,
        )
    missing_fields = record.missing_fields
    await log_record_created(
        session,
        action=f"Application submitted for {record.position}",
        details={"position": record.position, "missingFields": missing_fields},
        person_id=person.id,
        application_id=application.id,
    )

    previous_gc = await latest_gc_assessment(session, person.id)
    if previous_gc is not None and previous_gc.passed:
        await apply_pipeline_event(
            session,
            application=application,
            event=PipelineEvent.GC_PASSED,
            reason="Auto-advanced: Person already passed general competencies",
        )
        next_step = NEXT_STEP_ADVANCE_TO_SPECIALIZED
    elif previous_gc is not None:
        await apply_pipeline_event(
            session,
            application=application,
            event=PipelineEvent.GC_FAILED,
            reason=(
                f"General competencies previously failed with score {format_score(previous_gc.score)} "
                f"(threshold: {format_score(previous_gc.threshold)})"
            ),
        )
        next_step = NEXT_STEP_AWAITING_GC_DECISION
    else:
        next_step = NEXT_STEP_AWAITING_GC

    emails = [
        PendingEmail(
            template_name=APPLICATION_RECEIVED,
            to=person.email,
            context=_email_context(person, application, settings),
            person_id=person.id,
            application_id=application.id,
        )
    ]
    if previous_gc is None:
        emails.append(
            PendingEmail(
                template_name=GC_INVITATION,
                to=person.email,
                context=_email_context(person, application, settings, assessment_url=settings.gc_assessment_url),
                person_id=person.id,
                application_id=application.id,
            )
        )

    return WebhookOutcome(
        message="Application received",
        data={
            "applicationId": application.id,
            "personId": person.id,
            "personCreated": person_created,
            "position": application.position,
            "currentStage": application.current_stage,
            "status": application.status,
            "nextStep": next_step,
            "missingFields": missing_fields,
        },
        emails=emails,
    )


def _split_name(full_name: str | None, fallback_email: str) -> tuple[str, str]:
    parts = (full_name or "").strip().split()
    if not parts:
        return fallback_email.split("@", 1)[0], ""
    return parts[0], " ".join(parts[1:])


async def _resolve_gc_person(
    session: AsyncSession,
    record: GeneralCompetenciesRecord,
) -> Person:
    ref = record.person_ref.strip()
    person = await get_person(session, ref)
    if person is not None:
        return person
    if "@" not in ref:
        raise NotFound("Person not found")

    person = await find_person_by_email(session, ref)
    if person is not None:
        return person
    first_name, last_name = _split_name(record.name, ref)
    person, _ = await find_or_create_person(
        session,
        PersonContact(
            email=ref,
            first_name=first_name,
            last_name=last_name,
            tally_respondent_id=record.submission.respondent_id,
        ),
    )
    await log_record_created(
        session,
        action="Person record created",
        details={"email": person.email, "source": SOURCE_GENERAL_COMPETENCIES},
        person_id=person.id,
    )
    return person


async def handle_general_competencies(
    session: AsyncSession,
    inbound: InboundWebhook,
    record: GeneralCompetenciesRecord,
    settings: Settings,
) -> WebhookOutcome:
    person = await _resolve_gc_person(session, record)
    # The threshold in force now is stored with the result and never re-evaluated.
    threshold = float(settings.gc_threshold)
    passed = record.score >= threshold
    now = now_utc_naive()

    previous = (
        await session.execute(
            select(Assessment).where(
                Assessment.person_id == person.id,
                Assessment.assessment_type == GENERAL_COMPETENCIES,
            )
        )
    ).scalars().all()
    for old in previous:
        await session.delete(old)
        await log_record_deleted(session, entity="Assessment", entity_id=old.id, person_id=person.id)
    await session.flush()

    assessment = Assessment(
        assessment_type=GENERAL_COMPETENCIES,
        person_id=person.id,
        score=record.score,
        threshold=threshold,
        passed=passed,
        completed_at=now,
        raw_data={**record.raw_data, "subscores": record.subscores, "scale": settings.gc_scale},
        tally_submission_id=record.submission.submission_id,
    )
    session.add(assessment)

    person.general_competencies_completed = True
    person.general_competencies_score = record.score
    if passed:
        person.general_competencies_passed_at = now
    if record.submission.respondent_id and not person.tally_respondent_id:
        person.tally_respondent_id = record.submission.respondent_id
    await session.flush()

    await log_webhook_received(
        session,
        webhook_type=SOURCE_GENERAL_COMPETENCIES,
        submission_id=record.submission.submission_id,
        person_id=person.id,
    )
    await log_assessment_completed(
        session,
        assessment_type=GENERAL_COMPETENCIES,
        score=record.score,
        passed=passed,
        threshold=threshold,
        person_id=person.id,
    )

    verdict = "passed" if passed else "failed"
    reason = (
        f"General competencies {verdict} with score {format_score(record.score)}/{settings.gc_scale} "
        f"(threshold: {format_score(threshold)})"
    )
    event = PipelineEvent.GC_PASSED if passed else PipelineEvent.GC_FAILED
    applications = await applications_awaiting_gc(session, person.id)
    advanced = 0
    for application in applications:
        result = await apply_pipeline_event(session, application=application, event=event, reason=reason)
        if passed and result.changed:
            advanced += 1

    return WebhookOutcome(
        message=f"General competencies assessment {verdict}",
        data={
            "assessmentId": assessment.id,
            "personId": person.id,
            "score": record.score,
            "threshold": threshold,
            "passed": passed,
            "applicationsAdvanced": advanced,
            "applications": [application_summary(application) for application in applications],
        },
    )


async def _resolve_sc_application(
    session: AsyncSession,
    record: SpecializedCompetenciesRecord,
) -> Application:
    if record.application_id:
        application = await get_application(session, record.application_id)
        if application is None:
            raise NotFound("Application not found")
        return application

    respondent_id = record.submission.respondent_id
    if respondent_id:
        application = await find_application_by_respondent(session, respondent_id)
        if application is not None:
            return application
    if record.person_ref:
        person = await get_person(session, record.person_ref)
        if person is not None:
            application = (
                await session.execute(
                    select(Application)
                    .where(
                        Application.person_id == person.id,
                        Application.status == Status.ACTIVE.value,
                        Application.current_stage == Stage.SPECIALIZED_COMPETENCIES.value,
                    )
                    .order_by(Application.created_at.desc())
                    .limit(1)
                )
            ).scalars().first()
            if application is not None:
                return application
    if not respondent_id and not record.person_ref:
        raise ExtractionError("Application ID is required when the submission carries no respondent ID")
    if respondent_id and await find_person_by_respondent(session, respondent_id) is not None:
        raise NotFound("No pending specialized competency assessment found for this candidate")
    raise NotFound("Candidate not found: no application matched this respondent ID")


async def _match_sc_assessment(
    session: AsyncSession,
    application_id: str,
    competency_id: str | None,
) -> Assessment | None:
    # Without a competency id there is nothing to match on; the submission gets its own row.
    if competency_id is None:
        return None
    rows = (
        await session.execute(
            select(Assessment)
            .where(
                Assessment.application_id == application_id,
                Assessment.assessment_type == SPECIALIZED_COMPETENCIES,
            )
            .order_by(Assessment.created_at.desc())
        )
    ).scalars().all()

    matching = [item for item in rows if item.specialized_competency_id == competency_id]
    for item in matching:
        if item.completed_at is None:
            return item
    for item in matching:
        if item.awaiting_review:
            return item
    return None


async def handle_specialized_competencies(
    session: AsyncSession,
    inbound: InboundWebhook,
    record: SpecializedCompetenciesRecord,
    settings: Settings,
) -> WebhookOutcome:
    application = await _resolve_sc_application(session, record)
    if application.status != Status.ACTIVE.value:
        raise InvariantViolation("Application is not active")

    assessment = await _match_sc_assessment(session, application.id, record.specialized_competency_id)
    if assessment is None:
        assessment = Assessment(
            assessment_type=SPECIALIZED_COMPETENCIES,
            application_id=application.id,
            specialized_competency_id=record.specialized_competency_id,
        )
        session.add(assessment)

    assessment.score = record.score
    # Left for an admin reviewer.
    assessment.passed = None
    assessment.completed_at = now_utc_naive()
    assessment.submission_urls = record.submission_urls
    assessment.raw_data = record.raw_data
    assessment.tally_submission_id = record.submission.submission_id
    await session.flush()

    await log_webhook_received(
        session,
        webhook_type=SOURCE_SPECIALIZED_COMPETENCIES,
        submission_id=record.submission.submission_id,
        person_id=application.person_id,
        application_id=application.id,
    )
    await log_assessment_completed(
        session,
        assessment_type=SPECIALIZED_COMPETENCIES,
        score=record.score,
        passed=None,
        person_id=application.person_id,
        application_id=application.id,
    )

    return WebhookOutcome(
        message="Specialized competencies submission recorded",
        data={
            "assessmentId": assessment.id,
            "specializedCompetencyId": assessment.specialized_competency_id,
            "awaitingReview": True,
            **application_summary(application),
        },
    )


async def handle_agreement(
    session: AsyncSession,
    inbound: InboundWebhook,
    record: AgreementRecord,
    settings: Settings,
) -> WebhookOutcome:
    application = await get_application(session, record.application_id)
    if application is None:
        raise NotFound("Application not found")

    # Answered with 200 so Tally does not keep retrying.
    if application.status == Status.REJECTED.value:
        withdrawn = await offer_was_withdrawn(session, application.id)
        logger.info(
            "agreement_ignored_offer_withdrawn" if withdrawn else "agreement_ignored_rejected",
            extra={"application_id": application.id, "submission_id": record.submission.submission_id},
        )
        message = (
            "Application offer was withdrawn, signing ignored"
            if withdrawn
            else "Application was rejected, signing ignored"
        )
        return WebhookOutcome(message=message, data={**application_summary(application), "ignored": True})
    if application.status != Status.ACCEPTED.value:
        raise InvariantViolation("Application must be accepted before the agreement can be signed")
    if application.current_stage != Stage.AGREEMENT.value:
        raise InvariantViolation("Application is not at the agreement stage")

    signed_at = now_utc_naive()
    application.agreement_data = record.agreement_data()
    application.agreement_signed_at = signed_at
    application.agreement_tally_submission_id = record.submission.submission_id
    await session.flush()

    await log_webhook_received(
        session,
        webhook_type=SOURCE_AGREEMENT,
        submission_id=record.submission.submission_id,
        person_id=application.person_id,
        application_id=application.id,
    )
    await apply_pipeline_event(
        session,
        application=application,
        event=PipelineEvent.AGREEMENT_SIGNED,
        reason=f"Auto-advanced: Agreement signed via Tally webhook by {record.legal_name}",
    )

    return WebhookOutcome(
        message="Agreement signed",
        data={**application_summary(application), "signedAt": isoformat_or_none(signed_at)},
    )
