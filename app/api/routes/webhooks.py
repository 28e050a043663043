from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api import deps
from app.core.config import Settings
from app.services.email import EmailSender
from app.services.webhook_ingest import (
    SOURCE_AGREEMENT,
    SOURCE_APPLICATION,
    SOURCE_GENERAL_COMPETENCIES,
    SOURCE_SPECIALIZED_COMPETENCIES,
    handle_agreement,
    handle_application,
    handle_general_competencies,
    handle_specialized_competencies,
    run_webhook,
)
from app.webhooks.extractors import (
    extract_agreement,
    extract_application,
    extract_general_competencies,
    extract_specialized_competencies,
)
from app.webhooks.intake import preflight_headers, receive_webhook
from app.webhooks.rate_limit import RateLimiter

router = APIRouter(prefix="/api/webhooks/tally", tags=["webhooks"])

_PIPELINES = {
    SOURCE_APPLICATION: (extract_application, handle_application),
    SOURCE_GENERAL_COMPETENCIES: (extract_general_competencies, handle_general_competencies),
    SOURCE_SPECIALIZED_COMPETENCIES: (extract_specialized_competencies, handle_specialized_competencies),
    SOURCE_AGREEMENT: (extract_agreement, handle_agreement),
}


async def _process(
    source: str,
    request: Request,
    session: AsyncSession,
    limiter: RateLimiter,
    settings: Settings,
    email_sender: EmailSender,
):
    inbound = await receive_webhook(request, source=source, limiter=limiter, settings=settings)
    extractor, handler = _PIPELINES[source]
    return await run_webhook(
        session,
        inbound,
        extractor=extractor,
        handler=handler,
        settings=settings,
        email_sender=email_sender,
    )


@router.post("/application")
async def application_webhook(
    request: Request,
    session: AsyncSession = Depends(deps.get_db_session),
    limiter: RateLimiter = Depends(deps.get_rate_limiter),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    return await _process(SOURCE_APPLICATION, request, session, limiter, settings, email_sender)


@router.post("/general-competencies")
async def general_competencies_webhook(
    request: Request,
    session: AsyncSession = Depends(deps.get_db_session),
    limiter: RateLimiter = Depends(deps.get_rate_limiter),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    return await _process(SOURCE_GENERAL_COMPETENCIES, request, session, limiter, settings, email_sender)


@router.post("/specialized-competencies")
async def specialized_competencies_webhook(
    request: Request,
    session: AsyncSession = Depends(deps.get_db_session),
    limiter: RateLimiter = Depends(deps.get_rate_limiter),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    return await _process(SOURCE_SPECIALIZED_COMPETENCIES, request, session, limiter, settings, email_sender)


@router.post("/agreement")
async def agreement_webhook(
    request: Request,
    session: AsyncSession = Depends(deps.get_db_session),
    limiter: RateLimiter = Depends(deps.get_rate_limiter),
    settings: Settings = Depends(deps.get_app_settings),
    email_sender: EmailSender = Depends(deps.get_email_sender),
):
    return await _process(SOURCE_AGREEMENT, request, session, limiter, settings, email_sender)


@router.options("/{webhook_type}")
async def webhook_preflight(webhook_type: str, settings: Settings = Depends(deps.get_app_settings)) -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=preflight_headers(settings))
