from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from pydantic import ValidationError
from starlette.requests import ClientDisconnect, Request

from app.core.config import Settings
from app.core.errors import AuthenticationFailure, MalformedPayload, RateLimited
from app.core.sanitize import sanitize_for_log
from app.webhooks.payload import TallyWebhookPayload
from app.webhooks.rate_limit import RateLimiter, RateLimitResult
from app.webhooks.verify import get_client_ip, verify_webhook

logger = logging.getLogger("rp.webhooks")

CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, x-webhook-secret, Authorization",
}


@dataclass(frozen=True)
class InboundWebhook:
    source: str
    payload: TallyWebhookPayload
    ip: str | None
    rate_limit: RateLimitResult

    @property
    def submission_id(self) -> str:
        return self.payload.data.submission_id

    def headers(self) -> dict[str, str]:
        return self.rate_limit.headers()


def preflight_headers(settings: Settings) -> dict[str, str]:
    headers = dict(CORS_PREFLIGHT_HEADERS)
    allowed = ["Content-Type", settings.webhook_secret_header, "Authorization"]
    headers["Access-Control-Allow-Headers"] = ", ".join(dict.fromkeys(allowed))
    return headers


async def receive_webhook(
    request: Request,
    *,
    source: str,
    limiter: RateLimiter,
    settings: Settings,
) -> InboundWebhook:
    """
    Rate limit, read, verify and structurally validate a delivery.

    Nothing is written to the store here; every raised error carries the
    rate-limit headers computed for this request.
    """
    ip = get_client_ip(request.headers)
    rate_limit = limiter.check(ip or "unknown")
    headers = rate_limit.headers()
    if not rate_limit.allowed:
        logger.warning("webhook_rate_limited", extra={"source": source, "ip": ip})
        raise RateLimited("Rate limit exceeded", headers=headers)

    try:
        body = await request.body()
    except ClientDisconnect:
        raise MalformedPayload("Failed to read request body", headers=headers)

    verification = verify_webhook(
        request.headers,
        secret=settings.webhook_secret,
        secret_header=settings.webhook_secret_header,
        allowlist=settings.webhook_allowlist_entries,
        dev_bypass=settings.webhook_dev_bypass,
    )
    if not verification.valid:
        logger.warning(
            "webhook_rejected",
            extra={"source": source, "ip": ip, "reason": verification.reason},
        )
        raise AuthenticationFailure(verification.reason or "Unauthorized", headers=headers)

    try:
        raw = json.loads(body)
    except (ValueError, UnicodeDecodeError):
        raise MalformedPayload("Invalid JSON payload", headers=headers)

    if not isinstance(raw, dict) or not isinstance(raw.get("data"), dict):
        raise MalformedPayload("Invalid payload structure", headers=headers)
    data = raw["data"]
    if not data.get("submissionId") or not isinstance(data.get("fields"), list):
        raise MalformedPayload("Invalid payload structure", headers=headers)

    try:
        payload = TallyWebhookPayload.model_validate(raw)
    except ValidationError as exc:
        logger.warning(
            "webhook_payload_invalid",
            extra={"source": source, "error": sanitize_for_log(str(exc))},
        )
        raise MalformedPayload("Invalid payload structure", headers=headers)

    logger.info(
        "webhook_received",
        extra={
            "source": source,
            "ip": ip,
            "event_id": payload.event_id,
            "submission_id": payload.data.submission_id,
            "field_count": len(payload.data.fields),
        },
    )
    return InboundWebhook(source=source, payload=payload, ip=ip, rate_limit=rate_limit)
