from __future__ import annotations

import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.webhook_receipt import WebhookReceipt


async def get_receipt(session: AsyncSession, *, source: str, submission_id: str) -> WebhookReceipt | None:
    return (
        await session.execute(
            select(WebhookReceipt).where(
                WebhookReceipt.source == source,
                WebhookReceipt.submission_id == submission_id,
            )
        )
    ).scalars().first()


async def store_receipt(
    session: AsyncSession,
    *,
    source: str,
    submission_id: str,
    body: dict[str, Any],
    status_code: int = 200,
    event_id: str | None = None,
    ip_address: str | None = None,
) -> WebhookReceipt:
    receipt = WebhookReceipt(
        source=source,
        submission_id=submission_id,
        event_id=event_id,
        ip_address=ip_address,
        status_code=status_code,
        response_json=json.dumps(body, ensure_ascii=False, separators=(",", ":")),
    )
    session.add(receipt)
    await session.flush()
    return receipt


def receipt_body(receipt: WebhookReceipt) -> dict[str, Any]:
    return json.loads(receipt.response_json)
