from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.datetime_utils import now_utc_naive
from app.core.stage_machine import GuardContext, PipelineEvent, TransitionStep, plan_transition
from app.models.application import Application
from app.services.audit import log_stage_change, log_status_change

logger = logging.getLogger("rp.pipeline")


@dataclass(frozen=True)
class StageTransitionResult:
    application_id: str
    event: PipelineEvent
    from_stage: str
    to_stage: str
    from_status: str
    to_status: str
    steps: tuple[TransitionStep, ...]

    @property
    def changed(self) -> bool:
        return self.from_stage != self.to_stage or self.from_status != self.to_status


async def apply_pipeline_event(
    session: AsyncSession,
    *,
    application: Application,
    event: PipelineEvent,
    reason: str,
    actor_user_id: str | None = None,
    context: GuardContext | None = None,
) -> StageTransitionResult:
    """
    Move an application according to the transition table.

    The caller owns the transaction: stage, status and audit rows are only
    flushed here so they commit together with the fact that triggered them.
    """
    from_stage = application.current_stage
    from_status = application.status
    steps = plan_transition(from_stage, from_status, event, context)

    for step in steps:
        if step.status_changed:
            application.status = step.to_status.value
            await log_status_change(
                session,
                application_id=application.id,
                person_id=application.person_id,
                from_status=step.from_status.value,
                to_status=step.to_status.value,
                reason=reason,
                user_id=actor_user_id,
            )
        if step.stage_changed:
            application.current_stage = step.to_stage.value
            await log_stage_change(
                session,
                application_id=application.id,
                person_id=application.person_id,
                from_stage=step.from_stage.value,
                to_stage=step.to_stage.value,
                reason=reason,
                user_id=actor_user_id,
            )

    result = StageTransitionResult(
        application_id=application.id,
        event=event,
        from_stage=from_stage,
        to_stage=application.current_stage,
        from_status=from_status,
        to_status=application.status,
        steps=tuple(steps),
    )
    if result.changed:
        application.updated_at = now_utc_naive()
        logger.info(
            "stage_transition_applied",
            extra={
                "application_id": application.id,
                "event": event.value,
                "from_stage": from_stage,
                "to_stage": result.to_stage,
                "from_status": from_status,
                "to_status": result.to_status,
            },
        )
    return result
