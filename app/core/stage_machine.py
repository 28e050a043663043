from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from app.core.errors import InvariantViolation, TransitionTableError


class Stage(str, Enum):
    APPLICATION = "APPLICATION"
    GENERAL_COMPETENCIES = "GENERAL_COMPETENCIES"
    SPECIALIZED_COMPETENCIES = "SPECIALIZED_COMPETENCIES"
    INTERVIEW = "INTERVIEW"
    AGREEMENT = "AGREEMENT"
    SIGNED = "SIGNED"


class Status(str, Enum):
    ACTIVE = "ACTIVE"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    WITHDRAWN = "WITHDRAWN"


class PipelineEvent(str, Enum):
    GC_PASSED = "GC_PASSED"
    GC_FAILED = "GC_FAILED"
    SC_ADVANCED = "SC_ADVANCED"
    INTERVIEW_COMPLETED = "INTERVIEW_COMPLETED"
    DECISION_ACCEPT = "DECISION_ACCEPT"
    DECISION_REJECT = "DECISION_REJECT"
    AGREEMENT_SIGNED = "AGREEMENT_SIGNED"
    OFFER_WITHDRAWN = "OFFER_WITHDRAWN"
    CANDIDATE_WITHDREW = "CANDIDATE_WITHDREW"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.APPLICATION,
    Stage.GENERAL_COMPETENCIES,
    Stage.SPECIALIZED_COMPETENCIES,
    Stage.INTERVIEW,
    Stage.AGREEMENT,
    Stage.SIGNED,
)

TERMINAL_STATUSES: frozenset[Status] = frozenset({Status.REJECTED, Status.WITHDRAWN})

# Stages from which an application can still be rejected or withdrawn before an offer exists.
PRE_OFFER_STAGES: tuple[Stage, ...] = (
    Stage.APPLICATION,
    Stage.GENERAL_COMPETENCIES,
    Stage.SPECIALIZED_COMPETENCIES,
    Stage.INTERVIEW,
)


@dataclass(frozen=True)
class GuardContext:
    passed_sc_count: int = 0


Guard = Callable[[GuardContext], bool]


def _has_passed_sc(context: GuardContext) -> bool:
    return context.passed_sc_count >= 1


@dataclass(frozen=True)
class TransitionRule:
    from_stage: Stage
    event: PipelineEvent
    requires_status: Status = Status.ACTIVE
    to_stage: Stage | None = None
    to_status: Status | None = None
    # Re-apply the same event from the new stage.
    cascade: bool = False
    guard: Guard | None = None
    guard_message: str = ""

    @property
    def target_stage(self) -> Stage:
        return self.to_stage or self.from_stage


@dataclass(frozen=True)
class TransitionStep:
    event: PipelineEvent
    from_stage: Stage
    to_stage: Stage
    from_status: Status
    to_status: Status

    @property
    def stage_changed(self) -> bool:
        return self.from_stage != self.to_stage

    @property
    def status_changed(self) -> bool:
        return self.from_status != self.to_status


TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(Stage.APPLICATION, PipelineEvent.GC_PASSED, to_stage=Stage.GENERAL_COMPETENCIES, cascade=True),
    TransitionRule(Stage.GENERAL_COMPETENCIES, PipelineEvent.GC_PASSED, to_stage=Stage.SPECIALIZED_COMPETENCIES),
    TransitionRule(Stage.APPLICATION, PipelineEvent.GC_FAILED, to_stage=Stage.GENERAL_COMPETENCIES),
    # A failed GC waits for an explicit admin decision.
    TransitionRule(Stage.GENERAL_COMPETENCIES, PipelineEvent.GC_FAILED),
    TransitionRule(
        Stage.SPECIALIZED_COMPETENCIES,
        PipelineEvent.SC_ADVANCED,
        to_stage=Stage.INTERVIEW,
        guard=_has_passed_sc,
        guard_message="At least one specialized competency assessment must be reviewed and passed",
    ),
    TransitionRule(Stage.INTERVIEW, PipelineEvent.INTERVIEW_COMPLETED),
    TransitionRule(
        Stage.INTERVIEW,
        PipelineEvent.DECISION_ACCEPT,
        to_stage=Stage.AGREEMENT,
        to_status=Status.ACCEPTED,
    ),
    *(
        TransitionRule(stage, PipelineEvent.DECISION_REJECT, to_status=Status.REJECTED)
        for stage in PRE_OFFER_STAGES
    ),
    TransitionRule(
        Stage.AGREEMENT,
        PipelineEvent.AGREEMENT_SIGNED,
        requires_status=Status.ACCEPTED,
        to_stage=Stage.SIGNED,
    ),
    TransitionRule(
        Stage.AGREEMENT,
        PipelineEvent.OFFER_WITHDRAWN,
        requires_status=Status.ACCEPTED,
        to_status=Status.REJECTED,
    ),
    *(
        TransitionRule(stage, PipelineEvent.CANDIDATE_WITHDREW, to_status=Status.WITHDRAWN)
        for stage in PRE_OFFER_STAGES
    ),
)


TransitionTable = dict[tuple[Stage, PipelineEvent], TransitionRule]


def stage_index(stage: Stage | str) -> int:
    return STAGE_ORDER.index(Stage(stage))


def next_stage(stage: Stage | str) -> Stage | None:
    index = stage_index(stage)
    if index + 1 >= len(STAGE_ORDER):
        return None
    return STAGE_ORDER[index + 1]


def is_terminal_status(status: Status | str) -> bool:
    return Status(status) in TERMINAL_STATUSES


def validate_transition_table(table: TransitionTable) -> None:
    for (stage, event), rule in table.items():
        if rule.from_stage != stage or rule.event != event:
            raise TransitionTableError(f"Rule registered under ({stage.value}, {event.value}) does not match its key")
        if stage_index(rule.target_stage) < stage_index(rule.from_stage):
            raise TransitionTableError(
                f"Rule ({stage.value}, {event.value}) moves backwards to {rule.target_stage.value}"
            )
        if rule.cascade:
            if rule.to_stage is None:
                raise TransitionTableError(f"Cascading rule ({stage.value}, {event.value}) has no target stage")
            if (rule.to_stage, event) not in table:
                raise TransitionTableError(
                    f"Cascading rule ({stage.value}, {event.value}) has no follow-up rule at {rule.to_stage.value}"
                )
        if rule.guard is not None and not rule.guard_message:
            raise TransitionTableError(f"Guarded rule ({stage.value}, {event.value}) needs a guard message")


def build_transition_table(rules: Iterable[TransitionRule]) -> TransitionTable:
    table: TransitionTable = {}
    for rule in rules:
        key = (rule.from_stage, rule.event)
        if key in table:
            raise TransitionTableError(f"Duplicate rule for ({rule.from_stage.value}, {rule.event.value})")
        table[key] = rule
    validate_transition_table(table)
    return table


TRANSITION_TABLE: TransitionTable = build_transition_table(TRANSITION_RULES)


def plan_transition(
    stage: Stage | str,
    status: Status | str,
    event: PipelineEvent,
    context: GuardContext | None = None,
    *,
    table: TransitionTable | None = None,
) -> list[TransitionStep]:
    """Resolve every step an event causes from the given position, or raise InvariantViolation."""
    table = table or TRANSITION_TABLE
    context = context or GuardContext()
    current_stage = Stage(stage)
    current_status = Status(status)

    rule = table.get((current_stage, event))
    if rule is None:
        raise InvariantViolation(f"Cannot apply {event.value} to an application at {current_stage.value}")
    if rule.requires_status != current_status:
        raise InvariantViolation(
            f"Cannot apply {event.value} to an application with status {current_status.value}"
        )

    steps: list[TransitionStep] = []
    while rule is not None:
        if rule.guard is not None and not rule.guard(context):
            raise InvariantViolation(rule.guard_message)
        to_status = rule.to_status or current_status
        step = TransitionStep(
            event=event,
            from_stage=current_stage,
            to_stage=rule.target_stage,
            from_status=current_status,
            to_status=to_status,
        )
        steps.append(step)
        current_stage, current_status = step.to_stage, step.to_status
        rule = table.get((current_stage, event)) if rule.cascade else None
        if rule is not None and rule.requires_status != current_status:
            rule = None
    return steps


def allowed_events(stage: Stage | str, status: Status | str) -> frozenset[PipelineEvent]:
    current_stage = Stage(stage)
    current_status = Status(status)
    return frozenset(
        event
        for (rule_stage, event), rule in TRANSITION_TABLE.items()
        if rule_stage == current_stage and rule.requires_status == current_status
    )
