"""Turns raw audit rows into the phrases shown in the application history."""

from __future__ import annotations

import re
from typing import Any, Mapping

from app.models.audit_log import CREATE, EMAIL_SENT, STAGE_CHANGE, STATUS_CHANGE, UPDATE, VIEW

DEFAULT_STAGE_NAMES: dict[str, str] = {
    "APPLICATION": "Application",
    "GENERAL_COMPETENCIES": "General Competencies",
    "SPECIALIZED_COMPETENCIES": "Specialized Competencies",
    "INTERVIEW": "Interview",
    "AGREEMENT": "Agreement",
    "SIGNED": "Signed",
}

STATUS_NAMES: dict[str, str] = {
    "ACTIVE": "Active",
    "ACCEPTED": "Accepted",
    "REJECTED": "Rejected",
    "WITHDRAWN": "Withdrawn",
}

DECISION_NAMES: dict[str, str] = {
    "ACCEPT": "accepted",
    "REJECT": "rejected",
}

EMAIL_TEMPLATE_NAMES: dict[str, str] = {
    "application-received": "Application received",
    "general-competencies-invitation": "General competencies invitation",
    "specialized-competencies-invitation": "Specialized competencies invitation",
    "interview-invitation": "Interview invitation",
    "offer-letter": "Offer letter",
    "rejection": "Rejection",
    "account-created": "Account created",
}

VIEW_TYPE_NAMES: dict[str, str] = {
    "application_detail": "application details",
    "person_detail": "candidate details",
    "candidate_profile": "candidate profile",
}

_STAGE_CHANGE_RE = re.compile(r"^Stage changed from (\w+) to (\w+)")
_STATUS_CHANGE_RE = re.compile(r"^Status changed from (\w+) to (\w+)")
_DECISION_RE = re.compile(r"^Decision made: (\w+)")
_EMAIL_RE = re.compile(r"^Email sent: (.+)$")
_VIEW_RE = re.compile(r"^Record viewed: (\w+)")
_WEBHOOK_RE = re.compile(r"^Webhook received: (.+)$")
_ASSESSMENT_RE = re.compile(r"^(General|Specialized) Competencies assessment completed")

FALLBACK_TEXT = "Activity recorded"


def _title_case(raw: str) -> str:
    words = re.split(r"[_\-\s]+", raw.strip())
    return " ".join(word.capitalize() for word in words if word)


def _stage_name(raw: Any, stage_names: Mapping[str, str]) -> str:
    key = str(raw)
    return stage_names.get(key) or DEFAULT_STAGE_NAMES.get(key) or _title_case(key)


def _status_name(raw: Any) -> str:
    key = str(raw)
    return STATUS_NAMES.get(key) or _title_case(key)


def _template_name(raw: Any) -> str:
    key = str(raw).rsplit("/", 1)[-1]
    return EMAIL_TEMPLATE_NAMES.get(key) or _title_case(key)


def _with_reason(text: str, details: Mapping[str, Any]) -> str:
    reason = details.get("reason")
    if isinstance(reason, str) and reason.strip():
        return f"{text}: {reason.strip()}"
    return text


def _format_score(score: Any) -> str | None:
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        return None
    return str(int(score)) if float(score).is_integer() else f"{score:.2f}"


def _from_details(
    action_type: str,
    details: Mapping[str, Any],
    stage_names: Mapping[str, str],
) -> str | None:
    if action_type == STAGE_CHANGE and details.get("fromStage") and details.get("toStage"):
        text = (
            f"Moved from {_stage_name(details['fromStage'], stage_names)} "
            f"to {_stage_name(details['toStage'], stage_names)}"
        )
        return _with_reason(text, details)

    if action_type == STATUS_CHANGE and details.get("toStatus"):
        if details.get("fromStatus"):
            text = f"Status changed from {_status_name(details['fromStatus'])} to {_status_name(details['toStatus'])}"
        else:
            text = f"Status changed to {_status_name(details['toStatus'])}"
        return _with_reason(text, details)

    if action_type == UPDATE and details.get("decision"):
        decision = str(details["decision"])
        text = f"Application {DECISION_NAMES.get(decision, decision.lower())}"
        return _with_reason(text, details)

    if action_type == UPDATE and details.get("assessmentType"):
        label = _stage_name(details["assessmentType"], stage_names)
        passed = details.get("passed")
        score = _format_score(details.get("score"))
        if passed is True:
            outcome = "passed"
        elif passed is False:
            outcome = "failed"
        else:
            outcome = "submitted for review"
        text = f"{label} assessment {outcome}"
        return f"{text} (score {score})" if score is not None else text

    if action_type == EMAIL_SENT and details.get("templateName"):
        text = f"{_template_name(details['templateName'])} email"
        status = details.get("status")
        if status == "failed":
            return f"{text} failed to send"
        if status == "skipped":
            return f"{text} skipped"
        return f"{text} sent"

    if action_type == VIEW and details.get("viewType"):
        view_type = str(details["viewType"])
        return f"Viewed {VIEW_TYPE_NAMES.get(view_type, _title_case(view_type).lower())}"

    if action_type == CREATE and details.get("webhookType"):
        return f"{_title_case(str(details['webhookType']))} form submitted"

    return None


def _from_action(action: str, stage_names: Mapping[str, str]) -> str | None:
    match = _STAGE_CHANGE_RE.match(action)
    if match:
        return f"Moved from {_stage_name(match.group(1), stage_names)} to {_stage_name(match.group(2), stage_names)}"
    match = _STATUS_CHANGE_RE.match(action)
    if match:
        return f"Status changed from {_status_name(match.group(1))} to {_status_name(match.group(2))}"
    match = _DECISION_RE.match(action)
    if match:
        decision = match.group(1)
        return f"Application {DECISION_NAMES.get(decision, decision.lower())}"
    match = _EMAIL_RE.match(action)
    if match:
        return f"{_template_name(match.group(1))} email sent"
    match = _VIEW_RE.match(action)
    if match:
        view_type = match.group(1)
        return f"Viewed {VIEW_TYPE_NAMES.get(view_type, _title_case(view_type).lower())}"
    match = _WEBHOOK_RE.match(action)
    if match:
        return f"{_title_case(match.group(1))} form submitted"
    match = _ASSESSMENT_RE.match(action)
    if match:
        return f"{match.group(1)} Competencies assessment completed"
    return None


def humanize_audit_action(
    action: Any,
    action_type: Any = None,
    details: Any = None,
    stage_names: Mapping[str, str] | None = None,
) -> str:
    """
    Deterministic and total: structured details first, then the raw action text
    matched against known shapes, then the raw text itself.
    """
    raw = ""
    names = stage_names if isinstance(stage_names, Mapping) else {}
    try:
        raw = action if isinstance(action, str) else ("" if action is None else str(action))
        if isinstance(details, Mapping):
            text = _from_details(str(action_type or ""), details, names)
            if text:
                return text
        text = _from_action(raw.strip(), names)
        if text:
            return text
    except Exception:  # noqa: BLE001
        pass
    return raw.strip() or FALLBACK_TEXT
