from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.models import Application, AuditLog, Decision, Interview, WebhookReceipt
from app.models.audit_log import EMAIL_SENT, STAGE_CHANGE, STATUS_CHANGE, VIEW
from app.models.decision import OFFER_WITHDRAWN_MARKER
from tests.payloads import (
    ADMIN_HEADERS,
    MANAGER_HEADERS,
    VIEWER_HEADERS,
    agreement_fields,
    application_fields,
    gc_fields,
    sc_fields,
    webhook_payload,
)

BASE = "/api/applications"


@pytest.fixture()
def pipeline(client, post_webhook):
    class Pipeline:
        async def at_specialized(self) -> str:
            applied = await post_webhook("application", webhook_payload(application_fields(), submission_id="S1"))
            data = applied.json()["data"]
            graded = await post_webhook(
                "general-competencies",
                webhook_payload(gc_fields(data["personId"], 920), submission_id="GC-1"),
            )
            assert graded.status_code == 200, graded.text
            return data["applicationId"]

        async def invite(self, application_id: str) -> list[str]:
            response = await client.post(
                f"{BASE}/{application_id}/specialized-competencies/invite",
                json={"competencies": [{"id": "sc-ux", "name": "UX Research", "formUrl": "https://forms.example.com/ux"}]},
                headers=ADMIN_HEADERS,
            )
            assert response.status_code == 200, response.text
            return response.json()["data"]["assessmentIds"]

        async def with_passed_sc(self) -> str:
            application_id = await self.at_specialized()
            await self.invite(application_id)
            submitted = await post_webhook(
                "specialized-competencies",
                webhook_payload(
                    sc_fields(application_id=application_id, score=9, competency_id="sc-ux"),
                    submission_id="SC-1",
                ),
            )
            assessment_id = submitted.json()["data"]["assessmentId"]
            reviewed = await client.post(
                f"{BASE}/{application_id}/assessments/{assessment_id}/review",
                json={"passed": True},
                headers=ADMIN_HEADERS,
            )
            assert reviewed.status_code == 200, reviewed.text
            return application_id

        async def at_interview(self) -> str:
            application_id = await self.with_passed_sc()
            response = await client.post(f"{BASE}/{application_id}/advance-to-interview", json={}, headers=ADMIN_HEADERS)
            assert response.status_code == 200, response.text
            return application_id

        async def interviewed(self) -> str:
            application_id = await self.at_interview()
            scheduled = await client.post(
                f"{BASE}/{application_id}/interviews",
                json={"interviewerId": "hm-1", "interviewerName": "Grace", "schedulingLink": "https://cal.example.com/g"},
                headers=MANAGER_HEADERS,
            )
            assert scheduled.status_code == 200, scheduled.text
            completed = await client.post(
                f"{BASE}/{application_id}/interviews/complete",
                json={"notes": "Strong systems thinking."},
                headers=MANAGER_HEADERS,
            )
            assert completed.status_code == 200, completed.text
            return application_id

        async def accepted(self) -> str:
            application_id = await self.interviewed()
            response = await client.post(
                f"{BASE}/{application_id}/decision",
                json={"decision": "ACCEPT"},
                headers=ADMIN_HEADERS,
            )
            assert response.status_code == 200, response.text
            return application_id

    return Pipeline()


async def test_review_of_unsubmitted_assessment_rejected(client, pipeline):
    application_id = await pipeline.at_specialized()
    assessment_ids = await pipeline.invite(application_id)

    response = await client.post(
        f"{BASE}/{application_id}/assessments/{assessment_ids[0]}/review",
        json={"passed": True},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Cannot review an assessment that has not been submitted"}


async def test_advance_requires_passed_specialized_competency(client, pipeline):
    application_id = await pipeline.at_specialized()
    response = await client.post(f"{BASE}/{application_id}/advance-to-interview", json={}, headers=ADMIN_HEADERS)
    assert response.status_code == 400
    assert response.json() == {
        "error": "At least one specialized competency assessment must be reviewed and passed"
    }


async def test_scheduling_from_specialized_auto_advances(client, pipeline, fetch_one, email_sender):
    application_id = await pipeline.with_passed_sc()
    response = await client.post(
        f"{BASE}/{application_id}/interviews",
        json={"interviewerId": "hm-1", "schedulingLink": "https://cal.example.com/g"},
        headers=MANAGER_HEADERS,
    )
    assert response.status_code == 200, response.text
    assert response.json()["data"]["currentStage"] == "INTERVIEW"

    interview = await fetch_one(Interview, Interview.application_id == application_id)
    assert interview.outcome == "PENDING"
    assert interview.email_sent_at is not None
    assert email_sender.outbox[-1].template_name == "interview-invitation"
    assert "https://cal.example.com/g" in email_sender.outbox[-1].html


async def test_second_interview_must_be_rescheduled(client, pipeline):
    application_id = await pipeline.at_interview()
    body = {"interviewerId": "hm-1", "sendEmail": False}
    first = await client.post(f"{BASE}/{application_id}/interviews", json=body, headers=MANAGER_HEADERS)
    assert first.status_code == 200

    second = await client.post(f"{BASE}/{application_id}/interviews", json=body, headers=MANAGER_HEADERS)
    assert second.status_code == 400

    rescheduled = await client.post(
        f"{BASE}/{application_id}/interviews/reschedule",
        json={"interviewerId": "hm-2", "sendEmail": False},
        headers=MANAGER_HEADERS,
    )
    assert rescheduled.status_code == 200
    assert rescheduled.json()["data"]["interviewId"] == first.json()["data"]["interviewId"]


async def test_complete_without_interview(client, pipeline):
    application_id = await pipeline.at_interview()
    response = await client.post(
        f"{BASE}/{application_id}/interviews/complete",
        json={"notes": "n/a"},
        headers=MANAGER_HEADERS,
    )
    assert response.status_code == 404
    assert response.json() == {"error": "No pending interview found for this application"}


async def test_accept_writes_one_status_then_one_stage_change(client, pipeline, fetch_one, fetch_all, email_sender):
    application_id = await pipeline.interviewed()
    entries_before = await fetch_all(AuditLog, AuditLog.application_id == application_id)
    last_id = max(entry.id for entry in entries_before)

    response = await client.post(
        f"{BASE}/{application_id}/decision",
        json={"decision": "ACCEPT", "notes": "Great fit"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["currentStage"] == "AGREEMENT"
    assert data["status"] == "ACCEPTED"

    transitions = await fetch_all(
        AuditLog,
        AuditLog.application_id == application_id,
        AuditLog.id > last_id,
        AuditLog.action_type.in_([STATUS_CHANGE, STAGE_CHANGE]),
        order_by=AuditLog.id,
    )
    assert [entry.action_type for entry in transitions] == [STATUS_CHANGE, STAGE_CHANGE]
    assert transitions[0].details["toStatus"] == "ACCEPTED"
    assert transitions[1].details["toStage"] == "AGREEMENT"
    assert transitions[0].user_id == "admin-1"

    decision = await fetch_one(Decision, Decision.application_id == application_id)
    assert decision.decision == "ACCEPT"
    interview = await fetch_one(Interview, Interview.application_id == application_id)
    assert interview.outcome == "ACCEPT"
    assert email_sender.outbox[-1].template_name == "offer-letter"


async def test_decision_only_once(client, pipeline):
    application_id = await pipeline.accepted()
    response = await client.post(
        f"{BASE}/{application_id}/decision",
        json={"decision": "REJECT", "reason": "Changed our mind"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "A decision has already been made for this application"}


async def test_reject_requires_reason(client, pipeline, fetch_one):
    application_id = await pipeline.at_specialized()
    response = await client.post(f"{BASE}/{application_id}/decision", json={"decision": "REJECT"}, headers=ADMIN_HEADERS)
    assert response.status_code == 400
    assert response.json() == {"error": "reason is required"}

    application = await fetch_one(Application, Application.id == application_id)
    assert application.status == "ACTIVE"


async def test_reject_before_interview(client, pipeline, fetch_one, email_sender):
    application_id = await pipeline.at_specialized()
    response = await client.post(
        f"{BASE}/{application_id}/decision",
        json={"decision": "REJECT", "reason": "Portfolio does not match the role"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    application = await fetch_one(Application, Application.id == application_id)
    assert application.status == "REJECTED"
    assert application.current_stage == "SPECIALIZED_COMPETENCIES"
    assert email_sender.outbox[-1].template_name == "rejection"


async def test_accept_before_interview_rejected(client, pipeline):
    application_id = await pipeline.at_specialized()
    response = await client.post(f"{BASE}/{application_id}/decision", json={"decision": "ACCEPT"}, headers=ADMIN_HEADERS)
    assert response.status_code == 400
    assert "SPECIALIZED_COMPETENCIES" in response.json()["error"]


async def test_withdraw_offer_then_signing_is_ignored(client, pipeline, post_webhook, fetch_all, fetch_one):
    application_id = await pipeline.accepted()
    response = await client.post(
        f"{BASE}/{application_id}/withdraw-offer",
        json={"reason": "Position closed"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["status"] == "REJECTED"
    assert data["currentStage"] == "AGREEMENT"

    decisions = await fetch_all(Decision, Decision.application_id == application_id, order_by=Decision.decided_at)
    assert [d.decision for d in decisions] == ["ACCEPT", "REJECT"]
    assert decisions[-1].notes == OFFER_WITHDRAWN_MARKER

    signed = await post_webhook("agreement", webhook_payload(agreement_fields(application_id), submission_id="AG-1"))
    assert signed.status_code == 200
    body = signed.json()
    assert body["message"] == "Application offer was withdrawn, signing ignored"
    assert body["data"]["ignored"] is True

    application = await fetch_one(Application, Application.id == application_id)
    assert application.current_stage == "AGREEMENT"
    assert application.agreement_signed_at is None


async def test_agreement_signing(pipeline, post_webhook, fetch_one, fetch_all):
    application_id = await pipeline.accepted()
    response = await post_webhook("agreement", webhook_payload(agreement_fields(application_id), submission_id="AG-1"))
    assert response.status_code == 200, response.text
    assert response.json()["data"]["currentStage"] == "SIGNED"

    application = await fetch_one(Application, Application.id == application_id)
    assert application.current_stage == "SIGNED"
    assert application.status == "ACCEPTED"
    assert application.agreement_data["legalFirstName"] == "Ada"
    assert application.agreement_signed_at is not None

    stage_changes = await fetch_all(
        AuditLog,
        AuditLog.application_id == application_id,
        AuditLog.action_type == STAGE_CHANGE,
        order_by=AuditLog.id,
    )
    assert stage_changes[-1].details["reason"] == "Auto-advanced: Agreement signed via Tally webhook by Ada Lovelace"


async def test_agreement_before_acceptance(pipeline, post_webhook):
    application_id = await pipeline.at_specialized()
    response = await post_webhook("agreement", webhook_payload(agreement_fields(application_id), submission_id="AG-1"))
    assert response.status_code == 400


async def test_agreement_replay_adds_nothing(pipeline, post_webhook, count_rows):
    application_id = await pipeline.accepted()
    payload = webhook_payload(agreement_fields(application_id), submission_id="AG-1")

    first = await post_webhook("agreement", payload)
    counts = (await count_rows(AuditLog), await count_rows(WebhookReceipt))
    second = await post_webhook("agreement", payload)

    assert second.status_code == first.status_code == 200
    assert second.json() == first.json()
    assert (await count_rows(AuditLog), await count_rows(WebhookReceipt)) == counts


async def test_signing_after_plain_rejection_is_ignored(client, pipeline, post_webhook, fetch_one):
    application_id = await pipeline.interviewed()
    rejected = await client.post(
        f"{BASE}/{application_id}/decision",
        json={"decision": "REJECT", "reason": "Another candidate was a closer match"},
        headers=ADMIN_HEADERS,
    )
    assert rejected.status_code == 200, rejected.text

    signed = await post_webhook("agreement", webhook_payload(agreement_fields(application_id), submission_id="AG-1"))
    assert signed.status_code == 200
    assert signed.json()["message"] == "Application was rejected, signing ignored"
    assert signed.json()["data"]["ignored"] is True

    application = await fetch_one(Application, Application.id == application_id)
    assert application.agreement_signed_at is None


async def test_withdraw_application(client, pipeline, post_webhook):
    application_id = await pipeline.at_specialized()
    response = await client.post(f"{BASE}/{application_id}/withdraw", json={}, headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "WITHDRAWN"

    again = await client.post(f"{BASE}/{application_id}/withdraw", json={}, headers=ADMIN_HEADERS)
    assert again.status_code == 400


async def test_role_checks(client, pipeline):
    application_id = await pipeline.at_specialized()
    url = f"{BASE}/{application_id}/decision"
    body = {"decision": "REJECT", "reason": "x"}

    anonymous = await client.post(url, json=body)
    assert anonymous.status_code == 401

    viewer = await client.post(url, json=body, headers=VIEWER_HEADERS)
    assert viewer.status_code == 403
    assert viewer.json() == {"error": "Insufficient role"}


async def test_unknown_application(client):
    response = await client.post(f"{BASE}/missing/withdraw", json={}, headers=ADMIN_HEADERS)
    assert response.status_code == 404
    assert response.json() == {"error": "Application not found"}


async def test_audit_log_is_humanized_and_records_view(client, pipeline, count_rows):
    application_id = await pipeline.at_specialized()
    response = await client.get(f"{BASE}/{application_id}/audit-log", headers=VIEWER_HEADERS)
    assert response.status_code == 200, response.text
    entries = response.json()

    assert entries[0]["id"] > entries[-1]["id"]
    humanized = [entry["humanized"] for entry in entries]
    assert "Moved from Application to General Competencies: General competencies passed with score 920/1000 (threshold: 800)" in humanized
    assert "actionType" in entries[0]
    assert await count_rows(AuditLog, AuditLog.application_id == application_id, AuditLog.action_type == VIEW) == 1


async def test_accept_carries_start_date_into_offer(client, pipeline, email_sender):
    application_id = await pipeline.interviewed()
    response = await client.post(
        f"{BASE}/{application_id}/decision",
        json={"decision": "ACCEPT", "startDate": "2026-11-02"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200, response.text
    assert response.json()["data"]["startDate"] == "2026-11-02"
    assert email_sender.outbox[-1].template_name == "offer-letter"
    assert "November 02, 2026" in email_sender.outbox[-1].html


async def test_accept_start_date_defaults_to_two_weeks(client, pipeline):
    application_id = await pipeline.interviewed()
    response = await client.post(f"{BASE}/{application_id}/decision", json={"decision": "ACCEPT"}, headers=ADMIN_HEADERS)
    assert response.status_code == 200
    expected = (datetime.now(timezone.utc) + timedelta(days=14)).date().isoformat()
    assert response.json()["data"]["startDate"] == expected


async def test_accept_with_invalid_start_date(client, pipeline, fetch_one):
    application_id = await pipeline.interviewed()
    response = await client.post(
        f"{BASE}/{application_id}/decision",
        json={"decision": "ACCEPT", "startDate": "next monday"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 400
    assert response.json()["error"].startswith("startDate")

    application = await fetch_one(Application, Application.id == application_id)
    assert application.status == "ACTIVE"


async def test_send_email_resends_sc_invitation(client, pipeline, email_sender, fetch_all):
    application_id = await pipeline.at_specialized()
    response = await client.post(
        f"{BASE}/{application_id}/send-email",
        json={"templateName": "specialized-competencies-invitation", "assessmentFormUrl": "https://forms.example.com/ux"},
        headers=MANAGER_HEADERS,
    )
    assert response.status_code == 200, response.text
    assert response.json()["data"]["template"] == "specialized-competencies-invitation"
    assert "https://forms.example.com/ux" in email_sender.outbox[-1].html

    sent = await fetch_all(
        AuditLog,
        AuditLog.application_id == application_id,
        AuditLog.action_type == EMAIL_SENT,
        order_by=AuditLog.id,
    )
    assert sent[-1].details["templateName"] == "specialized-competencies-invitation"


async def test_send_email_interview_invitation(client, pipeline, email_sender):
    application_id = await pipeline.at_interview()
    response = await client.post(
        f"{BASE}/{application_id}/send-email",
        json={
            "templateName": "interview-invitation",
            "interviewerName": "Grace",
            "schedulingLink": "https://cal.example.com/g",
        },
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200, response.text
    assert "Grace" in email_sender.outbox[-1].html
    assert "https://cal.example.com/g" in email_sender.outbox[-1].html


@pytest.mark.parametrize(
    "body, error",
    [
        ({"templateName": "offer-letter"}, "Invalid template"),
        ({"templateName": "specialized-competencies-invitation"}, "assessmentFormUrl is required"),
        (
            {"templateName": "specialized-competencies-invitation", "assessmentFormUrl": "ftp://files"},
            "Invalid assessmentFormUrl format",
        ),
        (
            {"templateName": "interview-invitation", "schedulingLink": "https://cal.example.com/g"},
            "interviewerName is required",
        ),
        ({"templateName": "general-competencies-invitation"}, "already completed general competencies"),
    ],
)
async def test_send_email_rejects_bad_requests(client, pipeline, email_sender, body, error):
    application_id = await pipeline.at_specialized()
    sent_before = len(email_sender.outbox)
    response = await client.post(f"{BASE}/{application_id}/send-email", json=body, headers=ADMIN_HEADERS)
    assert response.status_code == 400
    assert error in response.json()["error"]
    assert len(email_sender.outbox) == sent_before


async def test_send_email_to_inactive_application(client, pipeline):
    application_id = await pipeline.at_specialized()
    await client.post(f"{BASE}/{application_id}/withdraw", json={}, headers=ADMIN_HEADERS)
    response = await client.post(
        f"{BASE}/{application_id}/send-email",
        json={"templateName": "rejection"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 400
    assert response.json() == {"error": "Cannot send emails to inactive applications"}


async def test_send_email_requires_interviewer_role(client, pipeline):
    application_id = await pipeline.at_specialized()
    response = await client.post(
        f"{BASE}/{application_id}/send-email",
        json={"templateName": "rejection"},
        headers=VIEWER_HEADERS,
    )
    assert response.status_code == 403
