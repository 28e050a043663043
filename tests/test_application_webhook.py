from __future__ import annotations

from app.models import Application, AuditLog, Person, WebhookReceipt
from app.models.audit_log import CREATE, EMAIL_SENT, STAGE_CHANGE
from tests.payloads import application_fields, gc_fields, webhook_payload


async def test_application_creates_person_and_application(post_webhook, fetch_one, fetch_all, email_sender):
    payload = webhook_payload(application_fields(package=("resume",)), submission_id="S1", form_name="Application")
    response = await post_webhook("application", payload)

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["currentStage"] == "APPLICATION"
    assert data["status"] == "ACTIVE"
    assert data["personCreated"] is True
    assert data["nextStep"] == "awaiting_gc"
    assert data["missingFields"] == []

    person = await fetch_one(Person, Person.email == "a@x.com")
    assert person is not None
    assert person.first_name == "A"
    assert person.last_name == "B"

    application = await fetch_one(Application, Application.id == data["applicationId"])
    assert application.person_id == person.id
    assert application.position == "Software Developer"
    assert application.has_resume is True
    assert application.has_academic_bg is False
    assert application.tally_submission_id == "S1"

    entries = await fetch_all(AuditLog, AuditLog.application_id == application.id, order_by=AuditLog.id)
    assert entries[0].action == "Webhook received: application"
    assert entries[0].action_type == CREATE
    assert "Application submitted for Software Developer" in [entry.action for entry in entries]
    assert not [entry for entry in entries if entry.action_type == STAGE_CHANGE]

    sent = [entry.details["templateName"] for entry in entries if entry.action_type == EMAIL_SENT]
    assert sent == ["application-received", "general-competencies-invitation"]
    assert [message.template_name for message in email_sender.outbox] == sent
    assert email_sender.outbox[0].to == "a@x.com"


async def test_replayed_submission_returns_stored_response(post_webhook, count_rows, email_sender):
    payload = webhook_payload(application_fields(), submission_id="S-REPLAY")
    first = await post_webhook("application", payload)
    assert first.status_code == 200

    counts = {model: await count_rows(model) for model in (Person, Application, AuditLog, WebhookReceipt)}
    outbox_size = len(email_sender.outbox)

    second = await post_webhook("application", payload)
    assert second.status_code == 200
    assert second.json() == first.json()
    for model, count in counts.items():
        assert await count_rows(model) == count
    assert len(email_sender.outbox) == outbox_size


async def test_second_active_application_for_same_position_rejected(post_webhook, count_rows):
    first = await post_webhook("application", webhook_payload(application_fields(), submission_id="S-A"))
    assert first.status_code == 200

    second = await post_webhook("application", webhook_payload(application_fields(), submission_id="S-B"))
    assert second.status_code == 400
    assert "already exists" in second.json()["error"]
    assert await count_rows(Application) == 1
    assert await count_rows(WebhookReceipt) == 1


async def test_returning_person_reuses_record(post_webhook, count_rows):
    await post_webhook("application", webhook_payload(application_fields(), submission_id="S-1"))
    response = await post_webhook(
        "application",
        webhook_payload(application_fields(position="Designer"), submission_id="S-2"),
    )
    assert response.status_code == 200
    assert response.json()["data"]["personCreated"] is False
    assert await count_rows(Person) == 1
    assert await count_rows(Application) == 2


async def test_previous_gc_pass_auto_advances(post_webhook, fetch_all, email_sender):
    gc = await post_webhook("general-competencies", webhook_payload(gc_fields("a@x.com", 900), submission_id="GC-1"))
    assert gc.status_code == 200, gc.text

    response = await post_webhook("application", webhook_payload(application_fields(), submission_id="S-GC"))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["currentStage"] == "SPECIALIZED_COMPETENCIES"
    assert data["status"] == "ACTIVE"
    assert data["nextStep"] == "advance_to_specialized"

    stage_changes = await fetch_all(
        AuditLog,
        AuditLog.application_id == data["applicationId"],
        AuditLog.action_type == STAGE_CHANGE,
        order_by=AuditLog.id,
    )
    assert [(entry.details["fromStage"], entry.details["toStage"]) for entry in stage_changes] == [
        ("APPLICATION", "GENERAL_COMPETENCIES"),
        ("GENERAL_COMPETENCIES", "SPECIALIZED_COMPETENCIES"),
    ]
    assert stage_changes[0].details["reason"] == "Auto-advanced: Person already passed general competencies"
    assert "general-competencies-invitation" not in [message.template_name for message in email_sender.outbox]


async def test_previous_gc_fail_waits_at_general_competencies(post_webhook):
    await post_webhook("general-competencies", webhook_payload(gc_fields("a@x.com", 500), submission_id="GC-1"))

    response = await post_webhook("application", webhook_payload(application_fields(), submission_id="S-GC"))
    data = response.json()["data"]
    assert data["currentStage"] == "GENERAL_COMPETENCIES"
    assert data["status"] == "ACTIVE"
    assert data["nextStep"] == "awaiting_gc_decision"
