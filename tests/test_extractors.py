from __future__ import annotations

import unittest

from app.core.errors import ExtractionError
from app.webhooks.extractors import (
    extract_agreement,
    extract_application,
    extract_general_competencies,
    extract_specialized_competencies,
)
from app.webhooks.fields import APPLICATION_FIELDS
from app.webhooks.payload import TallyWebhookPayload
from tests.payloads import (
    agreement_fields,
    application_fields,
    gc_fields,
    sc_fields,
    tally_field,
    webhook_payload,
)


def _payload(fields, **kwargs) -> TallyWebhookPayload:
    return TallyWebhookPayload.model_validate(webhook_payload(fields, **kwargs))


class ApplicationExtractionTests(unittest.TestCase):
    def test_package_flags_follow_checkbox(self) -> None:
        record = extract_application(_payload(application_fields(package=("resume",)), submission_id="S1"))
        self.assertEqual(record.email, "a@x.com")
        self.assertEqual(record.first_name, "A")
        self.assertEqual(record.last_name, "B")
        self.assertEqual(record.position, "Software Developer")
        self.assertTrue(record.has_resume)
        self.assertFalse(record.has_academic_bg)
        self.assertFalse(record.has_video_intro)
        self.assertEqual(record.resume_url, "https://files.example.com/resume.pdf")
        self.assertEqual(record.submission.submission_id, "S1")
        self.assertEqual(record.warnings, ())
        self.assertEqual(record.missing_fields, [])

    def test_email_is_lowercased(self) -> None:
        record = extract_application(_payload(application_fields(email="Ada@Example.COM")))
        self.assertEqual(record.email, "ada@example.com")

    def test_ticked_but_missing_documents_reported(self) -> None:
        record = extract_application(
            _payload(application_fields(package=("resume", "academic_bg"), resume_url=None))
        )
        self.assertEqual(record.missing_fields, ["resume", "academicBackground"])

    def test_missing_email_rejected(self) -> None:
        fields = [f for f in application_fields() if f["label"] != "Email"]
        with self.assertRaises(ExtractionError) as ctx:
            extract_application(_payload(fields))
        self.assertEqual(ctx.exception.message, "Email is required but missing from webhook payload")

    def test_missing_position_rejected(self) -> None:
        fields = [f for f in application_fields() if f["label"] != "Position"]
        with self.assertRaises(ExtractionError) as ctx:
            extract_application(_payload(fields))
        self.assertIn("Position", ctx.exception.message)

    def test_renamed_label_falls_back_to_key(self) -> None:
        fields = [f for f in application_fields() if f["label"] != "First Name"]
        fields.append(tally_field(APPLICATION_FIELDS["first_name"].key, "Given name", "Ada"))
        record = extract_application(_payload(fields))
        self.assertEqual(record.first_name, "Ada")
        self.assertEqual(len(record.warnings), 1)
        self.assertEqual(record.warnings[0].expected_label, "First Name")


class AssessmentExtractionTests(unittest.TestCase):
    def test_general_competencies_record(self) -> None:
        record = extract_general_competencies(
            _payload(gc_fields("person-1", 920, culture_score=300, digital_score="310"))
        )
        self.assertEqual(record.person_ref, "person-1")
        self.assertEqual(record.score, 920.0)
        self.assertEqual(record.subscores, {"culture_score": 300.0, "digital_score": 310.0})
        self.assertIn("fields", record.raw_data)

    def test_general_competencies_subscores_found_by_label_after_key_rotation(self) -> None:
        fields = gc_fields("person-1", 920)
        fields.append(tally_field("question_NEWKEY", "cultureScore", 300, "CALCULATED_FIELDS"))
        fields.append(tally_field("question_OTHER", "situationalScore", 280, "CALCULATED_FIELDS"))
        record = extract_general_competencies(_payload(fields))
        self.assertEqual(record.subscores, {"culture_score": 300.0, "situational_score": 280.0})
        self.assertEqual(record.warnings, ())

    def test_general_competencies_requires_score(self) -> None:
        with self.assertRaises(ExtractionError) as ctx:
            extract_general_competencies(_payload(gc_fields("person-1", None)))
        self.assertEqual(ctx.exception.message, "Score is required but missing from GC assessment webhook")

    def test_general_competencies_requires_person(self) -> None:
        with self.assertRaises(ExtractionError) as ctx:
            extract_general_competencies(_payload(gc_fields("", 900)))
        self.assertIn("Person ID", ctx.exception.message)

    def test_specialized_competencies_collects_uploads(self) -> None:
        record = extract_specialized_competencies(_payload(sc_fields(score=7, competency_id="sc-ux")))
        self.assertIsNone(record.application_id)
        self.assertEqual(record.score, 7.0)
        self.assertEqual(record.specialized_competency_id, "sc-ux")
        self.assertEqual(len(record.submission_urls), 1)
        self.assertEqual(record.submission_urls[0]["url"], "https://files.example.com/work.zip")
        self.assertEqual(record.submission.respondent_id, "resp-1")


class AgreementExtractionTests(unittest.TestCase):
    def test_agreement_record(self) -> None:
        record = extract_agreement(_payload(agreement_fields("app-1")))
        self.assertEqual(record.application_id, "app-1")
        self.assertEqual(record.legal_name, "Ada Lovelace")
        self.assertTrue(record.privacy_policy_accepted)
        self.assertEqual(record.signature_url, "https://files.example.com/signature.png")
        self.assertEqual(record.agreement_data()["legalLastName"], "Lovelace")

    def test_agreement_requires_legal_last_name(self) -> None:
        with self.assertRaises(ExtractionError) as ctx:
            extract_agreement(_payload(agreement_fields("app-1", legal_last_name="")))
        self.assertEqual(ctx.exception.message, "Legal last name is required but missing from agreement webhook")


if __name__ == "__main__":
    unittest.main()
