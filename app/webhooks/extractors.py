from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.core.errors import ExtractionError
from app.webhooks.fields import (
    AGREEMENT_FIELDS,
    APPLICATION_FIELDS,
    GC_SUBSCORES,
    GENERAL_COMPETENCIES_FIELDS,
    PACKAGE_CHECKBOX_IDS,
    SPECIALIZED_COMPETENCIES_FIELDS,
    DriftWarning,
    FieldReader,
    extract_file_urls,
    is_truthy_acceptance,
)
from app.webhooks.payload import TallyWebhookPayload


@dataclass(frozen=True)
class SubmissionRef:
    submission_id: str
    response_id: str | None
    respondent_id: str | None
    form_id: str | None
    form_name: str | None
    submitted_at: str | None


@dataclass(frozen=True)
class ApplicationRecord:
    submission: SubmissionRef
    email: str
    first_name: str
    last_name: str
    position: str
    phone_number: str | None = None
    country: str | None = None
    portfolio_link: str | None = None
    education_level: str | None = None
    resume_url: str | None = None
    academic_background: str | None = None
    previous_experience: str | None = None
    video_link: str | None = None
    other_file_url: str | None = None
    has_resume: bool = False
    has_academic_bg: bool = False
    has_video_intro: bool = False
    has_previous_experience: bool = False
    has_other_file: bool = False
    warnings: tuple[DriftWarning, ...] = field(default=())

    @property
    def missing_fields(self) -> list[str]:
        """Documents the candidate ticked in the package checkbox but did not provide."""
        missing: list[str] = []
        if self.has_resume and not self.resume_url:
            missing.append("resume")
        if self.has_academic_bg and not self.academic_background:
            missing.append("academicBackground")
        if self.has_video_intro and not self.video_link:
            missing.append("videoIntroduction")
        if self.has_previous_experience and not self.previous_experience:
            missing.append("previousExperience")
        if self.has_other_file and not self.other_file_url:
            missing.append("otherFile")
        return missing


@dataclass(frozen=True)
class GeneralCompetenciesRecord:
    submission: SubmissionRef
    person_ref: str
    score: float
    name: str | None = None
    subscores: dict[str, float] = field(default_factory=dict)
    raw_data: dict[str, Any] = field(default_factory=dict)
    warnings: tuple[DriftWarning, ...] = field(default=())


@dataclass(frozen=True)
class SpecializedCompetenciesRecord:
    submission: SubmissionRef
    application_id: str | None = None
    person_ref: str | None = None
    score: float | None = None
    specialized_competency_id: str | None = None
    submission_urls: list[dict[str, str | None]] = field(default_factory=list)
    raw_data: dict[str, Any] = field(default_factory=dict)
    warnings: tuple[DriftWarning, ...] = field(default=())


@dataclass(frozen=True)
class AgreementRecord:
    submission: SubmissionRef
    application_id: str
    legal_first_name: str
    legal_last_name: str
    legal_middle_name: str | None = None
    preferred_first_name: str | None = None
    preferred_last_name: str | None = None
    profile_picture_url: str | None = None
    biography: str | None = None
    date_of_birth: str | None = None
    country: str | None = None
    privacy_policy_accepted: bool = False
    signature_url: str | None = None
    entity_represented: str | None = None
    service_hours: str | None = None
    warnings: tuple[DriftWarning, ...] = field(default=())

    @property
    def legal_name(self) -> str:
        parts = [self.legal_first_name, self.legal_middle_name, self.legal_last_name]
        return " ".join(part for part in parts if part)

    def agreement_data(self) -> dict[str, Any]:
        return {
            "legalFirstName": self.legal_first_name,
            "legalMiddleName": self.legal_middle_name,
            "legalLastName": self.legal_last_name,
            "preferredFirstName": self.preferred_first_name,
            "preferredLastName": self.preferred_last_name,
            "profilePictureUrl": self.profile_picture_url,
            "biography": self.biography,
            "dateOfBirth": self.date_of_birth,
            "country": self.country,
            "privacyPolicyAccepted": self.privacy_policy_accepted,
            "signatureUrl": self.signature_url,
            "entityRepresented": self.entity_represented,
            "serviceHours": self.service_hours,
        }


def _submission_ref(payload: TallyWebhookPayload) -> SubmissionRef:
    data = payload.data
    return SubmissionRef(
        submission_id=data.submission_id,
        response_id=data.response_id,
        respondent_id=data.respondent_id,
        form_id=data.form_id,
        form_name=data.form_name,
        submitted_at=data.created_at or payload.created_at,
    )


def _raw_data(payload: TallyWebhookPayload) -> dict[str, Any]:
    data = payload.data
    return {
        "formId": data.form_id,
        "formName": data.form_name,
        "submittedAt": data.created_at,
        "fields": [item.model_dump(mode="json", exclude_none=True) for item in data.fields],
    }


def extract_application(payload: TallyWebhookPayload) -> ApplicationRecord:
    reader = FieldReader(payload.data.fields, APPLICATION_FIELDS, "Application")

    email = reader.string("email")
    if not email:
        raise ExtractionError("Email is required but missing from webhook payload")
    first_name = reader.string("first_name")
    if not first_name:
        raise ExtractionError("First name is required but missing from webhook payload")
    last_name = reader.string("last_name")
    if not last_name:
        raise ExtractionError("Last name is required but missing from webhook payload")
    position = reader.dropdown_or_string("position")
    if not position:
        raise ExtractionError("Position is required but missing from webhook payload")

    return ApplicationRecord(
        submission=_submission_ref(payload),
        email=email.lower(),
        first_name=first_name,
        last_name=last_name,
        position=position,
        phone_number=reader.string("phone_number"),
        country=reader.dropdown_or_string("country"),
        portfolio_link=reader.string("portfolio_link"),
        education_level=reader.dropdown_or_string("education_level"),
        resume_url=reader.file_url("resume_file"),
        academic_background=reader.string("academic_background"),
        previous_experience=reader.string("previous_experience"),
        video_link=reader.string("video_link"),
        other_file_url=reader.file_url("other_file"),
        has_resume=reader.checkbox("package_contents", PACKAGE_CHECKBOX_IDS["resume"]),
        has_academic_bg=reader.checkbox("package_contents", PACKAGE_CHECKBOX_IDS["academic_bg"]),
        has_video_intro=reader.checkbox("package_contents", PACKAGE_CHECKBOX_IDS["video_intro"]),
        has_previous_experience=reader.checkbox("package_contents", PACKAGE_CHECKBOX_IDS["previous_experience"]),
        has_other_file=reader.checkbox("package_contents", PACKAGE_CHECKBOX_IDS["other_file"]),
        warnings=tuple(reader.warnings),
    )


def extract_general_competencies(payload: TallyWebhookPayload) -> GeneralCompetenciesRecord:
    reader = FieldReader(payload.data.fields, GENERAL_COMPETENCIES_FIELDS, "General Competencies")

    person_ref = reader.string("person_id")
    if not person_ref:
        raise ExtractionError("Person ID (who) is required but missing from GC assessment webhook")
    score = reader.number("score")
    if score is None:
        raise ExtractionError("Score is required but missing from GC assessment webhook")

    subscores: dict[str, float] = {}
    for name in GC_SUBSCORES:
        value = reader.number(name)
        if value is not None:
            subscores[name] = value

    return GeneralCompetenciesRecord(
        submission=_submission_ref(payload),
        person_ref=person_ref,
        score=score,
        name=reader.string("name"),
        subscores=subscores,
        raw_data=_raw_data(payload),
        warnings=tuple(reader.warnings),
    )


def extract_specialized_competencies(payload: TallyWebhookPayload) -> SpecializedCompetenciesRecord:
    reader = FieldReader(payload.data.fields, SPECIALIZED_COMPETENCIES_FIELDS, "Specialized Competencies")

    return SpecializedCompetenciesRecord(
        submission=_submission_ref(payload),
        application_id=reader.string("application_id"),
        person_ref=reader.string("person_id"),
        score=reader.number("score"),
        specialized_competency_id=reader.string("specialized_competency_id"),
        submission_urls=extract_file_urls(payload.data.fields),
        raw_data=_raw_data(payload),
        warnings=tuple(reader.warnings),
    )


def extract_agreement(payload: TallyWebhookPayload) -> AgreementRecord:
    reader = FieldReader(payload.data.fields, AGREEMENT_FIELDS, "Agreement")

    application_id = reader.string("application_id")
    if not application_id:
        raise ExtractionError("Application ID is required but missing from agreement webhook")
    legal_first_name = reader.string("legal_first_name")
    if not legal_first_name:
        raise ExtractionError("Legal first name is required but missing from agreement webhook")
    legal_last_name = reader.string("legal_last_name")
    if not legal_last_name:
        raise ExtractionError("Legal last name is required but missing from agreement webhook")

    return AgreementRecord(
        submission=_submission_ref(payload),
        application_id=application_id,
        legal_first_name=legal_first_name,
        legal_last_name=legal_last_name,
        legal_middle_name=reader.string("legal_middle_name"),
        preferred_first_name=reader.string("preferred_first_name"),
        preferred_last_name=reader.string("preferred_last_name"),
        profile_picture_url=reader.file_url("profile_picture"),
        biography=reader.string("biography"),
        date_of_birth=reader.string("date_of_birth"),
        country=reader.dropdown_or_string("country"),
        privacy_policy_accepted=is_truthy_acceptance(reader.lookup("privacy_policy")),
        signature_url=reader.file_url("signature"),
        entity_represented=reader.dropdown_or_string("entity_represented"),
        service_hours=reader.dropdown_or_string("service_hours"),
        warnings=tuple(reader.warnings),
    )
