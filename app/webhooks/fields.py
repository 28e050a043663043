"""
Label-first field resolution for Tally payloads.

Tally issues a new `question_*` key whenever a form field is recreated, while the
label typed by the form author stays put. Lookups therefore match on label and
only fall back to the key prefix, reporting a drift warning when they do.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from app.webhooks.payload import (
    BoolValue,
    ChoiceListValue,
    FileListValue,
    NumberValue,
    TallyField,
    TextValue,
    classify_value,
)


@dataclass(frozen=True)
class FieldSpec:
    label: str
    key: str


@dataclass(frozen=True)
class DriftWarning:
    form_context: str
    expected_label: str
    fallback_key: str
    matched_key: str
    matched_label: str | None

    @property
    def message(self) -> str:
        return (
            f"[{self.form_context}] Field \"{self.expected_label}\" matched by key fallback "
            f"(prefix {self.fallback_key}, found key {self.matched_key}, label "
            f"\"{self.matched_label or ''}\"). Update the label map."
        )


@dataclass(frozen=True)
class FieldLookup:
    field: TallyField | None = None
    warning: DriftWarning | None = None


APPLICATION_FIELDS: dict[str, FieldSpec] = {
    "email": FieldSpec("Email", "question_eaYYNE"),
    "first_name": FieldSpec("First Name", "question_qRkkYd"),
    "last_name": FieldSpec("Last Name", "question_Q7OOxA"),
    "phone_number": FieldSpec("Phone", "question_97oo61"),
    "country": FieldSpec("Country", "question_o2vAjV"),
    "portfolio_link": FieldSpec("Portfolio", "question_W8jjeP"),
    "education_level": FieldSpec("Education", "question_a2aajE"),
    "position": FieldSpec("Position", "question_KVavqX"),
    "resume_file": FieldSpec("Resume", "question_7NppJ9"),
    "academic_background": FieldSpec("Academic Background", "question_bW6622"),
    "previous_experience": FieldSpec("Previous Experience", "question_kNkk0J"),
    "video_link": FieldSpec("Video Introduction", "question_Bx22LA"),
    "other_file": FieldSpec("Other File", "question_97Md1Y"),
    "package_contents": FieldSpec("Package Contents", "question_6Zpp1O"),
}

# Option ids of the "what does your package contain" checkbox field.
PACKAGE_CHECKBOX_IDS: dict[str, str] = {
    "resume": "f0b59c5e-a761-422d-9f4f-b0877d763e31",
    "academic_bg": "3bbe2067-a65b-447d-8dd0-52b6cc2b9c22",
    "video_intro": "08626196-8186-4941-b743-f71b94eaee6f",
    "previous_experience": "5135f2af-01e6-4bb3-b8f5-cc4c534ea572",
    "other_file": "2163f28f-e7c4-47c4-a6df-535153718b44",
}

GENERAL_COMPETENCIES_FIELDS: dict[str, FieldSpec] = {
    "person_id": FieldSpec("who", "question_PzkEpx"),
    "name": FieldSpec("name", "question_Z2DVAV"),
    "score": FieldSpec("score", "question_Q7k02g"),
    "culture_score": FieldSpec("cultureScore", "question_LdPQ1J"),
    "situational_score": FieldSpec("situationalScore", "question_pLDlxP"),
    "digital_score": FieldSpec("digitalScore", "question_J2ON0d"),
}

GC_SUBSCORES: tuple[str, ...] = ("culture_score", "situational_score", "digital_score")

SPECIALIZED_COMPETENCIES_FIELDS: dict[str, FieldSpec] = {
    "application_id": FieldSpec("applicationId", "question_AppId"),
    "person_id": FieldSpec("who", "question_PzkEpx"),
    "score": FieldSpec("score", "question_Score"),
    "specialized_competency_id": FieldSpec("scId", "question_ScId"),
}

AGREEMENT_FIELDS: dict[str, FieldSpec] = {
    "application_id": FieldSpec("applicationId", "question_BGLBxe"),
    "legal_first_name": FieldSpec("First Legal Name", "question_9Zx9jK"),
    "legal_middle_name": FieldSpec("Middle Legal Name", "question_eryQWJ"),
    "legal_last_name": FieldSpec("Last Legal Name", "question_WRQEVL"),
    "preferred_first_name": FieldSpec("First Preferred Name", "question_a4k5qW"),
    "preferred_last_name": FieldSpec("Last Preferred Name", "question_6K4jEo"),
    "profile_picture": FieldSpec("Profile Picture", "question_7KjLr6"),
    "biography": FieldSpec("Would you like to provide a short biography?", "question_8L2alk"),
    "date_of_birth": FieldSpec("Date of Birth", "question_DpbkGX"),
    "country": FieldSpec("Country", "question_Xo9Jbe"),
    "privacy_policy": FieldSpec("Privacy Policy Acceptance", "question_QRjell"),
    "signature": FieldSpec("Internship Contract & Agreement Acceptance", "question_P941qP"),
    "entity_represented": FieldSpec("Entity Represented", "question_po5y2y"),
    "service_hours": FieldSpec("Service Hours?", "question_LKV72z"),
}


def find_field_by_label(fields: Sequence[TallyField], label: str) -> TallyField | None:
    wanted = label.strip().lower()
    for field in fields:
        if field.label is not None and field.label.strip().lower() == wanted:
            return field
    return None


def find_field_by_key(fields: Sequence[TallyField], key_prefix: str) -> TallyField | None:
    for field in fields:
        if field.key.startswith(key_prefix):
            return field
    return None


def find_field(
    fields: Sequence[TallyField],
    expected_label: str,
    fallback_key_prefix: str,
    form_context: str,
) -> FieldLookup:
    by_label = find_field_by_label(fields, expected_label)
    if by_label is not None:
        return FieldLookup(field=by_label)

    by_key = find_field_by_key(fields, fallback_key_prefix)
    if by_key is None:
        return FieldLookup()
    return FieldLookup(
        field=by_key,
        warning=DriftWarning(
            form_context=form_context,
            expected_label=expected_label,
            fallback_key=fallback_key_prefix,
            matched_key=by_key.key,
            matched_label=by_key.label,
        ),
    )


class FieldReader:
    """Resolves fields of one form against its field map, collecting drift warnings."""

    def __init__(self, fields: Sequence[TallyField], field_map: dict[str, FieldSpec], form_context: str) -> None:
        self.fields = fields
        self.field_map = field_map
        self.form_context = form_context
        self.warnings: list[DriftWarning] = []
        self._resolved: dict[str, TallyField | None] = {}

    def lookup(self, name: str) -> TallyField | None:
        if name in self._resolved:
            return self._resolved[name]
        spec = self.field_map[name]
        result = find_field(self.fields, spec.label, spec.key, self.form_context)
        if result.warning is not None:
            self.warnings.append(result.warning)
        self._resolved[name] = result.field
        return result.field

    def string(self, name: str) -> str | None:
        return get_string(self.lookup(name))

    def number(self, name: str) -> float | None:
        return get_number(self.lookup(name))

    def file_url(self, name: str) -> str | None:
        return get_file_url(self.lookup(name))

    def checkbox(self, name: str, option_id: str) -> bool:
        return is_checkbox_selected(self.lookup(name), option_id)

    def dropdown_or_string(self, name: str) -> str | None:
        field = self.lookup(name)
        return get_dropdown_text(field) or get_string(field)


def _format_number(number: float) -> str:
    return str(int(number)) if number.is_integer() else str(number)


def get_string(field: TallyField | None) -> str | None:
    if field is None:
        return None
    value = classify_value(field.value)
    if isinstance(value, TextValue):
        return value.text.strip() or None
    if isinstance(value, NumberValue):
        return _format_number(value.number)
    return None


def get_number(field: TallyField | None) -> float | None:
    if field is None:
        return None
    value = classify_value(field.value)
    if isinstance(value, NumberValue):
        number = value.number
    elif isinstance(value, TextValue):
        try:
            number = float(value.text.strip())
        except ValueError:
            return None
    else:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number


def get_file_url(field: TallyField | None) -> str | None:
    if field is None:
        return None
    value = classify_value(field.value)
    if isinstance(value, FileListValue) and value.files:
        return value.files[0].url
    return None


def is_checkbox_selected(field: TallyField | None, option_id: str) -> bool:
    if field is None:
        return False
    value = classify_value(field.value)
    if isinstance(value, ChoiceListValue):
        return any(choice.id == option_id for choice in value.choices)
    return False


def get_dropdown_text(field: TallyField | None) -> str | None:
    if field is None:
        return None
    value = classify_value(field.value)
    if not isinstance(value, ChoiceListValue) or not value.choices:
        return None
    first = value.choices[0]
    if first.text:
        return first.text
    option_text = {option.id: option.text for option in field.options or []}
    selected = [option_text.get(choice.id) for choice in value.choices if choice.id]
    resolved = [text for text in selected if text]
    return ", ".join(resolved) or None


def is_truthy_acceptance(field: TallyField | None) -> bool:
    """True for a literal true or any non-empty checkbox selection."""
    if field is None:
        return False
    value = classify_value(field.value)
    if isinstance(value, BoolValue):
        return value.flag
    if isinstance(value, ChoiceListValue):
        return len(value.choices) > 0
    if isinstance(value, FileListValue):
        return len(value.files) > 0
    return False


def extract_file_urls(fields: Iterable[TallyField]) -> list[dict[str, str | None]]:
    """Every uploaded file across the payload, labelled by its field."""
    urls: list[dict[str, str | None]] = []
    for field in fields:
        value = classify_value(field.value)
        if not isinstance(value, FileListValue):
            continue
        for item in value.files:
            urls.append({"label": field.label or field.key, "url": item.url, "type": item.mime_type})
    return urls
