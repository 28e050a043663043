from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class TallyFieldOption(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    text: str | None = None


class TallyField(BaseModel):
    model_config = ConfigDict(extra="allow")

    key: str
    label: str | None = None
    type: str | None = None
    value: Any = None
    options: list[TallyFieldOption] | None = None


class TallySubmission(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    response_id: str | None = Field(default=None, alias="responseId")
    submission_id: str = Field(alias="submissionId")
    respondent_id: str | None = Field(default=None, alias="respondentId")
    form_id: str | None = Field(default=None, alias="formId")
    form_name: str | None = Field(default=None, alias="formName")
    created_at: str | None = Field(default=None, alias="createdAt")
    fields: list[TallyField]


class TallyWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    event_id: str | None = Field(default=None, alias="eventId")
    event_type: str | None = Field(default=None, alias="eventType")
    created_at: str | None = Field(default=None, alias="createdAt")
    data: TallySubmission


# Field values arrive untyped; classify them once so readers branch on a tag.


@dataclass(frozen=True)
class TextValue:
    text: str
    kind: Literal["text"] = "text"


@dataclass(frozen=True)
class NumberValue:
    number: float
    kind: Literal["number"] = "number"


@dataclass(frozen=True)
class BoolValue:
    flag: bool
    kind: Literal["bool"] = "bool"


@dataclass(frozen=True)
class FileItem:
    url: str
    name: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class FileListValue:
    files: tuple[FileItem, ...]
    kind: Literal["files"] = "files"


@dataclass(frozen=True)
class ChoiceItem:
    id: str | None = None
    text: str | None = None


@dataclass(frozen=True)
class ChoiceListValue:
    choices: tuple[ChoiceItem, ...]
    kind: Literal["choices"] = "choices"


@dataclass(frozen=True)
class EmptyValue:
    kind: Literal["empty"] = "empty"


FieldValue = Union[TextValue, NumberValue, BoolValue, FileListValue, ChoiceListValue, EmptyValue]

EMPTY = EmptyValue()


def _choice_from(item: Any) -> ChoiceItem | None:
    if isinstance(item, str):
        return ChoiceItem(id=item)
    if isinstance(item, dict):
        raw_id = item.get("id")
        raw_text = item.get("text")
        return ChoiceItem(
            id=str(raw_id) if raw_id is not None else None,
            text=str(raw_text) if raw_text is not None else None,
        )
    return None


def classify_value(raw: Any) -> FieldValue:
    """Map a raw field value onto the tagged union. Unknown shapes become EmptyValue."""
    if raw is None:
        return EMPTY
    if isinstance(raw, bool):
        return BoolValue(raw)
    if isinstance(raw, (int, float)):
        return NumberValue(float(raw))
    if isinstance(raw, str):
        return TextValue(raw)
    if isinstance(raw, list):
        if not raw:
            return ChoiceListValue(())
        if all(isinstance(item, dict) and item.get("url") for item in raw):
            return FileListValue(
                tuple(
                    FileItem(
                        url=str(item["url"]),
                        name=item.get("name"),
                        mime_type=item.get("mimeType"),
                    )
                    for item in raw
                )
            )
        choices = [_choice_from(item) for item in raw]
        return ChoiceListValue(tuple(choice for choice in choices if choice is not None))
    return EMPTY
