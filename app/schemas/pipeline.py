from datetime import date, datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CompetencyIn(CamelModel):
    id: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=255)
    form_url: Optional[str] = Field(default=None, alias="formUrl")


class ScInvitationIn(CamelModel):
    competencies: List[CompetencyIn]


class AssessmentReviewIn(CamelModel):
    passed: bool


class AdvanceIn(CamelModel):
    reason: Optional[str] = None


class InterviewScheduleIn(CamelModel):
    interviewer_id: str = Field(alias="interviewerId")
    interviewer_name: Optional[str] = Field(default=None, alias="interviewerName")
    scheduling_link: Optional[str] = Field(default=None, alias="schedulingLink")
    scheduled_at: Optional[datetime] = Field(default=None, alias="scheduledAt")
    send_email: bool = Field(default=True, alias="sendEmail")


class InterviewCompleteIn(CamelModel):
    notes: str


class DecisionIn(CamelModel):
    decision: Literal["ACCEPT", "REJECT"]
    reason: Optional[str] = None
    notes: Optional[str] = None
    start_date: Optional[date] = Field(default=None, alias="startDate")


class SendEmailIn(CamelModel):
    template_name: str = Field(alias="templateName")
    assessment_form_url: Optional[str] = Field(default=None, alias="assessmentFormUrl")
    interviewer_name: Optional[str] = Field(default=None, alias="interviewerName")
    scheduling_link: Optional[str] = Field(default=None, alias="schedulingLink")


class ReasonIn(CamelModel):
    reason: Optional[str] = None


class ActionOut(BaseModel):
    success: bool = True
    data: dict[str, Any]


class AuditEntryOut(BaseModel):
    id: int
    action: str
    action_type: str = Field(serialization_alias="actionType")
    humanized: str
    details: Optional[dict[str, Any]] = None
    user_id: Optional[str] = Field(default=None, serialization_alias="userId")
    created_at: datetime = Field(serialization_alias="createdAt")
