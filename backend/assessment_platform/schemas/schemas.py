"""
Pydantic schemas for API request bodies and typed responses.

Bodies accept the camelCase keys the browser client sends (`templateId`,
`dueDate`, ...) as well as snake_case.
"""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# ── Auth ──

class LoginRequest(_Body):
    email: str = ""
    password: str = ""


class RefreshRequest(_Body):
    refresh_token: str = Field(alias="refreshToken")


class LogoutRequest(_Body):
    refresh_token: str | None = Field(None, alias="refreshToken")


class RoleSwitchRequest(_Body):
    role: str = Field(alias="roleId")


# ── Assessments ──

Priority = Literal["low", "medium", "high", "critical"]


class AssessmentCreate(_Body):
    name: str = ""
    template_id: str = Field("", alias="templateId")
    description: str | None = None
    due_date: date | None = Field(None, alias="dueDate")
    priority: Priority = "medium"
    assigned_to: list[str] = Field(default_factory=list, alias="assignedTo")


class DimensionScoreUpdate(_Body):
    id: str
    score: float | None = None


class AssessmentUpdate(_Body):
    name: str | None = None
    description: str | None = None
    due_date: date | None = Field(None, alias="dueDate")
    priority: Priority | None = None
    status: str | None = None
    assigned_to: list[str] | None = Field(None, alias="assignedTo")
    reviewers: list[str] | None = None
    dimensions: list[DimensionScoreUpdate] | None = None

    def changes(self) -> dict[str, Any]:
        """Only the fields the caller actually sent, keyed by column name."""
        data = self.model_dump(exclude_unset=True)
        if "name" in data:
            data["assessment_name"] = data.pop("name")
        return data


# ── Responses ──

class ResponseSubmit(_Body):
    assessment_id: str = Field(alias="assessmentId")
    question_id: str = Field(alias="questionId")
    response_text: str | None = Field(None, alias="responseText")
    response_data: dict[str, Any] | None = Field(None, alias="responseData")
    draft: bool = False


class ResponseReview(_Body):
    approved: bool
    comments: str | None = None


# ── Audit (responses) ──

class AuditEntry(BaseModel):
    id: int
    event_id: str
    event_type: str
    tenant_id: str | None = None
    actor: str
    action: str
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    previous_hash: str | None = None
    current_hash: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditListResponse(BaseModel):
    total: int
    page: int
    size: int
    pages: int
    items: list[AuditEntry]


class IntegrityCheckResponse(BaseModel):
    valid: bool
    entries_checked: int
    first_invalid: str | None = None
    reason: str | None = None
