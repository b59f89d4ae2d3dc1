from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field
from workflow.machine import Application, TransitionEvent
from workflow.statuses import ApplicationStatus, Role


class EmployerCreateRequest(BaseModel):
    employer_id: str | None = Field(default=None, min_length=3, max_length=64)
    name: str = Field(..., min_length=1, max_length=120)
    admin_user_ids: list[str] = Field(default_factory=list)


class Employer(BaseModel):
    employer_id: str
    name: str
    owner_user_id: str
    admin_user_ids: list[str]
    created_at: str


class JobCreateRequest(BaseModel):
    job_id: str | None = Field(default=None, min_length=3, max_length=64)
    employer_id: str
    title: str = Field(..., min_length=3, max_length=200)


class Job(BaseModel):
    job_id: str
    employer_id: str
    title: str
    created_at: str


class ApplicationSubmitRequest(BaseModel):
    resume_id: str | None = None
    cover_letter: str | None = Field(default=None, max_length=5000)
    applicant_name: str | None = Field(default=None, max_length=120)
    applicant_email: str | None = Field(default=None, max_length=254)


class ApplicantContact(BaseModel):
    user_id: str
    name: str | None = None
    email: str | None = None


class StatusUpdateRequest(BaseModel):
    status: ApplicationStatus
    note: str | None = Field(default=None, max_length=1000)
    expected_version: int | None = Field(default=None, ge=1)


class StoredNotification(BaseModel):
    notification_id: str
    user_id: str
    notification_type: str
    title: str
    message: str
    action_url: str
    metadata: dict[str, Any]
    read: bool
    created_at: str


class StatusUpdateResponse(BaseModel):
    application: Application
    event: TransitionEvent
    notifications: list[StoredNotification]


class AllowedStatusesResponse(BaseModel):
    application_id: str
    status: ApplicationStatus
    version: int
    terminal: bool
    allowed_statuses: list[ApplicationStatus]


class TransitionEdge(BaseModel):
    from_status: ApplicationStatus
    to_status: ApplicationStatus
    required_role: Role


class TransitionTableResponse(BaseModel):
    statuses: list[ApplicationStatus]
    terminal_statuses: list[ApplicationStatus]
    transitions: list[TransitionEdge]


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ApplicationPage(BaseModel):
    applications: list[Application]
    pagination: Pagination


class NotificationPage(BaseModel):
    notifications: list[StoredNotification]
    unread: int
    pagination: Pagination


class AuditEvent(BaseModel):
    event_id: int
    request_id: str | None = None
    occurred_at: str
    method: str
    path: str
    action: str
    scope: str | None = None
    source_ip: str | None = None
    user_agent: str | None = None
    auth_subject: str | None = None
    status: str
    message: str | None = None


class ActingUser(BaseModel):
    user_id: str
    role: Role


class TokenAuthContext(BaseModel):
    scopes: set[str]
    auth_subject: str


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]


def build_pagination(page: int, limit: int, total: int) -> Pagination:
    pages = (total + limit - 1) // limit if total else 0
    return Pagination(page=page, limit=limit, total=total, pages=pages)
