from __future__ import annotations

from collections.abc import Iterable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from workflow.machine import Application, TransitionEvent
from workflow.statuses import ApplicationStatus, display_name

APPLICATION_STATUS_CHANGED = "APPLICATION_STATUS_CHANGED"
APPLICATION_RECEIVED = "APPLICATION_RECEIVED"
APPLICATION_SUBMITTED = "APPLICATION_SUBMITTED"

STATUS_MESSAGES: dict[ApplicationStatus, str] = {
    ApplicationStatus.VIEWED: "Your application has been viewed",
    ApplicationStatus.SHORTLISTED: "Congratulations! You have been shortlisted",
    ApplicationStatus.INTERVIEW_SCHEDULED: "Interview has been scheduled",
    ApplicationStatus.OFFERED: "Congratulations! You have received a job offer",
    ApplicationStatus.HIRED: "Congratulations! You have been hired",
    ApplicationStatus.REJECTED: "Your application status has been updated",
}
FALLBACK_STATUS_MESSAGE = "Your application status has been updated"


class NotificationIntent(BaseModel):
    model_config = ConfigDict(frozen=True)

    recipient_user_id: str
    audience: Literal["job_seeker", "employer"]
    notification_type: str
    title: str
    message: str
    action_url: str
    metadata: dict[str, Any] = Field(default_factory=dict)


def application_url(application_id: str) -> str:
    return f"/applications/{application_id}"


class TransitionNotifier:
    def __init__(self, messages: dict[ApplicationStatus, str] | None = None) -> None:
        self.messages = dict(STATUS_MESSAGES if messages is None else messages)

    def notifications_for(self, event: TransitionEvent) -> list[NotificationIntent]:
        # The employer triggered the change, so only the job seeker is told.
        message = self.messages.get(event.to_status, FALLBACK_STATUS_MESSAGE)
        metadata: dict[str, Any] = {
            "application_id": event.application_id,
            "status": event.to_status.value,
            "status_display": display_name(event.to_status),
            "job_title": event.job_title,
        }
        if event.note:
            metadata["note"] = event.note
        return [
            NotificationIntent(
                recipient_user_id=event.job_seeker_user_id,
                audience="job_seeker",
                notification_type=APPLICATION_STATUS_CHANGED,
                title="Application Status Update",
                message=message,
                action_url=application_url(event.application_id),
                metadata=metadata,
            )
        ]

    def notifications_for_submission(
        self,
        application: Application,
        employer_user_ids: Iterable[str],
        applicant_name: str,
    ) -> list[NotificationIntent]:
        recipients = list(dict.fromkeys(employer_user_ids))
        return [
            NotificationIntent(
                recipient_user_id=user_id,
                audience="employer",
                notification_type=APPLICATION_RECEIVED,
                title="New Job Application",
                message=f"{applicant_name} has applied for {application.job_title}",
                action_url=application_url(application.id),
                metadata={
                    "application_id": application.id,
                    "job_id": application.job_id,
                },
            )
            for user_id in recipients
        ]

    def confirmation_for_submission(self, application: Application) -> NotificationIntent:
        """Receipt for the applicant; delivered by email only."""
        return NotificationIntent(
            recipient_user_id=application.job_seeker_id,
            audience="job_seeker",
            notification_type=APPLICATION_SUBMITTED,
            title="Application Received",
            message="Your application has been received",
            action_url=application_url(application.id),
            metadata={
                "application_id": application.id,
                "job_id": application.job_id,
                "job_title": application.job_title,
            },
        )
