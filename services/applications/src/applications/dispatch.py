from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

import httpx
from fastapi.concurrency import run_in_threadpool
from workflow.notifier import NotificationIntent

from applications.models import ApplicantContact, StoredNotification
from applications.repository import ApplicationsRepository

LOGGER = logging.getLogger("jobportal.applications.dispatch")


def build_email_payload(intent: NotificationIntent, contact: ApplicantContact) -> dict[str, Any]:
    metadata = intent.metadata
    job_title = metadata.get("job_title")
    subject = f"{intent.title} - {job_title}" if job_title else intent.title
    paragraphs = [f"{intent.message} for {job_title}" if job_title else intent.message]
    if contact.name:
        paragraphs.insert(0, f"Hi {contact.name},")
    if metadata.get("status_display"):
        paragraphs.append(f"New status: {metadata['status_display']}")
    if metadata.get("note"):
        paragraphs.append(f"Note from the employer: {metadata['note']}")
    return {
        "recipient": contact.email,
        "subject": subject,
        "message": "\n\n".join(paragraphs),
        "application_id": metadata.get("application_id"),
    }


class NotificationDispatcher:
    """Delivers notification intents: an in-app row always, email when configured.

    Email forwarding is best effort. A failed delivery is logged and the
    in-app notification still stands.
    """

    def __init__(
        self,
        repository: ApplicationsRepository,
        *,
        emailer_base_url: str | None = None,
        timeout: float = 15,
    ) -> None:
        self.repository = repository
        self.emailer_base_url = (emailer_base_url or "").rstrip("/") or None
        self.timeout = timeout

    async def dispatch(
        self,
        intents: list[NotificationIntent],
        *,
        contacts: Iterable[ApplicantContact] = (),
    ) -> list[StoredNotification]:
        by_user = {contact.user_id: contact for contact in contacts if contact.email}
        stored: list[StoredNotification] = []
        for intent in intents:
            notification = await run_in_threadpool(self.repository.create_notification, intent)
            stored.append(notification)
            contact = by_user.get(intent.recipient_user_id)
            if contact is not None:
                await self.forward_email(intent, contact)
        return stored

    async def forward_email(self, intent: NotificationIntent, contact: ApplicantContact) -> bool:
        if not self.emailer_base_url or not contact.email:
            return False

        payload = build_email_payload(intent, contact)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method="POST",
                    url=f"{self.emailer_base_url}/notifications/email",
                    json=payload,
                )
        except httpx.RequestError as exc:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "email_forward_failed",
                        "notification_type": intent.notification_type,
                        "application_id": payload["application_id"],
                        "error": str(exc),
                    }
                )
            )
            return False

        if response.status_code >= 400:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "email_forward_rejected",
                        "notification_type": intent.notification_type,
                        "application_id": payload["application_id"],
                        "status_code": response.status_code,
                    }
                )
            )
            return False

        LOGGER.info(
            json.dumps(
                {
                    "event": "email_forwarded",
                    "notification_type": intent.notification_type,
                    "application_id": payload["application_id"],
                    "upstream_request_id": response.headers.get("x-request-id"),
                }
            )
        )
        return True
