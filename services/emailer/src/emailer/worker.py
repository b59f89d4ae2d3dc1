from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass

from common.utils import now_utc_iso

LOGGER = logging.getLogger("jobportal.emailer")


@dataclass
class EmailJob:
    recipient: str
    subject: str
    message: str
    application_id: str | None = None


class EmailWorker:
    def __init__(self, send_delay: float = 0.05) -> None:
        self.queue: asyncio.Queue[EmailJob] = asyncio.Queue()
        self.send_delay = send_delay
        self.delivered = 0

    async def enqueue(self, job: EmailJob) -> int:
        await self.queue.put(job)
        return self.queue.qsize()

    async def deliver(self, job: EmailJob) -> None:
        # Stand-in for an SES/SendGrid client; only the log line is emitted today.
        LOGGER.info(
            json.dumps(
                {
                    "event": "email_sent",
                    "sent_at": now_utc_iso(),
                    "recipient": job.recipient,
                    "subject": job.subject,
                    "application_id": job.application_id,
                }
            )
        )
        await asyncio.sleep(self.send_delay)
        self.delivered += 1

    async def run(self) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self.deliver(job)
            except Exception:
                LOGGER.exception(
                    json.dumps({"event": "email_failed", "recipient": job.recipient})
                )
            finally:
                self.queue.task_done()
