from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from common.utils import now_utc_iso
from fastapi import FastAPI
from pydantic import BaseModel, EmailStr, Field

from emailer.worker import EmailJob, EmailWorker

worker = EmailWorker()


class EmailDeliveryRequest(BaseModel):
    recipient: EmailStr
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)
    application_id: str | None = None


@asynccontextmanager
async def lifespan(_: FastAPI):
    worker_task = asyncio.create_task(worker.run())
    try:
        yield
    finally:
        worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker_task


app = FastAPI(title="JobPortal Emailer", version="0.2.0", lifespan=lifespan)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "emailer"}


@app.post("/notifications/email")
async def queue_email(payload: EmailDeliveryRequest) -> dict[str, str | int]:
    queued = await worker.enqueue(
        EmailJob(
            recipient=str(payload.recipient),
            subject=payload.subject,
            message=payload.message,
            application_id=payload.application_id,
        )
    )
    return {
        "status": "queued",
        "queued_jobs": queued,
        "scheduled_at": now_utc_iso(),
    }
