from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from common.utils import new_id, now_utc_iso, parse_iso_datetime
from pydantic import BaseModel, ConfigDict, Field, model_validator

from workflow.statuses import INITIAL_STATUS, ApplicationStatus, Role
from workflow.transitions import DEFAULT_TABLE, TransitionTable

Clock = Callable[[], str]


class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ApplicationStatus
    acting_user_id: str
    timestamp: str
    note: str | None = None


class Application(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    job_id: str
    job_seeker_id: str
    job_title: str
    status: ApplicationStatus
    status_history: tuple[StatusHistoryEntry, ...]
    resume_id: str | None = None
    cover_letter: str | None = None
    version: int = Field(default=1, ge=1)
    applied_at: str
    updated_at: str

    @model_validator(mode="after")
    def validate_history(self) -> Application:
        if not self.status_history:
            raise ValueError("status_history must hold at least the submission entry.")
        if self.status_history[-1].status != self.status:
            raise ValueError("status must match the last status_history entry.")
        return self


class TransitionRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    application_id: str
    target_status: ApplicationStatus
    acting_user_id: str
    acting_role: Role
    note: str | None = None


class TransitionEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    application_id: str
    from_status: ApplicationStatus
    to_status: ApplicationStatus
    acting_user_id: str
    timestamp: str
    job_seeker_user_id: str
    employer_user_id: str
    job_title: str
    note: str | None = None


class TransitionError(str, Enum):
    MISMATCHED_APPLICATION = "MISMATCHED_APPLICATION"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    WRONG_ROLE = "WRONG_ROLE"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"


@dataclass(frozen=True)
class TransitionApplied:
    application: Application
    event: TransitionEvent


@dataclass(frozen=True)
class TransitionRejected:
    error: TransitionError
    message: str


TransitionResult = TransitionApplied | TransitionRejected


def open_application(
    *,
    job_id: str,
    job_seeker_id: str,
    job_title: str,
    resume_id: str | None = None,
    cover_letter: str | None = None,
    application_id: str | None = None,
    clock: Clock = now_utc_iso,
) -> Application:
    submitted_at = clock()
    return Application(
        id=application_id or new_id("app"),
        job_id=job_id,
        job_seeker_id=job_seeker_id,
        job_title=job_title,
        status=INITIAL_STATUS,
        status_history=(
            StatusHistoryEntry(
                status=INITIAL_STATUS,
                acting_user_id=job_seeker_id,
                timestamp=submitted_at,
                note="Application submitted",
            ),
        ),
        resume_id=resume_id,
        cover_letter=cover_letter,
        version=1,
        applied_at=submitted_at,
        updated_at=submitted_at,
    )


def concurrent_modification(application_id: str) -> TransitionRejected:
    return TransitionRejected(
        error=TransitionError.CONCURRENT_MODIFICATION,
        message=(
            f"Application {application_id} was modified by another request; "
            "reload it and resubmit the transition."
        ),
    )


class ApplicationStateMachine:
    """Sole authority for changing an application's status.

    ``apply`` never mutates its inputs and never raises for an expected
    rejection; callers receive either ``TransitionApplied`` or
    ``TransitionRejected`` and persist the new application themselves.
    """

    def __init__(
        self,
        table: TransitionTable = DEFAULT_TABLE,
        clock: Clock = now_utc_iso,
    ) -> None:
        self.table = table
        self._clock = clock

    def allowed_targets(self, application: Application) -> list[ApplicationStatus]:
        allowed = self.table.allowed_targets(application.status)
        return [status for status in ApplicationStatus if status in allowed]

    def apply(
        self,
        application: Application,
        request: TransitionRequest,
        *,
        authorized: bool,
    ) -> TransitionResult:
        if request.application_id != application.id:
            return TransitionRejected(
                error=TransitionError.MISMATCHED_APPLICATION,
                message=(
                    f"Request targets application {request.application_id}, "
                    f"not {application.id}"
                ),
            )

        if not authorized:
            return TransitionRejected(
                error=TransitionError.NOT_AUTHORIZED,
                message=(
                    f"User {request.acting_user_id} may not manage application {application.id}"
                ),
            )

        current = application.status
        target = request.target_status
        if target not in self.table.allowed_targets(current):
            return TransitionRejected(
                error=TransitionError.ILLEGAL_TRANSITION,
                message=f"Cannot transition from {current.value} to {target.value}",
            )

        required_role = self.table.required_role(current, target)
        if request.acting_role != required_role:
            required = required_role.value if required_role else "none"
            return TransitionRejected(
                error=TransitionError.WRONG_ROLE,
                message=(
                    f"Transition from {current.value} to {target.value} requires role "
                    f"{required}, got {request.acting_role.value}"
                ),
            )

        timestamp = self._next_timestamp(application)
        entry = StatusHistoryEntry(
            status=target,
            acting_user_id=request.acting_user_id,
            timestamp=timestamp,
            note=request.note,
        )
        updated = application.model_copy(
            update={
                "status": target,
                "status_history": (*application.status_history, entry),
                "version": application.version + 1,
                "updated_at": timestamp,
            }
        )
        event = TransitionEvent(
            application_id=application.id,
            from_status=current,
            to_status=target,
            acting_user_id=request.acting_user_id,
            timestamp=timestamp,
            job_seeker_user_id=application.job_seeker_id,
            employer_user_id=request.acting_user_id,
            job_title=application.job_title,
            note=request.note,
        )
        return TransitionApplied(application=updated, event=event)

    def _next_timestamp(self, application: Application) -> str:
        # History timestamps never go backwards, even if the clock does.
        candidate = self._clock()
        previous = application.status_history[-1].timestamp
        candidate_at = parse_iso_datetime(candidate)
        previous_at = parse_iso_datetime(previous)
        if candidate_at is None or previous_at is None:
            return candidate
        if (candidate_at.tzinfo is None) != (previous_at.tzinfo is None):
            return candidate
        if candidate_at < previous_at:
            return previous
        return candidate
