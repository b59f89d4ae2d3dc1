from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
import uuid
from contextlib import asynccontextmanager
from datetime import UTC
from typing import Literal

from common.utils import now_utc_iso, parse_iso_datetime
from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from workflow.machine import (
    Application,
    ApplicationStateMachine,
    TransitionError,
    TransitionRejected,
    TransitionRequest,
    concurrent_modification,
    open_application,
)
from workflow.notifier import TransitionNotifier
from workflow.statuses import TERMINAL_STATUSES, ApplicationStatus, Role
from workflow.transitions import DEFAULT_TABLE

from applications.dispatch import NotificationDispatcher
from applications.models import (
    ActingUser,
    AllowedStatusesResponse,
    ApplicantContact,
    ApplicationPage,
    ApplicationSubmitRequest,
    AuditEvent,
    Employer,
    EmployerCreateRequest,
    Job,
    JobCreateRequest,
    MetricsSnapshot,
    NotificationPage,
    StatusUpdateRequest,
    StatusUpdateResponse,
    TokenAuthContext,
    TransitionEdge,
    TransitionTableResponse,
    build_pagination,
)
from applications.repository import (
    EMPLOYER_SEARCH_COLUMNS,
    SEEKER_SEARCH_COLUMNS,
    ApplicationsRepository,
)

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "jobportal", "applications.sqlite3")
LOGGER = logging.getLogger("jobportal.applications")

TRANSITION_ERROR_STATUS_CODES: dict[TransitionError, int] = {
    TransitionError.MISMATCHED_APPLICATION: 400,
    TransitionError.NOT_AUTHORIZED: 403,
    TransitionError.ILLEGAL_TRANSITION: 422,
    TransitionError.WRONG_ROLE: 403,
    TransitionError.CONCURRENT_MODIFICATION: 409,
}

SortField = Literal["applied_at", "updated_at", "status", "job_title"]
SortOrder = Literal["asc", "desc"]


def parse_api_tokens(raw: str) -> dict[str, set[str]]:
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("APPLICATIONS_API_TOKENS_JSON must be a JSON object.")

    token_map: dict[str, set[str]] = {}
    for token, scopes_value in parsed.items():
        if not isinstance(token, str) or not token.strip():
            raise ValueError("Token keys must be non-empty strings.")
        if isinstance(scopes_value, str):
            scopes = {scopes_value.strip()} if scopes_value.strip() else set()
        elif isinstance(scopes_value, list):
            scopes = {
                str(scope).strip()
                for scope in scopes_value
                if isinstance(scope, str) and scope.strip()
            }
        else:
            raise ValueError("Token scopes must be a string or list of strings.")
        token_map[token] = scopes
    return token_map


def build_auth_subject(token: str) -> str:
    token_digest = hashlib.sha1(token.encode()).hexdigest()[:12]
    return f"token:{token_digest}"


def parse_acting_user(user_id: str | None, role: str | None) -> ActingUser:
    if not user_id or not user_id.strip():
        raise HTTPException(status_code=401, detail="Missing x-user-id header")
    try:
        resolved_role = Role((role or "").strip().upper())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=f"Unknown role: {role!r}") from exc
    return ActingUser(user_id=user_id.strip(), role=resolved_role)


def parse_date_filter(value: str | None, field: str) -> str | None:
    if not value:
        return None
    parsed = parse_iso_datetime(value)
    if parsed is None:
        raise HTTPException(status_code=422, detail=f"{field} must be an ISO-8601 date or datetime")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC).isoformat()


def rejection_response(
    rejection: TransitionRejected,
    headers: dict[str, str] | None = None,
) -> HTTPException:
    return HTTPException(
        status_code=TRANSITION_ERROR_STATUS_CODES[rejection.error],
        detail={"error": rejection.error.value, "message": rejection.message},
        headers=headers,
    )


class MetricsStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "errors": 0}
        self._endpoints: dict[str, dict[str, float | int]] = {}

    def observe(self, *, method: str, path: str, status_code: int, duration_ms: float) -> None:
        key = f"{method} {path}"
        bucket = f"{status_code // 100}xx"
        with self._lock:
            self._totals["requests"] += 1
            if status_code >= 400:
                self._totals["errors"] += 1
            endpoint = self._endpoints.setdefault(
                key,
                {"count": 0, "2xx": 0, "4xx": 0, "5xx": 0, "latency_ms_sum": 0.0},
            )
            endpoint["count"] = int(endpoint["count"]) + 1
            if bucket in ("2xx", "4xx", "5xx"):
                endpoint[bucket] = int(endpoint[bucket]) + 1
            endpoint["latency_ms_sum"] = float(endpoint["latency_ms_sum"]) + duration_ms
            endpoint["latency_ms_avg"] = (
                float(endpoint["latency_ms_sum"]) / int(endpoint["count"])
            )

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                endpoints={key: dict(value) for key, value in self._endpoints.items()},
            )


def create_app(
    *,
    database_path: str | None = None,
    api_key: str | None = None,
    api_tokens: dict[str, list[str] | set[str]] | None = None,
    emailer_base_url: str | None = None,
    state_machine: ApplicationStateMachine | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("APPLICATIONS_DB_PATH", DEFAULT_DB_PATH)
    resolved_api_key = (api_key or os.getenv("APPLICATIONS_API_KEY", "")).strip() or None
    resolved_emailer_url = (emailer_base_url or os.getenv("EMAILER_BASE_URL", "")).strip() or None
    resolved_token_map: dict[str, set[str]] = {}
    if api_tokens is not None:
        resolved_token_map = {
            token: {str(scope).strip() for scope in scopes if str(scope).strip()}
            for token, scopes in api_tokens.items()
            if token.strip()
        }
    else:
        raw_tokens = os.getenv("APPLICATIONS_API_TOKENS_JSON", "").strip()
        if raw_tokens:
            resolved_token_map = parse_api_tokens(raw_tokens)

    if resolved_api_key:
        resolved_token_map.setdefault(resolved_api_key, set()).add("*")

    repository = ApplicationsRepository(database_path=resolved_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        app.state.repository = repository
        app.state.auth_token_scopes = resolved_token_map
        app.state.metrics = MetricsStore()
        app.state.state_machine = state_machine or ApplicationStateMachine()
        app.state.notifier = TransitionNotifier()
        app.state.dispatcher = NotificationDispatcher(
            repository,
            emailer_base_url=resolved_emailer_url,
        )
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="JobPortal Applications", version="0.3.0", lifespan=lifespan)

    async def write_audit_event(
        request: Request,
        *,
        action: str,
        scope: str | None,
        status: str,
        message: str | None = None,
        auth_subject: str | None = None,
    ) -> int:
        return await run_in_threadpool(
            request.app.state.repository.record_audit_event,
            request_id=getattr(request.state, "request_id", None),
            method=request.method,
            path=request.url.path,
            action=action,
            scope=scope,
            source_ip=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
            auth_subject=auth_subject,
            status=status,
            message=message,
        )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            request.app.state.metrics.observe(
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=duration_ms,
            )
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        request.app.state.metrics.observe(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                    "user_id": request.headers.get("x-user-id"),
                }
            )
        )
        return response

    async def require_scope(request: Request, *, action: str, scope: str) -> str | None:
        token_map: dict[str, set[str]] = request.app.state.auth_token_scopes
        if not token_map:
            return None
        provided = request.headers.get("x-api-key", "")
        if not provided:
            await write_audit_event(
                request,
                action=action,
                scope=scope,
                status="unauthorized",
                message="missing api key",
            )
            raise HTTPException(status_code=401, detail="Unauthorized")

        scopes = token_map.get(provided)
        if scopes is None:
            await write_audit_event(
                request,
                action=action,
                scope=scope,
                status="unauthorized",
                message="invalid api key",
            )
            raise HTTPException(status_code=401, detail="Unauthorized")

        context = TokenAuthContext(scopes=scopes, auth_subject=build_auth_subject(provided))
        if "*" not in context.scopes and scope not in context.scopes:
            await write_audit_event(
                request,
                action=action,
                scope=scope,
                status="forbidden",
                message="missing required scope",
                auth_subject=context.auth_subject,
            )
            raise HTTPException(status_code=403, detail="Forbidden")
        return context.auth_subject

    def acting_user(request: Request) -> ActingUser:
        return parse_acting_user(
            request.headers.get("x-user-id"),
            request.headers.get("x-user-role"),
        )

    async def load_visible_application(request: Request, application_id: str) -> Application:
        actor = acting_user(request)
        repository: ApplicationsRepository = request.app.state.repository
        application = await run_in_threadpool(repository.get_application, application_id)
        if application is None:
            raise HTTPException(status_code=404, detail="Application not found")
        if application.job_seeker_id == actor.user_id:
            return application
        job = await run_in_threadpool(repository.get_job, application.job_id)
        if job is not None and await run_in_threadpool(
            repository.can_manage_employer, job.employer_id, actor.user_id
        ):
            return application
        raise HTTPException(status_code=404, detail="Application not found")

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "applications"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    @app.get("/workflow/transitions", response_model=TransitionTableResponse)
    async def workflow_transitions() -> TransitionTableResponse:
        return TransitionTableResponse(
            statuses=list(ApplicationStatus),
            terminal_statuses=[
                status for status in ApplicationStatus if status in TERMINAL_STATUSES
            ],
            transitions=[
                TransitionEdge(from_status=source, to_status=target, required_role=role)
                for source, target, role in DEFAULT_TABLE.edges()
            ],
        )

    @app.post("/employers", response_model=Employer, status_code=201)
    async def create_employer(
        payload: EmployerCreateRequest,
        request: Request,
        response: Response,
    ) -> Employer:
        auth_subject = await require_scope(request, action="employer_create", scope="jobs:write")
        actor = acting_user(request)
        if actor.role is not Role.JOBPROVIDER:
            raise HTTPException(status_code=403, detail="Only job providers register employers")
        employer = await run_in_threadpool(
            request.app.state.repository.create_employer,
            employer_id=payload.employer_id,
            name=payload.name,
            owner_user_id=actor.user_id,
            admin_user_ids=payload.admin_user_ids,
        )
        if employer is None:
            raise HTTPException(status_code=409, detail="Employer already exists")
        event_id = await write_audit_event(
            request,
            action="employer_create",
            scope="jobs:write",
            status="ok",
            message=f"employer_id={employer.employer_id}",
            auth_subject=auth_subject,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return employer

    @app.post("/jobs", response_model=Job, status_code=201)
    async def create_job(payload: JobCreateRequest, request: Request, response: Response) -> Job:
        auth_subject = await require_scope(request, action="job_create", scope="jobs:write")
        actor = acting_user(request)
        repository: ApplicationsRepository = request.app.state.repository
        employer = await run_in_threadpool(repository.get_employer, payload.employer_id)
        if employer is None:
            raise HTTPException(status_code=404, detail="Unknown employer_id")
        if actor.user_id not in (employer.owner_user_id, *employer.admin_user_ids):
            raise HTTPException(status_code=403, detail="Employer access denied")
        job = await run_in_threadpool(
            repository.create_job,
            job_id=payload.job_id,
            employer_id=payload.employer_id,
            title=payload.title,
        )
        if job is None:
            raise HTTPException(status_code=409, detail="Job already exists")
        event_id = await write_audit_event(
            request,
            action="job_create",
            scope="jobs:write",
            status="ok",
            message=f"job_id={job.job_id}; employer_id={job.employer_id}",
            auth_subject=auth_subject,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return job

    @app.post("/jobs/{job_id}/applications", response_model=Application, status_code=201)
    async def submit_application(
        job_id: str,
        payload: ApplicationSubmitRequest,
        request: Request,
        response: Response,
    ) -> Application:
        auth_subject = await require_scope(
            request,
            action="application_submit",
            scope="applications:write",
        )
        actor = acting_user(request)
        if actor.role is not Role.JOBSEEKER:
            raise HTTPException(status_code=403, detail="Only job seekers can apply")
        repository: ApplicationsRepository = request.app.state.repository
        job = await run_in_threadpool(repository.get_job, job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found or not available")

        application = open_application(
            job_id=job.job_id,
            job_seeker_id=actor.user_id,
            job_title=job.title,
            resume_id=payload.resume_id,
            cover_letter=payload.cover_letter,
        )
        stored = await run_in_threadpool(
            repository.insert_application,
            application,
            applicant_name=payload.applicant_name,
            applicant_email=payload.applicant_email,
        )
        if stored is None:
            await write_audit_event(
                request,
                action="application_submit",
                scope="applications:write",
                status="conflict",
                message=f"job_id={job_id}; already applied",
                auth_subject=auth_subject,
            )
            raise HTTPException(status_code=409, detail="Already applied to this job")

        employer_user_ids = await run_in_threadpool(repository.employer_user_ids, job.employer_id)
        notifier: TransitionNotifier = request.app.state.notifier
        dispatcher: NotificationDispatcher = request.app.state.dispatcher
        intents = notifier.notifications_for_submission(
            stored,
            employer_user_ids,
            payload.applicant_name or actor.user_id,
        )
        await dispatcher.dispatch(intents)
        await dispatcher.forward_email(
            notifier.confirmation_for_submission(stored),
            ApplicantContact(
                user_id=actor.user_id,
                name=payload.applicant_name,
                email=payload.applicant_email,
            ),
        )

        event_id = await write_audit_event(
            request,
            action="application_submit",
            scope="applications:write",
            status="ok",
            message=f"application_id={stored.id}; job_id={job_id}",
            auth_subject=auth_subject,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return stored

    @app.get("/jobs/{job_id}/applications", response_model=ApplicationPage)
    async def list_job_applications(
        job_id: str,
        request: Request,
        status: ApplicationStatus | None = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
    ) -> ApplicationPage:
        await require_scope(request, action="job_applications_list", scope="applications:read")
        actor = acting_user(request)
        repository: ApplicationsRepository = request.app.state.repository
        job = await run_in_threadpool(repository.get_job, job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        can_manage = await run_in_threadpool(
            repository.can_manage_employer,
            job.employer_id,
            actor.user_id,
        )
        if not can_manage:
            raise HTTPException(status_code=403, detail="Job access denied")
        applications, total = await run_in_threadpool(
            repository.list_applications,
            limit=limit,
            offset=(page - 1) * limit,
            job_id=job_id,
            status=status,
        )
        return ApplicationPage(
            applications=applications,
            pagination=build_pagination(page, limit, total),
        )

    @app.get("/applications", response_model=ApplicationPage)
    async def list_my_applications(
        request: Request,
        status: ApplicationStatus | None = None,
        q: str | None = Query(default=None, max_length=200),
        date_from: str | None = None,
        date_to: str | None = None,
        sort_by: SortField = "applied_at",
        sort_order: SortOrder = "desc",
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=5, ge=1, le=100),
    ) -> ApplicationPage:
        await require_scope(request, action="my_applications_list", scope="applications:read")
        actor = acting_user(request)
        repository: ApplicationsRepository = request.app.state.repository
        applications, total = await run_in_threadpool(
            repository.list_applications,
            limit=limit,
            offset=(page - 1) * limit,
            job_seeker_id=actor.user_id,
            status=status,
            q=q,
            search_columns=SEEKER_SEARCH_COLUMNS,
            applied_from=parse_date_filter(date_from, "date_from"),
            applied_to=parse_date_filter(date_to, "date_to"),
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return ApplicationPage(
            applications=applications,
            pagination=build_pagination(page, limit, total),
        )

    @app.get("/applications/employer", response_model=ApplicationPage)
    async def list_employer_applications(
        request: Request,
        status: ApplicationStatus | None = None,
        q: str | None = Query(default=None, max_length=200),
        job_id: str | None = None,
        sort_by: SortField = "applied_at",
        sort_order: SortOrder = "desc",
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
    ) -> ApplicationPage:
        await require_scope(
            request,
            action="employer_applications_list",
            scope="applications:read",
        )
        actor = acting_user(request)
        repository: ApplicationsRepository = request.app.state.repository
        employer_ids = await run_in_threadpool(repository.managed_employer_ids, actor.user_id)
        if not employer_ids:
            raise HTTPException(status_code=404, detail="Employer profile not found")
        applications, total = await run_in_threadpool(
            repository.list_applications,
            limit=limit,
            offset=(page - 1) * limit,
            job_id=job_id,
            employer_ids=employer_ids,
            status=status,
            q=q,
            search_columns=EMPLOYER_SEARCH_COLUMNS,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return ApplicationPage(
            applications=applications,
            pagination=build_pagination(page, limit, total),
        )

    @app.get("/applications/{application_id}", response_model=Application)
    async def get_application(application_id: str, request: Request) -> Application:
        await require_scope(request, action="application_get", scope="applications:read")
        return await load_visible_application(request, application_id)

    @app.get(
        "/applications/{application_id}/allowed-statuses",
        response_model=AllowedStatusesResponse,
    )
    async def allowed_statuses(application_id: str, request: Request) -> AllowedStatusesResponse:
        await require_scope(request, action="application_allowed", scope="applications:read")
        application = await load_visible_application(request, application_id)
        machine: ApplicationStateMachine = request.app.state.state_machine
        return AllowedStatusesResponse(
            application_id=application.id,
            status=application.status,
            version=application.version,
            terminal=machine.table.is_terminal(application.status),
            allowed_statuses=machine.allowed_targets(application),
        )

    @app.patch("/applications/{application_id}/status", response_model=StatusUpdateResponse)
    async def update_application_status(
        application_id: str,
        payload: StatusUpdateRequest,
        request: Request,
        response: Response,
    ) -> StatusUpdateResponse:
        auth_subject = await require_scope(
            request,
            action="application_status_update",
            scope="applications:write",
        )
        actor = acting_user(request)
        repository: ApplicationsRepository = request.app.state.repository
        application = await run_in_threadpool(repository.get_application, application_id)
        if application is None:
            raise HTTPException(status_code=404, detail="Application not found")

        async def reject(rejection: TransitionRejected) -> HTTPException:
            event_id = await write_audit_event(
                request,
                action="application_status_update",
                scope="applications:write",
                status=rejection.error.value.lower(),
                message=f"application_id={application_id}; {rejection.message}",
                auth_subject=auth_subject,
            )
            LOGGER.info(
                json.dumps(
                    {
                        "event": "application_transition_rejected",
                        "application_id": application_id,
                        "error": rejection.error.value,
                        "target_status": payload.status.value,
                        "user_id": actor.user_id,
                    }
                )
            )
            return rejection_response(rejection, headers={"x-audit-event-id": str(event_id)})

        job = await run_in_threadpool(repository.get_job, application.job_id)
        authorized = job is not None and await run_in_threadpool(
            repository.can_manage_employer, job.employer_id, actor.user_id
        )
        transition_request = TransitionRequest(
            application_id=application_id,
            target_status=payload.status,
            acting_user_id=actor.user_id,
            acting_role=actor.role,
            note=payload.note,
        )
        machine: ApplicationStateMachine = request.app.state.state_machine
        result = machine.apply(application, transition_request, authorized=authorized)
        if isinstance(result, TransitionRejected):
            raise await reject(result)
        # Stale versions are reported only once the caller passed every other check.
        if payload.expected_version not in (None, application.version):
            raise await reject(concurrent_modification(application_id))

        saved = await run_in_threadpool(
            repository.save_transition,
            result.application,
            expected_version=application.version,
        )
        if not saved:
            raise await reject(concurrent_modification(application_id))

        intents = request.app.state.notifier.notifications_for(result.event)
        contact = await run_in_threadpool(repository.get_applicant_contact, application_id)
        notifications = await request.app.state.dispatcher.dispatch(
            intents,
            contacts=[contact] if contact is not None else [],
        )

        LOGGER.info(
            json.dumps(
                {
                    "event": "application_transition_applied",
                    "application_id": application_id,
                    "from_status": result.event.from_status.value,
                    "to_status": result.event.to_status.value,
                    "version": result.application.version,
                    "user_id": actor.user_id,
                }
            )
        )
        event_id = await write_audit_event(
            request,
            action="application_status_update",
            scope="applications:write",
            status="ok",
            message=(
                f"application_id={application_id}; from={result.event.from_status.value}; "
                f"to={result.event.to_status.value}"
            ),
            auth_subject=auth_subject,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return StatusUpdateResponse(
            application=result.application,
            event=result.event,
            notifications=notifications,
        )

    @app.get("/notifications", response_model=NotificationPage)
    async def list_notifications(
        request: Request,
        read: bool | None = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
    ) -> NotificationPage:
        await require_scope(request, action="notifications_list", scope="applications:read")
        actor = acting_user(request)
        notifications, total, unread = await run_in_threadpool(
            request.app.state.repository.list_notifications,
            actor.user_id,
            read=read,
            limit=limit,
            offset=(page - 1) * limit,
        )
        return NotificationPage(
            notifications=notifications,
            unread=unread,
            pagination=build_pagination(page, limit, total),
        )

    @app.post("/notifications/read-all")
    async def mark_all_notifications_read(request: Request) -> dict[str, int]:
        await require_scope(request, action="notifications_read_all", scope="applications:write")
        actor = acting_user(request)
        updated = await run_in_threadpool(
            request.app.state.repository.mark_all_notifications_read,
            actor.user_id,
        )
        return {"updated": updated}

    @app.post("/notifications/{notification_id}/read")
    async def mark_notification_read(notification_id: str, request: Request) -> dict[str, bool]:
        await require_scope(request, action="notification_read", scope="applications:write")
        actor = acting_user(request)
        marked = await run_in_threadpool(
            request.app.state.repository.mark_notification_read,
            actor.user_id,
            notification_id,
        )
        if not marked:
            raise HTTPException(status_code=404, detail="Notification not found")
        return {"read": True}

    @app.get("/audit-events", response_model=list[AuditEvent])
    async def list_audit_events(
        request: Request,
        response: Response,
        limit: int = Query(default=100, ge=1, le=500),
        action: str | None = None,
        status: str | None = None,
    ) -> list[AuditEvent]:
        auth_subject = await require_scope(request, action="audit_events_list", scope="audit:read")
        events = await run_in_threadpool(
            request.app.state.repository.list_audit_events,
            limit=limit,
            action=action,
            status=status,
        )
        event_id = await write_audit_event(
            request,
            action="audit_events_list",
            scope="audit:read",
            status="ok",
            message=f"returned={len(events)}",
            auth_subject=auth_subject,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return events

    return app


app = create_app()
