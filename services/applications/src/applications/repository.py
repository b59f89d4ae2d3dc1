from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from common.utils import new_id, now_utc_iso
from workflow.machine import Application, StatusHistoryEntry
from workflow.notifier import NotificationIntent
from workflow.statuses import ApplicationStatus

from applications.models import (
    ApplicantContact,
    AuditEvent,
    Employer,
    Job,
    StoredNotification,
)

SORT_COLUMNS: dict[str, str] = {
    "applied_at": "a.applied_at",
    "updated_at": "a.updated_at",
    "status": "a.status",
    "job_title": "a.job_title",
}
SEARCHABLE_COLUMNS = ("a.job_title", "a.applicant_name", "a.applicant_email", "e.name")
SEEKER_SEARCH_COLUMNS = ("a.job_title", "e.name")
EMPLOYER_SEARCH_COLUMNS = ("a.applicant_name", "a.applicant_email", "a.job_title")


class ApplicationsRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys=ON")
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS employers (
                    employer_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    owner_user_id TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS employer_admins (
                    employer_id TEXT NOT NULL REFERENCES employers(employer_id) ON DELETE CASCADE,
                    user_id TEXT NOT NULL,
                    PRIMARY KEY (employer_id, user_id)
                );

                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    employer_id TEXT NOT NULL REFERENCES employers(employer_id),
                    title TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS applications (
                    id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL REFERENCES jobs(job_id),
                    job_seeker_id TEXT NOT NULL,
                    job_title TEXT NOT NULL,
                    resume_id TEXT,
                    cover_letter TEXT,
                    applicant_name TEXT,
                    applicant_email TEXT,
                    status TEXT NOT NULL,
                    status_history_json TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    applied_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (job_id, job_seeker_id)
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    notification_type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    action_url TEXT NOT NULL,
                    metadata_json TEXT NOT NULL,
                    read INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS audit_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    occurred_at TEXT NOT NULL,
                    request_id TEXT,
                    method TEXT NOT NULL,
                    path TEXT NOT NULL,
                    action TEXT NOT NULL,
                    scope TEXT,
                    source_ip TEXT,
                    user_agent TEXT,
                    auth_subject TEXT,
                    status TEXT NOT NULL,
                    message TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_applications_job_id ON applications(job_id);
                CREATE INDEX IF NOT EXISTS idx_applications_job_seeker_id
                    ON applications(job_seeker_id);
                CREATE INDEX IF NOT EXISTS idx_notifications_user_id ON notifications(user_id);
                """
            )
            self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def create_employer(
        self,
        *,
        employer_id: str | None,
        name: str,
        owner_user_id: str,
        admin_user_ids: list[str],
    ) -> Employer | None:
        resolved_id = employer_id or new_id("emp")
        admins = [user_id for user_id in dict.fromkeys(admin_user_ids) if user_id.strip()]
        with self._lock:
            try:
                self.connection.execute(
                    """
                    INSERT INTO employers (employer_id, name, owner_user_id, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (resolved_id, name, owner_user_id, now_utc_iso()),
                )
            except sqlite3.IntegrityError:
                self.connection.rollback()
                return None
            self.connection.executemany(
                "INSERT INTO employer_admins (employer_id, user_id) VALUES (?, ?)",
                [(resolved_id, user_id) for user_id in admins],
            )
            self.connection.commit()
            return self.get_employer(resolved_id)

    def get_employer(self, employer_id: str) -> Employer | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT employer_id, name, owner_user_id, created_at
                FROM employers
                WHERE employer_id = ?
                """,
                (employer_id,),
            ).fetchone()
            if row is None:
                return None
            admin_rows = self.connection.execute(
                "SELECT user_id FROM employer_admins WHERE employer_id = ? ORDER BY user_id",
                (employer_id,),
            ).fetchall()
            return Employer(
                employer_id=row["employer_id"],
                name=row["name"],
                owner_user_id=row["owner_user_id"],
                admin_user_ids=[admin["user_id"] for admin in admin_rows],
                created_at=row["created_at"],
            )

    def employer_user_ids(self, employer_id: str) -> list[str]:
        employer = self.get_employer(employer_id)
        if employer is None:
            return []
        return [employer.owner_user_id, *employer.admin_user_ids]

    def can_manage_employer(self, employer_id: str, user_id: str) -> bool:
        return user_id in self.employer_user_ids(employer_id)

    def managed_employer_ids(self, user_id: str) -> list[str]:
        with self._lock:
            cursor = self.connection.execute(
                """
                SELECT employer_id FROM employers WHERE owner_user_id = ?
                UNION
                SELECT employer_id FROM employer_admins WHERE user_id = ?
                ORDER BY employer_id
                """,
                (user_id, user_id),
            )
            return [row["employer_id"] for row in cursor.fetchall()]

    def create_job(self, *, job_id: str | None, employer_id: str, title: str) -> Job | None:
        resolved_id = job_id or new_id("job")
        with self._lock:
            try:
                self.connection.execute(
                    """
                    INSERT INTO jobs (job_id, employer_id, title, created_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (resolved_id, employer_id, " ".join(title.split()), now_utc_iso()),
                )
            except sqlite3.IntegrityError:
                self.connection.rollback()
                return None
            self.connection.commit()
            return self.get_job(resolved_id)

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT job_id, employer_id, title, created_at FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            if row is None:
                return None
            return Job(**dict(row))

    def insert_application(
        self,
        application: Application,
        *,
        applicant_name: str | None = None,
        applicant_email: str | None = None,
    ) -> Application | None:
        with self._lock:
            try:
                self.connection.execute(
                    """
                    INSERT INTO applications (
                        id,
                        job_id,
                        job_seeker_id,
                        job_title,
                        resume_id,
                        cover_letter,
                        applicant_name,
                        applicant_email,
                        status,
                        status_history_json,
                        version,
                        applied_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        application.id,
                        application.job_id,
                        application.job_seeker_id,
                        application.job_title,
                        application.resume_id,
                        application.cover_letter,
                        applicant_name,
                        applicant_email,
                        application.status.value,
                        _dump_history(application),
                        application.version,
                        application.applied_at,
                        application.updated_at,
                    ),
                )
            except sqlite3.IntegrityError:
                self.connection.rollback()
                return None
            self.connection.commit()
            return self.get_application_or_raise(application.id)

    def get_application_or_raise(self, application_id: str) -> Application:
        application = self.get_application(application_id)
        if application is None:
            raise KeyError(f"Unknown application_id: {application_id}")
        return application

    def get_application(self, application_id: str) -> Application | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM applications WHERE id = ?",
                (application_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_application(row)

    def get_applicant_contact(self, application_id: str) -> ApplicantContact | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT job_seeker_id, applicant_name, applicant_email
                FROM applications
                WHERE id = ?
                """,
                (application_id,),
            ).fetchone()
            if row is None:
                return None
            return ApplicantContact(
                user_id=row["job_seeker_id"],
                name=row["applicant_name"],
                email=row["applicant_email"],
            )

    def save_transition(self, application: Application, *, expected_version: int) -> bool:
        """Persist a transitioned application if nobody else wrote it first.

        Returns False when the stored version no longer equals
        ``expected_version``; the stored row is left untouched.
        """
        with self._lock:
            cursor = self.connection.execute(
                """
                UPDATE applications
                SET status = ?,
                    status_history_json = ?,
                    version = ?,
                    updated_at = ?
                WHERE id = ? AND version = ?
                """,
                (
                    application.status.value,
                    _dump_history(application),
                    application.version,
                    application.updated_at,
                    application.id,
                    expected_version,
                ),
            )
            self.connection.commit()
            return cursor.rowcount == 1

    def list_applications(
        self,
        *,
        limit: int,
        offset: int,
        job_id: str | None = None,
        job_seeker_id: str | None = None,
        employer_ids: list[str] | None = None,
        status: ApplicationStatus | None = None,
        q: str | None = None,
        search_columns: tuple[str, ...] = SEEKER_SEARCH_COLUMNS,
        applied_from: str | None = None,
        applied_to: str | None = None,
        sort_by: str = "applied_at",
        sort_order: str = "desc",
    ) -> tuple[list[Application], int]:
        """Page through applications, newest first unless told otherwise.

        ``search_columns`` and ``sort_by`` are matched against fixed
        whitelists; ``q`` is a case-insensitive substring match over the
        chosen columns. ``applied_from``/``applied_to`` are inclusive ISO-8601
        bounds on ``applied_at``.
        """
        order_column = SORT_COLUMNS.get(sort_by)
        if order_column is None:
            raise ValueError(f"Unsupported sort field: {sort_by}")
        direction = "ASC" if sort_order.lower() == "asc" else "DESC"
        unknown_columns = set(search_columns) - set(SEARCHABLE_COLUMNS)
        if unknown_columns:
            raise ValueError(f"Unsupported search columns: {sorted(unknown_columns)}")

        params: list[Any] = []
        filters: list[str] = []
        if job_id:
            filters.append("a.job_id = ?")
            params.append(job_id)
        if job_seeker_id:
            filters.append("a.job_seeker_id = ?")
            params.append(job_seeker_id)
        if employer_ids is not None:
            if not employer_ids:
                return [], 0
            filters.append(f"j.employer_id IN ({', '.join('?' for _ in employer_ids)})")
            params.extend(employer_ids)
        if status:
            filters.append("a.status = ?")
            params.append(status.value)
        if q and q.strip():
            pattern = f"%{_escape_like(q.strip().lower())}%"
            filters.append(
                "("
                + " OR ".join(f"LOWER({column}) LIKE ? ESCAPE '\\'" for column in search_columns)
                + ")"
            )
            params.extend(pattern for _ in search_columns)
        if applied_from:
            filters.append("julianday(a.applied_at) >= julianday(?)")
            params.append(applied_from)
        if applied_to:
            filters.append("julianday(a.applied_at) <= julianday(?)")
            params.append(applied_to)
        where = f" WHERE {' AND '.join(filters)}" if filters else ""
        source = (
            " FROM applications a"
            " JOIN jobs j ON j.job_id = a.job_id"
            " JOIN employers e ON e.employer_id = j.employer_id"
        )

        with self._lock:
            total = int(
                self.connection.execute(
                    f"SELECT COUNT(1) AS c{source}{where}",
                    tuple(params),
                ).fetchone()["c"]
            )
            cursor = self.connection.execute(
                f"SELECT a.*{source}{where} "
                f"ORDER BY {order_column} {direction}, a.id LIMIT ? OFFSET ?",
                (*params, limit, offset),
            )
            return [self._to_application(row) for row in cursor.fetchall()], total

    def create_notification(self, intent: NotificationIntent) -> StoredNotification:
        with self._lock:
            notification_id = new_id("ntf")
            self.connection.execute(
                """
                INSERT INTO notifications (
                    notification_id,
                    user_id,
                    notification_type,
                    title,
                    message,
                    action_url,
                    metadata_json,
                    read,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?)
                """,
                (
                    notification_id,
                    intent.recipient_user_id,
                    intent.notification_type,
                    intent.title,
                    intent.message,
                    intent.action_url,
                    json.dumps(intent.metadata, sort_keys=True),
                    now_utc_iso(),
                ),
            )
            self.connection.commit()
            row = self.connection.execute(
                "SELECT * FROM notifications WHERE notification_id = ?",
                (notification_id,),
            ).fetchone()
            return self._to_notification(row)

    def list_notifications(
        self,
        user_id: str,
        *,
        read: bool | None,
        limit: int,
        offset: int,
    ) -> tuple[list[StoredNotification], int, int]:
        with self._lock:
            params: list[Any] = [user_id]
            where = " WHERE user_id = ?"
            if read is not None:
                where += " AND read = ?"
                params.append(int(read))
            total = int(
                self.connection.execute(
                    f"SELECT COUNT(1) AS c FROM notifications{where}",
                    tuple(params),
                ).fetchone()["c"]
            )
            unread = int(
                self.connection.execute(
                    "SELECT COUNT(1) AS c FROM notifications WHERE user_id = ? AND read = 0",
                    (user_id,),
                ).fetchone()["c"]
            )
            cursor = self.connection.execute(
                f"""
                SELECT * FROM notifications{where}
                ORDER BY created_at DESC, rowid DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, offset),
            )
            return [self._to_notification(row) for row in cursor.fetchall()], total, unread

    def mark_notification_read(self, user_id: str, notification_id: str) -> bool:
        with self._lock:
            cursor = self.connection.execute(
                "UPDATE notifications SET read = 1 WHERE notification_id = ? AND user_id = ?",
                (notification_id, user_id),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    def mark_all_notifications_read(self, user_id: str) -> int:
        with self._lock:
            cursor = self.connection.execute(
                "UPDATE notifications SET read = 1 WHERE user_id = ? AND read = 0",
                (user_id,),
            )
            self.connection.commit()
            return cursor.rowcount

    def record_audit_event(
        self,
        *,
        request_id: str | None,
        method: str,
        path: str,
        action: str,
        scope: str | None,
        source_ip: str | None,
        user_agent: str | None,
        auth_subject: str | None,
        status: str,
        message: str | None,
    ) -> int:
        with self._lock:
            cursor = self.connection.execute(
                """
                INSERT INTO audit_events (
                    occurred_at,
                    request_id,
                    method,
                    path,
                    action,
                    scope,
                    source_ip,
                    user_agent,
                    auth_subject,
                    status,
                    message
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    now_utc_iso(),
                    request_id,
                    method,
                    path,
                    action,
                    scope,
                    source_ip,
                    user_agent,
                    auth_subject,
                    status,
                    message,
                ),
            )
            self.connection.commit()
            return int(cursor.lastrowid)

    def list_audit_events(
        self,
        *,
        limit: int,
        action: str | None,
        status: str | None,
    ) -> list[AuditEvent]:
        with self._lock:
            query = """
                SELECT
                    id AS event_id,
                    occurred_at,
                    request_id,
                    method,
                    path,
                    action,
                    scope,
                    source_ip,
                    user_agent,
                    auth_subject,
                    status,
                    message
                FROM audit_events
            """
            params: list[Any] = []
            filters: list[str] = []
            if action:
                filters.append("action = ?")
                params.append(action)
            if status:
                filters.append("status = ?")
                params.append(status)
            if filters:
                query += " WHERE " + " AND ".join(filters)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)
            cursor = self.connection.execute(query, tuple(params))
            return [AuditEvent(**dict(row)) for row in cursor.fetchall()]

    def _to_application(self, row: sqlite3.Row) -> Application:
        history = tuple(
            StatusHistoryEntry(**entry) for entry in json.loads(row["status_history_json"])
        )
        return Application(
            id=row["id"],
            job_id=row["job_id"],
            job_seeker_id=row["job_seeker_id"],
            job_title=row["job_title"],
            status=ApplicationStatus(row["status"]),
            status_history=history,
            resume_id=row["resume_id"],
            cover_letter=row["cover_letter"],
            version=row["version"],
            applied_at=row["applied_at"],
            updated_at=row["updated_at"],
        )

    def _to_notification(self, row: sqlite3.Row) -> StoredNotification:
        return StoredNotification(
            notification_id=row["notification_id"],
            user_id=row["user_id"],
            notification_type=row["notification_type"],
            title=row["title"],
            message=row["message"],
            action_url=row["action_url"],
            metadata=json.loads(row["metadata_json"]),
            read=bool(row["read"]),
            created_at=row["created_at"],
        )


def _dump_history(application: Application) -> str:
    return json.dumps([entry.model_dump(mode="json") for entry in application.status_history])


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
