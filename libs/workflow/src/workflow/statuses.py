from __future__ import annotations

from enum import Enum


class ApplicationStatus(str, Enum):
    APPLIED = "APPLIED"
    VIEWED = "VIEWED"
    SHORTLISTED = "SHORTLISTED"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    OFFERED = "OFFERED"
    HIRED = "HIRED"
    REJECTED = "REJECTED"


class Role(str, Enum):
    JOBSEEKER = "JOBSEEKER"
    JOBPROVIDER = "JOBPROVIDER"
    ADMIN = "ADMIN"


INITIAL_STATUS = ApplicationStatus.APPLIED
TERMINAL_STATUSES = frozenset({ApplicationStatus.HIRED, ApplicationStatus.REJECTED})

STATUS_DISPLAY_NAMES: dict[ApplicationStatus, str] = {
    ApplicationStatus.APPLIED: "Applied",
    ApplicationStatus.VIEWED: "Under Review",
    ApplicationStatus.SHORTLISTED: "Shortlisted",
    ApplicationStatus.INTERVIEW_SCHEDULED: "Interview Scheduled",
    ApplicationStatus.OFFERED: "Offered",
    ApplicationStatus.HIRED: "Hired",
    ApplicationStatus.REJECTED: "Rejected",
}


def display_name(status: ApplicationStatus) -> str:
    return STATUS_DISPLAY_NAMES.get(status, status.value)
