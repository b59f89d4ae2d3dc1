from __future__ import annotations

from pathlib import Path

import pytest
from applications.main import create_app
from applications.repository import ApplicationsRepository
from fastapi.testclient import TestClient
from workflow.machine import (
    ApplicationStateMachine,
    TransitionApplied,
    TransitionRequest,
    open_application,
)
from workflow.statuses import ApplicationStatus, Role

OWNER = {"x-user-id": "user-owner", "x-user-role": "JOBPROVIDER"}
OUTSIDER = {"x-user-id": "user-outsider", "x-user-role": "JOBPROVIDER"}
SEEKER = {"x-user-id": "user-seeker", "x-user-role": "JOBSEEKER"}


@pytest.fixture
def repository(tmp_path: Path):
    repo = ApplicationsRepository(database_path=str(tmp_path / "applications.sqlite3"))
    repo.connect()
    repo.create_employer(
        employer_id="emp-acme",
        name="Acme",
        owner_user_id="user-owner",
        admin_user_ids=[],
    )
    repo.create_job(job_id="job-1", employer_id="emp-acme", title="Backend Engineer")
    yield repo
    repo.close()


@pytest.fixture
def client(tmp_path: Path):
    app = create_app(database_path=str(tmp_path / "applications.sqlite3"))
    with TestClient(app) as test_client:
        test_client.post(
            "/employers",
            headers=OWNER,
            json={"employer_id": "emp-acme", "name": "Acme"},
        )
        test_client.post(
            "/jobs",
            headers=OWNER,
            json={"job_id": "job-1", "employer_id": "emp-acme", "title": "Backend Engineer"},
        )
        yield test_client


def owner_request(application_id: str, status: ApplicationStatus) -> TransitionRequest:
    return TransitionRequest(
        application_id=application_id,
        target_status=status,
        acting_user_id="user-owner",
        acting_role=Role.JOBPROVIDER,
    )


@pytest.mark.unit
def test_save_transition_rejects_stale_version(repository: ApplicationsRepository) -> None:
    application = open_application(
        job_id="job-1",
        job_seeker_id="user-seeker",
        job_title="Backend Engineer",
    )
    assert repository.insert_application(application)
    machine = ApplicationStateMachine()

    first = machine.apply(
        application,
        owner_request(application.id, ApplicationStatus.VIEWED),
        authorized=True,
    )
    second = machine.apply(
        application,
        owner_request(application.id, ApplicationStatus.REJECTED),
        authorized=True,
    )
    assert isinstance(first, TransitionApplied)
    assert isinstance(second, TransitionApplied)

    assert repository.save_transition(first.application, expected_version=1) is True
    assert repository.save_transition(second.application, expected_version=1) is False

    stored = repository.get_application_or_raise(application.id)
    assert stored.status is ApplicationStatus.VIEWED
    assert stored.version == 2
    assert [entry.status for entry in stored.status_history] == [
        ApplicationStatus.APPLIED,
        ApplicationStatus.VIEWED,
    ]


@pytest.mark.unit
def test_insert_application_refuses_second_application_to_same_job(
    repository: ApplicationsRepository,
) -> None:
    first = open_application(
        job_id="job-1", job_seeker_id="user-seeker", job_title="Backend Engineer"
    )
    again = open_application(
        job_id="job-1", job_seeker_id="user-seeker", job_title="Backend Engineer"
    )

    stored = repository.insert_application(first, applicant_email="ada@example.com")
    assert stored == first
    assert repository.insert_application(again) is None
    assert repository.get_applicant_contact(first.id).email == "ada@example.com"


@pytest.mark.unit
def test_get_application_or_raise_for_unknown_id(repository: ApplicationsRepository) -> None:
    with pytest.raises(KeyError):
        repository.get_application_or_raise("app-missing")


@pytest.mark.integration
def test_stale_expected_version_is_a_concurrent_modification(client: TestClient) -> None:
    application = client.post("/jobs/job-1/applications", headers=SEEKER, json={}).json()
    viewed = client.patch(
        f"/applications/{application['id']}/status",
        headers=OWNER,
        json={"status": "VIEWED", "expected_version": 1},
    )
    assert viewed.status_code == 200

    shortlisted = client.patch(
        f"/applications/{application['id']}/status",
        headers=OWNER,
        json={"status": "SHORTLISTED", "expected_version": 2},
    )
    rejected = client.patch(
        f"/applications/{application['id']}/status",
        headers=OWNER,
        json={"status": "REJECTED", "expected_version": 2},
    )

    assert shortlisted.status_code == 200
    assert rejected.status_code == 409
    assert rejected.json()["detail"]["error"] == "CONCURRENT_MODIFICATION"
    stored = client.get(f"/applications/{application['id']}", headers=OWNER).json()
    assert stored["status"] == "SHORTLISTED"
    assert stored["version"] == 3


@pytest.mark.integration
def test_write_that_loses_the_race_is_not_persisted(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    application = client.post("/jobs/job-1/applications", headers=SEEKER, json={}).json()
    client.patch(
        f"/applications/{application['id']}/status",
        headers=OWNER,
        json={"status": "VIEWED"},
    )
    repository = client.app.state.repository
    snapshot = repository.get_application(application["id"])
    client.patch(
        f"/applications/{application['id']}/status",
        headers=OWNER,
        json={"status": "SHORTLISTED"},
    )

    # The next request loads the pre-shortlist snapshot, as if it read before the write above.
    monkeypatch.setattr(repository, "get_application", lambda application_id: snapshot)
    response = client.patch(
        f"/applications/{application['id']}/status",
        headers=OWNER,
        json={"status": "REJECTED"},
    )
    monkeypatch.undo()

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "CONCURRENT_MODIFICATION"
    assert response.headers.get("x-audit-event-id")
    stored = repository.get_application(application["id"])
    assert stored.status is ApplicationStatus.SHORTLISTED
    assert stored.version == 3


@pytest.mark.integration
def test_outsider_with_stale_version_is_refused_as_unauthorized(client: TestClient) -> None:
    application = client.post("/jobs/job-1/applications", headers=SEEKER, json={}).json()

    response = client.patch(
        f"/applications/{application['id']}/status",
        headers=OUTSIDER,
        json={"status": "VIEWED", "expected_version": 7},
    )

    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "NOT_AUTHORIZED"
    stored = client.get(f"/applications/{application['id']}", headers=OWNER).json()
    assert stored["version"] == 1


@pytest.mark.integration
def test_illegal_target_with_stale_version_reports_the_illegal_transition(
    client: TestClient,
) -> None:
    application = client.post("/jobs/job-1/applications", headers=SEEKER, json={}).json()

    response = client.patch(
        f"/applications/{application['id']}/status",
        headers=OWNER,
        json={"status": "HIRED", "expected_version": 4},
    )

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "ILLEGAL_TRANSITION"
