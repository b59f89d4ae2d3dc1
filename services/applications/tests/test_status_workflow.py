from __future__ import annotations

from pathlib import Path

import pytest
from applications.main import create_app
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration

OWNER = {"x-user-id": "user-owner", "x-user-role": "JOBPROVIDER"}
ADMIN = {"x-user-id": "user-admin", "x-user-role": "JOBPROVIDER"}
OUTSIDER = {"x-user-id": "user-outsider", "x-user-role": "JOBPROVIDER"}
SEEKER = {"x-user-id": "user-seeker", "x-user-role": "JOBSEEKER"}


@pytest.fixture
def client(tmp_path: Path):
    app = create_app(database_path=str(tmp_path / "applications.sqlite3"))
    with TestClient(app) as test_client:
        test_client.post(
            "/employers",
            headers=OWNER,
            json={"employer_id": "emp-acme", "name": "Acme", "admin_user_ids": ["user-admin"]},
        )
        test_client.post(
            "/employers",
            headers=OUTSIDER,
            json={"employer_id": "emp-other", "name": "Other Co"},
        )
        test_client.post(
            "/jobs",
            headers=OWNER,
            json={"job_id": "job-1", "employer_id": "emp-acme", "title": "Backend Engineer"},
        )
        yield test_client


def submit(client: TestClient, headers: dict[str, str] = SEEKER) -> dict:
    response = client.post(
        "/jobs/job-1/applications",
        headers=headers,
        json={
            "resume_id": "resume-1",
            "applicant_name": "Ada Lovelace",
            "applicant_email": "ada@example.com",
        },
    )
    assert response.status_code == 201
    return response.json()


def move(client: TestClient, application_id: str, status: str, headers=OWNER, **extra):
    return client.patch(
        f"/applications/{application_id}/status",
        headers=headers,
        json={"status": status, **extra},
    )


def test_submission_starts_at_applied(client: TestClient) -> None:
    application = submit(client)

    assert application["status"] == "APPLIED"
    assert application["version"] == 1
    assert application["job_title"] == "Backend Engineer"
    assert [entry["status"] for entry in application["status_history"]] == ["APPLIED"]
    assert application["status_history"][0]["note"] == "Application submitted"


def test_duplicate_submission_is_rejected(client: TestClient) -> None:
    submit(client)

    duplicate = client.post("/jobs/job-1/applications", headers=SEEKER, json={})

    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "Already applied to this job"


def test_only_job_seekers_can_apply_to_existing_jobs(client: TestClient) -> None:
    as_provider = client.post("/jobs/job-1/applications", headers=OWNER, json={})
    missing_job = client.post("/jobs/job-404/applications", headers=SEEKER, json={})

    assert as_provider.status_code == 403
    assert missing_job.status_code == 404


def test_employer_marks_application_viewed(client: TestClient) -> None:
    application = submit(client)

    response = move(client, application["id"], "VIEWED", note="Reviewed CV")

    assert response.status_code == 200
    body = response.json()
    assert body["application"]["status"] == "VIEWED"
    assert body["application"]["version"] == 2
    assert len(body["application"]["status_history"]) == 2
    assert body["application"]["status_history"][0] == application["status_history"][0]
    assert body["application"]["status_history"][-1]["note"] == "Reviewed CV"
    assert body["event"]["from_status"] == "APPLIED"
    assert body["event"]["to_status"] == "VIEWED"
    assert [item["message"] for item in body["notifications"]] == [
        "Your application has been viewed"
    ]
    assert body["notifications"][0]["user_id"] == "user-seeker"
    assert response.headers.get("x-audit-event-id")


def test_skipping_to_hired_is_an_illegal_transition(client: TestClient) -> None:
    application = submit(client)

    response = move(client, application["id"], "HIRED")

    assert response.status_code == 422
    assert response.json()["detail"]["error"] == "ILLEGAL_TRANSITION"
    stored = client.get(f"/applications/{application['id']}", headers=OWNER).json()
    assert stored["status"] == "APPLIED"
    assert stored["version"] == 1


def test_employer_admin_can_move_the_application(client: TestClient) -> None:
    application = submit(client)

    response = move(client, application["id"], "VIEWED", headers=ADMIN)

    assert response.status_code == 200
    assert response.json()["application"]["status_history"][-1]["acting_user_id"] == "user-admin"


def test_non_owner_cannot_schedule_interview(client: TestClient) -> None:
    application = submit(client)
    assert move(client, application["id"], "VIEWED").status_code == 200
    assert move(client, application["id"], "SHORTLISTED").status_code == 200

    response = move(client, application["id"], "INTERVIEW_SCHEDULED", headers=OUTSIDER)

    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "NOT_AUTHORIZED"


def test_applicant_cannot_change_their_own_status(client: TestClient) -> None:
    application = submit(client)

    response = move(client, application["id"], "VIEWED", headers=SEEKER)

    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "NOT_AUTHORIZED"


def test_owner_acting_with_seeker_role_gets_wrong_role(client: TestClient) -> None:
    application = submit(client)

    response = move(
        client,
        application["id"],
        "VIEWED",
        headers={"x-user-id": "user-owner", "x-user-role": "JOBSEEKER"},
    )

    assert response.status_code == 403
    assert response.json()["detail"]["error"] == "WRONG_ROLE"


def test_unknown_status_and_role_are_rejected_at_the_boundary(client: TestClient) -> None:
    application = submit(client)

    unknown_status = move(client, application["id"], "PROMOTED")
    unknown_role = move(
        client,
        application["id"],
        "VIEWED",
        headers={"x-user-id": "user-owner", "x-user-role": "WIZARD"},
    )
    missing_user = client.patch(
        f"/applications/{application['id']}/status",
        json={"status": "VIEWED"},
    )

    assert unknown_status.status_code == 422
    assert unknown_role.status_code == 422
    assert missing_user.status_code == 401


def test_offered_then_rejected_is_terminal(client: TestClient) -> None:
    application = submit(client)
    for status in ("VIEWED", "SHORTLISTED", "INTERVIEW_SCHEDULED", "OFFERED", "REJECTED"):
        assert move(client, application["id"], status).status_code == 200

    allowed = client.get(f"/applications/{application['id']}/allowed-statuses", headers=OWNER)
    assert allowed.json() == {
        "application_id": application["id"],
        "status": "REJECTED",
        "version": 6,
        "terminal": True,
        "allowed_statuses": [],
    }
    for status in ("VIEWED", "SHORTLISTED", "INTERVIEW_SCHEDULED", "OFFERED", "HIRED"):
        response = move(client, application["id"], status)
        assert response.status_code == 422
        assert response.json()["detail"]["error"] == "ILLEGAL_TRANSITION"


def test_allowed_statuses_follow_the_current_status(client: TestClient) -> None:
    application = submit(client)

    initial = client.get(f"/applications/{application['id']}/allowed-statuses", headers=SEEKER)
    move(client, application["id"], "VIEWED")
    viewed = client.get(f"/applications/{application['id']}/allowed-statuses", headers=OWNER)

    assert initial.json()["allowed_statuses"] == ["VIEWED", "REJECTED"]
    assert initial.json()["terminal"] is False
    assert viewed.json()["allowed_statuses"] == ["SHORTLISTED", "REJECTED"]


def test_application_is_hidden_from_unrelated_users(client: TestClient) -> None:
    application = submit(client)

    hidden = client.get(f"/applications/{application['id']}", headers=OUTSIDER)
    visible = client.get(f"/applications/{application['id']}", headers=SEEKER)

    assert hidden.status_code == 404
    assert visible.status_code == 200


def test_unknown_application_returns_not_found(client: TestClient) -> None:
    response = move(client, "app-missing", "VIEWED")

    assert response.status_code == 404


def test_listing_filters_by_status_and_paginates(client: TestClient) -> None:
    first = submit(client)
    submit(client, headers={"x-user-id": "user-seeker-2", "x-user-role": "JOBSEEKER"})
    submit(client, headers={"x-user-id": "user-seeker-3", "x-user-role": "JOBSEEKER"})
    move(client, first["id"], "VIEWED")

    all_page = client.get("/jobs/job-1/applications?limit=2", headers=OWNER).json()
    viewed = client.get("/jobs/job-1/applications?status=VIEWED", headers=OWNER).json()
    outsider = client.get("/jobs/job-1/applications", headers=OUTSIDER)
    mine = client.get("/applications", headers=SEEKER).json()

    assert len(all_page["applications"]) == 2
    assert all_page["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}
    assert [item["id"] for item in viewed["applications"]] == [first["id"]]
    assert outsider.status_code == 403
    assert [item["id"] for item in mine["applications"]] == [first["id"]]


def test_transition_table_is_published(client: TestClient) -> None:
    response = client.get("/workflow/transitions")

    body = response.json()
    assert response.status_code == 200
    assert body["terminal_statuses"] == ["HIRED", "REJECTED"]
    assert len(body["transitions"]) == 10
    assert body["transitions"][0] == {
        "from_status": "APPLIED",
        "to_status": "VIEWED",
        "required_role": "JOBPROVIDER",
    }
