from marketplace.models import Application, Contest, Notification, Project, TargetType


def test_apply_creates_pending_application_and_counts(client, seed, db, auth_headers):
    contest = seed.contest()

    response = client.post(
        "/applications",
        json={"targetType": "contest", "targetId": contest.id},
        headers=auth_headers("creator-1"),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["userId"] == "creator-1"

    db.expire_all()
    assert db.get(Contest, contest.id).applicant_count == 1
    note = db.query(Notification).filter_by(user_id="creator-1").one()
    assert note.type == "contest_application"


def test_duplicate_apply_is_conflict(client, seed, db, auth_headers):
    project = seed.project()
    payload = {"targetType": "project", "targetId": project.id}

    assert client.post("/applications", json=payload, headers=auth_headers("creator-1")).status_code == 201
    second = client.post("/applications", json=payload, headers=auth_headers("creator-1"))

    assert second.status_code == 409
    db.expire_all()
    assert db.query(Application).count() == 1
    assert db.get(Project, project.id).applicant_count == 1


def test_apply_to_missing_target_is_404(client, auth_headers):
    response = client.post(
        "/applications",
        json={"targetType": "contest", "targetId": "missing"},
        headers=auth_headers("creator-1"),
    )
    assert response.status_code == 404


def test_cancel_twice_returns_200_then_404(client, seed, db, auth_headers):
    contest = seed.contest(applicant_count=1)
    application = seed.application(target=contest, target_type=TargetType.CONTEST)

    first = client.post(
        "/applications/cancel", json={"contestId": contest.id}, headers=auth_headers("creator-1")
    )
    second = client.post(
        "/applications/cancel", json={"contestId": contest.id}, headers=auth_headers("creator-1")
    )

    assert first.status_code == 200
    assert first.json()["applicationId"] == application.id
    assert "message" in first.json()
    assert second.status_code == 404

    db.expire_all()
    assert db.get(Contest, contest.id).applicant_count == 0


def test_cancel_never_drives_count_negative(client, seed, db, auth_headers):
    project = seed.project(applicant_count=0)
    seed.application(target=project)

    response = client.post(
        "/applications/cancel", json={"projectId": project.id}, headers=auth_headers("creator-1")
    )

    assert response.status_code == 200
    db.expire_all()
    assert db.get(Project, project.id).applicant_count == 0


def test_cancel_requires_exactly_one_target(client, auth_headers):
    response = client.post("/applications/cancel", json={}, headers=auth_headers("creator-1"))
    assert response.status_code == 400
    assert "error" in response.json()


def test_check_applied(client, seed, auth_headers):
    project = seed.project()

    before = client.get(
        "/applications/check-applied",
        params={"userId": "creator-1", "targetId": project.id},
        headers=auth_headers("creator-1"),
    )
    assert before.json() == {"hasApplied": False}

    application = seed.application(target=project)
    after = client.get(
        "/applications/check-applied",
        params={"userId": "creator-1", "targetId": project.id},
        headers=auth_headers("creator-1"),
    )
    assert after.json() == {
        "hasApplied": True,
        "applicationStatus": "pending",
        "applicationId": application.id,
    }


def test_check_applied_for_someone_else_is_forbidden(client, seed, auth_headers):
    project = seed.project()
    response = client.get(
        "/applications/check-applied",
        params={"userId": "creator-2", "targetId": project.id},
        headers=auth_headers("creator-1"),
    )
    assert response.status_code == 403


def test_owner_approves_project_application(client, seed, db, auth_headers):
    project = seed.project(owner_id="brand-1")
    application = seed.application(target=project)

    response = client.post(
        f"/applications/{application.id}/review",
        json={"status": "approved"},
        headers=auth_headers("brand-1"),
    )

    assert response.status_code == 200
    assert response.json()["status"] == "approved"
    db.expire_all()
    assert "creator-1" in db.get(Project, project.id).participants
    assert db.query(Notification).filter_by(user_id="creator-1", type="application_approved").count() == 1

    again = client.post(
        f"/applications/{application.id}/review",
        json={"status": "rejected"},
        headers=auth_headers("brand-1"),
    )
    assert again.status_code == 409


def test_non_owner_cannot_review(client, seed, auth_headers):
    project = seed.project(owner_id="brand-1")
    application = seed.application(target=project)

    response = client.post(
        f"/applications/{application.id}/review",
        json={"status": "approved"},
        headers=auth_headers("brand-2"),
    )
    assert response.status_code == 403
