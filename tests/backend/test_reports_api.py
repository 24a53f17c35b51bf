from issue_watcher.constants import ACTION_TICK, TASK_ERROR
from issue_watcher.exceptions import GitHubAuthError, GitHubRateLimitError, RepositoryNotFoundError
from issue_watcher.repositories import TaskRepository

from helpers import analyzed, make_issue, make_page

REPO = "https://github.com/acme/widgets"
USER = {"X-User-Email": "dev@example.com"}


def _submit(client, repo_url=REPO, keyword="auth", headers=USER):
    return client.post("/api/v1/reports", json={"repo_url": repo_url, "keyword": keyword}, headers=headers)


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/health/ready").json()["status"] == "ready"


def test_identity_header_is_required(client):
    response = client.get("/api/v1/reports")

    assert response.status_code == 401
    assert "X-User-Email" in response.json()["detail"]


def test_submit_creates_report(client, page_source, scheduler):
    page_source.pages[None] = make_page([1, 2], next_cursor="c1")

    response = _submit(client, keyword="Auth")

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "created"
    assert body["report"]["keyword"] == "auth"
    assert body["report"]["pending_count"] == 2
    assert [issue["number"] for issue in body["report"]["issues"]] == [1, 2]
    assert scheduler.actions(ACTION_TICK) == [(0, {})]


def test_resubmit_returns_in_progress_report(client, page_source):
    page_source.pages[None] = make_page([1], next_cursor="c1")
    first = _submit(client).json()

    second = _submit(client).json()

    assert second["status"] == "in_progress"
    assert second["report"]["id"] == first["report"]["id"]
    assert second["report"]["request_counter"] == 2


def test_invalid_repo_url_is_422(client):
    response = _submit(client, repo_url="https://gitlab.com/acme/widgets")

    assert response.status_code == 422


def test_missing_keyword_is_rejected_by_schema(client):
    response = client.post("/api/v1/reports", json={"repo_url": REPO}, headers=USER)

    assert response.status_code == 422


def test_unknown_repository_is_404(client, page_source):
    page_source.error = RepositoryNotFoundError("Repository acme/nope not found")

    assert _submit(client, repo_url="https://github.com/acme/nope").status_code == 404


def test_github_credentials_problem_is_502(client, page_source):
    page_source.error = GitHubAuthError("bad credentials")

    response = _submit(client)

    assert response.status_code == 502
    assert "bad credentials" not in response.json()["detail"]


def test_github_rate_limit_is_503(client, page_source):
    page_source.error = GitHubRateLimitError("slow down")

    assert _submit(client).status_code == 503


def test_get_list_and_workload(client, create_report):
    report_id = create_report(issues=[make_issue(1), analyzed(make_issue(2), 77)], cursor="c1")

    report = client.get(f"/api/v1/reports/{report_id}", headers=USER).json()
    listing = client.get("/api/v1/reports", headers=USER).json()
    workload = client.get("/api/v1/reports/workload", headers=USER).json()

    assert report["issue_count"] == 2
    assert report["issues"][1]["relevance_score"] == 77
    assert [item["id"] for item in listing] == [report_id]
    assert "issues" not in listing[0]
    assert workload == {"open_reports": 1, "queued": 1, "running": 0}


def test_other_users_report_is_404(client, create_report):
    report_id = create_report(email="owner@example.com")

    response = client.get(f"/api/v1/reports/{report_id}", headers=USER)

    assert response.status_code == 404


def test_cancel(client, create_report):
    report_id = create_report(issues=[make_issue(1)], cursor="c1")

    response = client.post(f"/api/v1/reports/{report_id}/cancel", headers=USER)

    assert response.status_code == 200
    assert response.json()["is_canceled"] is True
    assert response.json()["cursor"] is None


def test_delete(client, create_report):
    report_id = create_report(issues=[make_issue(1), make_issue(2)])

    response = client.delete(f"/api/v1/reports/{report_id}", headers=USER)

    assert response.json() == {"report_id": report_id, "deleted": True, "tasks_deleted": 2}
    assert client.get(f"/api/v1/reports/{report_id}", headers=USER).status_code == 404


def test_requeue_errors_and_debug(client, create_report, database):
    report_id = create_report(issues=[make_issue(1)])
    with database.session() as session:
        tasks = TaskRepository(session)
        task_id = tasks.list_for_report(report_id)[0].id
        tasks.mark_running([task_id])
        tasks.mark_requeue_or_error(task_id, 3, "boom", max_attempts=3)

    debug = client.get(f"/api/v1/reports/{report_id}/debug", headers=USER).json()
    assert debug["tasks"] == {TASK_ERROR: 1}

    response = client.post(f"/api/v1/reports/{report_id}/requeue-errors", headers=USER)
    assert response.json() == {"report_id": report_id, "requeued": 1}


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-42"})

    assert response.headers["x-request-id"] == "req-42"
    assert client.get("/health").headers["x-request-id"]
