import json
import time

from src.api.routes.dispatch import sign_payload
from src.core.config import get_settings
from src.core.security import ROLE_ADMIN, ROLE_MANAGER, ROLE_USER
from src.services import task_query


def _signed(payload, ts=None):
    body = json.dumps(payload).encode("utf-8")
    ts = int(time.time()) if ts is None else ts
    sig = sign_payload(get_settings().DISPATCHER_SIGNING_KEY, ts, body)
    headers = {
        "content-type": "application/json",
        "x-dispatch-timestamp": str(ts),
        "x-dispatch-signature": sig,
    }
    return body, headers


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_requires_bearer_token(client, synced):
    resp = client.get("/tasks")
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_list_tasks_camel_case(client, synced, auth_headers):
    resp = client.get("/tasks", headers=auth_headers(ROLE_USER))
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["count"] == 4
    first = body["data"][0]
    assert {"functionId", "scheduleType", "cronSchedule", "isEnabled", "concurrencyLimit"} <= set(first)


def test_list_tasks_filters(client, synced, auth_headers):
    resp = client.get("/tasks", params={"category": "FINANCE"}, headers=auth_headers())
    assert [t["functionId"] for t in resp.json()["data"]] == ["expire-quotes", "update-overdue-invoices"]

    resp = client.get("/tasks", params={"scheduleType": "HYBRID"}, headers=auth_headers())
    assert resp.json()["count"] == 1

    resp = client.get("/tasks", params={"category": "GARDENING"}, headers=auth_headers())
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_get_task_detail(client, synced, auth_headers):
    resp = client.get(f"/tasks/{synced['cleanup-sessions']}", headers=auth_headers())
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["functionId"] == "cleanup-sessions"
    assert data["totalRuns"] == 0
    assert data["stats"]["successRate"] == 0.0
    assert data["recentRuns"] == []
    assert data["nextRunAt"] is not None

    resp = client.get("/tasks/missing", headers=auth_headers())
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Task not found"}


def test_update_task_roles_and_fields(client, synced, auth_headers):
    task_id = synced["expire-quotes"]
    payload = {"isEnabled": False, "retries": 1, "scheduleType": "EVENT"}

    resp = client.put(f"/tasks/{task_id}", json=payload, headers=auth_headers(ROLE_MANAGER))
    assert resp.status_code == 403

    resp = client.put(f"/tasks/{task_id}", json=payload, headers=auth_headers(ROLE_ADMIN))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["isEnabled"] is False
    assert data["retries"] == 1
    assert data["scheduleType"] == "HYBRID"


def test_update_task_validation(client, synced, auth_headers):
    task_id = synced["cleanup-sessions"]
    resp = client.put(f"/tasks/{task_id}", json={"cronSchedule": "bogus"}, headers=auth_headers(ROLE_ADMIN))
    assert resp.status_code == 400
    assert "cron" in resp.json()["error"]

    resp = client.put(f"/tasks/{task_id}", json={"retries": -1}, headers=auth_headers(ROLE_ADMIN))
    assert resp.status_code == 400

    resp = client.put("/tasks/missing", json={"retries": 1}, headers=auth_headers(ROLE_ADMIN))
    assert resp.status_code == 404


def test_execute_task(client, synced, dispatcher, auth_headers):
    task_id = synced["cleanup-sessions"]

    resp = client.post(f"/tasks/{task_id}/execute", headers=auth_headers(ROLE_USER))
    assert resp.status_code == 403

    resp = client.post(f"/tasks/{task_id}/execute", headers=auth_headers(ROLE_MANAGER, "mgr-1"))
    assert resp.status_code == 200
    body = resp.json()
    assert body["message"] == "Task execution started"
    assert body["data"]["status"] == "RUNNING"
    assert body["data"]["triggeredBy"] == "MANUAL"
    assert body["data"]["triggeredByUser"] == "mgr-1"
    assert dispatcher.events[0].name == "cleanup-sessions/manual"

    resp = client.post(
        f"/tasks/{task_id}/execute",
        json={"userId": "on-behalf-of"},
        headers=auth_headers(ROLE_ADMIN),
    )
    assert resp.json()["data"]["triggeredByUser"] == "on-behalf-of"


def test_execute_disabled_task(client, db, synced, dispatcher, auth_headers):
    task_id = synced["cleanup-sessions"]
    task_query.set_task_enabled(db, task_id, False)

    resp = client.post(f"/tasks/{task_id}/execute", headers=auth_headers(ROLE_ADMIN))
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Task is disabled"}
    assert dispatcher.events == []


def test_execute_upstream_failure(client, synced, dispatcher, auth_headers):
    dispatcher.fail = True
    task_id = synced["cleanup-sessions"]

    resp = client.post(f"/tasks/{task_id}/execute", headers=auth_headers(ROLE_ADMIN))
    assert resp.status_code == 500
    assert resp.json()["error"].startswith("Failed to execute task")

    runs = client.get(f"/tasks/{task_id}/executions", headers=auth_headers()).json()
    assert runs["data"][0]["status"] == "FAILED"


def test_executions_list_and_detail(client, synced, auth_headers):
    task_id = synced["cleanup-sessions"]
    for _ in range(3):
        client.post(f"/tasks/{task_id}/execute", headers=auth_headers(ROLE_ADMIN))

    resp = client.get(f"/tasks/{task_id}/executions", params={"limit": 2}, headers=auth_headers())
    body = resp.json()
    assert len(body["data"]) == 2
    assert body["pagination"] == {"limit": 2, "offset": 0, "count": 2}
    assert body["stats"]["totalRuns"] == 3
    assert body["stats"]["runningCount"] == 3

    run_id = body["data"][0]["id"]
    resp = client.get(f"/tasks/{task_id}/executions/{run_id}", headers=auth_headers())
    assert resp.json()["data"]["id"] == run_id

    other = synced["expire-quotes"]
    resp = client.get(f"/tasks/{other}/executions/{run_id}", headers=auth_headers())
    assert resp.status_code == 404

    resp = client.get("/tasks/executions/recent", params={"limit": 1}, headers=auth_headers())
    assert len(resp.json()["data"]) == 1


def test_sync_endpoints(client, auth_headers):
    resp = client.post("/tasks/sync", headers=auth_headers(ROLE_MANAGER))
    assert resp.status_code == 403

    resp = client.post("/tasks/sync", headers=auth_headers(ROLE_ADMIN))
    assert resp.status_code == 200
    assert resp.json()["data"] == {"synced": 4, "created": 4, "updated": 0}

    resp = client.get("/tasks/sync", headers=auth_headers(ROLE_ADMIN))
    assert resp.json()["data"] == {"synced": 4, "created": 0, "updated": 4}
    assert resp.json()["message"] == "Synced 4 tasks"


def test_category_counts(client, synced, auth_headers):
    resp = client.get("/tasks/stats/categories", headers=auth_headers())
    assert resp.json()["data"] == {"CLEANUP": 1, "EMAIL": 1, "FINANCE": 2}


def test_dispatch_rejects_bad_signatures(client, synced):
    path = "/dispatch/functions/cleanup-sessions"
    assert client.post(path, json={}).status_code == 401

    body, headers = _signed({"event": {"name": "cleanup-sessions/manual"}})
    headers["x-dispatch-signature"] = "0" * 64
    assert client.post(path, content=body, headers=headers).status_code == 401

    body, headers = _signed({}, ts=int(time.time()) - 3600)
    resp = client.post(path, content=body, headers=headers)
    assert resp.status_code == 401
    assert resp.json()["error"] == "Signature timestamp expired"


def test_dispatch_invoke_runs_handler(client, synced):
    body, headers = _signed({"runId": "01HINVOKE", "event": {"id": "evt-1", "name": "", "data": {}}})
    resp = client.post("/dispatch/functions/cleanup-sessions", content=body, headers=headers)
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "SUCCEEDED"
    assert data["dispatcherRunId"] == "01HINVOKE"
    assert data["result"] == {"deleted": 0}

    body, headers = _signed({})
    resp = client.post("/dispatch/functions/unknown-fn", content=body, headers=headers)
    assert resp.status_code == 404


def test_dispatch_run_callbacks(client, synced):
    body, headers = _signed({"functionId": "expire-quotes", "runId": "01HCB", "triggeredBy": "EVENT"})
    resp = client.post("/dispatch/runs", content=body, headers=headers)
    assert resp.status_code == 200
    run = resp.json()["data"]
    assert run["status"] == "RUNNING"
    assert run["triggeredBy"] == "EVENT"

    # re-delivered start callback returns the same run
    resp = client.post("/dispatch/runs", content=body, headers=headers)
    assert resp.json()["data"]["id"] == run["id"]

    body, headers = _signed({"status": "SUCCEEDED", "result": {"expired": 2}})
    resp = client.post(f"/dispatch/runs/{run['id']}/complete", content=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["data"]["result"] == {"expired": 2}

    resp = client.post(f"/dispatch/runs/{run['id']}/complete", content=body, headers=headers)
    assert resp.status_code == 409
    assert resp.json() == {"success": False, "error": "Execution already completed"}

    body, headers = _signed({"status": "RUNNING"})
    resp = client.post(f"/dispatch/runs/{run['id']}/complete", content=body, headers=headers)
    assert resp.status_code == 400
