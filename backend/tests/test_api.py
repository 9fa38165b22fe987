"""HTTP API tests against the in-memory service."""

import httpx
import pytest

from actions.implementations.integration_action import ZapierWebhookAction


async def _create(client, definition, status="active", name="Lead capture"):
    resp = await client.post("/api/v1/workflows", json={
        "name": name,
        "status": status,
        "definition": definition,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def _delayed(build_linear):
    return build_linear({"id": "wait", "type": "delay", "config": {"duration": 1, "unit": "hours"}})


@pytest.mark.integration
class TestWorkflowRoutes:

    async def test_create_and_get(self, client, age_definition):
        created = await _create(client, age_definition)
        assert created["status"] == "active"
        assert created["version"] == 1

        resp = await client.get(f"/api/v1/workflows/{created['id']}")
        assert resp.status_code == 200
        connections = resp.json()["definition"]["connections"]
        assert {"from": "check_age", "to": "done", "output_index": 1} in connections

    async def test_create_invalid_active_workflow(self, client):
        resp = await client.post("/api/v1/workflows", json={
            "name": "Broken",
            "status": "active",
            "definition": {"nodes": [{"id": "start", "type": "start"}], "connections": []},
        })
        assert resp.status_code == 422
        body = resp.json()
        assert "request_id" in body
        assert "no_end" in {v["code"] for v in body["violations"]}

    async def test_validate_endpoint(self, client):
        resp = await client.post("/api/v1/workflows/validate", json={
            "nodes": [
                {"id": "start", "type": "start"},
                {"id": "a", "type": "action", "action_id": "does_not_exist"},
                {"id": "done", "type": "end"},
            ],
            "connections": [{"from": "start", "to": "a"}, {"from": "a", "to": "done"}],
        })
        assert resp.status_code == 200
        body = resp.json()
        assert body["valid"] is False
        assert body["violations"][0]["code"] == "unresolved_action"
        assert body["violations"][0]["node_id"] == "a"

    async def test_unknown_node_type_rejected(self, client):
        resp = await client.post("/api/v1/workflows/validate", json={
            "nodes": [{"id": "x", "type": "teleport"}],
            "connections": [],
        })
        assert resp.status_code == 422

    async def test_get_missing_workflow(self, client):
        resp = await client.get("/api/v1/workflows/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Workflow nope not found"

    async def test_status_update(self, client, age_definition):
        created = await _create(client, age_definition, status="draft")
        resp = await client.put(f"/api/v1/workflows/{created['id']}/status", json={"status": "active"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "active"


@pytest.mark.integration
class TestExecutionRoutes:

    async def test_trigger_runs_workflow(self, client, age_definition):
        workflow = await _create(client, age_definition)
        resp = await client.post(f"/api/v1/workflows/{workflow['id']}/executions", json={
            "payload": {"id": "sub-1", "name": "Ada", "email": "ada@example.com", "age": 30},
        })
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "completed"
        assert body["submission_id"] == "sub-1"
        assert body["output"] == {"email": "ada@example.com", "greeting": "Welcome Ada"}
        assert [h["node_id"] for h in body["history"]] == ["start", "check_age", "welcome", "done"]

        detail = await client.get(f"/api/v1/executions/{body['id']}")
        assert detail.status_code == 200
        assert detail.json()["context"]["submission"]["name"] == "Ada"

    async def test_draft_workflow_conflict(self, client, age_definition):
        workflow = await _create(client, age_definition, status="draft")
        resp = await client.post(f"/api/v1/workflows/{workflow['id']}/executions", json={"payload": {}})
        assert resp.status_code == 409

    async def test_rate_limited_trigger(self, client, build_linear):
        definition = build_linear()
        definition["settings"] = {"max_executions_per_hour": 1}
        workflow = await _create(client, definition)
        url = f"/api/v1/workflows/{workflow['id']}/executions"

        assert (await client.post(url, json={"payload": {}})).status_code == 201
        resp = await client.post(url, json={"payload": {}})
        assert resp.status_code == 429
        assert int(resp.headers["Retry-After"]) > 0
        assert resp.json()["retry_after"] == int(resp.headers["Retry-After"])

    async def test_resume_and_cancel(self, client, build_linear):
        workflow = await _create(client, _delayed(build_linear))
        started = (await client.post(f"/api/v1/workflows/{workflow['id']}/executions", json={"payload": {}})).json()
        assert started["status"] == "waiting"
        assert started["waiting_reason"] == "scheduled delay"
        assert started["resume_after"] is not None

        early = await client.post(f"/api/v1/executions/{started['id']}/resume")
        assert early.status_code == 409

        forced = await client.post(f"/api/v1/executions/{started['id']}/resume", params={"force": "true"})
        assert forced.status_code == 200
        assert forced.json()["status"] == "completed"

        cancel = await client.post(f"/api/v1/executions/{started['id']}/cancel")
        assert cancel.status_code == 409

    async def test_cancel_waiting(self, client, build_linear):
        workflow = await _create(client, _delayed(build_linear))
        started = (await client.post(f"/api/v1/workflows/{workflow['id']}/executions", json={"payload": {}})).json()

        resp = await client.post(f"/api/v1/executions/{started['id']}/cancel")
        assert resp.status_code == 200
        assert resp.json()["status"] == "cancelled"

    async def test_missing_execution(self, client):
        resp = await client.get("/api/v1/executions/nope")
        assert resp.status_code == 404

    async def test_stats(self, client, age_definition):
        workflow = await _create(client, age_definition)
        for age in (25, 12):
            await client.post(f"/api/v1/workflows/{workflow['id']}/executions", json={"payload": {"age": age}})

        resp = await client.get("/api/v1/executions/stats", params={"workflow_id": workflow["id"]})
        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert body["completed"] == 2
        assert body["period"] == "day"

    async def test_stats_unknown_period(self, client):
        resp = await client.get("/api/v1/executions/stats", params={"period": "decade"})
        assert resp.status_code == 422


@pytest.mark.integration
class TestSyncRoutes:

    async def test_history_and_stats(self, client, registry, build_linear):
        def handler(request):
            return httpx.Response(200, json={"id": "zap-1"})

        registry.register("zapier_test", ZapierWebhookAction(transport=httpx.MockTransport(handler)))
        definition = build_linear({
            "id": "zap",
            "type": "action",
            "action_id": "zapier_test",
            "config": {"webhook_url": "https://hooks.zapier.com/hooks/catch/1/abc"},
        })
        workflow = await _create(client, definition)
        for _ in range(2):
            await client.post(f"/api/v1/workflows/{workflow['id']}/executions", json={"payload": {"id": "sub-7"}})

        resp = await client.get("/api/v1/sync/submissions/sub-7")
        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 2
        assert [r["status"] for r in body["records"]] == ["success", "skipped"]
        assert body["records"][0]["external_id"] == "zap-1"

        stats = (await client.get("/api/v1/sync/stats", params={"integration_id": "zapier"})).json()
        assert stats["total"] == 2
        assert stats["success"] == 1
        assert stats["skipped"] == 1
        assert stats["success_rate"] == 50.0


@pytest.mark.integration
class TestActionTypeRoutes:

    async def test_list(self, client):
        resp = await client.get("/api/v1/action-types")
        assert resp.status_code == 200
        body = resp.json()
        assert body["count"] == 8
        assert "send_email" in {a["action_id"] for a in body["action_types"]}

    async def test_detail(self, client):
        resp = await client.get("/api/v1/action-types/hubspot_contact")
        assert resp.status_code == 200
        assert resp.json()["integration_id"] == "hubspot"

    async def test_unknown(self, client):
        resp = await client.get("/api/v1/action-types/fax")
        assert resp.status_code == 404
