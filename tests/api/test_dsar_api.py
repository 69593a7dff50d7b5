"""API tests for the DSAR endpoints.

Coverage:
  - Envelope shape and authentication failures
  - Customer self-service submission and subject scoping
  - CSR status transitions, notes and the work queue
  - Automated processing through the worker pool (202 then completed)
  - Admin purge
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import httpx

from consenthub.infra.background_worker import BackgroundWorkerPool


async def _submit(client: httpx.AsyncClient, headers: dict, **overrides) -> dict:
    body = {
        "requesterName": "Cora Customer",
        "requesterEmail": "customer@example.com",
        "requestType": "export",
        "subject": "Please send me my data",
    }
    body.update(overrides)
    response = await client.post("/api/v1/dsar", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["data"]


class TestAuthentication:
    async def test_missing_token_is_401_envelope(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/dsar")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "auth_failure",
            "message": "Missing or invalid Authorization header",
        }

    async def test_garbage_token_is_401(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/api/v1/dsar", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["success"] is False

    async def test_request_id_header_is_echoed(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/health/live", headers={"X-Request-ID": "req_abc123"})
        assert response.status_code == 200
        assert response.headers["x-request-id"] == "req_abc123"


class TestCustomerSubmission:
    async def test_customer_submits_for_themselves(self, client, auth_headers, users) -> None:
        data = await _submit(client, auth_headers("customer"), source="phone")

        assert data["status"] == "pending"
        assert data["requestType"] == "data_access"
        assert data["requesterId"] == str(users["customer"].id)
        assert data["source"] == "web_form"
        assert data["riskLevel"] == "low"
        assert data["automationEligible"] is True
        assert data["daysRemaining"] == 30

    async def test_success_envelope(self, client, auth_headers) -> None:
        response = await client.post(
            "/api/v1/dsar",
            json={"requesterName": "Cora", "requesterEmail": "customer@example.com", "requestType": "access"},
            headers=auth_headers("customer"),
        )
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "DSAR request submitted"
        assert set(body) == {"success", "data", "message"}

    async def test_customer_cannot_submit_for_another_email(self, client, auth_headers) -> None:
        response = await client.post(
            "/api/v1/dsar",
            json={"requesterName": "Eve", "requesterEmail": "eve@example.com", "requestType": "access"},
            headers=auth_headers("customer"),
        )
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    async def test_invalid_email_is_422(self, client, auth_headers) -> None:
        response = await client.post(
            "/api/v1/dsar",
            json={"requesterName": "Cora", "requesterEmail": "nope", "requestType": "access"},
            headers=auth_headers("csr"),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    async def test_unknown_request_type_is_422(self, client, auth_headers) -> None:
        response = await client.post(
            "/api/v1/dsar",
            json={"requesterName": "Cora", "requesterEmail": "customer@example.com", "requestType": "teleport"},
            headers=auth_headers("customer"),
        )
        assert response.status_code == 422

    async def test_customers_only_see_their_own_requests(self, client, auth_headers) -> None:
        mine = await _submit(client, auth_headers("customer"))
        other = await _submit(
            client,
            auth_headers("csr"),
            requesterEmail="guardian@example.com",
            requesterName="Gil Guardian",
        )

        listed = (await client.get("/api/v1/dsar", headers=auth_headers("customer"))).json()["data"]
        assert [r["id"] for r in listed] == [mine["id"]]

        response = await client.get(f"/api/v1/dsar/{other['id']}", headers=auth_headers("customer"))
        assert response.status_code == 404

        response = await client.get(f"/api/v1/dsar/{mine['requestId']}", headers=auth_headers("customer"))
        assert response.status_code == 200
        assert response.json()["data"]["id"] == mine["id"]


class TestCsrWorkflow:
    async def test_status_transitions(self, client, auth_headers) -> None:
        created = await _submit(client, auth_headers("customer"), requestType="delete")
        url = f"/api/v1/dsar/{created['id']}/status"

        response = await client.patch(url, json={"status": "in_progress"}, headers=auth_headers("csr"))
        assert response.status_code == 200
        assert response.json()["data"]["processingStartedAt"] is not None

        response = await client.patch(
            url,
            json={"status": "rejected", "reason": "Identity could not be verified"},
            headers=auth_headers("csr"),
        )
        data = response.json()["data"]
        assert data["status"] == "rejected"
        assert data["failureReason"] == "Identity could not be verified"

        response = await client.patch(url, json={"status": "completed"}, headers=auth_headers("csr"))
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    async def test_stale_version_is_409(self, client, auth_headers) -> None:
        created = await _submit(client, auth_headers("customer"))
        url = f"/api/v1/dsar/{created['id']}/status"
        await client.patch(url, json={"status": "in_progress"}, headers=auth_headers("csr"))

        response = await client.patch(
            url,
            json={"status": "completed", "expectedVersion": created["version"]},
            headers=auth_headers("csr"),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "concurrent_modification"

    async def test_customer_cannot_change_status(self, client, auth_headers) -> None:
        created = await _submit(client, auth_headers("customer"))
        response = await client.patch(
            f"/api/v1/dsar/{created['id']}/status",
            json={"status": "in_progress"},
            headers=auth_headers("customer"),
        )
        assert response.status_code == 403

    async def test_notes(self, client, auth_headers) -> None:
        created = await _submit(client, auth_headers("customer"))
        response = await client.post(
            f"/api/v1/dsar/{created['id']}/notes",
            json={"note": "Verified identity by phone"},
            headers=auth_headers("csr"),
        )
        notes = response.json()["data"]["processingNotes"]
        assert notes[0]["note"] == "Verified identity by phone"
        assert notes[0]["author"] == "csr@example.com"

    async def test_work_queue_filters_by_email(self, client, auth_headers) -> None:
        await _submit(client, auth_headers("customer"))
        await _submit(client, auth_headers("csr"), requesterEmail="other@example.com", requesterName="Oz")

        response = await client.get(
            "/api/dsar-requests", params={"email": "other@example.com"}, headers=auth_headers("csr")
        )
        queue = response.json()["data"]
        assert [r["requesterEmail"] for r in queue] == ["other@example.com"]
        assert queue[0]["recommendation"]["action"] == "auto_process"

    async def test_work_queue_is_staff_only(self, client, auth_headers) -> None:
        response = await client.get("/api/dsar-requests", headers=auth_headers("customer"))
        assert response.status_code == 403

    async def test_work_queue_is_paged(self, client, auth_headers) -> None:
        for i in range(3):
            await _submit(client, auth_headers("csr"), requesterEmail=f"page{i}@example.com")

        first = await client.get("/api/dsar-requests", params={"limit": 2}, headers=auth_headers("csr"))
        rest = await client.get(
            "/api/dsar-requests", params={"limit": 2, "offset": 2}, headers=auth_headers("csr")
        )
        emails = [r["requesterEmail"] for r in first.json()["data"] + rest.json()["data"]]
        assert len(first.json()["data"]) == 2
        assert sorted(emails) == ["page0@example.com", "page1@example.com", "page2@example.com"]

    async def test_page_size_is_bounded(self, client, auth_headers) -> None:
        response = await client.get("/api/dsar-requests", params={"limit": 501}, headers=auth_headers("csr"))
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestAutoProcess:
    async def test_accepted_then_completed(
        self, client, auth_headers, worker_pool: BackgroundWorkerPool
    ) -> None:
        created = await _submit(client, auth_headers("customer"))

        response = await client.post(
            f"/api/v1/dsar/{created['id']}/auto-process", headers=auth_headers("csr")
        )
        assert response.status_code == 202
        data = response.json()["data"]
        assert data["taskId"]
        assert data["request"]["status"] == "in_progress"

        await worker_pool.join()

        final = (await client.get(f"/api/v1/dsar/{created['id']}", headers=auth_headers("csr"))).json()["data"]
        assert final["status"] == "completed"
        assert final["processingResult"]["dataExported"] is True
        assert final["processingDays"] == 1

    async def test_only_pending_requests(self, client, auth_headers, worker_pool) -> None:
        created = await _submit(client, auth_headers("customer"))
        url = f"/api/v1/dsar/{created['id']}/auto-process"
        await client.post(url, headers=auth_headers("csr"))
        await worker_pool.join()

        response = await client.post(url, headers=auth_headers("csr"))
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state"

    async def test_unavailable_pool_is_502(self, client, auth_headers, app) -> None:
        created = await _submit(client, auth_headers("customer"))
        app.state.worker_pool = None

        response = await client.post(
            f"/api/v1/dsar/{created['id']}/auto-process", headers=auth_headers("csr")
        )
        assert response.status_code == 502
        assert response.json()["error"] == "upstream_failure"

        still = (await client.get(f"/api/v1/dsar/{created['id']}", headers=auth_headers("csr"))).json()["data"]
        assert still["status"] == "pending"

    async def test_stopped_pool_is_502(self, client, auth_headers, worker_pool) -> None:
        created = await _submit(client, auth_headers("customer"))
        await worker_pool.shutdown(drain=True)

        response = await client.post(
            f"/api/v1/dsar/{created['id']}/auto-process", headers=auth_headers("csr")
        )
        assert response.status_code == 502

        still = (await client.get(f"/api/v1/dsar/{created['id']}", headers=auth_headers("csr"))).json()["data"]
        assert still["status"] == "pending"

    async def test_queue_failure_rejects_the_claimed_request(
        self, client, auth_headers, worker_pool: BackgroundWorkerPool
    ) -> None:
        created = await _submit(client, auth_headers("customer"))

        with patch.object(worker_pool, "submit_task", AsyncMock(side_effect=RuntimeError("queue closed"))):
            response = await client.post(
                f"/api/v1/dsar/{created['id']}/auto-process", headers=auth_headers("csr")
            )
        assert response.status_code == 502
        assert response.json()["error"] == "upstream_failure"

        final = (await client.get(f"/api/v1/dsar/{created['id']}", headers=auth_headers("csr"))).json()["data"]
        assert final["status"] == "rejected"
        assert "could not be queued" in final["failureReason"]
        assert "queue closed" in final["failureReason"]


class TestPurge:
    async def test_admin_only(self, client, auth_headers) -> None:
        created = await _submit(client, auth_headers("customer"))
        url = f"/api/v1/dsar/{created['id']}"

        assert (await client.delete(url, headers=auth_headers("csr"))).status_code == 403

        response = await client.delete(url, headers=auth_headers("admin"))
        assert response.status_code == 200
        assert response.json() == {"success": True, "data": None, "message": "DSAR request deleted"}
        assert (await client.get(url, headers=auth_headers("admin"))).status_code == 404
