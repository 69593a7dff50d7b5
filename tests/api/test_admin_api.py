"""API tests for the dashboard, the audit feed, privacy notices, preferences and TMF669/TMF641."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import httpx


class TestDashboard:
    async def test_customer_is_forbidden(self, client, auth_headers) -> None:
        response = await client.get("/api/v1/admin/dashboard/overview", headers=auth_headers("customer"))
        assert response.status_code == 403
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "forbidden"

    async def test_overview_counts(self, client, auth_headers) -> None:
        headers = auth_headers("customer")
        await client.post("/api/v1/consents", json={"purpose": "email"}, headers=headers)
        await client.post("/api/v1/consents", json={"purpose": "sms", "status": "denied"}, headers=headers)
        await client.post(
            "/api/v1/dsar",
            json={"requesterName": "Cora", "requesterEmail": "customer@example.com", "requestType": "access"},
            headers=headers,
        )

        data = (await client.get("/api/v1/admin/dashboard/overview", headers=auth_headers("csr"))).json()["data"]
        assert data["totalUsers"] == 4
        assert data["totalGuardians"] == 1
        assert data["consentsByStatus"]["granted"] == 1
        assert data["consentsByStatus"]["denied"] == 1
        assert data["effectiveConsents"] == 2
        assert data["complianceScore"] == 50
        assert data["dsarByStatus"]["pending"] == 1
        assert data["dsarAutomationEligible"] == 1
        assert data["dsarOverdue"] == 0
        assert data["consentUpdatesLast7Days"] == 2
        assert data["todayActions"] == 3
        assert data["riskAlerts"] == 0


class TestAuditFeed:
    async def test_staff_search_by_resource_and_action(self, client, auth_headers) -> None:
        created = (
            await client.post("/api/v1/consents", json={"purpose": "email"}, headers=auth_headers("customer"))
        ).json()["data"]
        await client.patch(
            f"/api/v1/consents/{created['id']}", json={"status": "revoked"}, headers=auth_headers("customer")
        )
        await client.post("/api/v1/consents", json={"purpose": "sms"}, headers=auth_headers("customer"))

        response = await client.get(
            "/api/v1/audit",
            params={"resourceType": "consent", "resourceId": created["id"]},
            headers=auth_headers("csr"),
        )
        assert response.status_code == 200
        entries = response.json()["data"]
        assert {e["action"] for e in entries} == {"consent.created", "consent.status_changed"}
        assert all(e["resourceId"] == created["id"] for e in entries)

        changes = await client.get(
            "/api/v1/audit", params={"action": "consent.status_changed"}, headers=auth_headers("csr")
        )
        assert [e["extra"]["to"] for e in changes.json()["data"]] == ["revoked"]

    async def test_date_range(self, client, auth_headers) -> None:
        await client.post("/api/v1/consents", json={"purpose": "email"}, headers=auth_headers("customer"))

        past = await client.get(
            "/api/v1/audit",
            params={"from": "2020-01-01T00:00:00Z", "to": "2020-02-01T00:00:00Z"},
            headers=auth_headers("csr"),
        )
        assert past.json()["data"] == []

        recent = await client.get(
            "/api/v1/audit", params={"from": "2020-01-01T00:00:00Z"}, headers=auth_headers("csr")
        )
        assert [e["action"] for e in recent.json()["data"]] == ["consent.created"]

    async def test_inverted_range_is_422(self, client, auth_headers) -> None:
        response = await client.get(
            "/api/v1/audit",
            params={"from": "2024-02-01T00:00:00Z", "to": "2024-01-01T00:00:00Z"},
            headers=auth_headers("csr"),
        )
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    async def test_customers_are_forbidden(self, client, auth_headers) -> None:
        response = await client.get("/api/v1/audit", headers=auth_headers("customer"))
        assert response.status_code == 403


class TestPrivacyNotices:
    async def test_draft_version_activate_acknowledge(self, client, auth_headers) -> None:
        admin = auth_headers("admin")
        created = await client.post(
            "/api/v1/privacy-notices",
            json={"title": "Marketing notice", "content": "We email offers.", "category": "marketing"},
            headers=admin,
        )
        assert created.status_code == 201
        v1 = created.json()["data"]
        assert v1["status"] == "draft"

        version = await client.post(
            f"/api/v1/privacy-notices/{v1['id']}/versions",
            json={"major": True, "content": "We email and text offers.", "effectiveDate": "2025-01-01T00:00:00Z"},
            headers=admin,
        )
        assert version.status_code == 201
        v2 = version.json()["data"]
        assert v2["version"] == "2.0"
        assert v2["parentId"] == v1["id"]

        await client.post(f"/api/v1/privacy-notices/{v1['id']}/activate", headers=admin)
        activated = await client.post(f"/api/v1/privacy-notices/{v2['id']}/activate", headers=admin)
        assert activated.json()["data"]["status"] == "active"

        old = (await client.get(f"/api/v1/privacy-notices/{v1['id']}", headers=admin)).json()["data"]
        assert old["status"] == "archived"

        ack = await client.post(
            f"/api/v1/privacy-notices/{v2['id']}/acknowledge", headers=auth_headers("customer")
        )
        assert ack.status_code == 200
        assert ack.json()["data"]["noticeId"] == v2["id"]

    async def test_only_admins_manage_notices(self, client, auth_headers) -> None:
        response = await client.post(
            "/api/v1/privacy-notices",
            json={"title": "Notice", "content": "Text"},
            headers=auth_headers("csr"),
        )
        assert response.status_code == 403

    async def test_customers_can_read(self, client, auth_headers) -> None:
        response = await client.get("/api/v1/privacy-notices", headers=auth_headers("customer"))
        assert response.status_code == 200
        assert response.json()["data"] == []


class TestPreferences:
    async def test_category_item_and_my_values(self, client, auth_headers) -> None:
        admin = auth_headers("admin")
        category = (
            await client.post("/api/v1/preferences/categories", json={"name": "Marketing"}, headers=admin)
        ).json()["data"]
        item = (
            await client.post(
                f"/api/v1/preferences/categories/{category['id']}/items",
                json={"key": "email_offers", "name": "Email offers", "type": "boolean", "defaultValue": True},
                headers=admin,
            )
        ).json()["data"]
        assert item["type"] == "boolean"

        customer = auth_headers("customer")
        saved = await client.put(
            "/api/v1/preferences/me", json={"preferences": {item["id"]: False}}, headers=customer
        )
        assert saved.status_code == 200
        [pref] = saved.json()["data"]
        assert pref["value"] is False
        assert pref["isDefault"] is False

        blocked = await client.delete(f"/api/v1/preferences/categories/{category['id']}", headers=admin)
        assert blocked.status_code == 409

    async def test_bad_value_is_422(self, client, auth_headers) -> None:
        admin = auth_headers("admin")
        category = (
            await client.post("/api/v1/preferences/categories", json={"name": "Marketing"}, headers=admin)
        ).json()["data"]
        item = (
            await client.post(
                f"/api/v1/preferences/categories/{category['id']}/items",
                json={"key": "email_offers", "name": "Email offers"},
                headers=admin,
            )
        ).json()["data"]
        response = await client.put(
            "/api/v1/preferences/me",
            json={"preferences": {item["id"]: "sure"}},
            headers=auth_headers("customer"),
        )
        assert response.status_code == 422

    async def test_non_uuid_key_is_422(self, client, auth_headers) -> None:
        response = await client.put(
            "/api/v1/preferences/me", json={"preferences": {"email_offers": True}}, headers=auth_headers("customer")
        )
        assert response.status_code == 422

    async def test_customers_cannot_manage_categories(self, client, auth_headers) -> None:
        response = await client.post(
            "/api/v1/preferences/categories", json={"name": "Mine"}, headers=auth_headers("customer")
        )
        assert response.status_code == 403


class TestTmf669Hub:
    async def test_register_publish_unregister(self, client, auth_headers) -> None:
        admin = auth_headers("admin")
        response = await client.post(
            "/api/tmf669/hub",
            json={"callback": "https://listener.test/events", "query": "eventType=PrivacyConsentCreatedEvent"},
            headers=admin,
        )
        assert response.status_code == 201
        hub = response.json()
        assert hub["callback"] == "https://listener.test/events"
        assert hub["query"] == "PrivacyConsentCreatedEvent"

        listener = MagicMock()
        listener.post = AsyncMock(return_value=httpx.Response(204))
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=listener)
        factory.return_value.__aexit__ = AsyncMock(return_value=False)
        with patch("consenthub.services.webhook.httpx.AsyncClient", factory):
            created = await client.post(
                "/api/v1/consents", json={"purpose": "email"}, headers=auth_headers("customer")
            )
        assert created.status_code == 201
        listener.post.assert_awaited_once()
        assert listener.post.await_args.kwargs["headers"]["X-Event-Type"] == "PrivacyConsentCreatedEvent"

        deleted = await client.delete(f"/api/tmf669/hub/{hub['id']}", headers=admin)
        assert deleted.status_code == 204
        assert (await client.delete(f"/api/tmf669/hub/{hub['id']}", headers=admin)).status_code == 404

    async def test_subscriber_outage_does_not_fail_the_request(self, client, auth_headers) -> None:
        await client.post("/api/tmf669/hub", json={"callback": "https://down.test/events"}, headers=auth_headers("admin"))

        listener = MagicMock()
        listener.post = AsyncMock(side_effect=httpx.ConnectError("refused"))
        factory = MagicMock()
        factory.return_value.__aenter__ = AsyncMock(return_value=listener)
        factory.return_value.__aexit__ = AsyncMock(return_value=False)
        with patch("consenthub.services.webhook.httpx.AsyncClient", factory):
            created = await client.post(
                "/api/v1/consents", json={"purpose": "email"}, headers=auth_headers("customer")
            )
        assert created.status_code == 201

    async def test_only_admins_register(self, client, auth_headers) -> None:
        response = await client.post(
            "/api/tmf669/hub", json={"callback": "https://listener.test/events"}, headers=auth_headers("csr")
        )
        assert response.status_code == 403


class TestTmf641Party:
    async def test_party_resource(self, client, auth_headers, users) -> None:
        customer = users["customer"]
        response = await client.get(f"/api/tmf641/party/{customer.id}", headers=auth_headers("csr"))
        assert response.status_code == 200
        party = response.json()
        assert party["@type"] == "Individual"
        assert party["name"] == "Cora Customer"
        assert {"name": "mobile", "value": "+15550100"} in party["characteristic"]
        assert party["contactMedium"][0]["characteristic"]["emailAddress"] == customer.email

    async def test_unknown_party_is_404_envelope(self, client, auth_headers) -> None:
        for party_id in (str(uuid.uuid4()), "not-a-uuid"):
            response = await client.get(f"/api/tmf641/party/{party_id}", headers=auth_headers("csr"))
            assert response.status_code == 404
            assert response.json() == {"success": False, "error": "not_found", "message": "Party not found"}
