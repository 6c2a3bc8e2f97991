"""
Integration tests for the store connection and sync job endpoints.
"""
import pytest
import pytest_asyncio

from core.models import SyncJobStatus, SyncStats

CONNECT_FAILED = "Failed to connect to Shopify store. Please check your domain and access token."


def bearer(body: dict) -> dict:
    return {"Authorization": f"Bearer {body['token']}"}


async def connect(client, headers, domain="acme.myshopify.com", token="shpat_live", **extra):
    return await client.post("/api/stores", headers=headers, json={"domain": domain, "accessToken": token, **extra})


@pytest_asyncio.fixture
async def connected(client, auth_headers):
    """(headers, store) for a user with one connected store."""
    response = await connect(client, auth_headers)
    assert response.status_code == 201, response.text
    return auth_headers, response.json()["data"]["store"]


class TestConnect:
    """POST /api/stores"""

    @pytest.mark.asyncio
    async def test_verifies_and_fills_shop_details(self, client, auth_headers, client_factory):
        response = await connect(client, auth_headers, domain="https://Acme.myshopify.com/admin")

        assert response.status_code == 201
        store = response.json()["data"]["store"]
        assert store["domain"] == "acme.myshopify.com"
        assert store["name"] == "Acme Apparel"
        assert store["shopifyId"] == "777"
        assert store["isConnected"] is True
        assert store["isActive"] is True
        assert store["lastSyncedAt"] is None
        assert "accessToken" not in store
        assert "access_token" not in store

    @pytest.mark.asyncio
    async def test_explicit_name_kept(self, client, auth_headers):
        response = await connect(client, auth_headers, name="Flagship")
        assert response.json()["data"]["store"]["name"] == "Flagship"

    @pytest.mark.asyncio
    async def test_rejected_token_leaves_store_disconnected(self, client, auth_headers, client_factory, store, bus):
        client_factory.bad_tokens.add("shpat_bad")
        response = await connect(client, auth_headers, token="shpat_bad")

        assert response.status_code == 400
        assert response.json() == {"status": "fail", "message": CONNECT_FAILED}

        row = await store.get_store_by_domain("acme.myshopify.com")
        assert row["access_token"] is None
        assert row["is_active"] is False
        assert bus.get_history()[-1]["data"]["reason"] == "verification_failed"

    @pytest.mark.asyncio
    async def test_reconnect_same_tenant(self, client, auth_headers, client_factory, store):
        client_factory.bad_tokens.add("shpat_bad")
        await connect(client, auth_headers, token="shpat_bad")

        response = await connect(client, auth_headers, token="shpat_good")
        assert response.status_code == 201
        row = await store.get_store_by_domain("acme.myshopify.com")
        assert row["access_token"] == "shpat_good"
        assert row["is_active"] is True

    @pytest.mark.asyncio
    async def test_domain_owned_by_other_tenant(self, client, signup_user):
        owner = await signup_user()
        other = await signup_user(email="other@example.com", username="other")
        await connect(client, bearer(owner))

        response = await connect(client, bearer(other))
        assert response.status_code == 409
        assert response.json()["message"] == "This store is already connected to another account"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload,field", [
        ({"accessToken": "shpat"}, "domain"),
        ({"domain": "not a domain", "accessToken": "shpat"}, "domain"),
        ({"domain": "acme.myshopify.com"}, "accessToken"),
    ])
    async def test_invalid_input(self, client, auth_headers, payload, field):
        response = await client.post("/api/stores", headers=auth_headers, json=payload)
        assert response.status_code == 400
        assert response.json()["field"] == field

    @pytest.mark.asyncio
    async def test_requires_tenant(self, client, signup_user, store):
        body = await signup_user()
        await store.set_user_tenant(body["data"]["user"]["id"], None)

        response = await connect(client, bearer(body))
        assert response.status_code == 403
        assert response.json()["message"] == "You must belong to a tenant to access this resource"

    @pytest.mark.asyncio
    async def test_requires_login(self, client):
        response = await connect(client, {})
        assert response.status_code == 401


class TestReadStores:
    """Listing, detail and stats."""

    @pytest.mark.asyncio
    async def test_list_paginated(self, client, auth_headers):
        for i in range(3):
            await connect(client, auth_headers, domain=f"shop{i}.myshopify.com")

        response = await client.get("/api/stores?page=2&limit=2", headers=auth_headers)
        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["stores"]) == 1
        assert data["pagination"] == {"total": 3, "page": 2, "limit": 2, "pages": 2}

    @pytest.mark.asyncio
    async def test_list_search(self, client, auth_headers):
        await connect(client, auth_headers, domain="alpha.myshopify.com", name="Alpha")
        await connect(client, auth_headers, domain="beta.myshopify.com", name="Beta")

        response = await client.get("/api/stores?search=bet", headers=auth_headers)
        assert [s["name"] for s in response.json()["data"]["stores"]] == ["Beta"]

    @pytest.mark.asyncio
    async def test_list_only_own_tenant(self, client, signup_user):
        owner = await signup_user()
        other = await signup_user(email="other@example.com", username="other")
        await connect(client, bearer(owner))

        response = await client.get("/api/stores", headers=bearer(other))
        assert response.json()["data"]["pagination"]["total"] == 0

    @pytest.mark.asyncio
    async def test_bad_pagination(self, client, auth_headers):
        response = await client.get("/api/stores?page=zero", headers=auth_headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_detail(self, client, connected, store, payloads):
        from core.models import Order

        headers, shop = connected
        await store.upsert_order(shop["id"], shop["tenantId"], Order.from_api(payloads.order(1)))

        response = await client.get(f"/api/stores/{shop['id']}", headers=headers)
        assert response.status_code == 200
        detail = response.json()["data"]["store"]
        assert detail["stats"]["ordersCount"] == 1
        assert detail["stats"]["totalPrice"] == 50.0
        assert detail["recentOrders"][0]["totalPrice"] == "50.00"
        assert "customer" not in detail["recentOrders"][0]

    @pytest.mark.asyncio
    async def test_stats(self, client, connected, store, payloads):
        from core.models import Customer

        headers, shop = connected
        await store.upsert_customer(shop["id"], shop["tenantId"], Customer.from_api(payloads.customer(5)))

        response = await client.get(f"/api/stores/{shop['id']}/stats", headers=headers)
        data = response.json()["data"]
        assert data["stats"] == {"productsCount": 0, "customersCount": 1, "ordersCount": 0, "totalAmount": 0.0}
        assert data["topCustomers"][0]["email"] == "customer5@example.com"

    @pytest.mark.asyncio
    async def test_not_found(self, client, auth_headers):
        response = await client.get("/api/stores/missing", headers=auth_headers)
        assert response.status_code == 404
        assert response.json()["message"] == "Store not found"

    @pytest.mark.asyncio
    async def test_other_tenant_forbidden(self, client, connected, signup_user):
        _, shop = connected
        other = await signup_user(email="other@example.com", username="other")
        response = await client.get(f"/api/stores/{shop['id']}", headers=bearer(other))
        assert response.status_code == 403


class TestUpdateDelete:

    @pytest.mark.asyncio
    async def test_rename_and_deactivate(self, client, connected):
        headers, shop = connected
        response = await client.patch(
            f"/api/stores/{shop['id']}", headers=headers, json={"name": "Outlet", "isActive": False}
        )
        assert response.status_code == 200
        updated = response.json()["data"]["store"]
        assert updated["name"] == "Outlet"
        assert updated["isActive"] is False

    @pytest.mark.asyncio
    async def test_nothing_to_update(self, client, connected):
        headers, shop = connected
        response = await client.patch(f"/api/stores/{shop['id']}", headers=headers, json={})
        assert response.status_code == 400
        assert response.json()["message"] == "No valid fields to update"

    @pytest.mark.asyncio
    async def test_new_token_verified(self, client, connected, client_factory, store):
        headers, shop = connected
        client_factory.bad_tokens.add("shpat_revoked")

        response = await client.patch(f"/api/stores/{shop['id']}", headers=headers, json={"accessToken": "shpat_revoked"})
        assert response.status_code == 400
        assert (await store.get_store(shop["id"]))["access_token"] == "shpat_live"

    @pytest.mark.asyncio
    async def test_delete(self, client, connected, store):
        headers, shop = connected
        response = await client.delete(f"/api/stores/{shop['id']}", headers=headers)
        assert response.status_code == 204
        assert await store.get_store(shop["id"]) is None
        assert (await client.get(f"/api/stores/{shop['id']}", headers=headers)).status_code == 404

    @pytest.mark.asyncio
    async def test_delete_blocked_while_syncing(self, client, connected, store):
        headers, shop = connected
        job = await store.create_sync_job(shop["id"], shop["tenantId"], "all")
        await store.mark_sync_job_running(job["id"])

        response = await client.delete(f"/api/stores/{shop['id']}", headers=headers)
        assert response.status_code == 409
        assert response.json()["message"] == "Cannot delete a store while a sync is in progress"
        assert await store.get_store(shop["id"]) is not None

        await store.finish_sync_job(job["id"], SyncJobStatus.SUCCESS, SyncStats())
        response = await client.delete(f"/api/stores/{shop['id']}", headers=headers)
        assert response.status_code == 204


class TestSyncEndpoints:
    """Queueing and inspecting sync jobs."""

    @pytest.mark.asyncio
    async def test_trigger_queues_job(self, client, connected):
        headers, shop = connected
        response = await client.post(f"/api/sync/store/{shop['id']}", headers=headers)

        assert response.status_code == 202
        body = response.json()
        assert body["message"] == "Sync job queued"
        assert body["data"]["job"]["status"] == "pending"
        assert body["data"]["job"]["dataType"] == "all"

    @pytest.mark.asyncio
    async def test_second_trigger_returns_active_job(self, client, connected):
        headers, shop = connected
        first = await client.post(f"/api/sync/store/{shop['id']}", headers=headers)
        second = await client.post(f"/api/sync/store/{shop['id']}/orders", headers=headers)

        assert second.status_code == 202
        assert second.json()["message"] == "A sync is already in progress for this store"
        assert second.json()["data"]["job"]["id"] == first.json()["data"]["job"]["id"]

    @pytest.mark.asyncio
    async def test_invalid_data_type(self, client, connected):
        headers, shop = connected
        response = await client.post(f"/api/sync/store/{shop['id']}/widgets", headers=headers)
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid data type. Must be one of: products, customers, orders"

    @pytest.mark.asyncio
    async def test_disconnected_store_rejected(self, client, connected, store):
        headers, shop = connected
        await store.disconnect_store(shop["id"])
        response = await client.post(f"/api/sync/store/{shop['id']}", headers=headers)
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_job_runs_to_completion(self, app, client, connected, client_factory, payloads):
        headers, shop = connected
        client_factory.collections["products"] = [payloads.product(1), payloads.product(2)]

        queued = await client.post(f"/api/sync/store/{shop['id']}/products", headers=headers)
        job_id = queued.json()["data"]["job"]["id"]
        await app.state.runner.run_job(job_id)

        job = (await client.get(f"/api/sync/jobs/{job_id}", headers=headers)).json()["data"]["job"]
        assert job["status"] == "success"
        assert job["stats"] == {"total": 2, "created": 2, "updated": 0, "errors": 0}

        status = (await client.get(f"/api/sync/store/{shop['id']}/status", headers=headers)).json()["data"]
        assert status["stats"]["products"] == 2
        assert status["lastSyncedAt"] is not None
        assert status["job"]["id"] == job_id

        history = (await client.get(f"/api/sync/store/{shop['id']}/jobs", headers=headers)).json()
        assert history["results"] == 1

        events = (await client.get(
            f"/api/sync/store/{shop['id']}/events?type=sync.completed", headers=headers
        )).json()
        assert events["results"] == 1
        assert events["data"]["events"][0]["payload"]["job_id"] == job_id

    @pytest.mark.asyncio
    async def test_job_of_other_tenant(self, client, connected, signup_user):
        headers, shop = connected
        queued = await client.post(f"/api/sync/store/{shop['id']}", headers=headers)
        other = await signup_user(email="other@example.com", username="other")

        response = await client.get(f"/api/sync/jobs/{queued.json()['data']['job']['id']}", headers=bearer(other))
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_job(self, client, auth_headers):
        response = await client.get("/api/sync/jobs/missing", headers=auth_headers)
        assert response.status_code == 404
