"""
Integration tests for the production batch API endpoints.
"""

import json
import uuid

import pytest
from fastapi import status

from orderdesk.core.security import ActorRole
from orderdesk.main import app
from orderdesk.services.notifications.client import get_notification_client


@pytest.fixture
async def planned_order(factory):
    """Committed order with a single 100-bottle GTB line."""
    sku = await factory.sku(code="GTB10", batch_prefix="GTB")
    order = await factory.order(lines=[(sku, 10)])
    await factory.commit()
    return order, order.lines[0]


def plans_body(*plans: tuple) -> dict:
    return {"plans": [{"line_id": str(line_id), "quantity": qty} for line_id, qty in plans]}


@pytest.fixture
def app_notifier(api_client, notifier):
    """Route the application's notifications to the recording webhook."""
    app.dependency_overrides[get_notification_client] = lambda: notifier
    return notifier


class TestAllocationEndpoints:
    @pytest.mark.asyncio
    async def test_report_before_planning(self, api_client, planned_order, auth_headers):
        order, line = planned_order

        response = await api_client.get(
            f"/api/v1/orders/{order.id}/allocations",
            headers=auth_headers(ActorRole.OPERATOR),
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total_bottles"] == 100
        assert data["lines"][0]["remaining"] == 100
        assert data["lines"][0]["batch_key"] == "GTB"

    @pytest.mark.asyncio
    async def test_customers_cannot_see_allocations(self, api_client, planned_order, auth_headers):
        order, _ = planned_order

        response = await api_client.get(
            f"/api/v1/orders/{order.id}/allocations",
            headers=auth_headers(ActorRole.CUSTOMER),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    @pytest.mark.asyncio
    async def test_validate_reports_issues(self, api_client, planned_order, auth_headers):
        order, line = planned_order

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/batches/validate",
            json=plans_body((line.id, 150)),
            headers=auth_headers(),
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["valid"] is False
        assert data["issues"] == [
            {"line_id": str(line.id), "message": "Planned 150 bottles but only 100 remain unallocated"}
        ]

    @pytest.mark.asyncio
    async def test_quick_plan(self, api_client, planned_order, auth_headers):
        order, line = planned_order

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/batches/quick-plan",
            headers=auth_headers(),
        )

        assert response.status_code == status.HTTP_200_OK
        [plan] = response.json()["plans"]
        assert plan["line_id"] == str(line.id)
        assert plan["quantity"] == 100


class TestCreateBatchesEndpoint:
    @pytest.mark.asyncio
    async def test_create_then_reject_over_allocation(self, api_client, planned_order, auth_headers):
        order, line = planned_order
        headers = auth_headers()

        created = await api_client.post(
            f"/api/v1/orders/{order.id}/batches",
            json=plans_body((line.id, 60), (line.id, 40)),
            headers=headers,
        )
        assert created.status_code == status.HTTP_201_CREATED
        assert [b["qty_bottle_planned"] for b in created.json()] == [60, 40]

        rejected = await api_client.post(
            f"/api/v1/orders/{order.id}/batches",
            json=plans_body((line.id, 1)),
            headers=headers,
        )
        assert rejected.status_code == status.HTTP_400_BAD_REQUEST
        detail = rejected.json()["detail"]
        assert detail["message"] == "Batch plans are invalid"
        assert detail["issues"][0]["line_id"] == str(line.id)

        report = await api_client.get(f"/api/v1/orders/{order.id}/allocations", headers=headers)
        assert report.json()["total_allocated"] == 100

    @pytest.mark.asyncio
    async def test_notification_follows_commit(
        self, api_client, planned_order, auth_headers, app_notifier, notification_log
    ):
        order, line = planned_order
        headers = auth_headers()

        rejected = await api_client.post(
            f"/api/v1/orders/{order.id}/batches",
            json=plans_body((line.id, 500)),
            headers=headers,
        )
        await app_notifier.drain()
        assert rejected.status_code == status.HTTP_400_BAD_REQUEST
        assert notification_log == []

        created = await api_client.post(
            f"/api/v1/orders/{order.id}/batches",
            json=plans_body((line.id, 100)),
            headers=headers,
        )
        await app_notifier.drain()

        assert created.status_code == status.HTTP_201_CREATED
        [request] = notification_log
        body = json.loads(request.content)
        assert body["event"] == "batches_created"
        assert body["order_id"] == str(order.id)

    @pytest.mark.asyncio
    async def test_created_batches_are_listed(self, api_client, planned_order, auth_headers):
        order, line = planned_order
        headers = auth_headers()
        created = (
            await api_client.post(
                f"/api/v1/orders/{order.id}/batches",
                json=plans_body((line.id, 60), (line.id, 40)),
                headers=headers,
            )
        ).json()

        response = await api_client.get(f"/api/v1/orders/{order.id}/batches", headers=headers)

        assert response.status_code == status.HTTP_200_OK
        assert [b["id"] for b in response.json()] == [b["id"] for b in created]

    @pytest.mark.asyncio
    async def test_list_unknown_order(self, api_client, auth_headers):
        response = await api_client.get(
            f"/api/v1/orders/{uuid.uuid4()}/batches",
            headers=auth_headers(),
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_failed_request_writes_nothing(self, api_client, planned_order, auth_headers):
        order, line = planned_order
        headers = auth_headers()

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/batches",
            json=plans_body((line.id, 50), (uuid.uuid4(), 10)),
            headers=headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        report = await api_client.get(f"/api/v1/orders/{order.id}/allocations", headers=headers)
        assert report.json()["total_allocated"] == 0

    @pytest.mark.asyncio
    async def test_unknown_order(self, api_client, auth_headers):
        response = await api_client.post(
            f"/api/v1/orders/{uuid.uuid4()}/batches",
            json={"plans": []},
            headers=auth_headers(),
        )

        assert response.status_code == status.HTTP_404_NOT_FOUND


class TestBatchMaintenanceEndpoints:
    @pytest.mark.asyncio
    async def test_split_requires_admin(self, api_client, planned_order, auth_headers):
        order, line = planned_order
        [batch] = (
            await api_client.post(
                f"/api/v1/orders/{order.id}/batches",
                json=plans_body((line.id, 100)),
                headers=auth_headers(),
            )
        ).json()

        response = await api_client.post(
            f"/api/v1/batches/{batch['id']}/split",
            json={"quantities": [40, 60]},
            headers=auth_headers(ActorRole.OPERATOR),
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN

    @pytest.mark.asyncio
    async def test_split_and_merge(self, api_client, planned_order, auth_headers):
        order, line = planned_order
        admin_headers = auth_headers(ActorRole.ADMIN)
        [batch] = (
            await api_client.post(
                f"/api/v1/orders/{order.id}/batches",
                json=plans_body((line.id, 100)),
                headers=admin_headers,
            )
        ).json()

        split = await api_client.post(
            f"/api/v1/batches/{batch['id']}/split",
            json={"quantities": [40, 60]},
            headers=admin_headers,
        )
        assert split.status_code == status.HTTP_200_OK
        first, second = split.json()
        assert (first["qty_bottle_planned"], second["qty_bottle_planned"]) == (40, 60)

        merged = await api_client.post(
            f"/api/v1/batches/{first['id']}/merge",
            json={"batch_ids": [second["id"]]},
            headers=admin_headers,
        )
        assert merged.status_code == status.HTTP_200_OK
        assert merged.json()["qty_bottle_planned"] == 100

        report = await api_client.get(
            f"/api/v1/orders/{order.id}/allocations", headers=admin_headers
        )
        assert report.json()["total_allocated"] == 100

    @pytest.mark.asyncio
    async def test_bad_split_is_bad_request(self, api_client, planned_order, auth_headers):
        order, line = planned_order
        admin_headers = auth_headers(ActorRole.ADMIN)
        [batch] = (
            await api_client.post(
                f"/api/v1/orders/{order.id}/batches",
                json=plans_body((line.id, 100)),
                headers=admin_headers,
            )
        ).json()

        response = await api_client.post(
            f"/api/v1/batches/{batch['id']}/split",
            json={"quantities": [30, 30]},
            headers=admin_headers,
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert "add up to 100" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_schedule_and_delete(self, api_client, planned_order, auth_headers):
        order, line = planned_order
        [batch] = (
            await api_client.post(
                f"/api/v1/orders/{order.id}/batches",
                json=plans_body((line.id, 30)),
                headers=auth_headers(),
            )
        ).json()

        scheduled = await api_client.patch(
            f"/api/v1/batches/{batch['id']}/schedule",
            json={"planned_start": "2025-11-03T08:00:00Z", "priority_index": 2},
            headers=auth_headers(),
        )
        assert scheduled.status_code == status.HTTP_200_OK
        assert scheduled.json()["priority_index"] == 2
        assert scheduled.json()["planned_start"].startswith("2025-11-03T08:00:00")

        deleted = await api_client.delete(
            f"/api/v1/batches/{batch['id']}",
            headers=auth_headers(ActorRole.ADMIN),
        )
        assert deleted.status_code == status.HTTP_204_NO_CONTENT

        missing = await api_client.delete(
            f"/api/v1/batches/{batch['id']}",
            headers=auth_headers(ActorRole.ADMIN),
        )
        assert missing.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_backfill(self, api_client, factory, planned_order, auth_headers):
        order, line = planned_order
        legacy = await factory.legacy_batch(order, "GTB-2401-001", 150)
        await factory.commit()

        response = await api_client.post(
            f"/api/v1/orders/{order.id}/batches/backfill",
            headers=auth_headers(ActorRole.ADMIN),
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["items"] == [
            {"batch_id": str(legacy.id), "line_id": str(line.id), "quantity": 100}
        ]
