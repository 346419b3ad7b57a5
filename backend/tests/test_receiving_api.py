"""Receiving endpoint tests."""

from decimal import Decimal

import pytest
from httpx import AsyncClient

BASE = "/api/receiving"

INTAKE = {
    "client_id": "C1",
    "order_date": "2026-10-01",
    "items": [{"produce_id": "p-tomato", "ordered_quantity": "100"}],
}


async def _start(client: AsyncClient) -> str:
    resp = await client.post(f"{BASE}/drafts", json=INTAKE)
    assert resp.status_code == 201, resp.text
    return resp.json()["draft_id"]


async def _walk_to_review(client: AsyncClient, returns: dict, drop: dict | None = None) -> str:
    draft_id = await _start(client)
    steps = [
        (2, drop or {"is_dropped": False}),
        (3, {"items": [{"item_id": 1, "received_quantity": "95"}]}),
        (4, {"items": [{"item_id": 1, "grade_a": "60", "grade_b": "30", "grade_c": "5"}]}),
        (5, returns),
    ]
    for step, body in steps:
        resp = await client.patch(f"{BASE}/drafts/{draft_id}/step/{step}", json=body)
        assert resp.status_code == 200, resp.text
    return draft_id


@pytest.mark.api
@pytest.mark.asyncio
class TestReferenceLists:

    async def test_lists_active_clients_and_catalog(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/reference")
        assert resp.status_code == 200
        data = resp.json()
        assert [c["id"] for c in data["clients"]] == ["C1"]
        assert {p["name"] for p in data["produce"]} == {"Tomato", "Onion"}


@pytest.mark.api
@pytest.mark.asyncio
class TestDraftEndpoints:

    async def test_start_draft(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/drafts", json=INTAKE)
        assert resp.status_code == 201
        data = resp.json()
        assert data["state"] == "step_2"
        assert data["current_step"] == 2
        assert data["draft"]["items"][0]["stage"] == "created"
        assert Decimal(data["summary"]["total_ordered"]) == Decimal("100")

    async def test_start_with_missing_fields(self, client: AsyncClient):
        resp = await client.post(f"{BASE}/drafts", json={"client_id": "C1", "items": []})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "STEP_VALIDATION_FAILED"
        assert error["message"] == "Please fill in all required fields"
        assert set(error["details"]["fields"]) == {"order_date", "items"}

    async def test_get_draft(self, client: AsyncClient):
        draft_id = await _start(client)
        resp = await client.get(f"{BASE}/drafts/{draft_id}")
        assert resp.status_code == 200
        assert resp.json()["draft_id"] == draft_id

    async def test_unknown_draft(self, client: AsyncClient):
        resp = await client.get(f"{BASE}/drafts/nope")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "RESOURCE_NOT_FOUND"

    async def test_step_failure_details(self, client: AsyncClient):
        draft_id = await _start(client)
        await client.patch(f"{BASE}/drafts/{draft_id}/step/2", json={"is_dropped": False})

        resp = await client.patch(
            f"{BASE}/drafts/{draft_id}/step/3",
            json={"items": [{"item_id": 1, "received_quantity": ""}]},
        )

        assert resp.status_code == 422
        details = resp.json()["error"]["details"]
        assert details == {"step": 3, "item_ids": [1], "fields": ["received_quantity"]}
        assert (await client.get(f"{BASE}/drafts/{draft_id}")).json()["current_step"] == 3

    async def test_discrepancy_notice(self, client: AsyncClient):
        draft_id = await _start(client)
        await client.patch(f"{BASE}/drafts/{draft_id}/step/2", json={"is_dropped": False})
        resp = await client.patch(
            f"{BASE}/drafts/{draft_id}/step/3",
            json={"items": [{"item_id": 1, "received_quantity": "104"}]},
        )
        assert resp.json()["notices"] == [{"item_id": 1, "message": "Over-delivered by 4"}]

    async def test_out_of_order_step(self, client: AsyncClient):
        draft_id = await _start(client)
        resp = await client.patch(f"{BASE}/drafts/{draft_id}/step/4", json={"items": []})
        assert resp.status_code == 409
        assert resp.json()["error"]["details"] == {"requested_step": 4, "current_step": 2}

    async def test_malformed_body(self, client: AsyncClient):
        draft_id = await _start(client)
        resp = await client.patch(
            f"{BASE}/drafts/{draft_id}/step/2", json={"is_dropped": "sometimes"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_oversized_quantity_on_start(self, client: AsyncClient):
        body = {**INTAKE, "items": [{"produce_id": "p-tomato", "ordered_quantity": "1e30"}]}
        resp = await client.post(f"{BASE}/drafts", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_oversized_quantity_on_step(self, client: AsyncClient):
        draft_id = await _start(client)
        await client.patch(f"{BASE}/drafts/{draft_id}/step/2", json={"is_dropped": False})
        resp = await client.patch(
            f"{BASE}/drafts/{draft_id}/step/3",
            json={"items": [{"item_id": 1, "received_quantity": "1e30"}]},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert (await client.get(f"{BASE}/drafts/{draft_id}")).json()["current_step"] == 3

    async def test_utc_drop_time_is_stored_naive(self, client: AsyncClient):
        draft_id = await _start(client)
        resp = await client.patch(
            f"{BASE}/drafts/{draft_id}/step/2",
            json={"is_dropped": True, "drop_time": "2026-10-01T09:30:00.000Z"},
        )
        assert resp.status_code == 200, resp.text
        drop = resp.json()["draft"]["drop_confirmation"]
        assert drop["drop_time"] == "2026-10-01T09:30:00"

    async def test_back(self, client: AsyncClient):
        draft_id = await _start(client)
        resp = await client.post(f"{BASE}/drafts/{draft_id}/back")
        assert resp.status_code == 200
        assert resp.json()["current_step"] == 1

    async def test_form_prefill(self, client: AsyncClient):
        draft_id = await _start(client)
        resp = await client.get(f"{BASE}/drafts/{draft_id}/step/1/form")
        assert resp.status_code == 200
        form = resp.json()["form"]
        assert form["client_id"] == "C1"
        assert form["items"][0]["produce_id"] == "p-tomato"

    async def test_abandon(self, client: AsyncClient):
        draft_id = await _start(client)
        resp = await client.delete(f"{BASE}/drafts/{draft_id}")
        assert resp.status_code == 204
        assert (await client.get(f"{BASE}/drafts/{draft_id}")).status_code == 404


@pytest.mark.api
@pytest.mark.asyncio
class TestSubmit:

    async def test_submit_and_list(self, client: AsyncClient):
        draft_id = await _walk_to_review(client, {"has_returns": False})

        resp = await client.post(f"{BASE}/drafts/{draft_id}/submit")

        assert resp.status_code == 201, resp.text
        result = resp.json()
        assert result["state"] == "committed"
        assert result["item_count"] == 1
        assert result["created"] is True
        assert (await client.get(f"{BASE}/drafts/{draft_id}")).status_code == 404

        records = (await client.get(f"{BASE}/records")).json()
        assert len(records) == 1
        assert records[0]["id"] == result["receiving_id"]
        assert records[0]["client_name"] == "Green Grocer"
        item = records[0]["items"][0]
        assert Decimal(item["received_quantity"]) == Decimal("95")
        assert Decimal(item["returned_quantity"]) == Decimal("0")
        assert item["return_reason"] is None

    async def test_submit_with_clamped_return(self, client: AsyncClient):
        draft_id = await _walk_to_review(client, {
            "has_returns": True,
            "items": [{"item_id": 1, "returned_quantity": "200", "return_reason": "Damaged"}],
        })
        resp = await client.post(f"{BASE}/drafts/{draft_id}/submit")
        assert resp.status_code == 201

        records = (await client.get(f"{BASE}/records")).json()
        assert Decimal(records[0]["items"][0]["returned_quantity"]) == Decimal("95")
        assert records[0]["has_returns"] is True

    async def test_submit_before_review(self, client: AsyncClient):
        draft_id = await _start(client)
        resp = await client.post(f"{BASE}/drafts/{draft_id}/submit")
        assert resp.status_code == 409

    async def test_record_stats(self, client: AsyncClient):
        empty = (await client.get(f"{BASE}/records/stats")).json()
        assert empty == {"total": 0, "dropped": 0, "with_returns": 0}

        plain = await _walk_to_review(client, {"has_returns": False})
        dropped = await _walk_to_review(
            client,
            {"has_returns": True, "items": [{"item_id": 1, "returned_quantity": "5", "return_reason": "Damaged"}]},
            drop={"is_dropped": True, "drop_time": "2026-10-01T09:30:00Z"},
        )
        for draft_id in (plain, dropped):
            resp = await client.post(f"{BASE}/drafts/{draft_id}/submit")
            assert resp.status_code == 201, resp.text

        resp = await client.get(f"{BASE}/records/stats")
        assert resp.status_code == 200
        assert resp.json() == {"total": 2, "dropped": 1, "with_returns": 1}

        records = (await client.get(f"{BASE}/records")).json()
        drop_times = {r["drop_time"] for r in records}
        assert drop_times == {None, "2026-10-01T09:30:00"}


@pytest.mark.api
@pytest.mark.asyncio
class TestHealth:

    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
