"""
HTTP tests for the ledger API, run in-process against the test database.
"""

import asyncio
import json
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from database.connection import get_db
from server import app
from services.archive_feed import archive_feed


FAR_DUE = "2099-01-10"


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def headers(user_id):
    return {"X-User-Id": user_id}


class TestHealth:

    @pytest.mark.asyncio
    async def test_liveness(self, client):
        response = await client.get("/api/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"
        assert "X-Request-ID" in response.headers


class TestUserContext:

    @pytest.mark.asyncio
    async def test_missing_user_header_is_rejected(self, client):
        response = await client.get("/api/payables")

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "missing_parameter"
        assert detail["parameter"] == "X-User-Id"

    @pytest.mark.asyncio
    async def test_records_are_scoped_to_user(self, client, headers):
        created = await client.post(
            "/api/payables",
            json={"vendor_name": "Acme Supplies", "amount": "100.00"},
            headers=headers,
        )

        response = await client.get(f"/api/payables/{created.json()['id']}", headers={"X-User-Id": "someone-else"})

        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"


class TestPayablesAPI:

    @pytest.mark.asyncio
    async def test_partial_payment_flow(self, client, headers):
        card = (await client.post("/api/credit-cards", json={"credit_limit": "5000.00"}, headers=headers)).json()
        payable = (await client.post(
            "/api/payables",
            json={
                "vendor_name": "Acme Supplies",
                "description": "PO-77",
                "amount": "1000.00",
                "due_date": "2099-01-01",
                "credit_card_id": card["id"],
            },
            headers=headers,
        )).json()

        rejected = await client.post(
            f"/api/payables/{payable['id']}/partial-payment",
            json={"amount_paid": "400.00", "remaining_balance": "500.00", "new_due_date": FAR_DUE},
            headers=headers,
        )
        assert rejected.status_code == 400
        assert rejected.json()["detail"]["error"] == "validation_error"
        assert rejected.json()["detail"]["parameter"] == "remaining_balance"

        split = await client.post(
            f"/api/payables/{payable['id']}/partial-payment",
            json={"amount_paid": "400.00", "remaining_balance": "600.00", "new_due_date": FAR_DUE},
            headers=headers,
        )
        assert split.status_code == 200
        remaining_id = split.json()["remaining_portion"]["id"]
        assert split.json()["parent"]["status"] == "partially_paid"

        listed = (await client.get("/api/payables", headers=headers)).json()
        assert len(listed) == 2

        blocked = await client.delete(f"/api/payables/{remaining_id}", headers=headers)
        assert blocked.status_code == 409
        assert blocked.json()["detail"]["error"] == "choice_required"

        deleted = await client.post(f"/api/payables/{remaining_id}/delete-remaining", headers=headers)
        assert deleted.status_code == 200
        assert deleted.json()["paid_portion"]["status"] == "completed"

        card_after = (await client.get(f"/api/credit-cards/{card['id']}", headers=headers)).json()
        assert Decimal(card_after["balance"]) == Decimal("400.00")
        assert Decimal(card_after["available_credit"]) == Decimal("4600.00")

    @pytest.mark.asyncio
    async def test_unknown_payable_is_404(self, client, headers):
        response = await client.post("/api/payables/missing/pay", headers=headers)

        assert response.status_code == 404


class TestReconciliationAPI:

    @pytest.mark.asyncio
    async def test_accept_is_idempotent_per_key(self, client, headers):
        payable = (await client.post(
            "/api/payables",
            json={"vendor_name": "Acme Supplies", "amount": "250.00", "due_date": "2099-03-10"},
            headers=headers,
        )).json()
        bank = (await client.post(
            "/api/reconciliation/bank-transactions",
            json={"amount": "-250.00", "merchant_name": "ACME SUPPLIES", "date": "2099-03-12"},
            headers=headers,
        )).json()

        matches = (await client.get("/api/reconciliation/matches", headers=headers)).json()
        assert matches["total"] == 1
        assert matches["matches"][0]["matched_id"] == payable["id"]

        body = {"bank_transaction_id": bank["id"], "matched_type": "vendor", "matched_id": payable["id"]}
        first = await client.post("/api/reconciliation/accept", json=body, headers={**headers, "Idempotency-Key": "k-1"})
        assert first.status_code == 200
        assert first.json()["result"]["replayed"] is False

        retry = await client.post("/api/reconciliation/accept", json=body, headers={**headers, "Idempotency-Key": "k-1"})
        assert retry.status_code == 200
        assert retry.json()["result"]["replayed"] is True

        conflict = await client.post("/api/reconciliation/accept", json=body, headers=headers)
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["error"] == "already_reconciled"

        archive = (await client.get("/api/reconciliation/archive", headers=headers)).json()
        assert archive["total"] == 1

        settled = (await client.get(f"/api/payables/{payable['id']}", headers=headers)).json()
        assert settled["status"] == "completed"

    @pytest.mark.asyncio
    async def test_manual_delete_and_status(self, client, headers):
        bank = (await client.post(
            "/api/reconciliation/bank-transactions",
            json={"amount": "-12.00", "description": "BANK FEE", "date": "2099-03-12"},
            headers=headers,
        )).json()

        deleted = await client.delete(
            f"/api/reconciliation/bank-transactions/{bank['id']}",
            params={"reason": "fee"},
            headers=headers,
        )
        assert deleted.status_code == 200
        assert deleted.json()["archive_record"]["reason"] == "manual_delete"

        again = await client.delete(f"/api/reconciliation/bank-transactions/{bank['id']}", headers=headers)
        assert again.status_code == 409

        status = (await client.get("/api/reconciliation/status", headers=headers)).json()
        assert status["bank_transactions"] == 0

    @pytest.mark.asyncio
    async def test_score_rejects_unknown_type(self, client, headers):
        bank = (await client.post(
            "/api/reconciliation/bank-transactions",
            json={"amount": "-12.00", "date": "2099-03-12"},
            headers=headers,
        )).json()

        response = await client.post(
            "/api/reconciliation/matches/score",
            json={"bank_transaction_id": bank["id"], "matched_type": "invoice", "matched_id": "x"},
            headers=headers,
        )

        assert response.status_code == 400


class TestArchiveStream:

    @pytest.mark.asyncio
    async def test_stream_pushes_records_archived_elsewhere(self, client, headers, user_id):
        stream = asyncio.create_task(client.get(
            "/api/reconciliation/archive/stream",
            params={"limit": 1},
            headers=headers,
        ))
        for _ in range(500):
            if archive_feed.subscriber_count(user_id):
                break
            await asyncio.sleep(0.01)
        assert archive_feed.subscriber_count(user_id) == 1

        bank = (await client.post(
            "/api/reconciliation/bank-transactions",
            json={"amount": "-12.00", "description": "BANK FEE", "date": "2099-03-12"},
            headers=headers,
        )).json()
        await client.delete(f"/api/reconciliation/bank-transactions/{bank['id']}", headers=headers)

        response = await asyncio.wait_for(stream, timeout=5)

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [block for block in response.text.split("\n\n") if block.startswith("event:")]
        assert len(events) == 1
        lines = dict(line.split(": ", 1) for line in events[0].splitlines())
        assert lines["event"] == "archive"
        record = json.loads(lines["data"])
        assert record["original_id"] == bank["id"]
        assert record["reason"] == "manual_delete"
        assert lines["id"] == record["id"]
        assert archive_feed.subscriber_count(user_id) == 0

    @pytest.mark.asyncio
    async def test_stream_requires_user(self, client):
        response = await client.get("/api/reconciliation/archive/stream")

        assert response.status_code == 422

class TestReceivablesAPI:

    @pytest.mark.asyncio
    async def test_overdue_is_derived(self, client, headers):
        await client.post(
            "/api/receivables",
            json={"amount": "500.00", "source": "Globex", "payment_date": "2000-01-01"},
            headers=headers,
        )

        items = (await client.get("/api/receivables", headers=headers)).json()["items"]

        assert items[0]["status"] == "pending"
        assert items[0]["effective_status"] == "overdue"
