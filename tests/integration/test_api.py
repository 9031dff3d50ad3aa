"""
HTTP-level tests: the FastAPI app driven through httpx against the SQLite
test database, with auth and the email/extraction collaborators overridden.
"""

from decimal import Decimal
import uuid

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from quotedesk.config import settings
from quotedesk.database import get_db
from quotedesk.main import app
from quotedesk.middleware.auth import get_current_user
from quotedesk.routes.quote_requests import get_email_client, get_price_extractor
from tests.helpers import FakeEmailClient, FakeExtractor, add_part, add_supplier, inbound

ITEMS = [
    {"part_number": "BRK-PAD-001", "quantity": 1, "description": "Front brake pads"},
    {"part_number": "OIL-FLT-014", "quantity": 2},
    {"part_number": "WPR-BLD-22", "quantity": 3},
]


@pytest_asyncio.fixture
async def seeded(db, org):
    alpha = await add_supplier(db, org.id, "Alpha Parts")
    beta = await add_supplier(db, org.id, "Beta Supply")
    await add_part(db, org.id, "BRK-PAD-001", "120.00")
    await add_part(db, org.id, "OIL-FLT-014", "90.00")
    await add_part(db, org.id, "WPR-BLD-22", "60.00")
    await db.commit()
    return {"org": org, "alpha": alpha, "beta": beta}


@pytest_asyncio.fixture
async def api(seeded, session_factory):
    claims = {
        "user_id": str(uuid.uuid4()),
        "organization_id": str(seeded["org"].id),
        "role": "ADMIN",
        "email": "admin@northfleet.example",
    }
    email = FakeEmailClient()
    extractor = FakeExtractor()

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: claims
    app.dependency_overrides[get_email_client] = lambda: email
    app.dependency_overrides[get_price_extractor] = lambda: extractor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield {"client": client, "claims": claims, "email": email, "extractor": extractor, **seeded}

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_quote_to_delivered_order_with_savings(api):
    client, email, extractor = api["client"], api["email"], api["extractor"]
    alpha, beta = api["alpha"], api["beta"]

    response = await client.post("/api/v1/quote-requests", json={
        "title": "Brake service parts",
        "items": ITEMS,
        "supplier_ids": [str(alpha.id), str(beta.id)],
    })
    assert response.status_code == 201
    quote = response.json()
    assert quote["status"] == "DRAFT"
    assert quote["requires_approval"] is False
    assert [i["line_number"] for i in quote["items"]] == [1, 2, 3]

    response = await client.post(f"/api/v1/quote-requests/{quote['id']}/send")
    assert response.status_code == 200
    sent = response.json()
    assert sent["quote"]["status"] == "SENT"
    assert sent["threads_created"] == 2
    # The background dispatch has run by the time the ASGI call returns
    assert len(email.sent) == 2

    number = quote["quote_number"]
    email.inbox = {
        f"{number}/{alpha.id}": [inbound("a-1", "Total $500")],
        f"{number}/{beta.id}": [inbound("b-1", "Total $420")],
    }
    extractor.amounts = {"Total $500": Decimal("500"), "Total $420": Decimal("420")}

    response = await client.post(f"/api/v1/quote-requests/{quote['id']}/extract-prices")
    assert response.status_code == 200
    batch = response.json()
    assert batch["priced"] == 2
    assert batch["quote_status"] == "RECEIVED"

    response = await client.get(f"/api/v1/quote-requests/{quote['id']}/comparison")
    assert response.json()["best_supplier_id"] == str(beta.id)

    response = await client.post(
        f"/api/v1/quote-requests/{quote['id']}/select-supplier", json={"best_price": True}
    )
    assert response.status_code == 200
    assert response.json()["selected_supplier_id"] == str(beta.id)

    response = await client.post(f"/api/v1/quote-requests/{quote['id']}/convert-to-order")
    assert response.status_code == 201
    conversion = response.json()
    order = conversion["order"]
    assert conversion["pricing"] == "even_split"
    assert Decimal(order["total_amount"]) == Decimal("420")
    assert sum(Decimal(i["total_price"]) for i in order["items"]) == Decimal("420")

    response = await client.post(f"/api/v1/quote-requests/{quote['id']}/convert-to-order")
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ALREADY_CONVERTED"

    for next_status in ("PROCESSING", "IN_TRANSIT"):
        response = await client.patch(f"/api/v1/orders/{order['id']}/status", json={"status": next_status})
        assert response.status_code == 200
        assert response.json()["cost_savings"] is None

    response = await client.patch(
        f"/api/v1/orders/{order['id']}/status",
        json={"status": "DELIVERED", "delivered_at": "2026-03-20T12:00:00Z"},
    )
    assert response.status_code == 200
    delivered = response.json()
    assert delivered["warning"] is None
    assert delivered["order"]["actual_delivery"].startswith("2026-03-20T12:00:00")
    savings = delivered["cost_savings"]
    assert savings["status"] == "RECORDED"
    assert (savings["month"], savings["year"]) == (3, 2026)
    assert Decimal(savings["total_savings"]) == Decimal("60")
    assert Decimal(savings["savings_percent"]) == Decimal("12.5")

    response = await client.get("/api/v1/cost-savings", params={"months": 120})
    assert response.status_code == 200
    summary = response.json()
    assert Decimal(summary["total_savings"]) == Decimal("60")
    assert summary["total_orders_processed"] == 1
    assert summary["savings_by_organization"] is None


@pytest.mark.asyncio
async def test_send_without_suppliers_is_rejected(api):
    client = api["client"]
    response = await client.post("/api/v1/quote-requests", json={"title": "Filters", "items": ITEMS[:1]})
    quote = response.json()

    response = await client.post(f"/api/v1/quote-requests/{quote['id']}/send")

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_STATE"
    assert api["email"].sent == []
    response = await client.get(f"/api/v1/quote-requests/{quote['id']}")
    assert response.json()["status"] == "DRAFT"


@pytest.mark.asyncio
async def test_technician_cannot_approve(api):
    client, claims = api["client"], api["claims"]
    claims["role"] = "TECHNICIAN"
    response = await client.post("/api/v1/quote-requests", json={
        "title": "Wipers", "items": ITEMS[2:], "supplier_ids": [str(api["alpha"].id)],
    })
    quote = response.json()
    assert quote["requires_approval"] is True

    response = await client.post(f"/api/v1/quote-requests/{quote['id']}/approve", json={})

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "PERMISSION_DENIED"


@pytest.mark.asyncio
async def test_error_shapes(api):
    client = api["client"]

    response = await client.get(f"/api/v1/quote-requests/{uuid.uuid4()}")
    assert response.status_code == 404
    assert response.json() == {"error": {"code": "NOT_FOUND", "message": "Quote request not found"}}

    response = await client.post("/api/v1/quote-requests", json={
        "title": "Bad", "items": [{"part_number": "X-1", "quantity": 0}],
    })
    assert response.status_code == 422
    body = response.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"]


@pytest.mark.asyncio
async def test_list_is_scoped_to_the_caller_organization(api):
    client, claims = api["client"], api["claims"]
    await client.post("/api/v1/quote-requests", json={"title": "Pads", "items": ITEMS[:1]})

    response = await client.get("/api/v1/quote-requests")
    assert response.json()["pagination"]["total"] == 1

    claims["organization_id"] = str(uuid.uuid4())
    response = await client.get("/api/v1/quote-requests")
    assert response.json()["pagination"]["total"] == 0


@pytest.mark.asyncio
async def test_internal_jobs_require_the_shared_secret(api, monkeypatch):
    client = api["client"]
    monkeypatch.setattr(settings, "INTERNAL_JOB_SECRET", "job-secret")

    response = await client.post("/internal/jobs/expire-quotes")
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "HTTP_ERROR"

    response = await client.post("/internal/jobs/expire-quotes", headers={"X-Internal-Secret": "job-secret"})
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "expired": 0}

    response = await client.post(
        "/internal/jobs/retry-cost-savings", headers={"X-Internal-Secret": "job-secret"}
    )
    assert response.status_code == 200
    assert response.json()["checked"] == 0


@pytest.mark.asyncio
async def test_health(api):
    response = await api["client"].get("/health")

    assert response.status_code == 200
    assert response.json()["checks"]["db"] == "ok"


@pytest.mark.asyncio
async def test_missing_token_is_unauthorized(api):
    app.dependency_overrides.pop(get_current_user)

    response = await api["client"].get("/api/v1/quote-requests")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_REQUIRED"
    assert response.headers["WWW-Authenticate"] == "Bearer"
