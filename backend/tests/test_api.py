"""
Tests for the HTTP layer: routing, auth and error -> status mapping.
"""
import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from pharmacy_store.core.database import Base, get_db
from pharmacy_store.core.exceptions import EXCEPTION_CATALOG
from pharmacy_store.main import app


@pytest.fixture
def api_engine(tmp_path):
    """Connections are opened per session so they live on the TestClient's loop."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async def create_schema():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create_schema())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def client(api_engine):
    factory = async_sessionmaker(api_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def create_product(client, admin_headers):
    counter = iter(range(1, 1000))

    def _create(**overrides) -> dict:
        payload = {"sku": f"API-{next(counter):03d}", "name": "Doliprane 1000mg", "price": 2500, "stock": 10}
        payload.update(overrides)
        response = client.post("/api/admin/products", json=payload, headers=admin_headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _create


@pytest.fixture
def order_payload(customer):
    def _payload(*lines) -> dict:
        return {
            "customer": customer,
            "items": [{"product_id": product_id, "quantity": quantity} for product_id, quantity in lines],
        }
    return _payload


class TestPlaceOrder:
    """Public order endpoints."""

    def test_create_order(self, client, create_product, order_payload):
        product = create_product(price=2500, stock=5)
        payload = order_payload((product["id"], 2))
        payload["total"] = 1  # client totals are ignored

        response = client.post("/api/orders", json=payload)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["subtotal"] == 5000
        assert body["total"] == body["subtotal"] + body["shipping_fee"]
        assert body["items"][0]["line_total"] == 5000
        assert "admin_comments" not in body

    def test_lookup_by_number(self, client, create_product, order_payload):
        product = create_product()
        number = client.post("/api/orders", json=order_payload((product["id"], 1))).json()["order_number"]

        response = client.get(f"/api/orders/{number}")

        assert response.status_code == 200
        assert response.json()["order_number"] == number

    def test_unknown_number(self, client):
        response = client.get("/api/orders/CMD-19990101-00001")

        assert response.status_code == 404
        assert response.json()["error"] == "ORDER_NOT_FOUND"

    def test_insufficient_stock(self, client, create_product, order_payload):
        product = create_product(stock=1)

        response = client.post("/api/orders", json=order_payload((product["id"], 2)))

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "INSUFFICIENT_STOCK"
        assert body["details"]["available_qty"] == 1

    def test_missing_customer_fields(self, client, create_product, order_payload):
        product = create_product()
        payload = order_payload((product["id"], 1))
        del payload["customer"]["email"]

        response = client.post("/api/orders", json=payload)

        assert response.status_code == 400
        assert response.json()["details"]["missing_fields"] == ["email"]

    def test_zero_quantity(self, client, create_product, order_payload):
        product = create_product()

        response = client.post("/api/orders", json=order_payload((product["id"], 0)))

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_LINE_ITEM"

    def test_huge_quantity(self, client, create_product, order_payload):
        product = create_product()

        response = client.post("/api/orders", json=order_payload((product["id"], 10**20)))

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_LINE_ITEM"

    def test_unknown_product(self, client, order_payload):
        response = client.post("/api/orders", json=order_payload((999, 1)))

        assert response.status_code == 404
        assert response.json()["error"] == "PRODUCT_NOT_FOUND"

    def test_inactive_product(self, client, create_product, order_payload, admin_headers):
        product = create_product()
        client.post(f"/api/admin/products/{product['id']}/deactivate", headers=admin_headers)

        response = client.post("/api/orders", json=order_payload((product["id"], 1)))

        assert response.status_code == 400
        assert response.json()["error"] == "PRODUCT_INACTIVE"


class TestAdminOrders:
    """Back-office order endpoints."""

    @pytest.fixture
    def order(self, client, create_product, order_payload):
        product = create_product(stock=5)
        return client.post("/api/orders", json=order_payload((product["id"], 2))).json()

    def test_requires_token(self, client, order):
        assert client.get(f"/api/admin/orders/{order['id']}").status_code == 401

    def test_requires_admin_role(self, client, order, make_token):
        headers = {"Authorization": f"Bearer {make_token(role='client', email='amina@example.com')}"}
        assert client.get(f"/api/admin/orders/{order['id']}", headers=headers).status_code == 403

    def test_get_order(self, client, order, admin_headers):
        response = client.get(f"/api/admin/orders/{order['id']}", headers=admin_headers)

        assert response.status_code == 200
        assert response.json()["inventory_state"] == "reserved"

    def test_invalid_transition_is_409(self, client, order, admin_headers):
        response = client.patch(
            f"/api/admin/orders/{order['id']}/status", json={"status": "shipped"}, headers=admin_headers
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "INVALID_TRANSITION"
        assert (body["details"]["from_status"], body["details"]["to_status"]) == ("pending", "shipped")

    def test_transition(self, client, order, admin_headers):
        response = client.patch(
            f"/api/admin/orders/{order['id']}/status",
            json={"status": "confirmed", "note": "called the client"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "confirmed"
        assert body["events"][-1]["actor"] == "admin@pharmacie.dz"

    def test_override(self, client, order, admin_headers):
        response = client.post(
            f"/api/admin/orders/{order['id']}/override",
            json={"status": "delivered", "reason": "picked up in store"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "delivered"
        assert body["events"][-1]["action"] == "status_override"

    def test_comment_tracking_and_payment(self, client, order, admin_headers):
        base = f"/api/admin/orders/{order['id']}"

        assert client.post(f"{base}/comments", json={"comment": "Fragile"}, headers=admin_headers).status_code == 200
        tracking = client.patch(
            f"{base}/tracking", json={"tracking_number": "YAL-1", "carrier": "Yalidine"}, headers=admin_headers
        )
        payment = client.patch(f"{base}/payment", json={"payment_status": "paid"}, headers=admin_headers)

        assert tracking.json()["tracking_number"] == "YAL-1"
        body = payment.json()
        assert body["payment_status"] == "paid"
        assert body["admin_comments"].endswith("admin@pharmacie.dz: Fragile")

    def test_comment_too_long(self, client, order, admin_headers):
        response = client.post(
            f"/api/admin/orders/{order['id']}/comments", json={"comment": "x" * 501}, headers=admin_headers
        )
        assert response.status_code == 400

    def test_list_orders(self, client, order, admin_headers):
        response = client.get("/api/admin/orders", params={"status": "pending"}, headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["orders"][0]["order_number"] == order["order_number"]


class TestCustomerAccess:
    """Order lookup, self-cancel and order history for customers."""

    @pytest.fixture
    def product(self, create_product):
        return create_product(stock=5)

    @pytest.fixture
    def order(self, client, product, order_payload):
        return client.post("/api/orders", json=order_payload((product["id"], 2))).json()

    @pytest.fixture
    def owner_headers(self, make_token):
        return {"Authorization": f"Bearer {make_token(role='client', email='amina.benali@example.com')}"}

    @pytest.fixture
    def stranger_headers(self, make_token):
        return {"Authorization": f"Bearer {make_token(role='client', email='karim@example.com')}"}

    def stock_of(self, client, product, admin_headers) -> int:
        return client.patch(f"/api/admin/products/{product['id']}", json={}, headers=admin_headers).json()["stock"]

    def test_anonymous_lookup_hides_customer(self, client, order):
        response = client.get(f"/api/orders/{order['order_number']}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["total"] == order["total"]
        assert len(body["items"]) == 1
        for field in ("customer_email", "customer_phone", "shipping_address", "events", "id"):
            assert field not in body

    def test_other_customer_sees_summary(self, client, order, stranger_headers):
        body = client.get(f"/api/orders/{order['order_number']}", headers=stranger_headers).json()
        assert "customer_email" not in body

    def test_owner_sees_details(self, client, order, owner_headers):
        body = client.get(f"/api/orders/{order['order_number']}", headers=owner_headers).json()

        assert body["customer_email"] == "amina.benali@example.com"
        assert body["customer_name"] == "Amina Benali"
        assert body["events"][0]["action"] == "created"

    def test_admin_sees_details(self, client, order, admin_headers):
        body = client.get(f"/api/orders/{order['order_number']}", headers=admin_headers).json()
        assert body["shipping_address"] == "12 rue Didouche Mourad"

    def test_owner_cancel_restores_stock(self, client, order, product, owner_headers, admin_headers):
        assert self.stock_of(client, product, admin_headers) == 3

        response = client.post(
            f"/api/orders/{order['order_number']}/cancel",
            json={"reason": "ordered twice"},
            headers=owner_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "cancelled"
        assert body["events"][-1]["actor"] == "amina.benali@example.com"
        assert body["events"][-1]["note"] == "ordered twice"
        assert self.stock_of(client, product, admin_headers) == 5

    def test_cancel_without_body(self, client, order, owner_headers):
        response = client.post(f"/api/orders/{order['order_number']}/cancel", headers=owner_headers)

        assert response.status_code == 200
        assert response.json()["events"][-1]["note"] == "cancelled by customer"

    def test_cancel_requires_token(self, client, order):
        assert client.post(f"/api/orders/{order['order_number']}/cancel").status_code == 401

    def test_cancel_other_customers_order(self, client, order, product, stranger_headers, admin_headers):
        response = client.post(f"/api/orders/{order['order_number']}/cancel", headers=stranger_headers)

        assert response.status_code == 403
        assert self.stock_of(client, product, admin_headers) == 3

    def test_cancel_after_shipping_is_rejected(self, client, order, owner_headers, admin_headers):
        base = f"/api/admin/orders/{order['id']}/status"
        for next_status in ("confirmed", "prepared", "shipped"):
            client.patch(base, json={"status": next_status}, headers=admin_headers)

        response = client.post(f"/api/orders/{order['order_number']}/cancel", headers=owner_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_TRANSITION"

    def test_my_orders(self, client, order, product, order_payload, customer, owner_headers, stranger_headers):
        customer["email"] = "karim@example.com"
        client.post("/api/orders", json=order_payload((product["id"], 1)))

        mine = client.get("/api/orders/mine", headers=owner_headers).json()
        theirs = client.get("/api/orders/mine", headers=stranger_headers).json()

        assert mine["total"] == 1
        assert mine["orders"][0]["order_number"] == order["order_number"]
        assert theirs["total"] == 1
        assert theirs["orders"][0]["customer_email"] == "karim@example.com"

    def test_my_orders_requires_token(self, client):
        assert client.get("/api/orders/mine").status_code == 401


class TestAdminProducts:

    def test_promotion(self, client, create_product, admin_headers):
        product = create_product(price=3000)

        response = client.post(
            f"/api/admin/products/{product['id']}/promotion", json={"percentage": 17}, headers=admin_headers
        )

        body = response.json()
        assert (body["price"], body["original_price"], body["savings_percentage"]) == (2490, 3000, 17)

    def test_promotion_out_of_range(self, client, create_product, admin_headers):
        product = create_product()

        response = client.post(
            f"/api/admin/products/{product['id']}/promotion", json={"percentage": 150}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PROMOTION"

    def test_stock_adjustment(self, client, create_product, admin_headers):
        product = create_product(stock=2)

        response = client.post(
            f"/api/admin/products/{product['id']}/stock",
            json={"delta": 5, "reason": "supplier delivery"},
            headers=admin_headers,
        )

        assert response.json()["stock"] == 7

    def test_stock_cannot_go_negative(self, client, create_product, admin_headers):
        product = create_product(stock=2)

        response = client.post(
            f"/api/admin/products/{product['id']}/stock",
            json={"delta": -3, "reason": "breakage"},
            headers=admin_headers,
        )

        assert response.status_code == 409

    def test_duplicate_sku(self, client, create_product, admin_headers):
        create_product(sku="DUP-1")

        response = client.post(
            "/api/admin/products", json={"sku": "DUP-1", "name": "Other", "price": 100}, headers=admin_headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "DUPLICATE_SKU"

    @pytest.mark.parametrize("field", ["name", "price", "low_stock_threshold"])
    def test_update_rejects_null(self, client, create_product, admin_headers, field):
        product = create_product()

        response = client.patch(f"/api/admin/products/{product['id']}", json={field: None}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_PRODUCT"

    def test_default_low_stock_threshold(self, client, create_product):
        product = create_product()
        assert product["low_stock_threshold"] == 10
        assert product["on_promotion"] is False

    def test_update_unknown_product(self, client, admin_headers):
        response = client.patch("/api/admin/products/999", json={"price": 100}, headers=admin_headers)
        assert response.status_code == 404


class TestErrorMapping:

    def test_every_error_kind_has_one_status(self):
        assert EXCEPTION_CATALOG["INSUFFICIENT_STOCK"]["status"] == 409
        assert EXCEPTION_CATALOG["INVALID_TRANSITION"]["status"] == 409
        assert EXCEPTION_CATALOG["CONCURRENT_MODIFICATION"]["status"] == 409
        assert EXCEPTION_CATALOG["PRODUCT_NOT_FOUND"]["status"] == 404
        assert EXCEPTION_CATALOG["ORDER_NOT_FOUND"]["status"] == 404
        assert EXCEPTION_CATALOG["INVALID_CUSTOMER_INFO"]["status"] == 400
        assert EXCEPTION_CATALOG["ORDER_CREATION_FAILED"]["status"] == 503

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"
