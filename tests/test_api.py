"""Integration tests for the order and admin routes via TestClient."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from autoshop import config
from autoshop.database import get_db
from autoshop.routers import admin_router, order_router

ADMIN_HEADERS = {"Authorization": "Bearer admin-secret"}


@pytest.fixture()
def client(engine, session_factory, monkeypatch):
    monkeypatch.setattr(config, "ADMIN_API_TOKEN", "admin-secret")

    app = FastAPI()
    app.include_router(order_router.router)
    app.include_router(admin_router.router)
    app.state.engine = engine

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    return TestClient(app)


def _create_order(client, product_id, quantity=1, buyer_id=5):
    """Helper: POST /orders/ and return the ticket."""
    response = client.post(
        "/orders/",
        data={"buyer_id": buyer_id, "chat_id": buyer_id, "product_id": product_id, "quantity": quantity},
    )
    assert response.status_code == 201
    return response.json()


def test_create_check_and_history(client, gateway, make_product):
    product_id = make_product(price=50000, payloads=["acc1", "acc2", "acc3"])

    ticket = _create_order(client, product_id, quantity=2)
    assert ticket["total_price"] == 100000
    assert ticket["payment"]["memo"] == ticket["reference_token"]

    pending = client.post(f"/orders/{ticket['order_id']}/check")
    assert pending.json()["status"] == "still_pending"

    gateway.pay(ticket["reference_token"], 100000)
    paid = client.post(f"/orders/{ticket['order_id']}/check")
    assert paid.status_code == 200
    assert paid.json() == {"order_id": ticket["order_id"], "status": "paid", "delivered": ["acc1", "acc2"]}

    again = client.post(f"/orders/{ticket['order_id']}/check")
    assert again.json()["status"] == "not_found"

    history = client.get("/orders/history/5").json()
    assert history["total"] == 1
    assert history["orders"][0]["status"] == "completed"
    assert history["orders"][0]["delivered"] == ["acc1", "acc2"]


def test_rejected_orders_return_readable_errors(client, make_product):
    product_id = make_product(payloads=["acc1"])

    zero = client.post("/orders/", data={"buyer_id": 5, "chat_id": 5, "product_id": product_id, "quantity": 0})
    assert zero.status_code == 400
    assert zero.json()["detail"]["error"] == "invalid_quantity"

    too_many = client.post("/orders/", data={"buyer_id": 5, "chat_id": 5, "product_id": product_id, "quantity": 2})
    assert too_many.status_code == 400
    assert too_many.json()["detail"]["error"] == "insufficient_stock"

    missing = client.post("/orders/", data={"buyer_id": 5, "chat_id": 5, "product_id": 999, "quantity": 1})
    assert missing.status_code == 404
    assert missing.json()["detail"]["error"] == "product_not_found"


def test_cancel(client, make_product):
    product_id = make_product(payloads=["acc1"])
    ticket = _create_order(client, product_id)

    wrong_buyer = client.post(f"/orders/{ticket['order_id']}/cancel", data={"buyer_id": 6})
    assert wrong_buyer.status_code == 404

    response = client.post(f"/orders/{ticket['order_id']}/cancel", data={"buyer_id": 5})
    assert response.status_code == 204

    response = client.post(f"/orders/{ticket['order_id']}/cancel")
    assert response.status_code == 404


def test_check_failure_hides_internal_detail(client, gateway, make_product):
    product_id = make_product(payloads=["acc1"])
    ticket = _create_order(client, product_id)
    gateway.fail_tokens.add(ticket["reference_token"])

    response = client.post(f"/orders/{ticket['order_id']}/check")

    assert response.status_code == 500
    assert "exploded" not in response.text


def test_admin_routes_require_token(client):
    assert client.get("/admin/revenue").status_code in (401, 403)
    assert client.get("/admin/revenue", headers={"Authorization": "Bearer nope"}).status_code == 403


def test_admin_reports(client, gateway, make_product):
    product_id = make_product(price=30000, payloads=["acc1", "acc2"])
    paid = _create_order(client, product_id)
    open_ticket = _create_order(client, product_id, buyer_id=6)
    gateway.pay(paid["reference_token"], 30000)
    client.post(f"/orders/{paid['order_id']}/check")

    revenue = client.get("/admin/revenue", headers=ADMIN_HEADERS).json()
    assert revenue["total_orders"] == 1
    assert revenue["total_revenue"] == 30000
    assert revenue["by_status"]["pending"] == 1

    recent = client.get("/admin/orders", params={"limit": 5}, headers=ADMIN_HEADERS).json()
    assert [o["id"] for o in recent["orders"]] == [open_ticket["order_id"], paid["order_id"]]

    order = client.get(f"/admin/orders/{paid['order_id']}", headers=ADMIN_HEADERS).json()
    assert order["status"] == "completed"
    assert order["reference_token"] == paid["reference_token"]

    assert client.get("/admin/orders/999", headers=ADMIN_HEADERS).status_code == 404


def test_engine_not_ready_returns_503(session_factory):
    app = FastAPI()
    app.include_router(order_router.router)
    response = TestClient(app).post("/orders/1/check")
    assert response.status_code == 503


def test_history_limit_is_bounded(client):
    assert client.get("/orders/history/5", params={"limit": 500}).status_code == 422
    assert client.get("/orders/history/5", params={"limit": 0}).status_code == 422
    assert client.get("/orders/history/5", params={"limit": 200}).json() == {"orders": [], "total": 0}
