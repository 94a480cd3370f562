"""Endpoint tests via TestClient."""

from types import SimpleNamespace

import pytest
from bson import ObjectId
from bson.errors import InvalidDocument
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

import main
from services import CartService


def _add(client, headers, item_id, quantity):
    return client.post("/cart", json={"itemId": str(item_id), "quantity": quantity}, headers=headers)


def _update(client, headers, item_id, quantity):
    return client.put("/cart", json={"itemId": str(item_id), "quantity": quantity}, headers=headers)


class TestServiceEndpoints:
    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "running" in response.json()["message"]

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "database": "connected"}


class TestItems:
    def test_lists_all_items_with_string_ids(self, client, items):
        response = client.get("/items")

        assert response.status_code == 200
        data = response.json()
        assert {d["id"] for d in data} == {str(items["A"]), str(items["B"])}
        assert {d["price"] for d in data} == {10, 5}

    def test_empty_catalog(self, client):
        assert client.get("/items").json() == []


class TestCartEndpoints:
    def test_get_without_cart(self, client, auth_headers):
        response = client.get("/cart", headers=auth_headers)

        assert response.status_code == 200
        assert response.json() == {"items": [], "total": 0}

    def test_add_item(self, client, auth_headers, items):
        response = _add(client, auth_headers, items["A"], 2)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 20
        assert data["items"] == [{"item_id": str(items["A"]), "quantity": 2}]
        assert "id" in data

    def test_add_defaults_to_one(self, client, auth_headers, items):
        response = client.post("/cart", json={"itemId": str(items["B"])}, headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 1

    def test_add_accepts_snake_case_field(self, client, auth_headers, items):
        response = client.post(
            "/cart", json={"item_id": str(items["B"]), "quantity": 2}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["total"] == 10

    def test_add_invalid_requests(self, client, auth_headers, items):
        for body in (
            {"itemId": str(items["A"]), "quantity": 0},
            {"itemId": str(items["A"]), "quantity": -2},
            {"quantity": 1},
            {"itemId": "", "quantity": 1},
            {"itemId": str(items["A"]), "quantity": "lots"},
        ):
            response = client.post("/cart", json=body, headers=auth_headers)
            assert response.status_code == 400, body
            assert "message" in response.json()

        assert client.get("/cart", headers=auth_headers).json() == {"items": [], "total": 0}

    def test_get_populates_items(self, client, auth_headers, items):
        _add(client, auth_headers, items["A"], 1)

        data = client.get("/cart", headers=auth_headers).json()

        assert data["items"][0]["item"]["title"] == "Item A"
        assert data["items"][0]["item"]["id"] == str(items["A"])

    def test_update_item(self, client, auth_headers, items):
        _add(client, auth_headers, items["A"], 2)

        response = _update(client, auth_headers, items["A"], 7)

        assert response.status_code == 200
        assert response.json()["items"][0]["quantity"] == 7
        assert response.json()["total"] == 70

    def test_update_missing_item_id(self, client, auth_headers):
        response = client.put("/cart", json={"quantity": 1}, headers=auth_headers)

        assert response.status_code == 400

    def test_update_without_cart(self, client, auth_headers, items):
        response = _update(client, auth_headers, items["A"], 1)

        assert response.status_code == 404
        assert response.json() == {"message": "Cart not found"}

    def test_update_item_not_in_cart(self, client, auth_headers, items):
        _add(client, auth_headers, items["A"], 1)

        response = _update(client, auth_headers, items["B"], 1)

        assert response.status_code == 404
        assert response.json() == {"message": "Item not in cart"}

    def test_clear_is_idempotent(self, client, auth_headers, items):
        _add(client, auth_headers, items["A"], 1)

        for _ in range(2):
            response = client.delete("/cart", headers=auth_headers)
            assert response.status_code == 200
            assert response.json() == {"message": "Cart cleared"}

        assert client.get("/cart", headers=auth_headers).json() == {"items": [], "total": 0}


class TestCheckoutEndpoint:
    def test_empty_cart(self, client, auth_headers, db):
        response = client.post("/checkout", headers=auth_headers)

        assert response.status_code == 400
        assert response.json() == {"message": "Cart is empty"}
        assert db["order"].count_documents({}) == 0

    def test_full_flow(self, client, auth_headers, items):
        assert _add(client, auth_headers, items["A"], 2).json()["total"] == 20
        assert _add(client, auth_headers, items["B"], 1).json()["total"] == 25
        assert _update(client, auth_headers, items["A"], 0).json()["total"] == 5

        response = client.post("/checkout", headers=auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Order placed"
        assert body["order"]["status"] == "Processing"
        assert body["order"]["total"] == 5
        assert body["order"]["items"] == [{"item_id": str(items["B"]), "quantity": 1}]
        assert client.get("/cart", headers=auth_headers).json() == {"items": [], "total": 0}

        orders = client.get("/orders", headers=auth_headers).json()
        assert [o["id"] for o in orders] == [body["order"]["id"]]

    def test_shipping_details_are_recorded(self, client, auth_headers, items):
        _add(client, auth_headers, items["A"], 1)

        response = client.post(
            "/checkout",
            json={"shippingAddress": "221B Baker St", "paymentMethod": "card"},
            headers=auth_headers,
        )

        order = response.json()["order"]
        assert order["shipping_address"] == "221B Baker St"
        assert order["payment_method"] == "card"

    def test_deleted_item_counts_as_zero(self, client, auth_headers, items, db):
        _add(client, auth_headers, items["A"], 1)
        db["item"].delete_one({"_id": items["A"]})

        response = _add(client, auth_headers, ObjectId(), 1)

        assert response.status_code == 200
        assert response.json()["total"] == 0


class TestFailures:
    @pytest.fixture()
    def failing_client(self, db):
        with TestClient(main.create_app(db), raise_server_exceptions=False) as test_client:
            yield test_client

    def test_store_failure_is_internal_error(self, client, auth_headers, items, monkeypatch):
        def fail(self, *args, **kwargs):
            raise PyMongoError("connection reset")

        monkeypatch.setattr(CartService, "add_item", fail)

        response = _add(client, auth_headers, items["A"], 1)

        assert response.status_code == 500
        assert response.json() == {"message": "Internal server error"}

    def test_unexpected_error_keeps_message_shape(self, failing_client, items, monkeypatch):
        def fail(self, *args, **kwargs):
            raise InvalidDocument("cannot encode object")

        monkeypatch.setattr(CartService, "add_item", fail)
        signup = failing_client.post(
            "/signup", json={"name": "Shopper", "email": "shopper@example.com", "password": "pw"}
        )
        headers = {"Authorization": f"Bearer {signup.json()['token']}"}

        response = _add(failing_client, headers, items["A"], 1)

        assert response.status_code == 500
        assert response.json() == {"message": "Internal server error"}

    def test_health_reports_unreachable_database(self, client, db, monkeypatch):
        def fail(self, *args, **kwargs):
            raise ServerSelectionTimeoutError("no servers")

        monkeypatch.setattr(type(db), "list_collection_names", fail)

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json() == {"status": "unhealthy", "database": "disconnected"}


class TestConnectionLifecycle:
    def test_own_client_is_opened_on_startup_and_closed_on_shutdown(self, monkeypatch):
        closed = []
        database = SimpleNamespace(client=SimpleNamespace(close=lambda: closed.append(True)))
        monkeypatch.setattr(main, "connect", lambda url, name: database)
        monkeypatch.setattr(main, "ensure_indexes", lambda db: None)

        app = main.create_app()
        assert app.state.db is None

        with TestClient(app):
            assert app.state.db is database
            assert closed == []

        assert closed == [True]
        assert app.state.db is None

    def test_injected_database_is_left_open(self, monkeypatch):
        closed = []
        database = SimpleNamespace(client=SimpleNamespace(close=lambda: closed.append(True)))
        monkeypatch.setattr(main, "ensure_indexes", lambda db: None)

        app = main.create_app(database)
        with TestClient(app):
            pass

        assert closed == []
        assert app.state.db is database
