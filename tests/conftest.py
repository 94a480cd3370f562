import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes
from main import create_app
from schemas import Item, User


@pytest.fixture()
def db():
    client = mongomock.MongoClient()
    database = client["shop_test"]
    ensure_indexes(database)
    yield database
    client.drop_database("shop_test")


@pytest.fixture()
def client(db):
    with TestClient(create_app(db)) as test_client:
        yield test_client


@pytest.fixture()
def items(db):
    """Two catalog items: A costs 10, B costs 5."""
    return {
        "A": create_document(db, "item", Item(title="Item A", price=10, stock=100)),
        "B": create_document(db, "item", Item(title="Item B", price=5, stock=100)),
    }


@pytest.fixture()
def user_id(db) -> ObjectId:
    return create_document(db, "user", User(name="Test User", email="test@example.com"))


@pytest.fixture()
def auth_headers(client):
    response = client.post(
        "/signup",
        json={"name": "Shopper", "email": "shopper@example.com", "password": "s3cret-pass"},
    )
    assert response.status_code == 201
    return {"Authorization": f"Bearer {response.json()['token']}"}
