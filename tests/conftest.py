import os

import mongomock
import pymongo
import pytest
from bson import ObjectId

# must happen before any application module creates its client
os.environ.setdefault("DATABASE_NAME", "ecommerce_test")
os.environ["RESEND_API_KEY"] = ""
pymongo.MongoClient = mongomock.MongoClient

from fastapi.testclient import TestClient  # noqa: E402

import roles  # noqa: E402
from database import db  # noqa: E402
from main import app  # noqa: E402


def _clear_db():
    for name in db.list_collection_names():
        db[name].delete_many({})


@pytest.fixture
def client():
    _clear_db()
    with TestClient(app) as c:
        yield c


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def register(client, name="Jane Doe", email="jane@example.com", password="secret123"):
    response = client.post("/auth/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    body = response.json()
    return body["token"], body["data"]


def promote(user_id, role):
    db["user"].update_one(
        {"_id": ObjectId(user_id)},
        {"$set": {"role": role, "role_id": roles.system_role_id(role)}},
    )


@pytest.fixture
def user_token(client):
    token, _ = register(client, "Jane Doe", "jane@example.com")
    return token


@pytest.fixture
def admin_token(client):
    token, user = register(client, "Ada Admin", "admin@example.com")
    promote(user["id"], "admin")
    return token


@pytest.fixture
def product(client, admin_token):
    """An active product with stock 10 at price 20."""
    return create_product(client, admin_token)


def create_product(client, token, **overrides):
    payload = {
        "name": "Canvas Tote Bag",
        "description": "Sturdy cotton tote",
        "price": 20,
        "images": ["https://example.com/tote.jpg"],
        "category": "Bags",
        "brand": "Loom",
        "stock": 10,
    }
    payload.update(overrides)
    response = client.post("/products", json=payload, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()["data"]


SHIPPING = {"address": "1 Main St", "city": "Springfield", "postal_code": "12345", "country": "US"}


def place_order(client, token, items, **extra):
    payload = {"order_items": items, "shipping_address": SHIPPING, "payment_method": "PayPal", **extra}
    return client.post("/orders", json=payload, headers=auth(token))
