from bson import ObjectId

import sellers
from database import db
from tests.conftest import auth, place_order, register

STORE = {"name": "Loom House", "email": "shop@loomhouse.com", "phone": "555-0100",
         "bank_details": {"account_name": "Loom", "account_number": "123", "bank_name": "First"}}

PRODUCT = {"name": "Woven Basket", "description": "Handmade", "price": 100,
           "images": ["https://example.com/basket.jpg"], "category": "Home", "stock": 20}


def open_store(client, token, **overrides):
    response = client.post("/seller/store", json={**STORE, **overrides}, headers=auth(token))
    assert response.status_code == 201, response.text
    return response.json()["data"]


def seller_with_product(client):
    token, user = register(client, "Sam Seller", "sam@example.com")
    open_store(client, token)
    product = client.post("/seller/products", json=PRODUCT, headers=auth(token)).json()["data"]
    return token, user, product


def ship_paid_order(client, buyer_token, admin_token, product_id, quantity):
    order = place_order(client, buyer_token, [{"product_id": product_id, "quantity": quantity}]).json()["data"]
    client.put(f"/orders/{order['id']}/pay", json={"id": "PAY", "status": "COMPLETED"}, headers=auth(buyer_token))
    client.put(f"/orders/{order['id']}/status", json={"status": "shipped"}, headers=auth(admin_token))
    return order


def test_create_store_promotes_user(client):
    token, user = register(client, "Sam Seller", "sam@example.com")
    store = open_store(client, token)
    assert store["slug"] == "loom-house"
    assert store["commission_rate"] == 10
    assert store["metadata"]["views"] == 0
    me = client.get("/auth/me", headers=auth(token)).json()["data"]
    assert me["role"] == "seller"
    assert me["role_id"] == str(db["role"].find_one({"name": "seller"})["_id"])


def test_one_store_per_owner(client):
    token, _ = register(client, "Sam Seller", "sam@example.com")
    open_store(client, token)
    response = client.post("/seller/store", json={**STORE, "name": "Second"}, headers=auth(token))
    assert response.status_code == 409


def test_store_slug_taken(client):
    first, _ = register(client, "Sam Seller", "sam@example.com")
    second, _ = register(client, "Tia", "tia@example.com")
    open_store(client, first)
    response = client.post("/seller/store", json=STORE, headers=auth(second))
    assert response.status_code == 409


def test_seller_routes_require_seller_role(client, user_token):
    assert client.get("/seller/store", headers=auth(user_token)).status_code == 403


def test_update_store(client):
    token, _ = register(client, "Sam Seller", "sam@example.com")
    open_store(client, token)
    response = client.put("/seller/store", json={"description": "Baskets and more"}, headers=auth(token))
    data = response.json()["data"]
    assert data["description"] == "Baskets and more"
    assert data["metadata"]["last_updated"]


def test_public_store_counts_views(client):
    token, _, product = seller_with_product(client)
    client.get("/seller/store/loom-house")
    response = client.get("/seller/store/loom-house")
    data = response.json()["data"]
    assert data["metadata"]["views"] == 2
    assert [p["id"] for p in data["products"]] == [product["id"]]
    assert "bank_details" not in data


def test_follow_toggles(client, user_token):
    token, _ = register(client, "Sam Seller", "sam@example.com")
    store = open_store(client, token)
    first = client.post(f"/seller/follow/{store['id']}", headers=auth(user_token)).json()["data"]
    second = client.post(f"/seller/follow/{store['id']}", headers=auth(user_token)).json()["data"]
    assert first == {"following": True}
    assert second == {"following": False}
    assert db["store"].find_one({"_id": ObjectId(store["id"])})["followers"] == []


def test_seller_products_and_orders(client, user_token):
    token, _, product = seller_with_product(client)
    place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}])
    products = client.get("/seller/products", headers=auth(token)).json()
    assert products["pagination"]["total"] == 1
    orders = client.get("/seller/orders", headers=auth(token)).json()
    assert orders["pagination"]["total"] == 1


def test_earnings_only_count_paid_shipped_items(client, user_token, admin_token):
    token, _, product = seller_with_product(client)
    ship_paid_order(client, user_token, admin_token, product["id"], 3)
    # unpaid order does not count
    place_order(client, user_token, [{"product_id": product["id"], "quantity": 5}])

    earnings = client.get("/seller/earnings", headers=auth(token)).json()["data"]
    assert earnings["total_revenue"] == 300
    assert earnings["platform_fee"] == 30
    assert earnings["net_earnings"] == 270
    assert earnings["total_orders"] == 1
    assert earnings["total_items"] == 3

    store = client.get("/seller/store", headers=auth(token)).json()["data"]
    assert store["total_earnings"] == 270


def test_withdrawal_limited_by_balance(client, user_token, admin_token):
    token, _, product = seller_with_product(client)
    ship_paid_order(client, user_token, admin_token, product["id"], 3)

    ok = client.post("/seller/withdraw", json={"amount": 200}, headers=auth(token))
    assert ok.status_code == 201
    withdrawal = ok.json()["data"]
    assert withdrawal["status"] == "pending"
    assert withdrawal["bank_details"]["account_number"] == "123"

    too_much = client.post("/seller/withdraw", json={"amount": 100}, headers=auth(token))
    assert too_much.status_code == 400
    assert too_much.json()["message"] == "Insufficient balance for withdrawal"


def test_withdrawal_minimum(client):
    token, _, _ = seller_with_product(client)
    response = client.post("/seller/withdraw", json={"amount": 50}, headers=auth(token))
    assert response.status_code == 400


def test_rejected_withdrawal_frees_balance(client, user_token, admin_token):
    token, _, product = seller_with_product(client)
    ship_paid_order(client, user_token, admin_token, product["id"], 3)
    withdrawal = client.post("/seller/withdraw", json={"amount": 250}, headers=auth(token)).json()["data"]

    processed = client.put(
        f"/admin/withdrawals/{withdrawal['id']}",
        json={"status": "rejected", "rejection_reason": "Bank details mismatch"},
        headers=auth(admin_token),
    ).json()["data"]
    assert processed["status"] == "rejected"
    assert processed["rejection_reason"] == "Bank details mismatch"
    assert processed["processed_at"]

    again = client.post("/seller/withdraw", json={"amount": 250}, headers=auth(token))
    assert again.status_code == 201
    history = client.get("/seller/withdrawals", headers=auth(token)).json()
    assert history["pagination"]["total"] == 2


def test_completed_withdrawal_is_final(client, user_token, admin_token):
    token, _, product = seller_with_product(client)
    ship_paid_order(client, user_token, admin_token, product["id"], 3)
    withdrawal = client.post("/seller/withdraw", json={"amount": 250}, headers=auth(token)).json()["data"]
    url = f"/admin/withdrawals/{withdrawal['id']}"

    done = client.put(url, json={"status": "completed", "transaction_id": "TX-1"}, headers=auth(admin_token))
    assert done.status_code == 200
    assert done.json()["data"]["completed_at"]

    response = client.put(url, json={"status": "rejected", "rejection_reason": "Oops"}, headers=auth(admin_token))
    assert response.status_code == 400
    assert response.json()["message"] == "Withdrawal is already completed"
    assert db["withdrawal"].find_one({"_id": ObjectId(withdrawal["id"])})["status"] == "completed"
    assert client.post("/seller/withdraw", json={"amount": 250}, headers=auth(token)).status_code == 400


def test_process_unknown_withdrawal(client, admin_token):
    response = client.put(f"/admin/withdrawals/{ObjectId()}", json={"status": "completed"}, headers=auth(admin_token))
    assert response.status_code == 404


def test_concurrent_withdrawals_cannot_overdraw(client, user_token, admin_token, monkeypatch):
    token, seller, product = seller_with_product(client)
    ship_paid_order(client, user_token, admin_token, product["id"], 3)
    real_balance = sellers.available_balance
    raced = []

    def balance_then_competing_request(owner_id):
        balance = real_balance(owner_id)
        # a second request passes the same check and is recorded first
        if not raced:
            raced.append(True)
            db["withdrawal"].insert_one({"seller_id": owner_id, "amount": 200, "status": "pending"})
        return balance

    monkeypatch.setattr(sellers, "available_balance", balance_then_competing_request)
    response = client.post("/seller/withdraw", json={"amount": 200}, headers=auth(token))

    assert response.status_code == 400
    assert response.json()["message"] == "Insufficient balance for withdrawal"
    remaining = list(db["withdrawal"].find({"seller_id": seller["id"]}))
    assert [w["amount"] for w in remaining] == [200]
    assert real_balance(seller["id"]) == 70


def test_dashboard(client, user_token):
    token, _, _ = seller_with_product(client)
    data = client.get("/seller/dashboard", headers=auth(token)).json()["data"]
    assert data["total_products"] == 1
    assert data["store_stats"]["followers"] == 0
    assert data["earnings"]["net_earnings"] == 0
