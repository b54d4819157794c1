import emails
import orders
from bson import ObjectId

from database import db
from schemas import OrderCreateBody
from tests.conftest import SHIPPING, auth, create_product, place_order, register


def stock_of(product):
    return db["product"].find_one({"_id": ObjectId(product["id"])})["stock"]


def test_create_order_decrements_stock_and_totals(client, product, user_token):
    response = place_order(client, user_token, [{"product_id": product["id"], "quantity": 3}])
    assert response.status_code == 201
    order = response.json()["data"]
    assert stock_of(product) == 7
    assert order["total_price"] == 60
    assert order["order_status"] == "pending"
    assert order["is_paid"] is False
    assert order["order_number"] == "ORD-" + order["id"][-8:].upper()
    assert order["user"]["email"] == "jane@example.com"


def test_order_snapshots_product_price(client, product, user_token):
    response = place_order(
        client, user_token, [{"product_id": product["id"], "quantity": 2, "price": 1}], total_price=2,
    )
    order = response.json()["data"]
    item = order["order_items"][0]
    assert item["price"] == 20
    assert item["name"] == product["name"]
    assert item["image"] == product["images"][0]
    assert order["total_price"] == 40


def test_total_is_sum_of_items(client, admin_token, user_token):
    a = create_product(client, admin_token, name="A", price=19.99, stock=5)
    b = create_product(client, admin_token, name="B", price=5.5, stock=5)
    order = place_order(
        client, user_token,
        [{"product_id": a["id"], "quantity": 2}, {"product_id": b["id"], "quantity": 3}],
    ).json()["data"]
    assert order["total_price"] == round(sum(i["price"] * i["quantity"] for i in order["order_items"]), 2)


def test_insufficient_stock_creates_nothing(client, product, user_token):
    response = place_order(client, user_token, [{"product_id": product["id"], "quantity": 11}])
    assert response.status_code == 400
    assert "Insufficient stock" in response.json()["message"]
    assert stock_of(product) == 10
    assert db["order"].count_documents({}) == 0


def test_failed_item_releases_earlier_items(client, admin_token, user_token):
    plenty = create_product(client, admin_token, name="Plenty", stock=10)
    scarce = create_product(client, admin_token, name="Scarce", stock=1)
    response = place_order(
        client, user_token,
        [{"product_id": plenty["id"], "quantity": 4}, {"product_id": scarce["id"], "quantity": 2}],
    )
    assert response.status_code == 400
    assert stock_of(plenty) == 10
    assert stock_of(scarce) == 1
    assert db["order"].count_documents({}) == 0


def test_last_unit_sold_once(client, admin_token, user_token):
    last = create_product(client, admin_token, name="Last One", stock=1)
    other, _ = register(client, "Bob", "bob@example.com")
    first = place_order(client, user_token, [{"product_id": last["id"], "quantity": 1}])
    second = place_order(client, other, [{"product_id": last["id"], "quantity": 1}])
    assert first.status_code == 201
    assert second.status_code == 400
    assert stock_of(last) == 0


def test_last_unit_contended_by_two_orders(client, admin_token, user_token, monkeypatch):
    last = create_product(client, admin_token, name="Last One", stock=1)
    _, bob = register(client, "Bob", "bob@example.com")
    real_take_stock = orders._take_stock
    contended = []

    def take_after_bob(items):
        # Bob's order is placed between Jane's product lookup and her reservation
        if not contended:
            contended.append(True)
            body = OrderCreateBody(
                order_items=[{"product_id": last["id"], "quantity": 1}],
                shipping_address=SHIPPING,
                payment_method="PayPal",
            )
            contended.append(orders.create_order(bob, body))
        return real_take_stock(items)

    monkeypatch.setattr(orders, "_take_stock", take_after_bob)
    response = place_order(client, user_token, [{"product_id": last["id"], "quantity": 1}])

    assert response.status_code == 400
    assert "Insufficient stock" in response.json()["message"]
    assert contended[1]["user"]["email"] == "bob@example.com"
    assert stock_of(last) == 0
    assert db["order"].count_documents({}) == 1


def test_product_deleted_before_reservation(client, admin_token, product, user_token, monkeypatch):
    real_take_stock = orders._take_stock

    def delete_then_take(items):
        db["product"].delete_one({"_id": ObjectId(product["id"])})
        return real_take_stock(items)

    monkeypatch.setattr(orders, "_take_stock", delete_then_take)
    response = place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}])
    assert response.status_code == 404
    assert response.json()["message"] == f"Product not found: {product['id']}"
    assert db["order"].count_documents({}) == 0


def test_unknown_product_not_found(client, user_token):
    response = place_order(client, user_token, [{"product_id": "000000000000000000000000", "quantity": 1}])
    assert response.status_code == 404


def test_empty_order_rejected(client, user_token):
    response = place_order(client, user_token, [])
    assert response.status_code == 400


def test_cancel_restores_stock(client, product, user_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 3}]).json()["data"]
    response = client.put(f"/orders/{order['id']}/cancel", headers=auth(user_token))
    assert response.status_code == 200
    assert response.json()["data"]["order_status"] == "cancelled"
    assert stock_of(product) == 10


def test_cancel_twice_restores_once(client, product, user_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 3}]).json()["data"]
    client.put(f"/orders/{order['id']}/cancel", headers=auth(user_token))
    response = client.put(f"/orders/{order['id']}/cancel", headers=auth(user_token))
    assert response.status_code == 400
    assert stock_of(product) == 10


def test_cancel_paid_order_rejected(client, product, user_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 3}]).json()["data"]
    client.put(f"/orders/{order['id']}/pay", json={"id": "PAY-1", "status": "COMPLETED"}, headers=auth(user_token))
    response = client.put(f"/orders/{order['id']}/cancel", headers=auth(user_token))
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot cancel a paid order"
    assert stock_of(product) == 7


def test_cancelled_order_cannot_be_paid(client, product, user_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 3}]).json()["data"]
    client.put(f"/orders/{order['id']}/cancel", headers=auth(user_token))
    response = client.put(f"/orders/{order['id']}/pay", json={"id": "PAY-1"}, headers=auth(user_token))
    assert response.status_code == 400
    assert response.json()["message"] == "Cannot pay a cancelled order"
    stored = db["order"].find_one({"_id": ObjectId(order["id"])})
    assert stored["order_status"] == "cancelled"
    assert stored["is_paid"] is False
    assert stock_of(product) == 10


def test_pay_is_idempotent(client, product, user_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}]).json()["data"]
    url = f"/orders/{order['id']}/pay"
    first = client.put(url, json={"id": "PAY-1", "status": "COMPLETED", "payer": {"email_address": "p@x.com"}},
                       headers=auth(user_token))
    second = client.put(url, json={"id": "PAY-1", "status": "COMPLETED"}, headers=auth(user_token))
    assert first.status_code == 200
    assert second.status_code == 200
    data = second.json()["data"]
    assert data["is_paid"] is True
    assert data["order_status"] == "processing"
    assert data["paid_at"]
    assert first.json()["data"]["payment_result"]["email_address"] == "p@x.com"


def test_other_user_cannot_view_or_pay(client, product, user_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}]).json()["data"]
    other, _ = register(client, "Bob", "bob@example.com")
    assert client.get(f"/orders/{order['id']}", headers=auth(other)).status_code == 403
    assert client.put(f"/orders/{order['id']}/pay", json={}, headers=auth(other)).status_code == 403


def test_admin_can_view_any_order(client, product, user_token, admin_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}]).json()["data"]
    response = client.get(f"/orders/{order['id']}", headers=auth(admin_token))
    assert response.status_code == 200


def test_my_orders_and_admin_list(client, product, user_token, admin_token):
    place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}])
    place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}])
    mine = client.get("/orders/myorders", headers=auth(user_token)).json()
    assert mine["pagination"]["total"] == 2
    assert client.get("/orders", headers=auth(user_token)).status_code == 403
    everything = client.get("/orders", headers=auth(admin_token)).json()
    assert everything["pagination"]["total"] == 2


def test_status_delivered_sets_flags_even_if_email_fails(client, product, user_token, admin_token, monkeypatch):
    calls = []

    def failing_send(payload):
        calls.append(payload)
        raise RuntimeError("smtp down")

    monkeypatch.setattr(emails.resend, "api_key", "re_test")
    monkeypatch.setattr(emails.resend.Emails, "send", failing_send)

    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}]).json()["data"]
    response = client.put(f"/orders/{order['id']}/status", json={"status": "delivered"}, headers=auth(admin_token))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["is_delivered"] is True
    assert data["delivered_at"]
    assert data["order_status"] == "delivered"
    assert any("Order Update" in c["subject"] for c in calls)


def test_status_requires_admin(client, product, user_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}]).json()["data"]
    response = client.put(f"/orders/{order['id']}/status", json={"status": "shipped"}, headers=auth(user_token))
    assert response.status_code == 403


def test_deliver_endpoint(client, product, user_token, admin_token):
    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}]).json()["data"]
    response = client.put(
        f"/orders/{order['id']}/deliver", json={"tracking_number": "TRK123"}, headers=auth(admin_token),
    )
    data = response.json()["data"]
    assert data["is_delivered"] is True
    assert data["tracking_number"] == "TRK123"


def test_status_email_escapes_tracking_number(client, product, user_token, admin_token, monkeypatch):
    sent = []

    def capture(payload):
        sent.append(payload)
        return {"id": "email-1"}

    monkeypatch.setattr(emails.resend, "api_key", "re_test")
    monkeypatch.setattr(emails.resend.Emails, "send", capture)

    order = place_order(client, user_token, [{"product_id": product["id"], "quantity": 1}]).json()["data"]
    client.put(
        f"/orders/{order['id']}/status",
        json={"status": "shipped", "tracking_number": "<script>1Z</script>"},
        headers=auth(admin_token),
    )
    update = next(p for p in sent if p["subject"].startswith("Order Update"))
    assert "&lt;script&gt;1Z&lt;/script&gt;" in update["html"]
    assert "<script>" not in update["html"]
