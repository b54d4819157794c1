"""
Seller stores, their products and orders, earnings and withdrawals.

A seller's products are the products they created (`created_by`), and a
seller's orders are the orders with at least one of those products in them.
Store totals (earnings, orders, products) are recomputed from orders each
time earnings are read rather than maintained on every write.
"""
import logging
import re
from datetime import datetime
from typing import List, Optional

from pymongo import ReturnDocument

from catalog import create_product
from database import create_document, db, now, paginate, serialize_doc, to_obj_id
from errors import Conflict, InvalidState, NotFound
from roles import system_role_id
from schemas import BankDetails, Product, Store, StoreCreateBody, StoreUpdateBody, Withdrawal, WithdrawalProcessBody

logger = logging.getLogger(__name__)

EARNING_STATUSES = ("shipped", "delivered")
DEFAULT_COMMISSION = 10
OPEN_WITHDRAWAL_STATUSES = ("pending", "processing")


def store_slug(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def _store_of(owner_id: str) -> dict:
    store = db["store"].find_one({"owner_id": owner_id})
    if not store:
        raise NotFound("Store not found")
    return store


def _product_ids(owner_id: str) -> List[str]:
    return [str(p["_id"]) for p in db["product"].find({"created_by": owner_id}, {"_id": 1})]


def create_store(user: dict, body: StoreCreateBody) -> dict:
    if db["store"].find_one({"owner_id": user["id"]}):
        raise Conflict("You already have a store")
    slug = store_slug(body.name)
    if db["store"].find_one({"slug": slug}):
        raise Conflict("A store with this name already exists")

    data = body.model_dump(exclude_none=True)
    stamp = now()
    store = Store(owner_id=user["id"], slug=slug, **data)
    doc = store.model_dump()
    doc["metadata"] = {"views": 0, "joined_date": stamp, "last_updated": stamp}
    store_id = create_document("store", doc)

    if user.get("role") == "user":
        db["user"].update_one(
            {"_id": to_obj_id(user["id"])},
            {"$set": {"role": "seller", "role_id": system_role_id("seller"), "updated_at": stamp}},
        )
        logger.info("User %s promoted to seller", user["id"])
    logger.info("Store %s (%s) opened by %s", store_id, slug, user["id"])
    return serialize_doc(db["store"].find_one({"_id": to_obj_id(store_id)}))


def get_store(owner_id: str) -> dict:
    store = serialize_doc(_store_of(owner_id))
    owner = db["user"].find_one({"_id": to_obj_id(owner_id)}, {"name": 1, "email": 1, "avatar": 1})
    if owner:
        store["owner"] = {"id": owner_id, "name": owner.get("name"), "email": owner.get("email"),
                          "avatar": owner.get("avatar")}
    return store


def update_store(owner_id: str, body: StoreUpdateBody) -> dict:
    update = body.model_dump(exclude_none=True)
    stamp = now()
    update["updated_at"] = stamp
    update["metadata.last_updated"] = stamp
    doc = db["store"].find_one_and_update(
        {"owner_id": owner_id}, {"$set": update}, return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Store not found")
    return serialize_doc(doc)


def get_public_store(slug: str) -> dict:
    doc = db["store"].find_one_and_update(
        {"slug": slug, "is_active": True},
        {"$inc": {"metadata.views": 1}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Store not found")
    store = serialize_doc(doc)
    store.pop("bank_details", None)
    owner = db["user"].find_one({"_id": to_obj_id(doc["owner_id"])}, {"name": 1})
    store["owner"] = {"id": doc["owner_id"], "name": owner.get("name")} if owner else None
    products = db["product"].find({"created_by": doc["owner_id"], "is_active": True}).limit(20)
    store["products"] = [serialize_doc(p) for p in products]
    return store


def toggle_follow(user: dict, store_id: str) -> dict:
    oid = to_obj_id(store_id)
    # both branches are conditional so a double click cannot follow twice
    res = db["store"].update_one({"_id": oid, "followers": {"$ne": user["id"]}},
                                 {"$push": {"followers": user["id"]}})
    if res.matched_count:
        return {"following": True}
    res = db["store"].update_one({"_id": oid, "followers": user["id"]},
                                 {"$pull": {"followers": user["id"]}})
    if res.matched_count:
        return {"following": False}
    raise NotFound("Store not found")


def list_seller_products(owner_id: str, page: int = 1, limit: int = 20):
    _store_of(owner_id)
    docs, pagination = paginate("product", {"created_by": owner_id}, page, limit)
    return [serialize_doc(d) for d in docs], pagination


def create_seller_product(owner: dict, body: Product) -> dict:
    _store_of(owner["id"])
    return create_product(body, created_by=owner["id"])


def list_seller_orders(owner_id: str, page: int = 1, limit: int = 20):
    _store_of(owner_id)
    filt = {"order_items.product_id": {"$in": _product_ids(owner_id)}}
    docs, pagination = paginate("order", filt, page, limit)
    return [serialize_doc(d) for d in docs], pagination


def get_earnings(owner_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    """Revenue from the seller's own line items on paid, shipped or delivered
    orders, less the platform commission."""
    store = _store_of(owner_id)
    product_ids = set(_product_ids(owner_id))

    filt = {
        "is_paid": True,
        "order_status": {"$in": list(EARNING_STATUSES)},
        "order_items.product_id": {"$in": list(product_ids)},
    }
    if start or end:
        filt["paid_at"] = {}
        if start:
            filt["paid_at"]["$gte"] = start
        if end:
            filt["paid_at"]["$lte"] = end

    revenue = 0.0
    orders = 0
    items = 0
    for order in db["order"].find(filt, {"order_items": 1}):
        mine = [i for i in order["order_items"] if i["product_id"] in product_ids]
        if not mine:
            continue
        orders += 1
        items += sum(i["quantity"] for i in mine)
        revenue += sum(i["price"] * i["quantity"] for i in mine)

    commission = store.get("commission_rate", DEFAULT_COMMISSION)
    revenue = round(revenue, 2)
    platform_fee = round(revenue * commission / 100, 2)
    net = round(revenue - platform_fee, 2)

    if not (start or end):
        db["store"].update_one(
            {"_id": store["_id"]},
            {"$set": {"total_earnings": net, "total_orders": orders, "total_products": len(product_ids)}},
        )

    return {
        "total_revenue": revenue,
        "platform_commission": commission,
        "platform_fee": platform_fee,
        "net_earnings": net,
        "total_orders": orders,
        "total_items": items,
    }


def get_dashboard(owner_id: str) -> dict:
    earnings = get_earnings(owner_id)
    store = _store_of(owner_id)
    product_ids = _product_ids(owner_id)
    recent = (
        db["order"].find({"order_items.product_id": {"$in": product_ids}})
        .sort("created_at", -1)
        .limit(5)
    )
    top = db["product"].find({"created_by": owner_id}).sort("rating", -1).limit(5)
    return {
        "store": serialize_doc(store),
        "earnings": earnings,
        "recent_orders": [serialize_doc(o) for o in recent],
        "top_products": [serialize_doc(p) for p in top],
        "total_products": len(product_ids),
        "store_stats": {
            "followers": len(store.get("followers", [])),
            "rating": store.get("rating", 0),
            "total_reviews": store.get("total_reviews", 0),
        },
    }


def available_balance(owner_id: str) -> float:
    net = get_earnings(owner_id)["net_earnings"]
    committed = sum(
        w["amount"] for w in db["withdrawal"].find(
            {"seller_id": owner_id, "status": {"$ne": "rejected"}}, {"amount": 1},
        )
    )
    return round(net - committed, 2)


def request_withdrawal(owner_id: str, amount: float, bank_details: Optional[BankDetails] = None) -> dict:
    store = _store_of(owner_id)
    balance = available_balance(owner_id)
    if amount > balance:
        logger.info("Withdrawal of %.2f refused for %s, balance %.2f", amount, owner_id, balance)
        raise InvalidState("Insufficient balance for withdrawal")
    details = bank_details or BankDetails(**store.get("bank_details", {}))
    withdrawal = Withdrawal(seller_id=owner_id, amount=amount, bank_details=details, requested_at=now())
    withdrawal_id = create_document("withdrawal", withdrawal)
    # a concurrent request may have passed the same check; with both recorded one must give way
    if available_balance(owner_id) < 0:
        db["withdrawal"].delete_one({"_id": to_obj_id(withdrawal_id)})
        logger.info("Withdrawal of %.2f by %s withdrawn after a concurrent request", amount, owner_id)
        raise InvalidState("Insufficient balance for withdrawal")
    logger.info("Withdrawal %s of %.2f requested by %s", withdrawal_id, amount, owner_id)
    return serialize_doc(db["withdrawal"].find_one({"_id": to_obj_id(withdrawal_id)}))


def list_withdrawals(owner_id: str, page: int = 1, limit: int = 20):
    docs, pagination = paginate("withdrawal", {"seller_id": owner_id}, page, limit)
    return [serialize_doc(d) for d in docs], pagination


def list_all_withdrawals(page: int = 1, limit: int = 20, status: Optional[str] = None):
    filt = {"status": status} if status else {}
    docs, pagination = paginate("withdrawal", filt, page, limit)
    return [serialize_doc(d) for d in docs], pagination


def process_withdrawal(withdrawal_id: str, body: WithdrawalProcessBody) -> dict:
    """Move a pending or processing withdrawal on. Completed and rejected are final."""
    oid = to_obj_id(withdrawal_id)
    stamp = now()
    update = {"status": body.status, "processed_at": stamp, "updated_at": stamp}
    if body.status == "completed":
        update["completed_at"] = stamp
    if body.transaction_id:
        update["transaction_id"] = body.transaction_id
    if body.notes:
        update["notes"] = body.notes
    if body.status == "rejected":
        update["rejection_reason"] = body.rejection_reason
    doc = db["withdrawal"].find_one_and_update(
        {"_id": oid, "status": {"$in": list(OPEN_WITHDRAWAL_STATUSES)}},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        current = db["withdrawal"].find_one({"_id": oid}, {"status": 1})
        if not current:
            raise NotFound("Withdrawal not found")
        raise InvalidState(f"Withdrawal is already {current['status']}")
    logger.info("Withdrawal %s -> %s", withdrawal_id, body.status)
    return serialize_doc(doc)
