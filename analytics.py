"""Read-only dashboard figures for admins."""
import logging
from datetime import timedelta

from pymongo import ReturnDocument

from database import db, get_documents, now, serialize_doc, to_obj_id
from errors import NotFound

logger = logging.getLogger(__name__)

LINE_REVENUE = {"$multiply": ["$order_items.quantity", "$order_items.price"]}


def _users_by_id(user_ids):
    oids = [to_obj_id(u) for u in user_ids if u]
    return {str(u["_id"]): u for u in db["user"].find({"_id": {"$in": oids}}, {"name": 1, "email": 1})}


def _total(pipeline, collection="order", field="total") -> float:
    rows = list(db[collection].aggregate(pipeline))
    return rows[0][field] if rows else 0


def platform_stats() -> dict:
    total_orders = db["order"].count_documents({})
    paid_orders = db["order"].count_documents({"is_paid": True})
    revenue = _total([
        {"$match": {"is_paid": True}},
        {"$group": {"_id": None, "total": {"$sum": "$total_price"}}},
    ])
    return {
        "total_users": db["user"].count_documents({}),
        "total_orders": total_orders,
        "total_products": db["product"].count_documents({}),
        "total_stores": db["store"].count_documents({}),
        "total_revenue": round(revenue, 2),
        "paid_orders": paid_orders,
        "conversion_rate": round(paid_orders / total_orders * 100, 2) if total_orders else 0,
        "average_order_value": round(revenue / paid_orders, 2) if paid_orders else 0,
    }


def revenue_trends(days: int = 30):
    since = now() - timedelta(days=days)
    rows = db["order"].aggregate([
        {"$match": {"is_paid": True, "paid_at": {"$gte": since}}},
        {"$group": {
            "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$paid_at"}},
            "revenue": {"$sum": "$total_price"},
            "orders": {"$sum": 1},
        }},
        {"$sort": {"_id": 1}},
    ])
    return [{"date": r["_id"], "revenue": round(r["revenue"], 2), "orders": r["orders"]} for r in rows]


def top_products(limit: int = 10):
    rows = db["order"].aggregate([
        {"$match": {"is_paid": True}},
        {"$unwind": "$order_items"},
        {"$group": {
            "_id": "$order_items.product_id",
            "name": {"$first": "$order_items.name"},
            "sold": {"$sum": "$order_items.quantity"},
            "revenue": {"$sum": LINE_REVENUE},
        }},
        {"$sort": {"sold": -1}},
        {"$limit": limit},
    ])
    return [{"product_id": r["_id"], "name": r["name"], "sold": r["sold"], "revenue": round(r["revenue"], 2)}
            for r in rows]


def user_growth(days: int = 30):
    since = now() - timedelta(days=days)
    rows = db["user"].aggregate([
        {"$match": {"created_at": {"$gte": since}}},
        {"$group": {
            "_id": {"$dateToString": {"format": "%Y-%m-%d", "date": "$created_at"}},
            "new_users": {"$sum": 1},
        }},
        {"$sort": {"_id": 1}},
    ])
    return [{"date": r["_id"], "new_users": r["new_users"]} for r in rows]


def category_performance():
    # product_id is stored as a string, so categories are joined here rather than with $lookup
    sales = top_products(limit=10_000)
    ids = [to_obj_id(s["product_id"]) for s in sales]
    categories = {str(p["_id"]): p.get("category") for p in db["product"].find({"_id": {"$in": ids}}, {"category": 1})}
    totals = {}
    for s in sales:
        category = categories.get(s["product_id"])
        if category is None:
            continue
        entry = totals.setdefault(category, {"category": category, "total_sales": 0, "total_revenue": 0.0})
        entry["total_sales"] += s["sold"]
        entry["total_revenue"] = round(entry["total_revenue"] + s["revenue"], 2)
    return sorted(totals.values(), key=lambda c: c["total_revenue"], reverse=True)


def top_sellers(limit: int = 10):
    stores = list(db["store"].find().sort("total_earnings", -1).limit(limit))
    owners = _users_by_id([s["owner_id"] for s in stores])
    result = []
    for store in stores:
        doc = serialize_doc(store)
        owner = owners.get(store["owner_id"])
        doc["owner"] = {"id": store["owner_id"], "name": owner.get("name"), "email": owner.get("email")} if owner else None
        result.append(doc)
    return result


def order_status_distribution():
    rows = db["order"].aggregate([{"$group": {"_id": "$order_status", "count": {"$sum": 1}}}])
    return {r["_id"]: r["count"] for r in rows}


def customer_insights() -> dict:
    per_customer = list(db["order"].aggregate([
        {"$group": {"_id": "$user_id", "orders": {"$sum": 1}}},
    ]))
    spending = list(db["order"].aggregate([
        {"$match": {"is_paid": True}},
        {"$group": {"_id": "$user_id", "total_spent": {"$sum": "$total_price"}, "order_count": {"$sum": 1}}},
        {"$sort": {"total_spent": -1}},
    ]))
    users = _users_by_id([s["_id"] for s in spending[:10]])
    top = []
    for s in spending[:10]:
        user = users.get(s["_id"])
        top.append({
            "user_id": s["_id"],
            "name": user.get("name") if user else None,
            "email": user.get("email") if user else None,
            "total_spent": round(s["total_spent"], 2),
            "order_count": s["order_count"],
        })
    return {
        "total_customers": db["user"].count_documents({"role": "user"}),
        "return_customers": sum(1 for c in per_customer if c["orders"] > 1),
        "average_spent": round(sum(s["total_spent"] for s in spending) / len(spending), 2) if spending else 0,
        "top_customers": top,
    }


def pending_verifications():
    return [serialize_doc(s) for s in get_documents("store", {"is_verified": False})]


def verify_store(store_id: str) -> dict:
    doc = db["store"].find_one_and_update(
        {"_id": to_obj_id(store_id)},
        {"$set": {"is_verified": True, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Store not found")
    logger.info("Store %s verified", store_id)
    return serialize_doc(doc)


def payment_metrics() -> dict:
    return {
        "total_payments_made": db["order"].count_documents({"is_paid": True}),
        "pending_payments": db["order"].count_documents({"is_paid": False, "order_status": {"$ne": "cancelled"}}),
        "failed_payments": db["order"].count_documents({"is_paid": False, "order_status": "cancelled"}),
    }
