"""
Order placement and fulfilment.

Stock is taken with one conditional update per line item
(`stock >= quantity` in the filter, `$inc` in the update), so two orders
racing for the last unit cannot both succeed. MongoDB gives no atomicity
across documents, so when a later line item fails the decrements already
applied for this order are handed back before the error is raised.
"""
import logging
from typing import List, Optional

from pymongo import ReturnDocument

from database import create_document, db, now, paginate, serialize_doc, to_obj_id
from emails import send_order_confirmation, send_order_status_update
from errors import Forbidden, InsufficientStock, InvalidState, NotFound, ValidationFailed
from schemas import Order, OrderCreateBody, OrderItem, PaymentResult
from security import is_owner_or_admin

logger = logging.getLogger(__name__)

CANCELLABLE = ("pending", "processing")


def order_number(order_id: str) -> str:
    return f"ORD-{order_id[-8:].upper()}"


def _present(doc: dict) -> dict:
    """Serialize an order and populate its user."""
    order = serialize_doc(doc)
    order["order_number"] = order_number(order["id"])
    user = None
    try:
        user = db["user"].find_one({"_id": to_obj_id(order["user_id"])}, {"name": 1, "email": 1})
    except ValidationFailed:
        logger.warning("Order %s has an unreadable user reference %r", order["id"], order.get("user_id"))
    order["user"] = {"id": str(user["_id"]), "name": user.get("name"), "email": user.get("email")} if user else None
    return order


def _find(order_id: str) -> dict:
    doc = db["order"].find_one({"_id": to_obj_id(order_id)})
    if not doc:
        raise NotFound("Order not found")
    return doc


def _release_stock(taken: List[OrderItem], reason: str):
    for item in taken:
        try:
            db["product"].update_one({"_id": to_obj_id(item.product_id)}, {"$inc": {"stock": item.quantity}})
        except Exception:
            logger.error(
                "RECONCILE: could not return %s unit(s) of product %s after %s",
                item.quantity, item.product_id, reason, exc_info=True,
            )


def _take_stock(items: List[OrderItem]) -> List[OrderItem]:
    taken: List[OrderItem] = []
    for item in items:
        doc = db["product"].find_one_and_update(
            {"_id": to_obj_id(item.product_id), "stock": {"$gte": item.quantity}},
            {"$inc": {"stock": -item.quantity}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            _release_stock(taken, "a failed stock reservation")
            current = db["product"].find_one({"_id": to_obj_id(item.product_id)}, {"stock": 1})
            if current is None:
                logger.warning("Product %s was deleted before its stock could be taken", item.product_id)
                raise NotFound(f"Product not found: {item.product_id}")
            available = current.get("stock", 0)
            logger.warning(
                "Insufficient stock for %s: requested %s, available %s",
                item.product_id, item.quantity, available,
            )
            raise InsufficientStock(
                f"Insufficient stock for {item.name}. Available: {available}, Requested: {item.quantity}"
            )
        taken.append(item)
    return taken


def create_order(user: dict, body: OrderCreateBody) -> dict:
    items: List[OrderItem] = []
    for line in body.order_items:
        product = db["product"].find_one({"_id": to_obj_id(line.product_id)})
        if not product:
            raise NotFound(f"Product not found: {line.product_id}")
        images = product.get("images") or []
        items.append(OrderItem(
            product_id=line.product_id,
            name=product["name"],
            price=float(product["price"]),
            quantity=line.quantity,
            image=images[0] if images else None,
        ))

    total = round(sum(i.price * i.quantity for i in items), 2)
    if body.total_price is not None and abs(body.total_price - total) > 0.005:
        logger.warning("Ignoring client total %.2f for user %s; computed %.2f", body.total_price, user["id"], total)

    taken = _take_stock(items)

    order = Order(
        user_id=user["id"],
        order_items=items,
        shipping_address=body.shipping_address,
        payment_method=body.payment_method,
        total_price=total,
    )
    try:
        order_id = create_document("order", order)
    except Exception:
        _release_stock(taken, "a failed order insert")
        raise
    logger.info("Created order %s for user %s, total %.2f", order_id, user["id"], total)

    send_order_confirmation(user.get("email"), user.get("name", ""), order_number(order_id), total)
    return _present(_find(order_id))


def get_order(order_id: str, user: dict) -> dict:
    doc = _find(order_id)
    if not is_owner_or_admin(user, doc["user_id"]):
        raise Forbidden("Not authorized to view this order")
    return _present(doc)


def list_user_orders(user_id: str, page: int = 1, limit: int = 10):
    docs, pagination = paginate("order", {"user_id": user_id}, page, limit)
    return [_present(d) for d in docs], pagination


def list_orders(page: int = 1, limit: int = 10, status: Optional[str] = None):
    filt = {"order_status": status} if status else {}
    docs, pagination = paginate("order", filt, page, limit)
    return [_present(d) for d in docs], pagination


def mark_paid(order_id: str, user: dict, payment: PaymentResult) -> dict:
    """Record a payment result. Calling it again just overwrites paid_at.

    A cancelled order has already handed its stock back, so it cannot be paid.
    """
    doc = _find(order_id)
    if not is_owner_or_admin(user, doc["user_id"]):
        raise Forbidden("Not authorized to update this order")
    stamp = now()
    paid = db["order"].find_one_and_update(
        {"_id": doc["_id"], "order_status": {"$ne": "cancelled"}},
        {"$set": {
            "is_paid": True,
            "paid_at": stamp,
            "payment_result": payment.model_dump(),
            "order_status": "processing",
            "updated_at": stamp,
        }},
        return_document=ReturnDocument.AFTER,
    )
    if paid is None:
        raise InvalidState("Cannot pay a cancelled order")
    logger.info("Order %s marked paid", order_id)
    return _present(paid)


def update_status(order_id: str, status: Optional[str] = None, tracking_number: Optional[str] = None,
                  notes: Optional[str] = None) -> dict:
    doc = _find(order_id)
    stamp = now()
    update = {"updated_at": stamp}
    if status:
        update["order_status"] = status
    if tracking_number:
        update["tracking_number"] = tracking_number
    if notes:
        update["notes"] = notes
    if status == "delivered":
        update["is_delivered"] = True
        update["delivered_at"] = stamp
    doc = db["order"].find_one_and_update({"_id": doc["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    order = _present(doc)
    logger.info("Order %s status -> %s", order_id, order["order_status"])

    if status and order["user"]:
        send_order_status_update(
            order["user"]["email"], order["user"]["name"], order["order_number"], status, tracking_number,
        )
    return order


def mark_delivered(order_id: str, tracking_number: Optional[str] = None) -> dict:
    doc = _find(order_id)
    stamp = now()
    update = {"is_delivered": True, "delivered_at": stamp, "order_status": "delivered", "updated_at": stamp}
    if tracking_number:
        update["tracking_number"] = tracking_number
    doc = db["order"].find_one_and_update({"_id": doc["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    return _present(doc)


def cancel_order(order_id: str, user: dict) -> dict:
    doc = _find(order_id)
    if not is_owner_or_admin(user, doc["user_id"]):
        raise Forbidden("Not authorized to cancel this order")
    if doc.get("is_paid"):
        raise InvalidState("Cannot cancel a paid order")
    # the guard in the filter stops two concurrent cancels both restocking
    cancelled = db["order"].find_one_and_update(
        {"_id": doc["_id"], "is_paid": False, "order_status": {"$in": list(CANCELLABLE)}},
        {"$set": {"order_status": "cancelled", "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if cancelled is None:
        raise InvalidState(f"Cannot cancel an order that is {doc.get('order_status')}")

    for item in cancelled["order_items"]:
        res = db["product"].update_one({"_id": to_obj_id(item["product_id"])}, {"$inc": {"stock": item["quantity"]}})
        if res.matched_count == 0:
            logger.warning("Product %s no longer exists; stock for order %s not restored", item["product_id"], order_id)
    logger.info("Order %s cancelled and restocked", order_id)
    return _present(cancelled)

