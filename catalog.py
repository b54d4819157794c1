import logging
import math
import re
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument

from database import create_document, db, now, paginate, serialize_doc, to_obj_id
from errors import Conflict, DuplicateReview, Forbidden, NotFound
from schemas import Product, ProductUpdateBody, Review

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


def slugify(name: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9 ]", "", name.lower())
    return re.sub(r"\s+", "-", slug.strip())


def rating_summary(reviews: list) -> dict:
    """num_reviews and the mean rating rounded half up to one decimal (4.25 -> 4.3)."""
    if not reviews:
        return {"num_reviews": 0, "rating": 0}
    mean = sum(r["rating"] for r in reviews) / len(reviews)
    return {"num_reviews": len(reviews), "rating": math.floor(mean * 10 + 0.5) / 10}


def _find(product_id: str) -> dict:
    doc = db["product"].find_one({"_id": to_obj_id(product_id)})
    if not doc:
        raise NotFound("Product not found")
    return doc


def list_products(page: int = 1, limit: int = 12, category: Optional[str] = None,
                  min_price: Optional[float] = None, max_price: Optional[float] = None,
                  search: Optional[str] = None):
    filt = {"is_active": True}
    if category:
        filt["category"] = category
    if min_price is not None or max_price is not None:
        filt["price"] = {}
        if min_price is not None:
            filt["price"]["$gte"] = min_price
        if max_price is not None:
            filt["price"]["$lte"] = max_price
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        filt["$or"] = [{"name": pattern}, {"description": pattern}, {"tags": pattern}]
    docs, pagination = paginate("product", filt, page, min(limit, MAX_PAGE_SIZE))
    return [serialize_doc(d) for d in docs], pagination


def get_product(product_id: str) -> dict:
    return serialize_doc(_find(product_id))


def get_product_by_slug(slug: str) -> dict:
    doc = db["product"].find_one({"slug": slug})
    if not doc:
        raise NotFound("Product not found")
    return serialize_doc(doc)


def list_categories():
    return sorted(c for c in db["product"].distinct("category", {"is_active": True}) if c)


def list_brands():
    return sorted(b for b in db["product"].distinct("brand", {"is_active": True}) if b)


def list_featured(limit: int = 8):
    docs = db["product"].find({"is_featured": True, "is_active": True}).sort("rating", -1).limit(limit)
    return [serialize_doc(d) for d in docs]


def create_product(body: Product, created_by: Optional[str] = None) -> dict:
    data = body.model_dump()
    if data.get("sku"):
        data["sku"] = data["sku"].upper()
        if db["product"].find_one({"sku": data["sku"]}):
            raise Conflict("Product with this SKU already exists")
    data.update(
        slug=slugify(data["name"]),
        reviews=[],
        reviews_rev=0,
        num_reviews=0,
        rating=0,
        created_by=created_by,
    )
    product_id = create_document("product", data)
    logger.info("Created product %s (%s)", product_id, data["name"])
    return get_product(product_id)


def update_product(product_id: str, body: ProductUpdateBody) -> dict:
    update = body.model_dump(exclude_none=True)
    if "name" in update:
        update["slug"] = slugify(update["name"])
    if "sku" in update:
        update["sku"] = update["sku"].upper()
        clash = db["product"].find_one({"sku": update["sku"], "_id": {"$ne": to_obj_id(product_id)}})
        if clash:
            raise Conflict("Product with this SKU already exists")
    update["updated_at"] = now()
    doc = db["product"].find_one_and_update(
        {"_id": to_obj_id(product_id)},
        {"$set": update},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise NotFound("Product not found")
    return serialize_doc(doc)


def delete_product(product_id: str):
    res = db["product"].delete_one({"_id": to_obj_id(product_id)})
    if res.deleted_count == 0:
        raise NotFound("Product not found")
    logger.info("Deleted product %s", product_id)


def _recompute_rating(oid: ObjectId) -> dict:
    """Write num_reviews and rating from the reviews array.

    Every review push or pull bumps `reviews_rev`. The summary is only written
    if the revision it was computed from is still current; otherwise another
    review landed in between and the summary is computed again.
    """
    while True:
        doc = db["product"].find_one({"_id": oid})
        if not doc:
            raise NotFound("Product not found")
        summary = rating_summary(doc.get("reviews", []))
        updated = db["product"].find_one_and_update(
            {"_id": oid, "reviews_rev": doc.get("reviews_rev")},
            {"$set": {**summary, "updated_at": now()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is not None:
            return updated
        logger.debug("Reviews of product %s changed while rating; retrying", oid)


def add_review(product_id: str, user: dict, rating: int, comment: str) -> dict:
    oid = to_obj_id(product_id)
    review = Review(
        id=str(ObjectId()),
        user_id=user["id"],
        name=user["name"],
        rating=rating,
        comment=comment,
        created_at=now(),
    ).model_dump()
    # the user filter makes check-and-append one step
    res = db["product"].update_one(
        {"_id": oid, "reviews.user_id": {"$ne": user["id"]}},
        {"$push": {"reviews": review}, "$inc": {"reviews_rev": 1}},
    )
    if res.matched_count == 0:
        if db["product"].count_documents({"_id": oid}) == 0:
            raise NotFound("Product not found")
        raise DuplicateReview("Product already reviewed")
    doc = _recompute_rating(oid)
    logger.info("User %s reviewed product %s (%s stars)", user["id"], product_id, rating)
    return serialize_doc(doc)


def delete_review(product_id: str, review_id: str, user: dict) -> dict:
    doc = _find(product_id)
    review = next((r for r in doc.get("reviews", []) if r["id"] == review_id), None)
    if not review:
        raise NotFound("Review not found")
    if review["user_id"] != user["id"] and user.get("role") != "admin":
        raise Forbidden("Not authorized to delete this review")
    db["product"].update_one(
        {"_id": doc["_id"]}, {"$pull": {"reviews": {"id": review_id}}, "$inc": {"reviews_rev": 1}},
    )
    return serialize_doc(_recompute_rating(doc["_id"]))
