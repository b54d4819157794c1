import logging
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from fastapi import Depends, FastAPI, Query, Response
from fastapi.middleware.cors import CORSMiddleware

import analytics
import catalog
import orders
import roles
import sellers
import site_config
from database import create_document, db, ensure_indexes, now, to_obj_id
from emails import send_welcome
from errors import Conflict, Forbidden, Unauthorized, ValidationFailed, register_error_handlers
from responses import ok
from schemas import (
    AdminPreferencesUpdateBody,
    AssignRoleBody,
    BrandingConfig,
    DeliverBody,
    FeatureFlags,
    FeatureToggleBody,
    FilterType,
    LayoutConfig,
    LoginBody,
    MaintenanceBody,
    NotificationConfig,
    OrderCreateBody,
    OrderStatusBody,
    PaymentBody,
    Permission,
    Product as ProductSchema,
    ProductUpdateBody,
    RearrangeWidgetsBody,
    RegisterBody,
    ReviewBody,
    Role as RoleSchema,
    RoleUpdateBody,
    SavedFilter,
    SavedFilterUpdateBody,
    SavedReport,
    StoreCreateBody,
    StoreUpdateBody,
    ThemeConfig,
    UpdateDetailsBody,
    UpdatePasswordBody,
    User as UserSchema,
    WithdrawalBody,
    WithdrawalProcessBody,
)
from security import (
    get_current_admin,
    get_current_user,
    hash_password,
    issue_token,
    public_user,
    require_permission,
    require_roles,
    verify_password,
)
from settings import ADMIN_EMAIL, ADMIN_PASSWORD, ENABLE_SEED, setup_logging

logger = logging.getLogger(__name__)

get_current_seller = require_roles("seller", "admin")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    ensure_indexes()
    roles.init_system_roles()
    logger.info("E-commerce API started")
    yield


app = FastAPI(title="E-commerce Backend", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_error_handlers(app)


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "E-commerce API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = db.list_collection_names()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Database health check failed: %s", e)
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/register", status_code=201)
def register(body: RegisterBody, response: Response):
    email = body.email.lower()
    if db["user"].find_one({"email": email}):
        raise Conflict("User already exists with this email")
    user = UserSchema(
        name=body.name,
        email=email,
        password_hash=hash_password(body.password),
        role="user",
        role_id=roles.system_role_id("user"),
        email_verification_token=secrets.token_hex(20),
    )
    user_id = create_document("user", user)
    created = public_user(db["user"].find_one({"_id": to_obj_id(user_id)}))
    logger.info("Registered user %s", user_id)
    send_welcome(email, body.name)
    token = issue_token(created, response)
    return ok(created, "User registered successfully", token=token)


@app.post("/auth/login")
def login(body: LoginBody, response: Response):
    doc = db["user"].find_one({"email": body.email.lower()})
    if not doc or not verify_password(body.password, doc.get("password_hash")):
        raise Unauthorized("Invalid credentials")
    user = public_user(doc)
    token = issue_token(user, response)
    return ok(user, "Login successful", token=token)


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return ok(user)


@app.post("/auth/logout")
def logout(response: Response, user=Depends(get_current_user)):
    response.delete_cookie("token")
    return ok(message="Logged out successfully")


@app.put("/auth/updatedetails")
def update_details(body: UpdateDetailsBody, user=Depends(get_current_user)):
    update = body.model_dump(exclude_none=True)
    if "email" in update:
        update["email"] = update["email"].lower()
        clash = db["user"].find_one({"email": update["email"], "_id": {"$ne": to_obj_id(user["id"])}})
        if clash:
            raise Conflict("Email already in use")
    update["updated_at"] = now()
    db["user"].update_one({"_id": to_obj_id(user["id"])}, {"$set": update})
    return ok(public_user(db["user"].find_one({"_id": to_obj_id(user["id"])})), "Details updated")


@app.put("/auth/updatepassword")
def update_password(body: UpdatePasswordBody, response: Response, user=Depends(get_current_user)):
    doc = db["user"].find_one({"_id": to_obj_id(user["id"])})
    if not verify_password(body.current_password, doc.get("password_hash")):
        raise Unauthorized("Password is incorrect")
    db["user"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"password_hash": hash_password(body.new_password), "updated_at": now()}},
    )
    token = issue_token(user, response)
    return ok(user, "Password updated", token=token)


@app.get("/auth/verify/{token}")
def verify_email(token: str):
    doc = db["user"].find_one_and_update(
        {"email_verification_token": token},
        {"$set": {"is_email_verified": True, "email_verification_token": None, "updated_at": now()}},
    )
    if not doc:
        raise ValidationFailed("Invalid or expired verification token")
    return ok(message="Email verified successfully")


@app.get("/auth/permissions")
def my_permissions(user=Depends(get_current_user)):
    return ok(roles.get_user_permissions(user["id"]))


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1),
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    search: Optional[str] = None,
):
    items, pagination = catalog.list_products(page, limit, category, min_price, max_price, search)
    return ok(items, pagination=pagination)


@app.get("/products/categories")
def product_categories():
    return ok(catalog.list_categories())


@app.get("/products/brands")
def product_brands():
    return ok(catalog.list_brands())


@app.get("/products/featured")
def featured_products(limit: int = Query(8, ge=1, le=50)):
    return ok(catalog.list_featured(limit))


@app.get("/products/slug/{slug}")
def get_product_by_slug(slug: str):
    return ok(catalog.get_product_by_slug(slug))


@app.get("/products/{product_id}")
def get_product(product_id: str):
    return ok(catalog.get_product(product_id))


@app.post("/products", status_code=201)
def create_product(body: ProductSchema, user=Depends(get_current_admin)):
    return ok(catalog.create_product(body, created_by=user["id"]), "Product created")


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user=Depends(get_current_admin)):
    return ok(catalog.update_product(product_id, body), "Product updated")


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_admin)):
    catalog.delete_product(product_id)
    return ok(message="Product deleted")


@app.post("/products/{product_id}/reviews", status_code=201)
def add_review(product_id: str, body: ReviewBody, user=Depends(get_current_user)):
    return ok(catalog.add_review(product_id, user, body.rating, body.comment), "Review added")


@app.delete("/products/{product_id}/reviews/{review_id}")
def delete_review(product_id: str, review_id: str, user=Depends(get_current_user)):
    return ok(catalog.delete_review(product_id, review_id, user), "Review removed")


# ----------------------- Orders -----------------------
@app.post("/orders", status_code=201)
def create_order(body: OrderCreateBody, user=Depends(get_current_user)):
    return ok(orders.create_order(user, body), "Order created")


@app.get("/orders/myorders")
def my_orders(page: int = Query(1, ge=1), limit: int = Query(10, ge=1, le=100), user=Depends(get_current_user)):
    items, pagination = orders.list_user_orders(user["id"], page, limit)
    return ok(items, pagination=pagination)


@app.get("/orders")
def all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    user=Depends(get_current_admin),
):
    items, pagination = orders.list_orders(page, limit, status)
    return ok(items, pagination=pagination)


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    return ok(orders.get_order(order_id, user))


@app.put("/orders/{order_id}/pay")
def pay_order(order_id: str, body: PaymentBody, user=Depends(get_current_user)):
    return ok(orders.mark_paid(order_id, user, body.to_result()), "Order paid")


@app.put("/orders/{order_id}/deliver")
def deliver_order(order_id: str, body: Optional[DeliverBody] = None, user=Depends(get_current_admin)):
    tracking = body.tracking_number if body else None
    return ok(orders.mark_delivered(order_id, tracking), "Order delivered")


@app.put("/orders/{order_id}/status")
def update_order_status(order_id: str, body: OrderStatusBody, user=Depends(get_current_admin)):
    return ok(orders.update_status(order_id, body.status, body.tracking_number, body.notes), "Order status updated")


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user)):
    return ok(orders.cancel_order(order_id, user), "Order cancelled")


# ----------------------- Site config -----------------------
@app.get("/config/public")
def public_config():
    return ok(site_config.public_config())


@app.get("/config/public/theme")
def public_theme():
    return ok(site_config.get_section("theme"))


@app.get("/config/public/branding")
def public_branding():
    return ok(site_config.get_section("branding"))


@app.get("/config/public/features")
def public_features():
    return ok(site_config.get_section("features"))


@app.get("/config")
def full_config(user=Depends(get_current_admin)):
    return ok(site_config.get_config())


@app.put("/config/theme")
def update_theme(body: ThemeConfig, user=Depends(get_current_admin)):
    return ok(site_config.update_section("theme", body), "Theme updated")


@app.put("/config/branding")
def update_branding(body: BrandingConfig, user=Depends(get_current_admin)):
    return ok(site_config.update_section("branding", body), "Branding updated")


@app.put("/config/layout")
def update_layout(body: LayoutConfig, user=Depends(get_current_admin)):
    return ok(site_config.update_section("layout", body), "Layout updated")


@app.put("/config/features")
def update_features(body: FeatureFlags, user=Depends(get_current_admin)):
    return ok(site_config.update_section("features", body), "Features updated")


@app.put("/config/notifications")
def update_notifications(body: NotificationConfig, user=Depends(get_current_admin)):
    return ok(site_config.update_section("notifications", body), "Notifications updated")


@app.put("/config/features/{feature_name}")
def toggle_feature(feature_name: str, body: FeatureToggleBody, user=Depends(get_current_admin)):
    return ok(site_config.toggle_feature(feature_name, body.enabled), f"Feature {feature_name} updated")


@app.post("/config/maintenance")
def maintenance(body: MaintenanceBody, user=Depends(get_current_admin)):
    return ok(site_config.set_maintenance(body.enabled, body.message), "Maintenance mode updated")


@app.get("/config/admin/preferences")
def get_preferences(user=Depends(get_current_admin)):
    return ok(site_config.get_preferences(user["id"]))


@app.put("/config/admin/preferences")
def update_preferences(body: AdminPreferencesUpdateBody, user=Depends(get_current_admin)):
    return ok(site_config.update_preferences(user["id"], body), "Preferences updated")


@app.put("/config/admin/preferences/widgets/rearrange")
def rearrange_widgets(body: RearrangeWidgetsBody, user=Depends(get_current_admin)):
    return ok(site_config.rearrange_widgets(user["id"], body.widgets), "Widgets rearranged")


@app.put("/config/admin/preferences/widgets/{widget_id}/toggle")
def toggle_widget(widget_id: str, user=Depends(get_current_admin)):
    return ok(site_config.toggle_widget(user["id"], widget_id), "Widget toggled")


@app.get("/config/admin/preferences/filters")
def list_filters(type: Optional[FilterType] = None, user=Depends(get_current_admin)):
    return ok(site_config.list_filters(user["id"], type))


@app.post("/config/admin/preferences/filters", status_code=201)
def save_filter(body: SavedFilter, user=Depends(get_current_admin)):
    return ok(site_config.save_filter(user["id"], body), "Filter saved")


@app.put("/config/admin/preferences/filters/{name}/default")
def set_default_filter(name: str, type: Optional[FilterType] = None, user=Depends(get_current_admin)):
    return ok(site_config.set_default_filter(user["id"], name, type), "Default filter updated")


@app.put("/config/admin/preferences/filters/{name}")
def update_filter(name: str, body: SavedFilterUpdateBody, type: Optional[FilterType] = None,
                  user=Depends(get_current_admin)):
    return ok(site_config.update_filter(user["id"], name, body, type), "Filter updated")


@app.delete("/config/admin/preferences/filters/{name}")
def delete_filter(name: str, type: Optional[FilterType] = None, user=Depends(get_current_admin)):
    return ok(site_config.delete_filter(user["id"], name, type), "Filter deleted")


@app.post("/config/admin/preferences/reports", status_code=201)
def save_report(body: SavedReport, user=Depends(get_current_admin)):
    return ok(site_config.save_report(user["id"], body), "Report saved")


@app.delete("/config/admin/preferences/reports/{name}")
def delete_report(name: str, user=Depends(get_current_admin)):
    return ok(site_config.delete_report(user["id"], name), "Report deleted")


# ----------------------- Admin: roles -----------------------
@app.get("/admin/roles")
def list_roles(user=Depends(get_current_admin)):
    return ok(roles.list_roles())


@app.post("/admin/roles", status_code=201)
def create_role(body: RoleSchema, user=Depends(get_current_admin)):
    return ok(roles.create_role(body, user["id"]), "Role created")


@app.get("/admin/roles/resources/all")
def list_resources(user=Depends(get_current_admin)):
    return ok(roles.all_resources())


@app.get("/admin/roles/resources/{resource}")
def resource_actions(resource: str, user=Depends(get_current_admin)):
    return ok(roles.available_actions(resource))


@app.put("/admin/roles/assign/{user_id}")
def assign_role(user_id: str, body: AssignRoleBody, user=Depends(get_current_admin)):
    return ok(roles.assign_role(user_id, body.role_id), "Role assigned")


@app.get("/admin/roles/users/{user_id}/permissions")
def user_permissions(user_id: str, user=Depends(get_current_admin)):
    return ok(roles.get_user_permissions(user_id))


@app.get("/admin/roles/{role_id}")
def get_role(role_id: str, user=Depends(get_current_admin)):
    return ok(roles.get_role(role_id))


@app.put("/admin/roles/{role_id}")
def update_role(role_id: str, body: RoleUpdateBody, user=Depends(get_current_admin)):
    return ok(roles.update_role(role_id, body), "Role updated")


@app.delete("/admin/roles/{role_id}")
def delete_role(role_id: str, user=Depends(get_current_admin)):
    roles.delete_role(role_id)
    return ok(message="Role deleted")


@app.post("/admin/roles/{role_id}/permissions")
def add_permission(role_id: str, body: Permission, user=Depends(get_current_admin)):
    return ok(roles.add_permission(role_id, body), "Permission added")


@app.delete("/admin/roles/{role_id}/permissions/{resource}")
def remove_permission(role_id: str, resource: str, user=Depends(get_current_admin)):
    return ok(roles.remove_permission(role_id, resource), "Permission removed")


# ----------------------- Admin: analytics -----------------------
@app.get("/admin/dashboard")
def admin_dashboard(user=Depends(get_current_admin)):
    return ok(analytics.platform_stats())


@app.get("/admin/revenue-trends")
def revenue_trends(days: int = Query(30, ge=1, le=365), user=Depends(get_current_admin)):
    return ok(analytics.revenue_trends(days))


@app.get("/admin/top-products")
def top_products(limit: int = Query(10, ge=1, le=100), user=Depends(get_current_admin)):
    return ok(analytics.top_products(limit))


@app.get("/admin/user-growth")
def user_growth(days: int = Query(30, ge=1, le=365), user=Depends(get_current_admin)):
    return ok(analytics.user_growth(days))


@app.get("/admin/categories")
def category_performance(user=Depends(get_current_admin)):
    return ok(analytics.category_performance())


@app.get("/admin/top-sellers")
def top_sellers(limit: int = Query(10, ge=1, le=100), user=Depends(get_current_admin)):
    return ok(analytics.top_sellers(limit))


@app.get("/admin/order-status")
def order_status(user=Depends(get_current_admin)):
    return ok(analytics.order_status_distribution())


@app.get("/admin/customers")
def customer_insights(user=Depends(get_current_admin)):
    return ok(analytics.customer_insights())


@app.get("/admin/verifications")
def pending_verifications(user=Depends(get_current_admin)):
    return ok(analytics.pending_verifications())


@app.put("/admin/verify-store/{store_id}")
def verify_store(store_id: str, user=Depends(get_current_admin)):
    return ok(analytics.verify_store(store_id), "Store verified")


@app.get("/admin/payments")
def payment_metrics(user=Depends(get_current_admin)):
    return ok(analytics.payment_metrics())


@app.get("/admin/withdrawals")
def all_withdrawals(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    user=Depends(require_permission("payments", "view")),
):
    items, pagination = sellers.list_all_withdrawals(page, limit, status)
    return ok(items, pagination=pagination)


@app.put("/admin/withdrawals/{withdrawal_id}")
def process_withdrawal(withdrawal_id: str, body: WithdrawalProcessBody,
                       user=Depends(require_permission("payments", "edit"))):
    return ok(sellers.process_withdrawal(withdrawal_id, body), "Withdrawal updated")


# ----------------------- Seller -----------------------
@app.post("/seller/store", status_code=201)
def create_store(body: StoreCreateBody, user=Depends(get_current_user)):
    return ok(sellers.create_store(user, body), "Store created")


@app.get("/seller/store")
def get_store(user=Depends(get_current_seller)):
    return ok(sellers.get_store(user["id"]))


@app.put("/seller/store")
def update_store(body: StoreUpdateBody, user=Depends(get_current_seller)):
    return ok(sellers.update_store(user["id"], body), "Store updated")


@app.get("/seller/products")
def seller_products(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                    user=Depends(get_current_seller)):
    items, pagination = sellers.list_seller_products(user["id"], page, limit)
    return ok(items, pagination=pagination)


@app.post("/seller/products", status_code=201)
def create_seller_product(body: ProductSchema, user=Depends(get_current_seller)):
    return ok(sellers.create_seller_product(user, body), "Product created")


@app.get("/seller/orders")
def seller_orders(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                  user=Depends(get_current_seller)):
    items, pagination = sellers.list_seller_orders(user["id"], page, limit)
    return ok(items, pagination=pagination)


@app.get("/seller/earnings")
def seller_earnings(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    user=Depends(get_current_seller),
):
    return ok(sellers.get_earnings(user["id"], start_date, end_date))


@app.get("/seller/dashboard")
def seller_dashboard(user=Depends(get_current_seller)):
    return ok(sellers.get_dashboard(user["id"]))


@app.post("/seller/withdraw", status_code=201)
def request_withdrawal(body: WithdrawalBody, user=Depends(get_current_seller)):
    return ok(sellers.request_withdrawal(user["id"], body.amount, body.bank_details), "Withdrawal requested")


@app.get("/seller/withdrawals")
def seller_withdrawals(page: int = Query(1, ge=1), limit: int = Query(20, ge=1, le=100),
                       user=Depends(get_current_seller)):
    items, pagination = sellers.list_withdrawals(user["id"], page, limit)
    return ok(items, pagination=pagination)


@app.get("/seller/store/{slug}")
def public_store(slug: str):
    return ok(sellers.get_public_store(slug))


@app.post("/seller/follow/{store_id}")
def follow_store(store_id: str, user=Depends(get_current_user)):
    return ok(sellers.toggle_follow(user, store_id))


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS: List[dict] = [
    {
        "name": "Wireless Earbuds Pro",
        "brand": "Soundly",
        "description": "Active noise cancelling earbuds with a 24 hour charging case.",
        "price": 129.99,
        "compare_price": 159.99,
        "category": "Electronics",
        "subcategory": "Audio",
        "images": ["https://images.unsplash.com/photo-1590658268037-6bf12165a8df"],
        "stock": 60,
        "sku": "AUD-EARBUD-PRO",
        "tags": ["audio", "wireless", "anc"],
        "is_featured": True,
    },
    {
        "name": "Ultrabook 14",
        "brand": "Northwind",
        "description": "Lightweight 14 inch laptop with all-day battery.",
        "price": 1099.0,
        "category": "Electronics",
        "subcategory": "Laptops",
        "images": ["https://images.unsplash.com/photo-1517336714731-489689fd1ca8"],
        "stock": 15,
        "sku": "LAP-UB14",
        "tags": ["laptop", "portable"],
        "is_featured": True,
    },
    {
        "name": "Mechanical Keyboard",
        "brand": "Keychron",
        "description": "Hot-swappable keyboard with RGB backlight.",
        "price": 89.0,
        "category": "Accessories",
        "images": ["https://images.unsplash.com/photo-1516382799247-87df95d790b5"],
        "stock": 30,
        "sku": "ACC-KEEB-01",
        "tags": ["keyboard", "rgb"],
    },
    {
        "name": "Trail Running Shoes",
        "brand": "Stride",
        "description": "Grippy outsole and breathable mesh upper.",
        "price": 74.5,
        "category": "Fashion",
        "subcategory": "Footwear",
        "images": ["https://images.unsplash.com/photo-1525966222134-fcfa99b8ae77"],
        "stock": 45,
        "sku": "FSH-TRAIL-42",
        "tags": ["shoes", "running"],
    },
    {
        "name": "Fitness Smartwatch",
        "brand": "Amazfit",
        "description": "Heart rate, sleep and GPS tracking with a 10 day battery.",
        "price": 149.0,
        "category": "Accessories",
        "images": ["https://images.unsplash.com/photo-1512086734732-172b66a17c72"],
        "stock": 35,
        "sku": "ACC-WATCH-10",
        "tags": ["fitness", "wearable"],
    },
]


@app.post("/seed")
def seed():
    if not ENABLE_SEED:
        raise Forbidden("Seeding is disabled")
    roles.init_system_roles()
    admin = db["user"].find_one({"email": ADMIN_EMAIL})
    if not admin:
        admin_id = create_document("user", UserSchema(
            name="Admin",
            email=ADMIN_EMAIL,
            password_hash=hash_password(ADMIN_PASSWORD),
            role="admin",
            role_id=roles.system_role_id("admin"),
            is_email_verified=True,
        ))
        logger.info("Seeded admin user %s", ADMIN_EMAIL)
    else:
        admin_id = str(admin["_id"])
    if db["product"].count_documents({}) > 0:
        return ok({"seeded": False}, "Products already exist")
    for p in DEMO_PRODUCTS:
        catalog.create_product(ProductSchema(**p), created_by=admin_id)
    return ok({"seeded": True, "products": db["product"].count_documents({})}, "Demo data seeded")


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
