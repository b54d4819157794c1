"""
Site-wide configuration and per-admin dashboard preferences.

The site configuration is a single document under the fixed key `_id="site"`.
It is created with defaults on first read by an upsert, so concurrent first
reads cannot produce two documents. Every section update replaces the whole
sub-document, which makes repeating an update harmless.
"""
import logging
import re
from typing import Optional

from pydantic import BaseModel
from pymongo import ReturnDocument

from database import db, now, serialize_doc
from errors import Conflict, NotFound, ValidationFailed
from schemas import (
    AdminPreferences,
    AdminPreferencesUpdateBody,
    SavedFilter,
    SavedFilterUpdateBody,
    SavedReport,
    SiteConfig,
    WidgetConfig,
)

logger = logging.getLogger(__name__)

CONFIG_ID = "site"
SECTIONS = ("theme", "branding", "layout", "features", "notifications")
PUBLIC_FIELDS = ("theme", "branding", "layout", "features", "maintenance_mode", "maintenance_message")
FEATURE_NAME = re.compile(r"^[a-z][a-z0-9_]*$")

DEFAULT_WIDGETS = [
    WidgetConfig(id="revenue", name="Total Revenue", position=1),
    WidgetConfig(id="orders", name="Total Orders", position=2),
    WidgetConfig(id="products", name="Total Products", position=3),
    WidgetConfig(id="users", name="Total Users", position=4),
    WidgetConfig(id="revenue-trends", name="Revenue Trends", position=5, size="large"),
    WidgetConfig(id="top-products", name="Top Products", position=6, size="large"),
]


def _present(doc: dict) -> dict:
    config = serialize_doc(doc)
    config.pop("id", None)
    return config


def get_config() -> dict:
    stamp = now()
    doc = db["site_config"].find_one_and_update(
        {"_id": CONFIG_ID},
        {"$setOnInsert": {**SiteConfig().model_dump(), "created_at": stamp, "updated_at": stamp}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return _present(doc)


def public_config() -> dict:
    config = get_config()
    return {k: config.get(k) for k in PUBLIC_FIELDS}


def get_section(section: str) -> dict:
    return get_config()[section]


def update_section(section: str, value: BaseModel) -> dict:
    if section not in SECTIONS:
        raise ValidationFailed(f"Unknown configuration section: {section}")
    get_config()
    doc = db["site_config"].find_one_and_update(
        {"_id": CONFIG_ID},
        {"$set": {section: value.model_dump(), "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Site configuration section %s updated", section)
    return _present(doc)


def toggle_feature(name: str, enabled: bool) -> dict:
    if not FEATURE_NAME.match(name):
        raise ValidationFailed(f"Invalid feature name: {name}")
    get_config()
    doc = db["site_config"].find_one_and_update(
        {"_id": CONFIG_ID},
        {"$set": {f"features.{name}": enabled, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.info("Feature %s %s", name, "enabled" if enabled else "disabled")
    return _present(doc)


def set_maintenance(enabled: bool, message: Optional[str] = None) -> dict:
    get_config()
    doc = db["site_config"].find_one_and_update(
        {"_id": CONFIG_ID},
        {"$set": {"maintenance_mode": enabled, "maintenance_message": message, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    logger.warning("Maintenance mode %s", "on" if enabled else "off")
    return _present(doc)


# ---- Admin preferences ----

def get_preferences(admin_id: str) -> dict:
    defaults = AdminPreferences(admin_id=admin_id, dashboard_widgets=DEFAULT_WIDGETS).model_dump()
    defaults.pop("admin_id")
    stamp = now()
    doc = db["admin_preferences"].find_one_and_update(
        {"admin_id": admin_id},
        {"$setOnInsert": {**defaults, "created_at": stamp, "updated_at": stamp}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(doc)


def _update_preferences(admin_id: str, update: dict, expected: Optional[dict] = None) -> dict:
    """Apply `update`. With `expected`, only if those fields still hold those values."""
    get_preferences(admin_id)
    update.setdefault("$set", {})["updated_at"] = now()
    doc = db["admin_preferences"].find_one_and_update(
        {"admin_id": admin_id, **(expected or {})}, update, return_document=ReturnDocument.AFTER,
    )
    if doc is None:
        raise Conflict("Preferences changed while saving, please retry")
    return serialize_doc(doc)


def update_preferences(admin_id: str, body: AdminPreferencesUpdateBody) -> dict:
    return _update_preferences(admin_id, {"$set": body.model_dump(exclude_none=True)})


def toggle_widget(admin_id: str, widget_id: str) -> dict:
    prefs = get_preferences(admin_id)
    widget = next((w for w in prefs["dashboard_widgets"] if w["id"] == widget_id), None)
    if not widget:
        raise NotFound("Widget not found")
    db["admin_preferences"].update_one(
        {"admin_id": admin_id, "dashboard_widgets.id": widget_id},
        {"$set": {"dashboard_widgets.$.enabled": not widget["enabled"], "updated_at": now()}},
    )
    return get_preferences(admin_id)


def rearrange_widgets(admin_id: str, widgets) -> dict:
    return _update_preferences(admin_id, {"$set": {"dashboard_widgets": [w.model_dump() for w in widgets]}})


def list_filters(admin_id: str, type: Optional[str] = None) -> list:
    filters = get_preferences(admin_id)["saved_filters"]
    return [f for f in filters if type is None or f["type"] == type]


def _filter_index(filters: list, name: str, type: Optional[str] = None) -> int:
    matches = [i for i, f in enumerate(filters) if f["name"] == name and (type is None or f["type"] == type)]
    if not matches:
        raise NotFound("Filter not found")
    if len(matches) > 1:
        raise ValidationFailed(f"More than one filter is named '{name}', pass its type")
    return matches[0]


def _make_default(filters: list, index: int) -> list:
    """At most one default per filter type."""
    chosen = filters[index]["type"]
    for i, f in enumerate(filters):
        if f["type"] == chosen:
            f["is_default"] = i == index
    return filters


def _stored_filters(admin_id: str) -> list:
    get_preferences(admin_id)
    return db["admin_preferences"].find_one({"admin_id": admin_id}, {"saved_filters": 1}).get("saved_filters", [])


def _replace_filters(admin_id: str, before: list, after: list) -> dict:
    # conditional on the list read, so a concurrent change is not overwritten
    return _update_preferences(admin_id, {"$set": {"saved_filters": after}}, expected={"saved_filters": before})


def save_filter(admin_id: str, saved: SavedFilter) -> dict:
    filters = _stored_filters(admin_id)
    if any(f["name"] == saved.name and f["type"] == saved.type for f in filters):
        raise Conflict("A filter with this name already exists")
    if not saved.is_default:
        return _update_preferences(admin_id, {"$push": {"saved_filters": saved.model_dump()}})
    after = [dict(f) for f in filters] + [saved.model_dump()]
    return _replace_filters(admin_id, filters, _make_default(after, len(after) - 1))


def update_filter(admin_id: str, name: str, body: SavedFilterUpdateBody, type: Optional[str] = None) -> dict:
    filters = _stored_filters(admin_id)
    index = _filter_index(filters, name, type)
    after = [dict(f) for f in filters]
    if body.filters is not None:
        after[index]["filters"] = body.filters
    if body.is_default:
        _make_default(after, index)
    elif body.is_default is False:
        after[index]["is_default"] = False
    return _replace_filters(admin_id, filters, after)


def set_default_filter(admin_id: str, name: str, type: Optional[str] = None) -> dict:
    filters = _stored_filters(admin_id)
    index = _filter_index(filters, name, type)
    after = _make_default([dict(f) for f in filters], index)
    logger.info("Admin %s set default %s filter to %r", admin_id, after[index]["type"], name)
    return _replace_filters(admin_id, filters, after)


def delete_filter(admin_id: str, name: str, type: Optional[str] = None) -> dict:
    filters = _stored_filters(admin_id)
    target = filters[_filter_index(filters, name, type)]
    return _update_preferences(
        admin_id, {"$pull": {"saved_filters": {"name": target["name"], "type": target["type"]}}},
    )


def save_report(admin_id: str, report: SavedReport) -> dict:
    prefs = get_preferences(admin_id)
    if any(r["name"] == report.name for r in prefs["saved_reports"]):
        raise Conflict("A report with this name already exists")
    return _update_preferences(admin_id, {"$push": {"saved_reports": report.model_dump()}})


def delete_report(admin_id: str, name: str) -> dict:
    prefs = get_preferences(admin_id)
    if not any(r["name"] == name for r in prefs["saved_reports"]):
        raise NotFound("Report not found")
    return _update_preferences(admin_id, {"$pull": {"saved_reports": {"name": name}}})
