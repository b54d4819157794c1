"""
Roles and permissions.

A user's effective permissions come from the role document referenced by
`user.role_id`. The `role` string on the user (user/seller/admin) only gates
routes; it is not used to find the role document, so renaming a role keeps
its users attached.
"""
import logging
from typing import List, Optional

from pymongo import ReturnDocument

from database import create_document, db, get_documents, now, serialize_doc, to_obj_id
from errors import Conflict, Forbidden, NotFound
from schemas import RESOURCE_ACTIONS, Permission, Role, RoleUpdateBody

logger = logging.getLogger(__name__)

SYSTEM_ROLES = [
    Role(
        name="admin",
        description="Full platform access",
        permissions=[
            Permission(resource=r, actions=actions) for r, actions in RESOURCE_ACTIONS.items()
        ],
        is_system=True,
        is_default=True,
    ),
    Role(
        name="seller",
        description="Seller store management",
        permissions=[
            Permission(resource="orders", actions=["view", "edit"]),
            Permission(resource="products", actions=["view", "create", "edit", "delete"]),
            Permission(resource="reports", actions=["view"]),
            Permission(resource="dashboard", actions=["view"]),
        ],
        is_system=True,
    ),
    Role(
        name="user",
        description="Regular customer",
        permissions=[
            Permission(resource="orders", actions=["view"]),
            Permission(resource="products", actions=["view"]),
        ],
        is_system=True,
    ),
]


def init_system_roles():
    if db["role"].count_documents({}) > 0:
        return
    for role in SYSTEM_ROLES:
        create_document("role", role)
    logger.info("Created system roles: %s", ", ".join(r.name for r in SYSTEM_ROLES))


def system_role_id(name: str) -> Optional[str]:
    doc = db["role"].find_one({"name": name, "is_system": True}, {"_id": 1})
    return str(doc["_id"]) if doc else None


def _find(role_id: str) -> dict:
    doc = db["role"].find_one({"_id": to_obj_id(role_id)})
    if not doc:
        raise NotFound("Role not found")
    return doc


def _find_mutable(role_id: str) -> dict:
    doc = _find(role_id)
    if doc.get("is_system"):
        raise Forbidden("Cannot modify system roles")
    return doc


def list_roles():
    return [serialize_doc(d) for d in get_documents("role")]


def get_role(role_id: str) -> dict:
    return serialize_doc(_find(role_id))


def create_role(body: Role, created_by: str) -> dict:
    if db["role"].find_one({"name": body.name}):
        raise Conflict("Role with this name already exists")
    data = body.model_dump()
    data.update(is_system=False, created_by=created_by)
    role_id = create_document("role", data)
    logger.info("Role %s (%s) created by %s", body.name, role_id, created_by)
    return get_role(role_id)


def update_role(role_id: str, body: RoleUpdateBody) -> dict:
    doc = _find_mutable(role_id)
    update = body.model_dump(exclude_none=True)
    if "name" in update and update["name"] != doc["name"]:
        if db["role"].find_one({"name": update["name"]}):
            raise Conflict("Role with this name already exists")
    update["updated_at"] = now()
    doc = db["role"].find_one_and_update({"_id": doc["_id"]}, {"$set": update}, return_document=ReturnDocument.AFTER)
    return serialize_doc(doc)


def delete_role(role_id: str):
    doc = _find(role_id)
    if doc.get("is_system"):
        raise Forbidden("Cannot delete system roles")
    assigned = db["user"].count_documents({"role_id": role_id})
    if assigned:
        raise Conflict(f"Cannot delete role. It is assigned to {assigned} user(s)")
    db["role"].delete_one({"_id": doc["_id"]})
    logger.info("Role %s deleted", role_id)


def add_permission(role_id: str, permission: Permission) -> dict:
    """Grant `permission`, replacing whatever the role had on that resource."""
    doc = _find_mutable(role_id)
    perms = doc.get("permissions", [])
    existing = next((p for p in perms if p["resource"] == permission.resource), None)
    if existing and sorted(existing["actions"]) == permission.actions:
        raise Conflict("This permission already exists for this role")
    perms = [p for p in perms if p["resource"] != permission.resource] + [permission.model_dump()]
    doc = db["role"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$set": {"permissions": perms, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(doc)


def remove_permission(role_id: str, resource: str) -> dict:
    doc = _find_mutable(role_id)
    doc = db["role"].find_one_and_update(
        {"_id": doc["_id"]},
        {"$pull": {"permissions": {"resource": resource}}, "$set": {"updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    return serialize_doc(doc)


def assign_role(user_id: str, role_id: str) -> dict:
    user = db["user"].find_one({"_id": to_obj_id(user_id)})
    if not user:
        raise NotFound("User not found")
    _find(role_id)
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"role_id": role_id, "updated_at": now()}})
    logger.info("Assigned role %s to user %s", role_id, user_id)
    return serialize_doc(db["user"].find_one({"_id": user["_id"]}, {"password_hash": 0, "email_verification_token": 0}))


def _role_for(user: dict) -> Optional[dict]:
    role_id = user.get("role_id")
    if role_id:
        return db["role"].find_one({"_id": to_obj_id(role_id)})
    # accounts created before role_id existed: resolve by name once and remember it
    role = db["role"].find_one({"name": user.get("role")})
    if role:
        db["user"].update_one({"_id": to_obj_id(user.get("id") or str(user["_id"]))},
                              {"$set": {"role_id": str(role["_id"])}})
    return role


def get_user_permissions(user_id: str) -> List[dict]:
    user = db["user"].find_one({"_id": to_obj_id(user_id)})
    if not user:
        raise NotFound("User not found")
    role = _role_for(user)
    return role.get("permissions", []) if role else []


def has_permission(user_id: str, resource: str, action: str) -> bool:
    user = db["user"].find_one({"_id": to_obj_id(user_id)})
    if not user:
        return False
    role = _role_for(user)
    if not role:
        return False
    return any(p["resource"] == resource and action in p["actions"] for p in role.get("permissions", []))


def available_actions(resource: str) -> List[str]:
    return RESOURCE_ACTIONS.get(resource, [])


def all_resources() -> List[str]:
    return list(RESOURCE_ACTIONS)
