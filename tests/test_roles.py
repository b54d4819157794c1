from bson import ObjectId

from database import db
from tests.conftest import auth, register


def new_role(client, admin_token, name="support", permissions=None):
    payload = {"name": name, "description": "Support staff",
               "permissions": permissions or [{"resource": "orders", "actions": ["view"]}]}
    response = client.post("/admin/roles", json=payload, headers=auth(admin_token))
    assert response.status_code == 201, response.text
    return response.json()["data"]


def test_system_roles_created_at_startup(client, admin_token):
    names = {r["name"] for r in client.get("/admin/roles", headers=auth(admin_token)).json()["data"]}
    assert {"admin", "seller", "user"} <= names


def test_roles_require_admin(client, user_token):
    assert client.get("/admin/roles", headers=auth(user_token)).status_code == 403


def test_create_role_duplicate_name(client, admin_token):
    new_role(client, admin_token)
    response = client.post("/admin/roles", json={"name": "support"}, headers=auth(admin_token))
    assert response.status_code == 409


def test_permission_actions_validated(client, admin_token):
    response = client.post(
        "/admin/roles",
        json={"name": "bad", "permissions": [{"resource": "dashboard", "actions": ["delete"]}]},
        headers=auth(admin_token),
    )
    assert response.status_code == 400


def test_system_role_cannot_be_changed(client, admin_token):
    role = db["role"].find_one({"name": "user"})
    role_id = str(role["_id"])
    assert client.put(f"/admin/roles/{role_id}", json={"description": "x"},
                      headers=auth(admin_token)).status_code == 403
    assert client.delete(f"/admin/roles/{role_id}", headers=auth(admin_token)).status_code == 403


def test_add_permission_replaces_resource_entry(client, admin_token):
    role = new_role(client, admin_token)
    url = f"/admin/roles/{role['id']}/permissions"
    response = client.post(url, json={"resource": "orders", "actions": ["edit", "view"]}, headers=auth(admin_token))
    assert response.status_code == 200
    perms = response.json()["data"]["permissions"]
    assert perms == [{"resource": "orders", "actions": ["edit", "view"]}]

    again = client.post(url, json={"resource": "orders", "actions": ["view", "edit"]}, headers=auth(admin_token))
    assert again.status_code == 409


def test_remove_permission(client, admin_token):
    role = new_role(client, admin_token)
    response = client.delete(f"/admin/roles/{role['id']}/permissions/orders", headers=auth(admin_token))
    assert response.json()["data"]["permissions"] == []


def test_assigned_role_survives_rename(client, admin_token):
    role = new_role(client, admin_token)
    _, user = register(client, "Bob", "bob@example.com")
    assign = client.put(f"/admin/roles/assign/{user['id']}", json={"role_id": role["id"]}, headers=auth(admin_token))
    assert assign.status_code == 200

    client.put(f"/admin/roles/{role['id']}", json={"name": "customer-care"}, headers=auth(admin_token))
    perms = client.get(f"/admin/roles/users/{user['id']}/permissions", headers=auth(admin_token)).json()["data"]
    assert perms == [{"resource": "orders", "actions": ["view"]}]


def test_delete_assigned_role_conflict(client, admin_token):
    role = new_role(client, admin_token)
    _, user = register(client, "Bob", "bob@example.com")
    client.put(f"/admin/roles/assign/{user['id']}", json={"role_id": role["id"]}, headers=auth(admin_token))
    assert client.delete(f"/admin/roles/{role['id']}", headers=auth(admin_token)).status_code == 409


def test_delete_unused_role(client, admin_token):
    role = new_role(client, admin_token)
    assert client.delete(f"/admin/roles/{role['id']}", headers=auth(admin_token)).status_code == 200
    assert client.get(f"/admin/roles/{role['id']}", headers=auth(admin_token)).status_code == 404


def test_legacy_user_resolved_by_name_and_backfilled(client, admin_token):
    token, user = register(client, "Old Timer", "old@example.com")
    db["user"].update_one({"_id": ObjectId(user["id"])}, {"$unset": {"role_id": ""}})
    response = client.get("/auth/permissions", headers=auth(token))
    assert {p["resource"] for p in response.json()["data"]} == {"orders", "products"}
    stored = db["user"].find_one({"_id": ObjectId(user["id"])})
    assert stored["role_id"] == str(db["role"].find_one({"name": "user"})["_id"])


def test_resources_listing(client, admin_token):
    resources = client.get("/admin/roles/resources/all", headers=auth(admin_token)).json()["data"]
    assert "dashboard" in resources
    actions = client.get("/admin/roles/resources/settings", headers=auth(admin_token)).json()["data"]
    assert actions == ["view", "edit", "manage"]


def test_custom_role_grants_withdrawal_access(client, admin_token):
    role = new_role(client, admin_token, "finance", [{"resource": "payments", "actions": ["view"]}])
    token, user = register(client, "Fin", "fin@example.com")
    assert client.get("/admin/withdrawals", headers=auth(token)).status_code == 403
    client.put(f"/admin/roles/assign/{user['id']}", json={"role_id": role["id"]}, headers=auth(admin_token))
    assert client.get("/admin/withdrawals", headers=auth(token)).status_code == 200
