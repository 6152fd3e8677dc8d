from pbms.models.models import AdminActivityLog, User
from pbms.services.audit import compute_diff, log_activity, verify_entry


def test_admin_creates_user_with_role(client, headers, admin):
    r = client.post(
        "/api/admin/users",
        json={"email": "Fin@Example.com", "password": "secret123", "full_name": "Fin Analyst", "role": "analyst"},
        headers=headers(admin),
    )
    assert r.status_code == 201
    assert r.json()["user"]["role"] == "analyst"
    login = client.post("/auth/login", json={"email": "fin@example.com", "password": "secret123"})
    assert login.status_code == 200


def test_non_admin_is_forbidden(client, headers, manager):
    assert client.get("/api/admin/users", headers=headers(manager)).status_code == 403
    assert client.get("/api/admin/activity-log", headers=headers(manager)).status_code == 403
    assert client.get("/api/admin/overview", headers=headers(manager)).status_code == 403


def test_duplicate_email_conflicts(client, headers, admin, member):
    r = client.post(
        "/api/admin/users",
        json={"email": "user@example.com", "password": "secret123", "full_name": "Dup"},
        headers=headers(admin),
    )
    assert r.status_code == 409


def test_list_filters_by_role(client, headers, admin, manager, member):
    body = client.get("/api/admin/users", params={"role": "manager"}, headers=headers(admin)).json()
    assert [u["email"] for u in body["users"]] == ["manager@example.com"]


def test_update_role_and_deactivate(client, headers, admin, member, fetch):
    r = client.put(f"/api/admin/users/{member.id}", json={"role": "manager", "is_active": False}, headers=headers(admin))
    assert r.status_code == 200
    stored = fetch(User, member.id)
    assert stored.role == "manager"
    assert stored.is_active is False
    # the old token now belongs to an inactive account
    assert client.get("/auth/me", headers=headers(member)).status_code == 401


def test_admin_cannot_demote_or_deactivate_self(client, headers, admin):
    assert client.put(f"/api/admin/users/{admin.id}", json={"is_active": False}, headers=headers(admin)).status_code == 400
    assert client.put(f"/api/admin/users/{admin.id}", json={"role": "user"}, headers=headers(admin)).status_code == 400
    assert client.delete(f"/api/admin/users/{admin.id}", headers=headers(admin)).status_code == 400


def test_delete_refused_for_project_manager(client, headers, admin, manager, member, make_project, fetch):
    make_project(manager)
    assert client.delete(f"/api/admin/users/{manager.id}", headers=headers(admin)).status_code == 400
    assert client.delete(f"/api/admin/users/{member.id}", headers=headers(admin)).status_code == 200
    assert fetch(User, member.id) is None


def test_delete_refused_with_pending_expenses(client, headers, admin, manager, member, make_project, make_category, make_expense):
    make_expense(make_category(make_project(manager)), member)
    assert client.delete(f"/api/admin/users/{member.id}", headers=headers(admin)).status_code == 400


def test_activity_log_records_and_verifies(client, headers, admin, manager):
    client.post("/api/projects", json={"name": "Audited", "total_budget": 100}, headers=headers(manager))
    client.put(f"/api/admin/users/{manager.id}", json={"department": "Ops"}, headers=headers(admin))

    body = client.get("/api/admin/activity-log", headers=headers(admin)).json()
    assert body["total"] == 2
    assert {a["entity_type"] for a in body["activities"]} == {"project", "user"}
    assert all(a["integrity_valid"] for a in body["activities"])
    user_entry = next(a for a in body["activities"] if a["entity_type"] == "user")
    assert user_entry["changes"]["department"] == {"before": None, "after": "Ops"}
    assert user_entry["actor_name"] == "Ada Admin"

    only_users = client.get("/api/admin/activity-log", params={"entity_type": "user"}, headers=headers(admin)).json()
    assert only_users["total"] == 1


def test_tampered_entry_fails_verification(session_scope, admin):
    with session_scope() as db:
        entry = log_activity(db, admin, "UPDATE", "user", admin.id, changes={"role": {"before": "user", "after": "admin"}})
    assert verify_entry(entry)
    entry.changes_json = {"role": {"before": "user", "after": "manager"}}
    assert not verify_entry(entry)
    with session_scope() as db:
        assert db.query(AdminActivityLog).count() == 1


def test_compute_diff():
    assert compute_diff({"a": 1, "b": 2}, {"a": 1, "b": 3, "c": None}) == {"b": {"before": 2, "after": 3}}


def test_overview(client, headers, admin, manager, make_project):
    make_project(manager, total="1000", spent="250")
    body = client.get("/api/admin/overview", headers=headers(admin)).json()
    assert body["total_projects"] == 1
    assert body["active_users"] == 2
    assert body["budget_utilization"] == 25.0
