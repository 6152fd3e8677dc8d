from datetime import date, timedelta

from pbms.models.models import AdminActivityLog, Notification, Project


def _create(client, headers, user, **overrides):
    body = {"name": "Data Platform", "total_budget": 20000, "status": "active"}
    body.update(overrides)
    return client.post("/api/projects", json=body, headers=headers(user))


def test_manager_creates_project_and_becomes_owner(client, headers, manager, admin, session_scope):
    r = _create(client, headers, manager)
    assert r.status_code == 201
    project = r.json()["project"]
    assert project["project_manager_id"] == str(manager.id)
    assert project["manager_name"] == "Morgan Manager"
    assert project["total_budget"] == 20000.0
    assert project["allocated_budget"] == 20000.0
    assert project["spent_budget"] == 0.0
    assert project["team_size"] == 0

    with session_scope() as db:
        log = db.query(AdminActivityLog).filter(AdminActivityLog.entity_type == "project").one()
        assert log.action == "CREATE"
        assert str(log.entity_id) == project["id"]
        # Admins hear about new projects
        assert db.query(Notification).filter(Notification.user_id == admin.id).count() == 1


def test_user_and_analyst_cannot_create(client, headers, member, analyst):
    assert _create(client, headers, member).status_code == 403
    r = _create(client, headers, analyst)
    assert r.status_code == 403
    assert "budget-planning:write" in r.json()["error"]


def test_only_admin_assigns_other_manager(client, headers, manager, admin, make_user):
    other = make_user("manager")
    assert _create(client, headers, manager, project_manager_id=str(other.id)).status_code == 403
    r = _create(client, headers, admin, project_manager_id=str(other.id))
    assert r.status_code == 201
    assert r.json()["project"]["project_manager_id"] == str(other.id)


def test_create_rejects_end_before_start(client, headers, manager):
    r = _create(client, headers, manager, start_date="2024-05-01", end_date="2024-04-01")
    assert r.status_code == 422


def test_list_is_scoped_and_annotated(client, headers, manager, member, analyst, make_project, add_member):
    p = make_project(manager, name="Alpha", total="10000", spent="2500")
    make_project(manager, name="Beta")
    add_member(p, member)
    add_member(p, analyst)

    mine = client.get("/api/projects", headers=headers(member)).json()
    assert mine["total"] == 1
    row = mine["projects"][0]
    assert row["name"] == "Alpha"
    assert row["team_size"] == 2
    assert row["manager_name"] == "Morgan Manager"
    assert row["budget_utilization"] == 25.0

    owned = client.get("/api/projects", headers=headers(manager)).json()
    assert owned["total"] == 2


def test_list_search_status_and_paging(client, headers, admin, manager, make_project):
    make_project(manager, name="Alpha", status="planning")
    make_project(manager, name="Beta", status="active")
    make_project(manager, name="Gamma", status="active")

    r = client.get("/api/projects", params={"status": "active"}, headers=headers(admin)).json()
    assert sorted(p["name"] for p in r["projects"]) == ["Beta", "Gamma"]
    r = client.get("/api/projects", params={"search": "alp"}, headers=headers(admin)).json()
    assert [p["name"] for p in r["projects"]] == ["Alpha"]
    r = client.get("/api/projects", params={"limit": 2, "page": 2}, headers=headers(admin)).json()
    assert r["total"] == 3 and len(r["projects"]) == 1 and r["page"] == 2


def test_detail_hidden_project_is_404(client, headers, manager, outsider, make_project):
    p = make_project(manager)
    r = client.get(f"/api/projects/{p.id}", headers=headers(outsider))
    assert r.status_code == 404
    assert r.json() == {"error": "Project not found"}
    assert client.get("/api/projects/not-a-uuid", headers=headers(manager)).status_code == 404


def test_detail_includes_team(client, headers, manager, member, make_project, add_member):
    p = make_project(manager)
    add_member(p, member, role="lead")
    project = client.get(f"/api/projects/{p.id}", headers=headers(manager)).json()["project"]
    assert project["team"] == [
        {"user_id": str(member.id), "full_name": "Uma User", "email": "user@example.com", "role": "lead"}
    ]


def test_update_by_owner_only(client, headers, manager, member, admin, make_project, add_member, fetch):
    p = make_project(manager)
    add_member(p, member)
    assert client.put(f"/api/projects/{p.id}", json={"name": "Nope"}, headers=headers(member)).status_code == 403

    r = client.put(f"/api/projects/{p.id}", json={"name": "Renamed", "total_budget": 12000}, headers=headers(manager))
    assert r.status_code == 200
    assert r.json()["project"]["name"] == "Renamed"
    assert fetch(Project, p.id).total_budget == 12000

    r = client.put(f"/api/projects/{p.id}", json={"status": "on-hold"}, headers=headers(admin))
    assert r.status_code == 200
    assert r.json()["project"]["status"] == "on-hold"


def test_update_cannot_reassign_without_admin(client, headers, manager, make_user, make_project):
    p = make_project(manager)
    other = make_user("manager")
    r = client.put(f"/api/projects/{p.id}", json={"project_manager_id": str(other.id)}, headers=headers(manager))
    assert r.status_code == 403


def test_delete_requires_admin(client, headers, manager, admin, make_project, fetch):
    p = make_project(manager)
    assert client.delete(f"/api/projects/{p.id}", headers=headers(manager)).status_code == 403
    assert client.delete(f"/api/projects/{p.id}", headers=headers(admin)).status_code == 200
    assert fetch(Project, p.id) is None


def test_project_risks_endpoint(client, headers, manager, make_project):
    p = make_project(manager, total="10000", spent="8600", end_date=date.today() - timedelta(days=1))
    risks = client.get(f"/api/projects/{p.id}/risks", headers=headers(manager)).json()["risks"]
    by_type = {r["type"]: r for r in risks}
    assert by_type["budget"]["severity"] == "high"
    assert by_type["timeline"]["severity"] == "critical"
    assert by_type["timeline"]["probability"] == 100


def test_dashboard_metrics(client, headers, manager, member, make_project, add_member, make_category, make_expense):
    a = make_project(manager, name="A", total="1000", spent="500", status="active")
    make_project(manager, name="B", total="3000", spent="0", status="planning")
    add_member(a, member)
    make_expense(make_category(a), member)

    m = client.get("/api/projects/dashboard/metrics", headers=headers(manager)).json()
    assert m["total_projects"] == 2
    assert m["active_projects"] == 1
    assert m["planning_projects"] == 1
    assert m["total_budget"] == 4000.0
    assert m["total_spent"] == 500.0
    assert m["budget_utilization"] == 12.5
    assert m["team_members"] == 1
    assert m["pending_expenses"] == 1

    scoped = client.get("/api/projects/dashboard/metrics", headers=headers(member)).json()
    assert scoped["total_projects"] == 1
    assert scoped["total_budget"] == 1000.0


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "OK"
