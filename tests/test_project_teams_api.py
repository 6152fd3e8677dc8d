from pbms.models.models import Notification, ProjectTeam


def _add(client, headers, actor, project, user, role="member"):
    return client.post(
        "/api/project-teams",
        json={"project_id": str(project.id), "user_id": str(user.id), "role": role},
        headers=headers(actor),
    )


def test_owner_adds_member_and_member_is_notified(client, headers, manager, member, make_project, session_scope):
    p = make_project(manager)
    r = _add(client, headers, manager, p, member, role="lead")
    assert r.status_code == 201
    assert r.json()["project_team"]["role"] == "lead"
    with session_scope() as db:
        n = db.query(Notification).filter(Notification.user_id == member.id).one()
        assert n.title == "Added to Project Team"


def test_duplicate_membership_conflicts(client, headers, manager, member, make_project):
    p = make_project(manager)
    assert _add(client, headers, manager, p, member).status_code == 201
    assert _add(client, headers, manager, p, member).status_code == 409


def test_member_cannot_add_others(client, headers, manager, member, analyst, make_project, add_member):
    p = make_project(manager)
    add_member(p, member)
    assert _add(client, headers, member, p, analyst).status_code == 403


def test_invalid_team_role(client, headers, manager, member, make_project):
    p = make_project(manager)
    assert _add(client, headers, manager, p, member, role="owner").status_code == 422


def test_list_requires_a_filter(client, headers, manager):
    r = client.get("/api/project-teams", headers=headers(manager))
    assert r.status_code == 400


def test_list_by_project_and_user(client, headers, manager, member, analyst, outsider, make_project, add_member):
    p = make_project(manager)
    add_member(p, member)
    add_member(p, analyst)

    by_project = client.get("/api/project-teams", params={"project_id": str(p.id)}, headers=headers(member)).json()
    assert by_project["total"] == 2
    assert client.get("/api/project-teams", params={"project_id": str(p.id)}, headers=headers(outsider)).status_code == 404

    by_user = client.get("/api/project-teams", params={"user_id": str(member.id)}, headers=headers(member)).json()
    assert [row["project_id"] for row in by_user["project_teams"]] == [str(p.id)]
    assert client.get("/api/project-teams", params={"user_id": str(member.id)}, headers=headers(analyst)).status_code == 403


def test_user_projects_self_or_admin(client, headers, manager, member, admin, make_project, add_member):
    p = make_project(manager, name="Alpha")
    add_member(p, member, role="lead")
    own = client.get(f"/api/project-teams/user-projects/{member.id}", headers=headers(member)).json()
    assert [(x["name"], x["team_role"]) for x in own["projects"]] == [("Alpha", "lead")]
    assert client.get(f"/api/project-teams/user-projects/{member.id}", headers=headers(admin)).status_code == 200
    assert client.get(f"/api/project-teams/user-projects/{member.id}", headers=headers(manager)).status_code == 403


def test_available_users_needs_grant(client, headers, manager, member, make_user):
    make_user("user", is_active=False)
    assert client.get("/api/project-teams/available-users", headers=headers(member)).status_code == 403
    body = client.get("/api/project-teams/available-users", headers=headers(manager)).json()
    assert body["total"] == 2


def test_owner_changes_member_role(client, headers, manager, member, make_project, add_member, fetch):
    p = make_project(manager)
    pt = add_member(p, member)
    r = client.put(f"/api/project-teams/{pt.id}", json={"role": "lead"}, headers=headers(manager))
    assert r.status_code == 200
    assert r.json()["project_team"]["role"] == "lead"
    assert fetch(ProjectTeam, pt.id).role == "lead"


def test_member_cannot_change_roles(client, headers, manager, member, make_project, add_member):
    p = make_project(manager)
    pt = add_member(p, member)
    assert client.put(f"/api/project-teams/{pt.id}", json={"role": "admin"}, headers=headers(member)).status_code == 403
    assert client.put(f"/api/project-teams/{pt.id}", json={"role": "owner"}, headers=headers(manager)).status_code == 422
