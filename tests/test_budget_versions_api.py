def _create(client, headers, user, project, title="Baseline", **extra):
    body = {"project_id": str(project.id), "title": title}
    body.update(extra)
    return client.post("/api/budget-versions", json=body, headers=headers(user))


def test_version_numbers_increment_per_project(client, headers, manager, make_project):
    p = make_project(manager, total="8000")
    other = make_project(manager, name="Other")
    first = _create(client, headers, manager, p).json()["version"]
    second = _create(client, headers, manager, p, title="Revised", total_amount=9000).json()["version"]
    elsewhere = _create(client, headers, manager, other).json()["version"]

    assert first["version_number"] == 1
    assert first["total_amount"] == 8000.0
    assert first["status"] == "draft"
    assert first["created_by_name"] == "Morgan Manager"
    assert second["version_number"] == 2
    assert second["total_amount"] == 9000.0
    assert elsewhere["version_number"] == 1

    listed = client.get(f"/api/budget-versions/project/{p.id}", headers=headers(manager)).json()
    assert [v["version_number"] for v in listed["versions"]] == [2, 1]


def test_member_without_grant_cannot_create(client, headers, manager, member, make_project, add_member):
    p = make_project(manager)
    add_member(p, member)
    assert _create(client, headers, member, p).status_code == 403


def test_hidden_project_versions_are_404(client, headers, manager, outsider, make_project):
    p = make_project(manager)
    version_id = _create(client, headers, manager, p).json()["version"]["id"]
    assert client.get(f"/api/budget-versions/project/{p.id}", headers=headers(outsider)).status_code == 404
    assert client.get(f"/api/budget-versions/{version_id}", headers=headers(outsider)).status_code == 404


def test_approve_flow(client, headers, manager, admin, make_project):
    p = make_project(manager)
    version_id = _create(client, headers, manager, p).json()["version"]["id"]

    r = client.patch(f"/api/budget-versions/{version_id}/approve", headers=headers(manager))
    assert r.status_code == 200
    version = r.json()["version"]
    assert version["status"] == "approved"
    assert version["approved_by"] == str(manager.id)
    assert version["approved_at"] is not None

    again = client.patch(f"/api/budget-versions/{version_id}/approve", headers=headers(admin))
    assert again.status_code == 400


def test_reject_with_body(client, headers, manager, make_project):
    p = make_project(manager)
    version_id = _create(client, headers, manager, p, status="pending").json()["version"]["id"]
    r = client.patch(f"/api/budget-versions/{version_id}/approve", json={"status": "rejected"}, headers=headers(manager))
    assert r.status_code == 200
    assert r.json()["version"]["status"] == "rejected"
    assert r.json()["version"]["approved_at"] is None


def test_approve_requires_grant(client, headers, manager, member, make_project, add_member):
    p = make_project(manager)
    add_member(p, member)
    version_id = _create(client, headers, manager, p).json()["version"]["id"]
    assert client.patch(f"/api/budget-versions/{version_id}/approve", headers=headers(member)).status_code == 403


def test_update_and_delete_rules(client, headers, manager, admin, make_project):
    p = make_project(manager)
    version_id = _create(client, headers, manager, p).json()["version"]["id"]

    r = client.put(f"/api/budget-versions/{version_id}", json={"title": "Renamed"}, headers=headers(manager))
    assert r.status_code == 200
    assert r.json()["version"]["title"] == "Renamed"
    assert client.put(f"/api/budget-versions/{version_id}", json={}, headers=headers(manager)).status_code == 400

    client.patch(f"/api/budget-versions/{version_id}/approve", headers=headers(manager))
    assert client.put(f"/api/budget-versions/{version_id}", json={"title": "Late"}, headers=headers(manager)).status_code == 400
    assert client.delete(f"/api/budget-versions/{version_id}", headers=headers(manager)).status_code == 403
    assert client.delete(f"/api/budget-versions/{version_id}", headers=headers(admin)).status_code == 200
    assert client.get(f"/api/budget-versions/{version_id}", headers=headers(admin)).status_code == 404
