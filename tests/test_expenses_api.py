from decimal import Decimal

import pytest

from pbms.models.models import BudgetCategory, Notification, Project


@pytest.fixture
def setup(manager, member, make_project, add_member, make_category):
    project = make_project(manager, total="10000")
    add_member(project, member)
    category = make_category(project, allocated="5000")
    return project, category


def _submit(client, headers, user, project, category, amount=250.75, description="Workshop"):
    return client.post(
        "/api/expenses",
        json={
            "project_id": str(project.id),
            "category_id": str(category.id),
            "description": description,
            "amount": amount,
        },
        headers=headers(user),
    )


def _spent(fetch, project, category):
    return fetch(Project, project.id).spent_budget, fetch(BudgetCategory, category.id).spent_amount


def test_member_submits_pending_expense(client, headers, member, manager, setup, session_scope):
    project, category = setup
    r = _submit(client, headers, member, project, category)
    assert r.status_code == 201
    expense = r.json()["expense"]
    assert expense["status"] == "pending"
    assert expense["amount"] == 250.75
    assert expense["submitted_by"] == str(member.id)
    assert expense["category_name"] == "Design"
    with session_scope() as db:
        # The project owner is asked to approve
        assert db.query(Notification).filter(Notification.user_id == manager.id).count() == 1


def test_outsider_cannot_submit(client, headers, outsider, setup):
    project, category = setup
    assert _submit(client, headers, outsider, project, category).status_code == 404


def test_category_must_belong_to_project(client, headers, member, manager, setup, make_project, make_category):
    project, _ = setup
    foreign = make_category(make_project(manager, name="Other"))
    r = _submit(client, headers, member, project, foreign)
    assert r.status_code == 400


def test_amount_must_be_positive(client, headers, member, setup):
    project, category = setup
    assert _submit(client, headers, member, project, category, amount=0).status_code == 422


def test_approve_increments_and_delete_reverses(client, headers, member, manager, setup, fetch):
    project, category = setup
    expense_id = _submit(client, headers, member, project, category, amount=250.75).json()["expense"]["id"]
    assert _spent(fetch, project, category) == (Decimal("0"), Decimal("0"))

    r = client.put(f"/api/expenses/{expense_id}/approve", json={"status": "approved", "comments": "ok"}, headers=headers(manager))
    assert r.status_code == 200
    assert r.json()["expense"]["status"] == "approved"
    assert r.json()["expense"]["approved_by"] == str(manager.id)
    assert _spent(fetch, project, category) == (Decimal("250.75"), Decimal("250.75"))

    assert client.delete(f"/api/expenses/{expense_id}", headers=headers(manager)).status_code == 200
    assert _spent(fetch, project, category) == (Decimal("0"), Decimal("0"))


def test_rejecting_approved_expense_reverses_spend(client, headers, member, manager, setup, fetch):
    project, category = setup
    expense_id = _submit(client, headers, member, project, category, amount=100).json()["expense"]["id"]
    client.put(f"/api/expenses/{expense_id}/approve", json={"status": "approved"}, headers=headers(manager))
    r = client.put(f"/api/expenses/{expense_id}/approve", json={"status": "rejected"}, headers=headers(manager))
    assert r.status_code == 200
    assert _spent(fetch, project, category) == (Decimal("0"), Decimal("0"))


def test_reapproving_does_not_double_count(client, headers, member, manager, setup, fetch):
    project, category = setup
    expense_id = _submit(client, headers, member, project, category, amount=40).json()["expense"]["id"]
    for _ in range(2):
        client.put(f"/api/expenses/{expense_id}/approve", json={"status": "approved"}, headers=headers(manager))
    assert _spent(fetch, project, category) == (Decimal("40"), Decimal("40"))


def test_submitter_notified_of_decision(client, headers, member, manager, setup, session_scope):
    project, category = setup
    expense_id = _submit(client, headers, member, project, category).json()["expense"]["id"]
    client.put(f"/api/expenses/{expense_id}/approve", json={"status": "rejected", "comments": "No receipt"}, headers=headers(manager))
    with session_scope() as db:
        n = db.query(Notification).filter(Notification.user_id == member.id, Notification.title == "Expense Rejected").one()
        assert "No receipt" in n.message


def test_who_may_approve(client, headers, member, analyst, admin, make_user, setup, add_member, make_expense):
    project, category = setup
    add_member(project, analyst)
    expense = make_expense(category, member)
    decision = {"status": "approved"}

    assert client.put(f"/api/expenses/{expense.id}/approve", json=decision, headers=headers(member)).status_code == 403
    assert client.put(f"/api/expenses/{expense.id}/approve", json=decision, headers=headers(analyst)).status_code == 403
    # approvals:write without visibility still sees nothing
    stranger = make_user("manager")
    assert client.put(f"/api/expenses/{expense.id}/approve", json=decision, headers=headers(stranger)).status_code == 404
    assert client.put(f"/api/expenses/{expense.id}/approve", json=decision, headers=headers(admin)).status_code == 200


def test_team_manager_role_may_approve(client, headers, member, make_user, setup, add_member, make_expense):
    project, category = setup
    approver = make_user("manager")
    add_member(project, approver)
    expense = make_expense(category, member)
    r = client.put(f"/api/expenses/{expense.id}/approve", json={"status": "approved"}, headers=headers(approver))
    assert r.status_code == 200


def test_submitter_edits_only_while_pending(client, headers, member, manager, setup, fetch):
    project, category = setup
    expense_id = _submit(client, headers, member, project, category, amount=10).json()["expense"]["id"]
    r = client.put(f"/api/expenses/{expense_id}", json={"amount": 20, "description": "Updated"}, headers=headers(member))
    assert r.status_code == 200
    assert r.json()["expense"]["amount"] == 20.0

    client.put(f"/api/expenses/{expense_id}/approve", json={"status": "approved"}, headers=headers(manager))
    assert client.put(f"/api/expenses/{expense_id}", json={"amount": 30}, headers=headers(member)).status_code == 403
    assert client.delete(f"/api/expenses/{expense_id}", headers=headers(member)).status_code == 403


def test_editing_approved_amount_moves_spend(client, headers, member, manager, setup, fetch):
    project, category = setup
    expense_id = _submit(client, headers, member, project, category, amount=100).json()["expense"]["id"]
    client.put(f"/api/expenses/{expense_id}/approve", json={"status": "approved"}, headers=headers(manager))
    r = client.put(f"/api/expenses/{expense_id}", json={"amount": 150}, headers=headers(manager))
    assert r.status_code == 200
    assert _spent(fetch, project, category) == (Decimal("150"), Decimal("150"))


def test_list_and_filters_are_scoped(client, headers, member, outsider, manager, setup, make_expense, make_project, make_category):
    project, category = setup
    make_expense(category, member, description="mine")
    make_expense(category, member, description="approved one", status="approved")
    hidden = make_category(make_project(manager, name="Hidden"))
    make_expense(hidden, manager, description="hidden")

    body = client.get("/api/expenses", headers=headers(member)).json()
    assert body["total"] == 2
    pending = client.get("/api/expenses", params={"status": "pending"}, headers=headers(member)).json()
    assert [e["description"] for e in pending["expenses"]] == ["mine"]
    assert client.get("/api/expenses", params={"status": "bogus"}, headers=headers(member)).status_code == 400
    assert client.get("/api/expenses", headers=headers(outsider)).json()["total"] == 0

    by_project = client.get(f"/api/expenses/project/{project.id}", headers=headers(member)).json()
    assert by_project["total"] == 2
    assert client.get(f"/api/expenses/project/{project.id}", headers=headers(outsider)).status_code == 404


def test_detail_hidden_expense_is_404(client, headers, member, outsider, setup, make_expense):
    _, category = setup
    e = make_expense(category, member)
    assert client.get(f"/api/expenses/{e.id}", headers=headers(member)).status_code == 200
    assert client.get(f"/api/expenses/{e.id}", headers=headers(outsider)).status_code == 404
    assert client.get(f"/api/expenses/{e.id}", headers=headers(member)).json()["expense"]["id"] == str(e.id)
