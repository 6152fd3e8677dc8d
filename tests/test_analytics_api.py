from datetime import date, timedelta


def test_risks_are_sorted_and_scoped(client, headers, manager, member, make_project, add_member):
    late = make_project(manager, name="Late", end_date=date.today() - timedelta(days=2))
    make_project(manager, name="Hot", total="1000", spent="900")
    add_member(late, member)

    risks = client.get("/api/analytics/risks", headers=headers(manager)).json()["risks"]
    assert [(r["project_name"], r["severity"]) for r in risks] == [("Late", "critical"), ("Hot", "high")]
    assert risks[0]["id"] == "risk_1"

    mine = client.get("/api/analytics/risks", headers=headers(member)).json()["risks"]
    assert [r["project_name"] for r in mine] == ["Late"]


def test_dashboard_figures(client, headers, manager, member, make_project, add_member, make_category, make_expense):
    p = make_project(manager, total="1000", spent="400", status="completed")
    make_project(manager, name="Open", total="1000", spent="0", status="active")
    add_member(p, member)
    c = make_category(p)
    make_expense(c, member, amount="400", status="approved")
    make_expense(c, member, amount="100", status="pending")

    body = client.get("/api/analytics/dashboard", headers=headers(manager)).json()
    assert body["total_budget"] == 2000.0
    assert body["total_spent"] == 400.0
    assert body["budget_utilization"] == 20.0
    assert body["project_completion_rate"] == 50.0
    assert body["expense_approval_rate"] == 50.0
    assert 0 <= body["risk_score"] <= 100


def test_insights_and_performance_shapes(client, headers, manager, member, make_project, make_category, make_expense):
    p = make_project(manager, total="1000", spent="100")
    make_expense(make_category(p), member, amount="10", status="approved")

    insights = client.get("/api/analytics/insights", headers=headers(manager)).json()["insights"]
    assert isinstance(insights, list)
    assert all({"id", "category", "prediction", "confidence"} <= set(i) for i in insights)

    perf = client.get("/api/analytics/performance", headers=headers(manager)).json()
    assert len(perf["monthly_trends"]) == 1
    assert perf["monthly_trends"][0]["projects_started"] == 1
    assert perf["expense_trends"][0]["expenses_submitted"] == 1


def test_analytics_requires_auth(client):
    assert client.get("/api/analytics/dashboard").status_code == 401
