"""
Dashboard and analytics aggregates.

Every figure is scoped by the caller's project visibility. Project-level
numbers are summed in Python with Decimal over the visible rows; expense,
milestone and team counts are single aggregate queries.
"""
from collections import OrderedDict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from ..models.models import Expense, Milestone, Project, ProjectTeam, User
from .budget import budget_utilization, money_float, percent, project_risks
from .visibility import filter_visible, project_visibility_clause


PROJECT_STATUSES = ("planning", "active", "on-hold", "completed", "cancelled")


def _ratio(part, whole) -> float:
    return float(part) / float(whole) * 100 if whole else 0.0


def _visible_projects(db: Session, user: User) -> List[Project]:
    return db.query(Project).filter(project_visibility_clause(user)).all()


def project_totals(projects: List[Project], today: date) -> Dict:
    counts = {status: 0 for status in PROJECT_STATUSES}
    total = spent = allocated = Decimal("0")
    utilizations = []
    delayed = 0
    for p in projects:
        if p.status in counts:
            counts[p.status] += 1
        total += p.total_budget or 0
        spent += p.spent_budget or 0
        allocated += p.allocated_budget or 0
        if p.total_budget and p.total_budget > 0:
            utilizations.append(budget_utilization(p.spent_budget, p.total_budget))
        if p.end_date and p.end_date < today and p.status != "completed":
            delayed += 1
    avg_utilization = sum(utilizations) / len(utilizations) if utilizations else None
    return {
        "total_projects": len(projects),
        "planning_projects": counts["planning"],
        "active_projects": counts["active"],
        "on_hold_projects": counts["on-hold"],
        "completed_projects": counts["completed"],
        "cancelled_projects": counts["cancelled"],
        "delayed_projects": delayed,
        "total_budget": total,
        "total_spent": spent,
        "total_allocated": allocated,
        "avg_budget_utilization": avg_utilization,
    }


def expense_totals(db: Session, user: User, since: Optional[datetime] = None) -> Dict:
    approved = Expense.status == "approved"
    stmt = select(
        func.count(Expense.id),
        func.count(case((Expense.status == "pending", 1))),
        func.count(case((approved, 1))),
        func.count(case((Expense.status == "rejected", 1))),
        func.coalesce(func.sum(case((approved, Expense.amount))), 0),
        func.avg(case((approved, Expense.amount))),
    )
    stmt = filter_visible(stmt, user, Expense.project_id)
    if since is not None:
        stmt = stmt.where(Expense.created_at >= since)
    total, pending, approved_count, rejected, amount, avg_amount = db.execute(stmt).one()
    return {
        "total_expenses": total or 0,
        "pending_expenses": pending or 0,
        "approved_expenses": approved_count or 0,
        "rejected_expenses": rejected or 0,
        "total_expense_amount": Decimal(str(amount or 0)),
        "avg_expense_amount": float(avg_amount) if avg_amount is not None else None,
    }


def milestone_totals(db: Session, user: User, today: date, updated_since: Optional[datetime] = None) -> Dict:
    completed = Milestone.status == "completed"
    stmt = select(
        func.count(Milestone.id),
        func.count(case((completed, 1))),
        func.count(case((Milestone.status == "in_progress", 1))),
        func.count(case(((Milestone.due_date < today) & (Milestone.status != "completed"), 1))),
    )
    stmt = filter_visible(stmt, user, Milestone.project_id)
    if updated_since is not None:
        stmt = stmt.where(Milestone.updated_at >= updated_since)
    total, done, in_progress, overdue = db.execute(stmt).one()
    return {
        "total_milestones": total or 0,
        "completed_milestones": done or 0,
        "in_progress_milestones": in_progress or 0,
        "overdue_milestones": overdue or 0,
    }


def team_totals(db: Session, user: User) -> Dict:
    stmt = select(
        func.count(func.distinct(ProjectTeam.user_id)),
        func.count(func.distinct(ProjectTeam.project_id)),
    )
    stmt = filter_visible(stmt, user, ProjectTeam.project_id)
    members, projects_with_teams = db.execute(stmt).one()
    return {"total_team_members": members or 0, "projects_with_teams": projects_with_teams or 0}


def dashboard_metrics(db: Session, user: User, today: Optional[date] = None) -> Dict:
    """Headline numbers for the overview dashboard."""
    today = today or date.today()
    projects = _visible_projects(db, user)
    totals = project_totals(projects, today)
    expenses = expense_totals(db, user)
    milestones = milestone_totals(db, user, today)
    team = team_totals(db, user)
    at_risk = sum(1 for p in projects if project_risks(p, today))
    return {
        "total_projects": totals["total_projects"],
        "planning_projects": totals["planning_projects"],
        "active_projects": totals["active_projects"],
        "on_hold_projects": totals["on_hold_projects"],
        "completed_projects": totals["completed_projects"],
        "cancelled_projects": totals["cancelled_projects"],
        "total_budget": money_float(totals["total_budget"]),
        "total_spent": money_float(totals["total_spent"]),
        "total_allocated": money_float(totals["total_allocated"]),
        "budget_utilization": percent(budget_utilization(totals["total_spent"], totals["total_budget"])),
        "team_members": team["total_team_members"],
        "pending_expenses": expenses["pending_expenses"],
        "overdue_milestones": milestones["overdue_milestones"],
        "at_risk_projects": at_risk,
    }


def analytics_dashboard(db: Session, user: User, today: Optional[date] = None) -> Dict:
    """Composite scores: efficiency, risk, ROI, burn rate and friends."""
    today = today or date.today()
    month_ago = datetime.utcnow() - timedelta(days=30)
    projects = _visible_projects(db, user)
    pm = project_totals(projects, today)
    em = expense_totals(db, user)
    mm = milestone_totals(db, user, today)
    tm = team_totals(db, user)

    utilization = float(budget_utilization(pm["total_spent"], pm["total_allocated"]))
    project_completion = _ratio(pm["completed_projects"], pm["total_projects"])
    milestone_completion = _ratio(mm["completed_milestones"], mm["total_milestones"])
    approval_rate = _ratio(em["approved_expenses"], em["total_expenses"])

    efficiency = (
        project_completion * 0.3
        + milestone_completion * 0.3
        + approval_rate * 0.2
        + max(0.0, 100 - utilization) * 0.2
    )
    risk = (
        pm["delayed_projects"] / max(1, pm["active_projects"]) * 30
        + mm["overdue_milestones"] / max(1, mm["total_milestones"]) * 25
        + max(0.0, utilization - 90) * 0.5
        + em["pending_expenses"] / max(1, em["total_expenses"]) * 20
    )
    roi = float(budget_utilization(pm["total_budget"] - pm["total_spent"], pm["total_budget"]))
    team_utilization = (
        min(100.0, pm["active_projects"] / tm["total_team_members"] * 25) if tm["total_team_members"] else 0.0
    )
    cost_per_milestone = (
        float(pm["total_spent"]) / mm["completed_milestones"] if mm["completed_milestones"] else 0.0
    )
    burn = expense_totals(db, user, since=month_ago)["total_expense_amount"]
    recent = milestone_totals(db, user, today, updated_since=month_ago)
    if recent["total_milestones"]:
        completion_velocity = _ratio(recent["completed_milestones"], recent["total_milestones"])
    else:
        completion_velocity = float(round(project_completion))

    result = {
        k: v for k, v in pm.items() if k not in ("total_budget", "total_spent", "total_allocated", "avg_budget_utilization")
    }
    result.update({k: v for k, v in em.items() if k != "total_expense_amount"})
    result.update(mm)
    result.update(tm)
    result.update({
        "total_budget": money_float(pm["total_budget"]),
        "total_spent": money_float(pm["total_spent"]),
        "total_allocated": money_float(pm["total_allocated"]),
        "total_expense_amount": money_float(em["total_expense_amount"]),
        "avg_budget_utilization": percent(pm["avg_budget_utilization"]) if pm["avg_budget_utilization"] is not None else None,
        "budget_utilization": percent(utilization),
        "project_completion_rate": percent(project_completion),
        "milestone_completion_rate": percent(milestone_completion),
        "expense_approval_rate": percent(approval_rate),
        "efficiency_score": percent(efficiency),
        "risk_score": min(100.0, percent(risk)),
        "roi": percent(roi),
        "team_utilization": percent(team_utilization),
        "cost_per_milestone": percent(cost_per_milestone),
        "projected_spend": percent(float(pm["total_spent"]) * 1.15),
        "monthly_burn_rate": money_float(burn),
        "completion_rate": percent(completion_velocity),
    })
    return result


def predictive_insights(db: Session, user: User, today: Optional[date] = None) -> List[Dict]:
    today = today or date.today()
    projects = _visible_projects(db, user)
    pm = project_totals(projects, today)
    em = expense_totals(db, user)
    insights: List[Dict] = []

    avg_util = pm["avg_budget_utilization"]
    if avg_util is not None:
        avg_util = float(avg_util)
        if avg_util < 85:
            insights.append({
                "id": "budget_1",
                "category": "budget",
                "prediction": f"Based on current spending patterns, you're likely to finish {round(100 - avg_util)}% under budget",
                "confidence": min(95.0, 60 + (100 - avg_util)),
                "timeframe": "End of current projects",
                "actionable": True,
            })
        elif avg_util > 95:
            insights.append({
                "id": "budget_2",
                "category": "budget",
                "prediction": f"Current spending trends indicate potential budget overrun of {round(avg_util - 100)}%",
                "confidence": min(95.0, avg_util - 50),
                "timeframe": "Next 30-60 days",
                "actionable": True,
            })

    completion = _ratio(pm["completed_projects"], pm["total_projects"])
    if completion > 70:
        insights.append({
            "id": "timeline_1",
            "category": "timeline",
            "prediction": "Strong completion rate suggests upcoming projects will finish on time or early",
            "confidence": min(90.0, completion + 10),
            "timeframe": "Next quarter",
            "actionable": False,
        })

    approval = _ratio(em["approved_expenses"], em["total_expenses"])
    if approval > 80:
        insights.append({
            "id": "performance_1",
            "category": "performance",
            "prediction": "High expense approval rate indicates efficient budget management processes",
            "confidence": min(85.0, approval),
            "timeframe": "Ongoing",
            "actionable": False,
        })

    durations = [((p.end_date or today) - p.start_date).days for p in projects if p.start_date]
    if durations and sum(durations) / len(durations) < 90:
        insights.append({
            "id": "timeline_2",
            "category": "timeline",
            "prediction": "Projects are completing faster than industry average, suggesting efficient execution",
            "confidence": 75,
            "timeframe": "Current trend",
            "actionable": False,
        })
    return insights


def _month_key(value: datetime) -> str:
    return value.strftime("%Y-%m-01")


def performance_trends(db: Session, user: User, now: Optional[datetime] = None, months: int = 6) -> Dict:
    """Per-month project starts/completions and expense throughput, newest month first."""
    now = now or datetime.utcnow()
    project_rows = (
        db.query(Project)
        .filter(project_visibility_clause(user), Project.created_at >= now - timedelta(days=365))
        .all()
    )
    by_month: Dict[str, List[Project]] = OrderedDict()
    for p in sorted(project_rows, key=lambda r: r.created_at, reverse=True):
        by_month.setdefault(_month_key(p.created_at), []).append(p)
    monthly = []
    for month, rows in list(by_month.items())[:months]:
        utils = [budget_utilization(r.spent_budget, r.total_budget) for r in rows if r.total_budget and r.total_budget > 0]
        monthly.append({
            "month": month,
            "projects_started": len(rows),
            "projects_completed": sum(1 for r in rows if r.status == "completed"),
            "avg_budget_utilization": percent(sum(utils) / len(utils)) if utils else None,
        })

    expense_q = filter_visible(db.query(Expense), user, Expense.project_id)
    expense_rows = expense_q.filter(Expense.created_at >= now - timedelta(days=183)).all()
    expenses_by_month: Dict[str, List[Expense]] = OrderedDict()
    for e in sorted(expense_rows, key=lambda r: r.created_at, reverse=True):
        expenses_by_month.setdefault(_month_key(e.created_at), []).append(e)
    expense_trends = []
    for month, rows in list(expenses_by_month.items())[:months]:
        expense_trends.append({
            "month": month,
            "expenses_submitted": len(rows),
            "expenses_approved": sum(1 for r in rows if r.status == "approved"),
            "avg_expense_amount": percent(sum(Decimal(r.amount) for r in rows) / len(rows)),
        })
    return {"monthly_trends": monthly, "expense_trends": expense_trends}
