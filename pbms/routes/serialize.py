"""JSON shapes shared by several routers. Money goes out as plain numbers."""
from typing import Optional

from ..models.models import (
    BudgetCategory,
    BudgetVersion,
    BusinessUnit,
    Expense,
    Milestone,
    Notification,
    Project,
    User,
)
from ..services.budget import budget_utilization, money_float, percent


def iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def sid(value) -> Optional[str]:
    return str(value) if value else None


def money(value) -> Optional[float]:
    return money_float(value) if value is not None else None


def user_dict(u: User) -> dict:
    return {
        "id": str(u.id),
        "email": u.email,
        "full_name": u.full_name,
        "role": u.role,
        "department": u.department,
        "is_active": bool(u.is_active),
        "created_at": iso(u.created_at),
        "last_login_at": iso(u.last_login_at),
    }


def project_dict(p: Project, team_size: int = 0, manager_name: Optional[str] = None, business_unit_name: Optional[str] = None) -> dict:
    return {
        "id": str(p.id),
        "name": p.name,
        "description": p.description,
        "total_budget": money(p.total_budget),
        "spent_budget": money(p.spent_budget),
        "allocated_budget": money(p.allocated_budget),
        "currency": p.currency,
        "department": p.department,
        "business_unit_id": sid(p.business_unit_id),
        "business_unit_name": business_unit_name,
        "project_manager_id": sid(p.project_manager_id),
        "manager_name": manager_name,
        "start_date": iso(p.start_date),
        "end_date": iso(p.end_date),
        "status": p.status,
        "team_size": int(team_size or 0),
        "budget_utilization": percent(budget_utilization(p.spent_budget, p.total_budget)),
        "created_at": iso(p.created_at),
        "updated_at": iso(p.updated_at),
    }


def category_dict(c: BudgetCategory, expense_count: Optional[int] = None, project_name: Optional[str] = None) -> dict:
    d = {
        "id": str(c.id),
        "project_id": str(c.project_id),
        "name": c.name,
        "description": c.description,
        "allocated_amount": money(c.allocated_amount),
        "spent_amount": money(c.spent_amount),
        "remaining_amount": money_float((c.allocated_amount or 0) - (c.spent_amount or 0)),
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
    if expense_count is not None:
        d["expense_count"] = int(expense_count)
    if project_name is not None:
        d["project_name"] = project_name
    return d


def expense_dict(e: Expense) -> dict:
    return {
        "id": str(e.id),
        "project_id": str(e.project_id),
        "project_name": e.project.name if e.project else None,
        "category_id": sid(e.category_id),
        "category_name": e.category.name if e.category else None,
        "description": e.description,
        "amount": money(e.amount),
        "expense_date": iso(e.expense_date),
        "status": e.status,
        "submitted_by": sid(e.submitted_by),
        "submitted_by_name": e.submitter.full_name if e.submitter else None,
        "approved_by": sid(e.approved_by),
        "approved_by_name": e.approver.full_name if e.approver else None,
        "approval_comments": e.approval_comments,
        "created_at": iso(e.created_at),
        "updated_at": iso(e.updated_at),
    }


def version_dict(v: BudgetVersion, created_by_name: Optional[str] = None) -> dict:
    return {
        "id": str(v.id),
        "project_id": str(v.project_id),
        "version_number": v.version_number,
        "title": v.title,
        "description": v.description,
        "total_amount": money(v.total_amount),
        "status": v.status,
        "created_by": sid(v.created_by),
        "created_by_name": created_by_name,
        "approved_by": sid(v.approved_by),
        "approved_at": iso(v.approved_at),
        "created_at": iso(v.created_at),
        "updated_at": iso(v.updated_at),
    }


def business_unit_dict(bu: BusinessUnit, project_count: Optional[int] = None) -> dict:
    d = {
        "id": str(bu.id),
        "name": bu.name,
        "description": bu.description,
        "manager_id": sid(bu.manager_id),
        "manager_name": bu.manager.full_name if bu.manager else None,
        "created_at": iso(bu.created_at),
        "updated_at": iso(bu.updated_at),
    }
    if project_count is not None:
        d["project_count"] = int(project_count)
    return d


def milestone_dict(m: Milestone) -> dict:
    return {
        "id": str(m.id),
        "project_id": str(m.project_id),
        "project_name": m.project.name if m.project else None,
        "title": m.title,
        "description": m.description,
        "due_date": iso(m.due_date),
        "progress": m.progress or 0,
        "status": m.status,
        "created_by": sid(m.created_by),
        "created_at": iso(m.created_at),
        "updated_at": iso(m.updated_at),
    }


def notification_dict(n: Notification) -> dict:
    return {
        "id": str(n.id),
        "user_id": str(n.user_id),
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "read": bool(n.read),
        "action_url": n.action_url,
        "created_at": iso(n.created_at),
    }
