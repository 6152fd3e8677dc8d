from datetime import date, datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import BudgetCategory, Expense, Project, User
from ..schemas.budgets import BudgetCategoryCreate, BudgetCategoryUpdate
from ..services.audit import compute_diff, log_activity
from ..services.budget import budget_utilization, percent
from ..services.notifications import notify_budget_change, safe_notify
from ..services.roles import Action, has_permission
from ..services.visibility import as_uuid, filter_visible, get_visible_project, is_project_manager
from .serialize import category_dict, money


router = APIRouter(prefix="/api/budget-categories", tags=["budget-categories"])
log = structlog.get_logger(__name__)


def _can_allocate(user: User, project: Project) -> bool:
    return is_project_manager(user, project) or has_permission(user.role, "budget-allocation", Action.WRITE)


def _get_visible_category(db: Session, user: User, category_id: str) -> BudgetCategory:
    cid = as_uuid(category_id)
    if cid is None:
        raise HTTPException(status_code=404, detail="Budget category not found")
    q = filter_visible(db.query(BudgetCategory).filter(BudgetCategory.id == cid), user, BudgetCategory.project_id)
    category = q.first()
    if not category:
        raise HTTPException(status_code=404, detail="Budget category not found")
    return category


def _name_taken(db: Session, project_id, name: str, exclude_id=None) -> bool:
    q = db.query(BudgetCategory.id).filter(
        BudgetCategory.project_id == project_id,
        func.lower(BudgetCategory.name) == name.strip().lower(),
    )
    if exclude_id is not None:
        q = q.filter(BudgetCategory.id != exclude_id)
    return q.first() is not None


def _snapshot(c: BudgetCategory) -> dict:
    return {"name": c.name, "description": c.description, "allocated_amount": money(c.allocated_amount)}


@router.get("")
def list_categories(
    project_id: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    counts = (
        db.query(Expense.category_id.label("category_id"), func.count(Expense.id).label("expense_count"))
        .group_by(Expense.category_id)
        .subquery()
    )
    q = (
        db.query(BudgetCategory, Project.name, func.coalesce(counts.c.expense_count, 0))
        .join(Project, BudgetCategory.project_id == Project.id)
        .outerjoin(counts, counts.c.category_id == BudgetCategory.id)
    )
    q = filter_visible(q, user, BudgetCategory.project_id)
    if project_id:
        pid = as_uuid(project_id)
        if pid is None:
            raise HTTPException(status_code=404, detail="Project not found")
        q = q.filter(BudgetCategory.project_id == pid)
    rows = q.order_by(BudgetCategory.name.asc()).all()
    categories = [category_dict(c, expense_count=n, project_name=pname) for c, pname, n in rows]
    return {"categories": categories, "total": len(categories)}


@router.get("/{category_id}")
def get_category(category_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    c = _get_visible_category(db, user, category_id)
    n = db.query(func.count(Expense.id)).filter(Expense.category_id == c.id).scalar() or 0
    return {"category": category_dict(c, expense_count=n)}


@router.get("/{category_id}/stats")
def category_stats(
    category_id: str,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    c = _get_visible_category(db, user, category_id)
    q = db.query(
        func.count(Expense.id),
        func.coalesce(func.sum(Expense.amount), 0),
        func.coalesce(func.sum(case((Expense.status == "approved", Expense.amount), else_=0)), 0),
        func.coalesce(func.sum(case((Expense.status == "pending", Expense.amount), else_=0)), 0),
    ).filter(Expense.category_id == c.id)
    if start_date and end_date:
        q = q.filter(Expense.expense_date.between(start_date, end_date))
    total, amount, approved, pending = q.one()
    return {
        "stats": {
            "name": c.name,
            "allocated_amount": money(c.allocated_amount),
            "total_expenses": total or 0,
            "total_spent": money(amount),
            "approved_spent": money(approved),
            "pending_amount": money(pending),
            "utilization_percentage": percent(budget_utilization(approved, c.allocated_amount)),
        }
    }


@router.post("", status_code=201)
def create_category(body: BudgetCategoryCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, body.project_id)
    if not _can_allocate(user, project):
        raise HTTPException(status_code=403, detail="Insufficient permissions. Required: budget-allocation:write")
    if _name_taken(db, project.id, body.name):
        raise HTTPException(status_code=409, detail="Budget category with this name already exists for this project")
    c = BudgetCategory(
        project_id=project.id,
        name=body.name.strip(),
        description=body.description,
        allocated_amount=body.allocated_amount,
        spent_amount=0,
    )
    db.add(c)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Budget category with this name already exists for this project")
    log_activity(db, user, "CREATE", "budget_category", c.id, changes={"after": _snapshot(c)}, context={"project_id": str(project.id)})
    db.commit()
    db.refresh(c)
    log.info("budget_category_created", category_id=str(c.id), project_id=str(project.id))
    return {"category": category_dict(c, expense_count=0)}


@router.put("/{category_id}")
def update_category(
    category_id: str,
    body: BudgetCategoryUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    c = _get_visible_category(db, user, category_id)
    project = db.query(Project).filter(Project.id == c.project_id).first()
    if not _can_allocate(user, project):
        raise HTTPException(status_code=403, detail="Insufficient permissions. Required: budget-allocation:write")
    data = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    if not data:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    if "name" in data and _name_taken(db, c.project_id, data["name"], exclude_id=c.id):
        raise HTTPException(status_code=409, detail="Budget category with this name already exists")

    before = _snapshot(c)
    old_amount = c.allocated_amount
    if "name" in data:
        data["name"] = data["name"].strip()
    for field, value in data.items():
        setattr(c, field, value)
    c.updated_at = datetime.now(timezone.utc)
    diff = compute_diff(before, _snapshot(c))
    if diff:
        log_activity(db, user, "UPDATE", "budget_category", c.id, changes=diff, context={"project_id": str(c.project_id)})
    db.commit()
    db.refresh(c)
    log.info("budget_category_updated", category_id=str(c.id), fields=sorted(diff))
    if "allocated_amount" in diff:
        safe_notify(notify_budget_change, db, project, c.name, old_amount, c.allocated_amount, user.id)
    n = db.query(func.count(Expense.id)).filter(Expense.category_id == c.id).scalar() or 0
    return {"category": category_dict(c, expense_count=n)}


@router.delete("/{category_id}")
def delete_category(
    category_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    c = _get_visible_category(db, user, category_id)
    in_use = db.query(func.count(Expense.id)).filter(Expense.category_id == c.id).scalar() or 0
    if in_use:
        raise HTTPException(status_code=400, detail="Cannot delete budget category that has associated expenses")
    log_activity(db, user, "DELETE", "budget_category", c.id, changes={"before": _snapshot(c)}, context={"project_id": str(c.project_id)})
    db.delete(c)
    db.commit()
    log.info("budget_category_deleted", category_id=category_id)
    return {"message": "Budget category deleted successfully"}
