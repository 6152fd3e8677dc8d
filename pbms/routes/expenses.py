from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import BudgetCategory, Expense, Project, User
from ..schemas.expenses import ExpenseCreate, ExpenseDecision, ExpenseUpdate
from ..services.audit import compute_diff, log_activity
from ..services.budget import apply_spend
from ..services.notifications import notify_expense_status_change, notify_new_expense, safe_notify
from ..services.roles import Action, can_manage, has_permission, is_admin
from ..services.visibility import as_uuid, filter_visible, get_visible_project, is_project_manager
from .serialize import expense_dict, iso, money, sid


router = APIRouter(prefix="/api/expenses", tags=["expenses"])
log = structlog.get_logger(__name__)

EXPENSE_STATUSES = ("pending", "approved", "rejected")


def _snapshot(e: Expense) -> dict:
    return {
        "category_id": sid(e.category_id),
        "description": e.description,
        "amount": money(e.amount),
        "expense_date": iso(e.expense_date),
        "status": e.status,
    }


def _get_visible_expense(db: Session, user: User, expense_id: str) -> Expense:
    eid = as_uuid(expense_id)
    if eid is None:
        raise HTTPException(status_code=404, detail="Expense not found")
    q = filter_visible(db.query(Expense).filter(Expense.id == eid), user, Expense.project_id)
    expense = q.first()
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


def _check_category(db: Session, category_id, project_id) -> BudgetCategory:
    category = db.query(BudgetCategory).filter(BudgetCategory.id == category_id).first()
    if not category:
        raise HTTPException(status_code=400, detail="Budget category not found")
    if category.project_id != project_id:
        raise HTTPException(status_code=400, detail="Category does not belong to this project")
    return category


def _can_edit(user: User, expense: Expense) -> bool:
    if can_manage(user.role):
        return True
    return expense.submitted_by == user.id and expense.status == "pending"


@router.get("")
def list_expenses(
    status: Optional[str] = None,
    project_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = filter_visible(db.query(Expense), user, Expense.project_id)
    if status:
        if status not in EXPENSE_STATUSES:
            raise HTTPException(status_code=400, detail="Invalid status")
        q = q.filter(Expense.status == status)
    if project_id:
        pid = as_uuid(project_id)
        if pid is None:
            raise HTTPException(status_code=404, detail="Project not found")
        q = q.filter(Expense.project_id == pid)
    total = q.count()
    rows = q.order_by(Expense.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"expenses": [expense_dict(e) for e in rows], "total": total, "page": page, "limit": limit}


@router.get("/project/{project_id}")
def list_project_expenses(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, project_id)
    rows = (
        db.query(Expense)
        .filter(Expense.project_id == project.id)
        .order_by(Expense.created_at.desc())
        .all()
    )
    return {"expenses": [expense_dict(e) for e in rows], "total": len(rows)}


@router.get("/{expense_id}")
def get_expense(expense_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"expense": expense_dict(_get_visible_expense(db, user, expense_id))}


@router.post("", status_code=201)
def create_expense(body: ExpenseCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, body.project_id)
    _check_category(db, body.category_id, project.id)
    e = Expense(
        project_id=project.id,
        category_id=body.category_id,
        description=body.description.strip(),
        amount=body.amount,
        expense_date=body.expense_date or datetime.now(timezone.utc).date(),
        status="pending",
        submitted_by=user.id,
    )
    db.add(e)
    db.flush()
    log_activity(db, user, "CREATE", "expense", e.id, changes={"after": _snapshot(e)}, context={"project_id": str(project.id)})
    db.commit()
    db.refresh(e)
    log.info("expense_submitted", expense_id=str(e.id), project_id=str(project.id), amount=str(e.amount))
    safe_notify(notify_new_expense, db, e, user)
    return {"expense": expense_dict(e)}


@router.put("/{expense_id}")
def update_expense(
    expense_id: str,
    body: ExpenseUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    e = _get_visible_expense(db, user, expense_id)
    if not _can_edit(user, e):
        raise HTTPException(status_code=403, detail="Not authorized to update this expense")
    data = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if "category_id" in data:
        _check_category(db, data["category_id"], e.project_id)

    before = _snapshot(e)
    old_amount, old_category = e.amount, e.category_id
    for field, value in data.items():
        setattr(e, field, value.strip() if field == "description" else value)
    e.updated_at = datetime.now(timezone.utc)
    if e.status == "approved" and (e.amount != old_amount or e.category_id != old_category):
        apply_spend(db, e.project_id, old_category, -old_amount)
        apply_spend(db, e.project_id, e.category_id, e.amount)

    diff = compute_diff(before, _snapshot(e))
    if diff:
        log_activity(db, user, "UPDATE", "expense", e.id, changes=diff, context={"project_id": str(e.project_id)})
    db.commit()
    db.refresh(e)
    log.info("expense_updated", expense_id=str(e.id), fields=sorted(diff))
    return {"expense": expense_dict(e)}


@router.delete("/{expense_id}")
def delete_expense(expense_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    e = _get_visible_expense(db, user, expense_id)
    if not _can_edit(user, e):
        raise HTTPException(status_code=403, detail="Not authorized to delete this expense")
    if e.status == "approved":
        apply_spend(db, e.project_id, e.category_id, -e.amount)
    log_activity(db, user, "DELETE", "expense", e.id, changes={"before": _snapshot(e)}, context={"project_id": str(e.project_id)})
    db.delete(e)
    db.commit()
    log.info("expense_deleted", expense_id=expense_id, user_id=str(user.id))
    return {"message": "Expense deleted successfully"}


@router.put("/{expense_id}/approve")
def decide_expense(
    expense_id: str,
    body: ExpenseDecision,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    e = _get_visible_expense(db, user, expense_id)
    project = db.query(Project).filter(Project.id == e.project_id).first()
    allowed = (
        is_admin(user.role)
        or is_project_manager(user, project)
        or has_permission(user.role, "approvals", Action.WRITE)
    )
    if not allowed:
        raise HTTPException(status_code=403, detail="Not authorized to approve expenses for this project")

    old_status = e.status
    # Conditional on the status we read, so concurrent decisions cannot double count
    result = db.execute(
        update(Expense)
        .where(Expense.id == e.id, Expense.status == old_status)
        .values(
            status=body.status,
            approved_by=user.id,
            approval_comments=body.comments,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise HTTPException(status_code=409, detail="Expense was modified concurrently")
    if body.status == "approved" and old_status != "approved":
        apply_spend(db, e.project_id, e.category_id, e.amount)
    elif old_status == "approved" and body.status != "approved":
        apply_spend(db, e.project_id, e.category_id, -e.amount)

    log_activity(
        db, user, "APPROVE" if body.status == "approved" else "REJECT", "expense", e.id,
        changes={"status": {"before": old_status, "after": body.status}, "amount": money(e.amount)},
        context={"project_id": str(e.project_id), "comments": body.comments},
    )
    db.commit()
    db.refresh(e)
    log.info("expense_" + body.status, expense_id=str(e.id), project_id=str(e.project_id), amount=str(e.amount))
    safe_notify(notify_expense_status_change, db, e, body.comments)
    return {"message": f"Expense {body.status} successfully", "expense": expense_dict(e)}
