from decimal import Decimal
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_password_hash, require_permission, require_roles
from ..db import get_db
from ..models.models import AdminActivityLog, BusinessUnit, Expense, Notification, Project, User
from ..schemas.auth import AdminUserCreate, AdminUserUpdate
from ..services.audit import compute_diff, log_activity, verify_entry
from ..services.budget import budget_utilization, money_float
from ..services.roles import Action
from ..services.visibility import as_uuid
from .serialize import iso, sid, user_dict


router = APIRouter(prefix="/api/admin", tags=["admin"])
log = structlog.get_logger(__name__)

manage_users = require_permission("user-management", Action.ADMIN)


def _get_user(db: Session, user_id: str) -> User:
    uid = as_uuid(user_id)
    target = db.query(User).filter(User.id == uid).first() if uid else None
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    return target


def _email_taken(db: Session, email: str, exclude_id=None) -> bool:
    q = db.query(User.id).filter(func.lower(User.email) == email.strip().lower())
    if exclude_id is not None:
        q = q.filter(User.id != exclude_id)
    return q.first() is not None


def _snapshot(u: User) -> dict:
    return {
        "email": u.email,
        "full_name": u.full_name,
        "role": u.role,
        "department": u.department,
        "is_active": bool(u.is_active),
    }


@router.get("/users")
def list_users(
    role: Optional[str] = None,
    department: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    admin: User = Depends(manage_users),
):
    q = db.query(User)
    if role:
        q = q.filter(User.role == role)
    if department:
        q = q.filter(User.department == department)
    total = q.count()
    rows = q.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    return {"users": [user_dict(u) for u in rows], "total": total, "page": page, "limit": limit}


@router.post("/users", status_code=201)
def create_user(body: AdminUserCreate, db: Session = Depends(get_db), admin: User = Depends(manage_users)):
    if _email_taken(db, body.email):
        raise HTTPException(status_code=409, detail="User with this email already exists")
    u = User(
        email=body.email.strip().lower(),
        password_hash=get_password_hash(body.password),
        full_name=body.full_name.strip(),
        role=body.role.value,
        department=body.department,
        is_active=body.is_active,
    )
    db.add(u)
    db.flush()
    log_activity(db, admin, "CREATE", "user", u.id, changes={"after": _snapshot(u)})
    db.commit()
    db.refresh(u)
    log.info("user_created", user_id=str(u.id), role=u.role)
    return {"user": user_dict(u)}


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    body: AdminUserUpdate,
    db: Session = Depends(get_db),
    admin: User = Depends(manage_users),
):
    target = _get_user(db, user_id)
    data = body.model_dump(exclude_unset=True)
    if target.id == admin.id:
        if data.get("is_active") is False:
            raise HTTPException(status_code=400, detail="Cannot deactivate your own account")
        if data.get("role") is not None and data["role"].value != admin.role:
            raise HTTPException(status_code=400, detail="Cannot change your own role")
    if data.get("email") and _email_taken(db, data["email"], exclude_id=target.id):
        raise HTTPException(status_code=409, detail="User with this email already exists")

    before = _snapshot(target)
    if data.get("password"):
        target.password_hash = get_password_hash(data["password"])
    if data.get("email"):
        target.email = data["email"].strip().lower()
    if data.get("role") is not None:
        target.role = data["role"].value
    if data.get("full_name"):
        target.full_name = data["full_name"]
    if "department" in data:
        target.department = data["department"]
    if data.get("is_active") is not None:
        target.is_active = data["is_active"]

    diff = compute_diff(before, _snapshot(target))
    if data.get("password"):
        diff["password"] = {"before": None, "after": "changed"}
    if diff:
        log_activity(db, admin, "UPDATE", "user", target.id, changes=diff)
    db.commit()
    db.refresh(target)
    log.info("user_updated", user_id=str(target.id), fields=sorted(diff))
    return {"user": user_dict(target)}


@router.delete("/users/{user_id}")
def delete_user(user_id: str, db: Session = Depends(get_db), admin: User = Depends(manage_users)):
    target = _get_user(db, user_id)
    if target.id == admin.id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    managed = db.query(func.count(Project.id)).filter(Project.project_manager_id == target.id).scalar() or 0
    if managed:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete user who is managing projects. Please reassign project management first.",
        )
    pending = (
        db.query(func.count(Expense.id))
        .filter(Expense.submitted_by == target.id, Expense.status == "pending")
        .scalar()
        or 0
    )
    if pending:
        raise HTTPException(
            status_code=400,
            detail="Cannot delete user who has pending expenses. Please process all pending expenses first.",
        )
    log_activity(db, admin, "DELETE", "user", target.id, changes={"before": _snapshot(target)})
    db.delete(target)
    db.commit()
    log.info("user_deleted", user_id=user_id)
    return {"message": "User deleted successfully"}


@router.get("/activity-log")
def activity_log(
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    admin: User = Depends(require_permission("audit", Action.ADMIN)),
):
    q = db.query(AdminActivityLog, User.full_name).outerjoin(User, AdminActivityLog.actor_id == User.id)
    if entity_type:
        q = q.filter(AdminActivityLog.entity_type == entity_type)
    if entity_id:
        eid = as_uuid(entity_id)
        if eid is None:
            return {"activities": [], "total": 0, "page": page, "limit": limit}
        q = q.filter(AdminActivityLog.entity_id == eid)
    total = q.count()
    rows = q.order_by(AdminActivityLog.timestamp_utc.desc()).offset((page - 1) * limit).limit(limit).all()
    activities = [
        {
            "id": str(a.id),
            "actor_id": sid(a.actor_id),
            "actor_name": name,
            "actor_role": a.actor_role,
            "action": a.action,
            "entity_type": a.entity_type,
            "entity_id": str(a.entity_id),
            "changes": a.changes_json,
            "context": a.context,
            "timestamp": iso(a.timestamp_utc),
            "integrity_valid": verify_entry(a),
        }
        for a, name in rows
    ]
    return {"activities": activities, "total": total, "page": page, "limit": limit}


@router.get("/overview")
def overview(db: Session = Depends(get_db), admin: User = Depends(require_roles("admin"))):
    total_budget, total_spent = db.query(
        func.coalesce(func.sum(Project.total_budget), 0),
        func.coalesce(func.sum(Project.spent_budget), 0),
    ).one()
    total_budget, total_spent = Decimal(str(total_budget)), Decimal(str(total_spent))
    return {
        "active_users": db.query(func.count(User.id)).filter(User.is_active.is_(True)).scalar() or 0,
        "total_projects": db.query(func.count(Project.id)).scalar() or 0,
        "active_projects": db.query(func.count(Project.id)).filter(Project.status == "active").scalar() or 0,
        "pending_expenses": db.query(func.count(Expense.id)).filter(Expense.status == "pending").scalar() or 0,
        "total_budget": money_float(total_budget),
        "total_spent": money_float(total_spent),
        "business_units_count": db.query(func.count(BusinessUnit.id)).scalar() or 0,
        "unread_notifications": db.query(func.count(Notification.id)).filter(Notification.read.is_(False)).scalar() or 0,
        "budget_utilization": round(float(budget_utilization(total_spent, total_budget)), 1),
    }
