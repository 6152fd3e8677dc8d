from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permission
from ..db import get_db
from ..models.models import BudgetVersion, User
from ..schemas.budgets import BudgetVersionCreate, BudgetVersionDecision, BudgetVersionUpdate
from ..services.audit import compute_diff, log_activity
from ..services.roles import Action, can_manage, has_permission, is_admin
from ..services.visibility import as_uuid, filter_visible, get_visible_project, is_project_manager
from .serialize import money, version_dict


router = APIRouter(prefix="/api/budget-versions", tags=["budget-versions"])
log = structlog.get_logger(__name__)


def _get_visible_version(db: Session, user: User, version_id: str) -> BudgetVersion:
    vid = as_uuid(version_id)
    if vid is None:
        raise HTTPException(status_code=404, detail="Budget version not found")
    q = filter_visible(db.query(BudgetVersion).filter(BudgetVersion.id == vid), user, BudgetVersion.project_id)
    version = q.first()
    if not version:
        raise HTTPException(status_code=404, detail="Budget version not found")
    return version


def _creator_name(db: Session, v: BudgetVersion) -> Optional[str]:
    if not v.created_by:
        return None
    return db.query(User.full_name).filter(User.id == v.created_by).scalar()


def _snapshot(v: BudgetVersion) -> dict:
    return {
        "title": v.title,
        "description": v.description,
        "total_amount": money(v.total_amount),
        "status": v.status,
    }


def _can_edit(user: User, v: BudgetVersion) -> bool:
    return can_manage(user.role) or (v.created_by == user.id and v.status == "draft")


@router.get("/project/{project_id}")
def list_project_versions(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, project_id)
    rows = (
        db.query(BudgetVersion, User.full_name)
        .outerjoin(User, BudgetVersion.created_by == User.id)
        .filter(BudgetVersion.project_id == project.id)
        .order_by(BudgetVersion.version_number.desc())
        .all()
    )
    versions = [version_dict(v, created_by_name=name) for v, name in rows]
    return {"versions": versions, "total": len(versions)}


@router.get("/{version_id}")
def get_version(version_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    v = _get_visible_version(db, user, version_id)
    return {"version": version_dict(v, created_by_name=_creator_name(db, v))}


@router.post("", status_code=201)
def create_version(body: BudgetVersionCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, body.project_id)
    if not (is_project_manager(user, project) or has_permission(user.role, "budget-versions", Action.WRITE)):
        raise HTTPException(status_code=403, detail="Insufficient permissions. Required: budget-versions:write")
    last = db.query(func.max(BudgetVersion.version_number)).filter(BudgetVersion.project_id == project.id).scalar()
    v = BudgetVersion(
        project_id=project.id,
        version_number=(last or 0) + 1,
        title=body.title.strip(),
        description=body.description,
        total_amount=body.total_amount if body.total_amount is not None else project.total_budget,
        status=body.status,
        created_by=user.id,
    )
    db.add(v)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Budget version number already taken, retry")
    log_activity(
        db, user, "CREATE", "budget_version", v.id,
        changes={"after": _snapshot(v)},
        context={"project_id": str(project.id), "version_number": v.version_number},
    )
    db.commit()
    db.refresh(v)
    log.info("budget_version_created", version_id=str(v.id), project_id=str(project.id), version_number=v.version_number)
    return {"version": version_dict(v, created_by_name=user.full_name)}


@router.put("/{version_id}")
def update_version(
    version_id: str,
    body: BudgetVersionUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    v = _get_visible_version(db, user, version_id)
    if not _can_edit(user, v):
        raise HTTPException(status_code=403, detail="Only the creator can update a draft version")
    data = {k: val for k, val in body.model_dump(exclude_unset=True).items() if val is not None}
    if not data:
        raise HTTPException(status_code=400, detail="No fields to update provided")
    if v.status == "approved" and not is_admin(user.role):
        raise HTTPException(status_code=400, detail="Approved versions cannot be modified")

    before = _snapshot(v)
    for field, value in data.items():
        setattr(v, field, value)
    v.updated_at = datetime.now(timezone.utc)
    diff = compute_diff(before, _snapshot(v))
    if diff:
        log_activity(db, user, "UPDATE", "budget_version", v.id, changes=diff, context={"project_id": str(v.project_id)})
    db.commit()
    db.refresh(v)
    return {"version": version_dict(v, created_by_name=_creator_name(db, v))}


@router.patch("/{version_id}/approve")
def approve_version(
    version_id: str,
    body: Optional[BudgetVersionDecision] = Body(default=None),
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("approvals", Action.WRITE)),
):
    v = _get_visible_version(db, user, version_id)
    decision = body.status if body else "approved"
    if v.status == "approved":
        raise HTTPException(status_code=400, detail="Budget version is already approved")
    old_status = v.status
    now = datetime.now(timezone.utc)
    v.status = decision
    v.approved_by = user.id
    v.approved_at = now if decision == "approved" else None
    v.updated_at = now
    log_activity(
        db, user, "APPROVE" if decision == "approved" else "REJECT", "budget_version", v.id,
        changes={"status": {"before": old_status, "after": decision}},
        context={"project_id": str(v.project_id)},
    )
    db.commit()
    db.refresh(v)
    log.info("budget_version_" + decision, version_id=str(v.id))
    return {"version": version_dict(v, created_by_name=_creator_name(db, v))}


@router.delete("/{version_id}")
def delete_version(version_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    v = _get_visible_version(db, user, version_id)
    if not is_admin(user.role):
        if v.status != "draft":
            raise HTTPException(status_code=403, detail="Can only delete draft versions")
        if not _can_edit(user, v):
            raise HTTPException(status_code=403, detail="Only the creator can delete a draft version")
    log_activity(db, user, "DELETE", "budget_version", v.id, changes={"before": _snapshot(v)}, context={"project_id": str(v.project_id)})
    db.delete(v)
    db.commit()
    log.info("budget_version_deleted", version_id=version_id)
    return {"message": "Budget version deleted successfully"}
