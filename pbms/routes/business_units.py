from datetime import datetime, timezone
from decimal import Decimal

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permission, require_roles
from ..db import get_db
from ..models.models import BusinessUnit, Project, User
from ..schemas.business_units import BusinessUnitCreate, BusinessUnitUpdate
from ..services.audit import compute_diff, log_activity
from ..services.budget import budget_utilization, money_float, percent, team_size_subquery
from ..services.roles import Action
from ..services.visibility import as_uuid, project_visibility_clause
from .serialize import business_unit_dict, project_dict, sid


router = APIRouter(prefix="/api/business-units", tags=["business-units"])
log = structlog.get_logger(__name__)


def _get_unit(db: Session, unit_id: str) -> BusinessUnit:
    uid = as_uuid(unit_id)
    bu = db.query(BusinessUnit).filter(BusinessUnit.id == uid).first() if uid else None
    if not bu:
        raise HTTPException(status_code=404, detail="Business unit not found")
    return bu


def _name_taken(db: Session, name: str, exclude_id=None) -> bool:
    q = db.query(BusinessUnit.id).filter(func.lower(BusinessUnit.name) == name.strip().lower())
    if exclude_id is not None:
        q = q.filter(BusinessUnit.id != exclude_id)
    return q.first() is not None


def _check_manager(db: Session, manager_id):
    if manager_id is None:
        return
    if not db.query(User.id).filter(User.id == manager_id).first():
        raise HTTPException(status_code=400, detail="Manager not found")


def _snapshot(bu: BusinessUnit) -> dict:
    return {"name": bu.name, "description": bu.description, "manager_id": sid(bu.manager_id)}


def _project_count(db: Session, unit_id) -> int:
    return db.query(func.count(Project.id)).filter(Project.business_unit_id == unit_id).scalar() or 0


@router.get("")
def list_units(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    counts = (
        db.query(Project.business_unit_id.label("unit_id"), func.count(Project.id).label("n"))
        .group_by(Project.business_unit_id)
        .subquery()
    )
    rows = (
        db.query(BusinessUnit, func.coalesce(counts.c.n, 0))
        .outerjoin(counts, counts.c.unit_id == BusinessUnit.id)
        .order_by(BusinessUnit.name.asc())
        .all()
    )
    units = [business_unit_dict(bu, project_count=n) for bu, n in rows]
    return {"business_units": units, "total": len(units)}


@router.get("/{unit_id}")
def get_unit(unit_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    bu = _get_unit(db, unit_id)
    return {"business_unit": business_unit_dict(bu, project_count=_project_count(db, bu.id))}


@router.get("/{unit_id}/projects")
def unit_projects(unit_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    bu = _get_unit(db, unit_id)
    teams = team_size_subquery()
    rows = (
        db.query(Project, User.full_name, teams.c.team_size)
        .outerjoin(User, Project.project_manager_id == User.id)
        .outerjoin(teams, teams.c.project_id == Project.id)
        .filter(Project.business_unit_id == bu.id, project_visibility_clause(user))
        .order_by(Project.created_at.desc())
        .all()
    )
    projects = [
        project_dict(p, team_size=size, manager_name=manager_name, business_unit_name=bu.name)
        for p, manager_name, size in rows
    ]
    return {"projects": projects, "total": len(projects)}


@router.get("/{unit_id}/stats")
def unit_stats(unit_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    bu = _get_unit(db, unit_id)
    projects = (
        db.query(Project)
        .filter(Project.business_unit_id == bu.id, project_visibility_clause(user))
        .all()
    )
    total = sum((p.total_budget or Decimal("0") for p in projects), Decimal("0"))
    spent = sum((p.spent_budget or Decimal("0") for p in projects), Decimal("0"))
    return {
        "stats": {
            "name": bu.name,
            "total_projects": len(projects),
            "active_projects": sum(1 for p in projects if p.status == "active"),
            "completed_projects": sum(1 for p in projects if p.status == "completed"),
            "total_budget": money_float(total),
            "total_spent": money_float(spent),
            "budget_utilization": percent(budget_utilization(spent, total)),
        }
    }


@router.post("", status_code=201)
def create_unit(
    body: BusinessUnitCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("business-units", Action.WRITE)),
):
    if _name_taken(db, body.name):
        raise HTTPException(status_code=409, detail="Business unit with this name already exists")
    _check_manager(db, body.manager_id)
    bu = BusinessUnit(name=body.name.strip(), description=body.description, manager_id=body.manager_id)
    db.add(bu)
    db.flush()
    log_activity(db, user, "CREATE", "business_unit", bu.id, changes={"after": _snapshot(bu)})
    db.commit()
    db.refresh(bu)
    log.info("business_unit_created", business_unit_id=str(bu.id))
    return {"business_unit": business_unit_dict(bu, project_count=0)}


@router.put("/{unit_id}")
def update_unit(
    unit_id: str,
    body: BusinessUnitUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("business-units", Action.WRITE)),
):
    bu = _get_unit(db, unit_id)
    data = body.model_dump(exclude_unset=True)
    if data.get("name") is None:
        data.pop("name", None)
    if not data:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    if "name" in data and _name_taken(db, data["name"], exclude_id=bu.id):
        raise HTTPException(status_code=409, detail="Business unit with this name already exists")
    if "manager_id" in data:
        _check_manager(db, data["manager_id"])

    before = _snapshot(bu)
    if "name" in data:
        data["name"] = data["name"].strip()
    for field, value in data.items():
        setattr(bu, field, value)
    bu.updated_at = datetime.now(timezone.utc)
    diff = compute_diff(before, _snapshot(bu))
    if diff:
        log_activity(db, user, "UPDATE", "business_unit", bu.id, changes=diff)
    db.commit()
    db.refresh(bu)
    return {"business_unit": business_unit_dict(bu, project_count=_project_count(db, bu.id))}


@router.delete("/{unit_id}")
def delete_unit(unit_id: str, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    bu = _get_unit(db, unit_id)
    if _project_count(db, bu.id):
        raise HTTPException(status_code=400, detail="Cannot delete business unit that has associated projects")
    log_activity(db, user, "DELETE", "business_unit", bu.id, changes={"before": _snapshot(bu)})
    db.delete(bu)
    db.commit()
    log.info("business_unit_deleted", business_unit_id=unit_id)
    return {"message": "Business unit deleted successfully"}
