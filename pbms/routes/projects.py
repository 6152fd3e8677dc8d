from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permission, require_roles
from ..db import get_db
from ..models.models import BusinessUnit, Project, ProjectTeam, User
from ..schemas.projects import ProjectCreate, ProjectUpdate
from ..services import analytics
from ..services.audit import compute_diff, log_activity
from ..services.budget import project_risks, team_size, team_size_subquery
from ..services.notifications import notify_new_project, safe_notify
from ..services.roles import Action, is_admin
from ..services.visibility import can_manage_project, get_visible_project, project_visibility_clause
from .serialize import iso, money, project_dict, sid


router = APIRouter(prefix="/api/projects", tags=["projects"])
log = structlog.get_logger(__name__)


def _snapshot(p: Project) -> dict:
    return {
        "name": p.name,
        "description": p.description,
        "status": p.status,
        "total_budget": money(p.total_budget),
        "allocated_budget": money(p.allocated_budget),
        "currency": p.currency,
        "department": p.department,
        "business_unit_id": sid(p.business_unit_id),
        "project_manager_id": sid(p.project_manager_id),
        "start_date": iso(p.start_date),
        "end_date": iso(p.end_date),
    }


def _check_business_unit(db: Session, business_unit_id) -> Optional[BusinessUnit]:
    if business_unit_id is None:
        return None
    bu = db.query(BusinessUnit).filter(BusinessUnit.id == business_unit_id).first()
    if not bu:
        raise HTTPException(status_code=400, detail="Business unit not found")
    return bu


def _check_manager(db: Session, manager_id) -> User:
    manager = db.query(User).filter(User.id == manager_id, User.is_active.is_(True)).first()
    if not manager:
        raise HTTPException(status_code=400, detail="Project manager not found")
    return manager


def _detail(db: Session, p: Project) -> dict:
    d = project_dict(
        p,
        team_size=team_size(db, p.id),
        manager_name=p.manager.full_name if p.manager else None,
        business_unit_name=p.business_unit.name if p.business_unit else None,
    )
    members = (
        db.query(ProjectTeam, User)
        .join(User, ProjectTeam.user_id == User.id)
        .filter(ProjectTeam.project_id == p.id)
        .order_by(ProjectTeam.created_at.asc())
        .all()
    )
    d["team"] = [
        {"user_id": str(u.id), "full_name": u.full_name, "email": u.email, "role": pt.role}
        for pt, u in members
    ]
    return d


@router.get("")
def list_projects(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    base = db.query(Project).filter(project_visibility_clause(user))
    if search:
        pattern = f"%{search.strip()}%"
        base = base.filter(or_(Project.name.ilike(pattern), Project.description.ilike(pattern)))
    if status:
        base = base.filter(Project.status == status)
    total = base.count()

    teams = team_size_subquery()
    rows = (
        base.outerjoin(User, Project.project_manager_id == User.id)
        .outerjoin(BusinessUnit, Project.business_unit_id == BusinessUnit.id)
        .outerjoin(teams, teams.c.project_id == Project.id)
        .add_columns(User.full_name, BusinessUnit.name, teams.c.team_size)
        .order_by(Project.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    projects = [
        project_dict(p, team_size=size, manager_name=manager_name, business_unit_name=bu_name)
        for p, manager_name, bu_name, size in rows
    ]
    return {"projects": projects, "total": total, "page": page, "limit": limit}


@router.get("/dashboard/metrics")
def dashboard_metrics(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return analytics.dashboard_metrics(db, user)


@router.get("/{project_id}")
def get_project(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    p = get_visible_project(db, user, project_id)
    return {"project": _detail(db, p)}


@router.get("/{project_id}/risks")
def get_project_risks(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    p = get_visible_project(db, user, project_id)
    risks = project_risks(p)
    for index, risk in enumerate(risks, start=1):
        risk["id"] = f"risk_{index}"
    return {"risks": risks}


@router.post("", status_code=201)
def create_project(
    body: ProjectCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("budget-planning", Action.WRITE)),
):
    _check_business_unit(db, body.business_unit_id)
    manager_id = user.id
    if body.project_manager_id and body.project_manager_id != user.id:
        if not is_admin(user.role):
            raise HTTPException(status_code=403, detail="Only admins can assign another project manager")
        manager_id = _check_manager(db, body.project_manager_id).id

    p = Project(
        name=body.name.strip(),
        description=body.description,
        total_budget=body.total_budget,
        allocated_budget=body.allocated_budget if body.allocated_budget is not None else body.total_budget,
        spent_budget=0,
        currency=body.currency.upper(),
        department=body.department,
        business_unit_id=body.business_unit_id,
        project_manager_id=manager_id,
        start_date=body.start_date,
        end_date=body.end_date,
        status=body.status,
    )
    db.add(p)
    db.flush()
    log_activity(db, user, "CREATE", "project", p.id, changes={"after": _snapshot(p)})
    db.commit()
    db.refresh(p)
    log.info("project_created", project_id=str(p.id), user_id=str(user.id))
    safe_notify(notify_new_project, db, p, user)
    return {"project": _detail(db, p)}


@router.put("/{project_id}")
def update_project(
    project_id: str,
    body: ProjectUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    p = get_visible_project(db, user, project_id)
    if not can_manage_project(user, p):
        raise HTTPException(status_code=403, detail="Not authorized to update this project")

    data = body.model_dump(exclude_unset=True)
    if "project_manager_id" in data and data["project_manager_id"] != p.project_manager_id:
        if not is_admin(user.role):
            raise HTTPException(status_code=403, detail="Only admins can reassign the project manager")
        if data["project_manager_id"] is not None:
            _check_manager(db, data["project_manager_id"])
    if "business_unit_id" in data:
        _check_business_unit(db, data["business_unit_id"])
    start = data.get("start_date", p.start_date)
    end = data.get("end_date", p.end_date)
    if start and end and end < start:
        raise HTTPException(status_code=400, detail="end_date must not be before start_date")

    before = _snapshot(p)
    for field in ("name", "total_budget", "currency", "status"):
        if field in data and data[field] is None:
            data.pop(field)
    if "name" in data:
        data["name"] = data["name"].strip()
    if "currency" in data:
        data["currency"] = data["currency"].upper()
    for field, value in data.items():
        setattr(p, field, value)
    p.updated_at = datetime.now(timezone.utc)

    diff = compute_diff(before, _snapshot(p))
    if diff:
        log_activity(db, user, "UPDATE", "project", p.id, changes=diff)
    db.commit()
    db.refresh(p)
    log.info("project_updated", project_id=str(p.id), fields=sorted(diff))
    return {"project": _detail(db, p)}


@router.delete("/{project_id}")
def delete_project(
    project_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    p = get_visible_project(db, user, project_id)
    log_activity(db, user, "DELETE", "project", p.id, changes={"before": _snapshot(p)})
    db.delete(p)
    db.commit()
    log.info("project_deleted", project_id=project_id, user_id=str(user.id))
    return {"message": "Project deleted successfully"}
