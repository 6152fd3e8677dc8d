from datetime import date, datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import Milestone, Project, User
from ..schemas.milestones import MilestoneCreate, MilestoneUpdate
from ..services.roles import Action, has_permission
from ..services.visibility import as_uuid, filter_visible, get_visible_project, is_project_manager
from .serialize import milestone_dict


router = APIRouter(prefix="/api/project-milestones", tags=["milestones"])
log = structlog.get_logger(__name__)


def _can_edit(user: User, project: Project) -> bool:
    return is_project_manager(user, project) or has_permission(user.role, "milestones", Action.WRITE)


def _get_visible_milestone(db: Session, user: User, milestone_id: str) -> Milestone:
    mid = as_uuid(milestone_id)
    if mid is None:
        raise HTTPException(status_code=404, detail="Milestone not found")
    q = filter_visible(db.query(Milestone).filter(Milestone.id == mid), user, Milestone.project_id)
    m = q.first()
    if not m:
        raise HTTPException(status_code=404, detail="Milestone not found")
    return m


@router.get("")
def list_milestones(
    status: Optional[str] = None,
    project_id: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = filter_visible(db.query(Milestone), user, Milestone.project_id)
    if status:
        q = q.filter(Milestone.status == status)
    if project_id:
        pid = as_uuid(project_id)
        if pid is None:
            raise HTTPException(status_code=404, detail="Project not found")
        q = q.filter(Milestone.project_id == pid)
    rows = q.order_by(Milestone.due_date.asc(), Milestone.created_at.asc()).all()
    return {"milestones": [milestone_dict(m) for m in rows], "total": len(rows)}


@router.get("/project/{project_id}")
def list_project_milestones(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, project_id)
    rows = (
        db.query(Milestone)
        .filter(Milestone.project_id == project.id)
        .order_by(Milestone.due_date.asc(), Milestone.created_at.asc())
        .all()
    )
    return {"milestones": [milestone_dict(m) for m in rows], "total": len(rows)}


@router.get("/project/{project_id}/stats")
def project_milestone_stats(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, project_id)
    today = date.today()
    total, pending, in_progress, completed, delayed, past_due, avg_progress = (
        db.query(
            func.count(Milestone.id),
            func.count(case((Milestone.status == "pending", 1))),
            func.count(case((Milestone.status == "in_progress", 1))),
            func.count(case((Milestone.status == "completed", 1))),
            func.count(case((Milestone.status == "delayed", 1))),
            func.count(case(((Milestone.due_date < today) & (Milestone.status != "completed"), 1))),
            func.avg(Milestone.progress),
        )
        .filter(Milestone.project_id == project.id)
        .one()
    )
    return {
        "stats": {
            "total_milestones": total or 0,
            "pending_milestones": pending or 0,
            "in_progress_milestones": in_progress or 0,
            "completed_milestones": completed or 0,
            "delayed_milestones": delayed or 0,
            "past_due_milestones": past_due or 0,
            "average_progress": round(float(avg_progress), 2) if avg_progress is not None else 0,
        }
    }


@router.get("/{milestone_id}")
def get_milestone(milestone_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"milestone": milestone_dict(_get_visible_milestone(db, user, milestone_id))}


@router.post("", status_code=201)
def create_milestone(body: MilestoneCreate, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, body.project_id)
    if not _can_edit(user, project):
        raise HTTPException(status_code=403, detail="Access denied to create milestones for this project")
    now = datetime.now(timezone.utc)
    m = Milestone(
        project_id=project.id,
        title=body.title.strip(),
        description=body.description,
        due_date=body.due_date,
        progress=100 if body.status == "completed" else body.progress,
        status=body.status,
        created_by=user.id,
        created_at=now,
        updated_at=now,
    )
    db.add(m)
    db.commit()
    db.refresh(m)
    log.info("milestone_created", milestone_id=str(m.id), project_id=str(project.id))
    return {"milestone": milestone_dict(m)}


@router.put("/{milestone_id}")
def update_milestone(
    milestone_id: str,
    body: MilestoneUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    m = _get_visible_milestone(db, user, milestone_id)
    if not _can_edit(user, m.project):
        raise HTTPException(status_code=403, detail="Only project managers and admins can modify milestones")
    data = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None or k in ("description", "due_date")}
    if not data:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    for field, value in data.items():
        setattr(m, field, value.strip() if field == "title" else value)
    if m.status == "completed" and "progress" not in data:
        m.progress = 100
    m.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(m)
    log.info("milestone_updated", milestone_id=str(m.id), fields=sorted(data))
    return {"milestone": milestone_dict(m)}


@router.delete("/{milestone_id}")
def delete_milestone(
    milestone_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("manager")),
):
    m = _get_visible_milestone(db, user, milestone_id)
    db.delete(m)
    db.commit()
    log.info("milestone_deleted", milestone_id=milestone_id)
    return {"message": "Milestone deleted successfully"}
