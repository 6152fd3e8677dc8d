import uuid
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_permission
from ..db import get_db
from ..models.models import BusinessUnit, Project, ProjectTeam, User
from ..schemas.projects import TeamMemberAdd, TeamRoleUpdate
from ..services.audit import log_activity
from ..services.notifications import notify_team_assignment, safe_notify
from ..services.roles import Action, is_admin
from ..services.visibility import can_edit_team, filter_visible, get_visible_project
from .serialize import iso, money


router = APIRouter(prefix="/api/project-teams", tags=["project-teams"])
log = structlog.get_logger(__name__)


def _member_dict(pt: ProjectTeam, u: User) -> dict:
    return {
        "id": str(pt.id),
        "project_id": str(pt.project_id),
        "user_id": str(pt.user_id),
        "role": pt.role,
        "created_at": iso(pt.created_at),
        "updated_at": iso(pt.updated_at),
        "email": u.email,
        "full_name": u.full_name,
        "department": u.department,
    }


def _parse_uuid(value: str, what: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=404, detail=f"{what} not found")


@router.get("")
def list_team_members(
    project_id: Optional[str] = None,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = db.query(ProjectTeam, User).join(User, ProjectTeam.user_id == User.id)
    if project_id:
        project = get_visible_project(db, user, project_id)
        q = q.filter(ProjectTeam.project_id == project.id)
    elif user_id:
        target = _parse_uuid(user_id, "User")
        if target != user.id and not is_admin(user.role):
            raise HTTPException(status_code=403, detail="Access denied")
        q = filter_visible(q.filter(ProjectTeam.user_id == target), user, ProjectTeam.project_id)
    else:
        raise HTTPException(status_code=400, detail="Either project_id or user_id is required")
    rows = q.order_by(ProjectTeam.created_at.desc()).all()
    members = [_member_dict(pt, u) for pt, u in rows]
    return {"project_teams": members, "total": len(members)}


@router.get("/available-users")
def available_users(
    db: Session = Depends(get_db),
    user: User = Depends(require_permission("project-teams", Action.WRITE)),
):
    users = (
        db.query(User)
        .filter(User.is_active.is_(True))
        .order_by(User.full_name.asc(), User.email.asc())
        .all()
    )
    out = [
        {"id": str(u.id), "email": u.email, "full_name": u.full_name, "department": u.department, "role": u.role}
        for u in users
    ]
    return {"users": out, "total": len(out)}


@router.get("/user-projects/{user_id}")
def user_projects(user_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    target = _parse_uuid(user_id, "User")
    if target != user.id and not is_admin(user.role):
        raise HTTPException(status_code=403, detail="Access denied")
    rows = (
        db.query(ProjectTeam, Project, BusinessUnit.name)
        .join(Project, ProjectTeam.project_id == Project.id)
        .outerjoin(BusinessUnit, Project.business_unit_id == BusinessUnit.id)
        .filter(ProjectTeam.user_id == target)
        .order_by(Project.created_at.desc())
        .all()
    )
    projects = [
        {
            "id": str(p.id),
            "name": p.name,
            "description": p.description,
            "total_budget": money(p.total_budget),
            "spent_budget": money(p.spent_budget),
            "start_date": iso(p.start_date),
            "end_date": iso(p.end_date),
            "status": p.status,
            "currency": p.currency,
            "created_at": iso(p.created_at),
            "team_role": pt.role,
            "joined_at": iso(pt.created_at),
            "business_unit_name": bu_name,
        }
        for pt, p, bu_name in rows
    ]
    return {"projects": projects, "total": len(projects)}


@router.post("", status_code=201)
def add_team_member(body: TeamMemberAdd, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, body.project_id)
    if not can_edit_team(user, project):
        raise HTTPException(status_code=403, detail="Insufficient permissions. Required: project-teams:write")
    member = db.query(User).filter(User.id == body.user_id).first()
    if not member:
        raise HTTPException(status_code=404, detail="User not found")
    exists = (
        db.query(ProjectTeam.id)
        .filter(ProjectTeam.project_id == project.id, ProjectTeam.user_id == member.id)
        .first()
    )
    if exists:
        raise HTTPException(status_code=409, detail="User is already a member of this project team")

    pt = ProjectTeam(project_id=project.id, user_id=member.id, role=body.role)
    db.add(pt)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="User is already a member of this project team")
    log_activity(
        db, user, "CREATE", "project_team", pt.id,
        changes={"user_id": str(member.id), "role": body.role},
        context={"project_id": str(project.id)},
    )
    db.commit()
    db.refresh(pt)
    log.info("team_member_added", project_id=str(project.id), member_id=str(member.id), role=body.role)
    safe_notify(notify_team_assignment, db, project, member.id, body.role)
    return {"message": "User added to project team successfully", "project_team": _member_dict(pt, member)}


def _get_editable_row(db: Session, user: User, member_id: str):
    pid = _parse_uuid(member_id, "Project team member")
    pt = db.query(ProjectTeam).filter(ProjectTeam.id == pid).first()
    if not pt:
        raise HTTPException(status_code=404, detail="Project team member not found")
    project = get_visible_project(db, user, pt.project_id)
    if not can_edit_team(user, project):
        raise HTTPException(status_code=403, detail="Insufficient permissions. Required: project-teams:write")
    return pt, project


@router.put("/{member_id}")
def update_team_role(
    member_id: str,
    body: TeamRoleUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    pt, project = _get_editable_row(db, user, member_id)
    old_role = pt.role
    if old_role != body.role:
        pt.role = body.role
        pt.updated_at = datetime.now(timezone.utc)
        log_activity(
            db, user, "UPDATE", "project_team", pt.id,
            changes={"role": {"before": old_role, "after": body.role}},
            context={"project_id": str(project.id)},
        )
        db.commit()
        db.refresh(pt)
        log.info("team_role_changed", project_id=str(project.id), member_id=str(pt.user_id), old_role=old_role, role=body.role)
    return {"message": "Team member role updated successfully", "project_team": _member_dict(pt, pt.user)}


@router.delete("/{member_id}")
def remove_team_member(member_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    pt, project = _get_editable_row(db, user, member_id)
    member = pt.user
    removed = _member_dict(pt, member)
    log_activity(
        db, user, "DELETE", "project_team", pt.id,
        changes={"user_id": str(pt.user_id), "role": pt.role},
        context={"project_id": str(project.id)},
    )
    db.delete(pt)
    db.commit()
    log.info("team_member_removed", project_id=str(project.id), member_id=removed["user_id"])
    return {"message": "User removed from project team successfully", "project_team": removed}
