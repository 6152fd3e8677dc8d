from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import Project, ProjectTeam, User
from ..schemas.projects import ProjectAdminAssign
from ..services.audit import log_activity
from ..services.notifications import notify_project_admin_assignment, safe_notify
from ..services.roles import Action, has_permission, is_admin
from ..services.visibility import as_uuid, can_edit_team, filter_visible, get_visible_project, is_project_manager
from .serialize import iso


router = APIRouter(prefix="/api/project-admin", tags=["project-admin"])
log = structlog.get_logger(__name__)

# Team roles that mark a project admin
PROJECT_ADMIN_ROLES = ("admin", "project_admin")


def _editable_project(db: Session, user: User, project_id: str) -> Project:
    project = get_visible_project(db, user, project_id)
    if not can_edit_team(user, project):
        raise HTTPException(status_code=403, detail="Insufficient permissions to manage project admins")
    return project


@router.get("/my-admin-projects")
def my_admin_projects(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Projects whose team the caller can administer.

    Holders of ``project-teams:write`` get every project they can see. Everyone
    else gets the projects they own or hold an admin team role on.
    """
    q = db.query(Project, ProjectTeam.role, ProjectTeam.created_at).outerjoin(
        ProjectTeam,
        and_(ProjectTeam.project_id == Project.id, ProjectTeam.user_id == user.id),
    )
    q = filter_visible(q, user, Project.id)
    if not has_permission(user.role, "project-teams", Action.WRITE):
        q = q.filter(or_(Project.project_manager_id == user.id, ProjectTeam.role.in_(PROJECT_ADMIN_ROLES)))
    rows = q.order_by(Project.created_at.desc()).all()
    projects = [
        {
            "id": str(p.id),
            "name": p.name,
            "description": p.description,
            "status": p.status,
            "start_date": iso(p.start_date),
            "end_date": iso(p.end_date),
            "team_role": team_role,
            "admin_since": iso(joined_at if team_role in PROJECT_ADMIN_ROLES else p.created_at),
        }
        for p, team_role, joined_at in rows
    ]
    return {"projects": projects, "total": len(projects)}


@router.get("/permissions/{project_id}")
def my_project_permissions(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = get_visible_project(db, user, project_id)
    team_role = (
        db.query(ProjectTeam.role)
        .filter(ProjectTeam.project_id == project.id, ProjectTeam.user_id == user.id)
        .scalar()
    )
    return {
        "project_id": str(project.id),
        "team_role": team_role,
        "is_project_admin": team_role in PROJECT_ADMIN_ROLES,
        "is_project_manager": is_project_manager(user, project),
        "can_manage_team": can_edit_team(user, project),
        "is_system_admin": is_admin(user.role),
    }


@router.get("/{project_id}/admins")
def list_project_admins(project_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    project = _editable_project(db, user, project_id)
    rows = (
        db.query(ProjectTeam, User)
        .join(User, ProjectTeam.user_id == User.id)
        .filter(ProjectTeam.project_id == project.id, ProjectTeam.role.in_(PROJECT_ADMIN_ROLES))
        .order_by(ProjectTeam.created_at.desc())
        .all()
    )
    admins = [
        {
            "id": str(u.id),
            "email": u.email,
            "full_name": u.full_name,
            "department": u.department,
            "role": pt.role,
            "assigned_at": iso(pt.updated_at or pt.created_at),
        }
        for pt, u in rows
    ]
    return {"admins": admins, "total": len(admins)}


@router.post("/{project_id}/admins")
def assign_project_admin(
    project_id: str,
    body: ProjectAdminAssign,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = _editable_project(db, user, project_id)
    target = db.query(User).filter(User.id == body.user_id).first()
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    pt = (
        db.query(ProjectTeam)
        .filter(ProjectTeam.project_id == project.id, ProjectTeam.user_id == target.id)
        .first()
    )
    if pt is None:
        pt = ProjectTeam(project_id=project.id, user_id=target.id, role="admin")
        db.add(pt)
        db.flush()
        log_activity(
            db, user, "CREATE", "project_team", pt.id,
            changes={"user_id": str(target.id), "role": "admin"},
            context={"project_id": str(project.id)},
        )
    elif pt.role != "admin":
        old_role = pt.role
        pt.role = "admin"
        pt.updated_at = datetime.now(timezone.utc)
        log_activity(
            db, user, "UPDATE", "project_team", pt.id,
            changes={"role": {"before": old_role, "after": "admin"}},
            context={"project_id": str(project.id)},
        )
    db.commit()
    log.info("project_admin_assigned", project_id=str(project.id), member_id=str(target.id))
    safe_notify(notify_project_admin_assignment, db, project, target.id)
    return {
        "message": "User assigned as project admin successfully",
        "user": {"id": str(target.id), "full_name": target.full_name},
        "project": {"id": str(project.id), "name": project.name},
    }


@router.delete("/{project_id}/admins/{user_id}")
def remove_project_admin(
    project_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    project = _editable_project(db, user, project_id)
    target_id = as_uuid(user_id)
    pt = None
    if target_id is not None:
        pt = (
            db.query(ProjectTeam)
            .filter(ProjectTeam.project_id == project.id, ProjectTeam.user_id == target_id)
            .first()
        )
    if pt is None:
        raise HTTPException(status_code=404, detail="User is not a member of this project")
    if pt.role not in PROJECT_ADMIN_ROLES:
        raise HTTPException(status_code=400, detail="User is not a project admin")

    # Demote to member; the user stays on the team
    old_role = pt.role
    pt.role = "member"
    pt.updated_at = datetime.now(timezone.utc)
    log_activity(
        db, user, "UPDATE", "project_team", pt.id,
        changes={"role": {"before": old_role, "after": "member"}},
        context={"project_id": str(project.id)},
    )
    db.commit()
    log.info("project_admin_removed", project_id=str(project.id), member_id=str(target_id))
    return {"message": "Project admin role removed successfully"}
