"""
Row-level project visibility.

Admins see every project. Any other user sees a project when they manage it
or when a ``project_teams`` row links them to it. Every endpoint that lists,
fetches or joins against projects builds its filter from this module; the
predicate is evaluated inside each query, so team changes apply on the next
request.
"""
import uuid
from typing import Optional, Union

from fastapi import HTTPException
from sqlalchemy import or_, select, true
from sqlalchemy.orm import Session

from ..models.models import Project, ProjectTeam, User
from .roles import Action, has_permission, is_admin


def project_visibility_clause(user: User):
    """WHERE clause over ``Project`` rows the user may read."""
    if is_admin(user.role):
        return true()
    # Correlate on projects only, so callers that query project_teams keep their own FROM
    is_member = (
        select(ProjectTeam.id)
        .where(ProjectTeam.project_id == Project.id, ProjectTeam.user_id == user.id)
        .correlate(Project)
        .exists()
    )
    return or_(Project.project_manager_id == user.id, is_member)


def visible_project_ids(user: User):
    """SELECT of visible project ids, for filtering child rows (expenses, milestones, ...)."""
    # Never correlate: callers may already have projects in their FROM list
    return select(Project.id).where(project_visibility_clause(user)).correlate(None)


def filter_visible(query, user: User, project_id_column):
    """Restrict ``query`` to rows whose ``project_id_column`` points at a visible project."""
    if is_admin(user.role):
        return query
    return query.filter(project_id_column.in_(visible_project_ids(user)))


def is_project_visible(db: Session, user: User, project_id) -> bool:
    stmt = select(Project.id).where(Project.id == project_id, project_visibility_clause(user))
    return db.execute(stmt).first() is not None


def as_uuid(value: Union[str, uuid.UUID]) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def get_visible_project(db: Session, user: User, project_id) -> Project:
    """Fetch a project or raise 404; hidden projects are indistinguishable from missing ones."""
    pid = as_uuid(project_id)
    if pid is None:
        raise HTTPException(status_code=404, detail="Project not found")
    project = (
        db.query(Project)
        .filter(Project.id == pid, project_visibility_clause(user))
        .first()
    )
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


def is_project_manager(user: User, project: Project) -> bool:
    return project.project_manager_id is not None and project.project_manager_id == user.id


def can_manage_project(user: User, project: Project) -> bool:
    """Owner-level rights on a project: its manager, or an admin."""
    return is_admin(user.role) or is_project_manager(user, project)


def can_edit_team(user: User, project: Project) -> bool:
    """Add, remove or re-role team members: the project's manager or a project-teams:write holder."""
    return is_project_manager(user, project) or has_permission(user.role, "project-teams", Action.WRITE)
