"""
In-app notifications.

Helpers only write ``notifications`` rows; there is no delivery channel.
Callers treat them as side effects of a mutation that already committed and
wrap them so a failure here never fails the request.
"""
from typing import Iterable, List, Optional

import structlog
from sqlalchemy import select, union
from sqlalchemy.orm import Session

from ..models.models import Expense, Notification, Project, ProjectTeam, User


log = structlog.get_logger(__name__)

NOTIFICATION_TYPES = ("info", "success", "warning", "error")


def create_notification(
    db: Session,
    user_id,
    title: str,
    message: str,
    type: str = "info",
    action_url: Optional[str] = None,
    commit: bool = True,
) -> Notification:
    notification = Notification(
        user_id=user_id,
        title=title,
        message=message,
        type=type if type in NOTIFICATION_TYPES else "info",
        action_url=action_url,
    )
    db.add(notification)
    if commit:
        db.commit()
        db.refresh(notification)
    return notification


def create_bulk_notifications(
    db: Session,
    user_ids: Iterable,
    title: str,
    message: str,
    type: str = "info",
    action_url: Optional[str] = None,
) -> List[Notification]:
    created = [
        create_notification(db, uid, title, message, type, action_url, commit=False)
        for uid in dict.fromkeys(user_ids)
        if uid is not None
    ]
    if created:
        db.commit()
    return created


def project_member_ids(db: Session, project_id, roles: Optional[Iterable[str]] = None) -> List:
    """Project manager plus team members (optionally only those with one of ``roles``)."""
    team = select(ProjectTeam.user_id).where(ProjectTeam.project_id == project_id)
    if roles is not None:
        team = team.where(ProjectTeam.role.in_(list(roles)))
    manager = select(Project.project_manager_id).where(Project.id == project_id)
    ids = db.execute(union(manager, team)).scalars().all()
    return [i for i in ids if i is not None]


def notify_project_team(
    db: Session,
    project_id,
    title: str,
    message: str,
    type: str = "info",
    action_url: Optional[str] = None,
    exclude_user_id=None,
) -> List[Notification]:
    ids = [i for i in project_member_ids(db, project_id) if i != exclude_user_id]
    return create_bulk_notifications(db, ids, title, message, type, action_url)


def notify_project_admins(
    db: Session,
    project_id,
    title: str,
    message: str,
    type: str = "info",
    action_url: Optional[str] = None,
) -> List[Notification]:
    ids = project_member_ids(db, project_id, roles=("admin", "project_admin", "lead"))
    return create_bulk_notifications(db, ids, title, message, type, action_url)


def notify_all_admins(db: Session, title: str, message: str, type: str = "info", action_url: Optional[str] = None):
    ids = db.execute(select(User.id).where(User.role == "admin", User.is_active.is_(True))).scalars().all()
    return create_bulk_notifications(db, ids, title, message, type, action_url)


def notify_expense_status_change(db: Session, expense: Expense, comments: Optional[str] = None) -> Optional[Notification]:
    if expense.submitted_by is None:
        return None
    status_text = "approved" if expense.status == "approved" else "rejected"
    project_name = expense.project.name if expense.project else "unknown project"
    message = (
        f'Your expense "{expense.description}" for ${expense.amount} in project '
        f'"{project_name}" has been {status_text}.'
    )
    if comments:
        message += f" Comments: {comments}"
    return create_notification(
        db,
        expense.submitted_by,
        f"Expense {status_text.capitalize()}",
        message,
        "success" if status_text == "approved" else "warning",
        f"/expenses/{expense.id}",
    )


def notify_new_expense(db: Session, expense: Expense, submitter: User) -> List[Notification]:
    project_name = expense.project.name if expense.project else "unknown project"
    return notify_project_admins(
        db,
        expense.project_id,
        "New Expense Requires Approval",
        f'{submitter.full_name or submitter.email} submitted an expense "{expense.description}" '
        f'for ${expense.amount} in project "{project_name}".',
        "warning",
        f"/expenses/{expense.id}",
    )


def notify_new_project(db: Session, project: Project, creator: User) -> List[Notification]:
    created = notify_all_admins(
        db,
        "New Project Created",
        f'A new project "{project.name}" has been created by {creator.full_name or creator.email}.',
        "info",
        f"/projects/{project.id}",
    )
    if project.project_manager_id and project.project_manager_id != creator.id:
        created.append(create_notification(
            db,
            project.project_manager_id,
            "You've Been Assigned as Project Manager",
            f'You have been assigned as the project manager for "{project.name}".',
            "info",
            f"/projects/{project.id}",
        ))
    return created


def notify_budget_change(db: Session, project: Project, category_name: str, old_amount, new_amount, changed_by=None):
    change = "increased" if new_amount > old_amount else "decreased"
    return notify_project_team(
        db,
        project.id,
        "Budget Updated",
        f'Budget for "{category_name}" in project "{project.name}" has been {change} '
        f"from ${old_amount} to ${new_amount}.",
        "info",
        f"/projects/{project.id}/budget",
        exclude_user_id=changed_by,
    )


def notify_team_assignment(db: Session, project: Project, user_id, role: str) -> Notification:
    return create_notification(
        db,
        user_id,
        "Added to Project Team",
        f'You have been added to project "{project.name}" as {role}.',
        "info",
        f"/projects/{project.id}",
    )


def notify_project_admin_assignment(db: Session, project: Project, user_id) -> Notification:
    return create_notification(
        db,
        user_id,
        "Project Admin Assignment",
        f'You have been assigned as an admin for project "{project.name}".',
        "info",
        f"/projects/{project.id}",
    )


def safe_notify(func, *args, **kwargs):
    """Run a notification helper; log and discard any failure."""
    db = args[0] if args else kwargs.get("db")
    try:
        return func(*args, **kwargs)
    except Exception:
        log.exception("notification_failed", helper=func.__name__)
        if db is not None:
            db.rollback()
        return None
