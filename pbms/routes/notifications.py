from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from ..auth.security import get_current_user, require_roles
from ..db import get_db
from ..models.models import Notification, User
from ..schemas.notifications import NotificationBroadcast, NotificationCreate
from ..services.notifications import create_bulk_notifications, create_notification
from ..services.visibility import as_uuid
from .serialize import notification_dict


router = APIRouter(prefix="/api/notifications", tags=["notifications"])
log = structlog.get_logger(__name__)


def _own(db: Session, user: User, notification_id: str) -> Notification:
    nid = as_uuid(notification_id)
    n = (
        db.query(Notification).filter(Notification.id == nid, Notification.user_id == user.id).first()
        if nid else None
    )
    if not n:
        raise HTTPException(status_code=404, detail="Notification not found")
    return n


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = False,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    q = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        q = q.filter(Notification.read.is_(False))
    total = q.count()
    rows = q.order_by(Notification.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
    unread = (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user.id, Notification.read.is_(False))
        .scalar()
    )
    return {
        "notifications": [notification_dict(n) for n in rows],
        "total": total,
        "unread_count": unread or 0,
        "page": page,
        "limit": limit,
    }


@router.get("/stats")
def notification_stats(
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    q = db.query(
        func.count(Notification.id),
        func.count(case((Notification.read.is_(False), 1))),
        func.count(case((Notification.read.is_(True), 1))),
        func.count(case((Notification.type == "info", 1))),
        func.count(case((Notification.type == "warning", 1))),
        func.count(case((Notification.type == "error", 1))),
        func.count(case((Notification.type == "success", 1))),
    )
    if start_date and end_date:
        q = q.filter(Notification.created_at.between(start_date, end_date))
    total, unread, read, info, warning, error, success = q.one()
    return {
        "stats": {
            "total_notifications": total or 0,
            "unread_notifications": unread or 0,
            "read_notifications": read or 0,
            "info_notifications": info or 0,
            "warning_notifications": warning or 0,
            "error_notifications": error or 0,
            "success_notifications": success or 0,
        }
    }


@router.put("/read-all")
def mark_all_read(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    result = db.execute(
        update(Notification)
        .where(Notification.user_id == user.id, Notification.read.is_(False))
        .values(read=True)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return {"message": "All notifications marked as read", "updated_count": result.rowcount}


@router.put("/{notification_id}/read")
def mark_read(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    n = _own(db, user, notification_id)
    n.read = True
    db.commit()
    db.refresh(n)
    return {"notification": notification_dict(n)}


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    n = _own(db, user, notification_id)
    db.delete(n)
    db.commit()
    return {"message": "Notification deleted successfully"}


@router.post("", status_code=201)
def send_notification(
    body: NotificationCreate,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    if not db.query(User.id).filter(User.id == body.user_id).first():
        raise HTTPException(status_code=400, detail="User not found")
    n = create_notification(db, body.user_id, body.title, body.message, body.type, body.action_url)
    log.info("notification_sent", notification_id=str(n.id), recipient=str(body.user_id))
    return {"notification": notification_dict(n)}


@router.post("/broadcast", status_code=201)
def broadcast(
    body: NotificationBroadcast,
    db: Session = Depends(get_db),
    user: User = Depends(require_roles("admin")),
):
    q = db.query(User.id).filter(User.is_active.is_(True))
    if body.role is not None:
        q = q.filter(User.role == body.role.value)
    ids = [row[0] for row in q.all()]
    if not ids:
        raise HTTPException(status_code=400, detail="No users found to notify")
    created = create_bulk_notifications(db, ids, body.title, body.message, body.type, body.action_url)
    log.info("notification_broadcast", recipients=len(created), role=body.role.value if body.role else None)
    return {"message": f"Notification sent to {len(created)} users", "count": len(created)}
