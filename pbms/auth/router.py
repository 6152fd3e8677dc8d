from datetime import datetime, timezone

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..db import get_db
from ..models.models import User
from ..routes.serialize import user_dict
from ..schemas.auth import LoginRequest, RegisterRequest
from ..services.roles import (
    Role,
    accessible_menu_items,
    effective_permissions,
    role_display_name,
)
from .security import create_access_token, get_current_user, get_password_hash, verify_password


router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger(__name__)


def _find_by_email(db: Session, email: str):
    return db.query(User).filter(func.lower(User.email) == email.strip().lower()).first()


@router.post("/register", status_code=201)
def register(req: RegisterRequest, db: Session = Depends(get_db)):
    if _find_by_email(db, req.email):
        raise HTTPException(status_code=409, detail="User already exists")
    # Self-registration always yields the lowest role; elevation goes through /api/admin/users
    user = User(
        email=req.email.strip().lower(),
        password_hash=get_password_hash(req.password),
        full_name=req.full_name.strip(),
        department=req.department,
        role=Role.USER.value,
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    log.info("user_registered", user_id=str(user.id))
    return {"token": create_access_token(user), "user": user_dict(user)}


@router.post("/login")
def login(req: LoginRequest, db: Session = Depends(get_db)):
    user = _find_by_email(db, req.email)
    if not user or not verify_password(req.password, user.password_hash):
        log.info("login_failed", email=req.email)
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account is deactivated")
    user.last_login_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    log.info("login_succeeded", user_id=str(user.id))
    return {"token": create_access_token(user), "user": user_dict(user)}


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    permissions = sorted(f"{resource}:{action.value}" for resource, action in effective_permissions(user.role))
    return {
        "user": user_dict(user),
        "role_display_name": role_display_name(user.role),
        "permissions": permissions,
        "menu_items": accessible_menu_items(user.role),
    }
