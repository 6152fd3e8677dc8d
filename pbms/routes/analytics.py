from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import User
from ..services import analytics
from ..services.budget import collect_project_risks


router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/dashboard")
def analytics_dashboard(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return analytics.analytics_dashboard(db, user)


@router.get("/risks")
def risk_report(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    """Top budget and timeline risks across the caller's visible projects."""
    return {"risks": collect_project_risks(db, user)}


@router.get("/insights")
def insights(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return {"insights": analytics.predictive_insights(db, user)}


@router.get("/performance")
def performance(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return analytics.performance_trends(db, user)
