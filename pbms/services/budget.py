"""
Budget aggregation.

Derived budget figures (utilization, team size, risk classes) are computed
per request from stored rows; nothing here is persisted except the spent
counters, which only ever move through single ``UPDATE ... SET x = x + n``
statements.
"""
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ..models.models import BudgetCategory, Project, ProjectTeam, User
from .visibility import project_visibility_clause


SEVERITY_ORDER = {"critical": 1, "high": 2, "medium": 3, "low": 4}

BUDGET_RISK_THRESHOLD = Decimal("75")
TIMELINE_RISK_WINDOW_DAYS = 30


def _dec(value) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def budget_utilization(spent, total) -> Decimal:
    """Percent of ``total`` spent. Zero, negative or missing totals give 0."""
    total_d = _dec(total)
    if total_d <= 0:
        return Decimal("0")
    return _dec(spent) / total_d * 100


def money_float(value) -> float:
    return float(_dec(value))


def percent(value, places: int = 2) -> float:
    return float(_dec(value).quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP))


def classify_budget_risk(utilization) -> str:
    u = _dec(utilization)
    if u > 95:
        return "critical"
    if u > 85:
        return "high"
    if u > 75:
        return "medium"
    return "low"


def classify_timeline_risk(end_date: Optional[date], today: Optional[date] = None) -> Tuple[str, int]:
    """(severity, probability) for a deadline relative to ``today``."""
    if end_date is None:
        return "low", 30
    today = today or date.today()
    if end_date < today:
        return "critical", 100
    if end_date < today + timedelta(days=7):
        return "high", 85
    if end_date < today + timedelta(days=30):
        return "medium", 60
    return "low", 30


def team_size_subquery():
    """project_id -> distinct member count, for outer-joining onto project lists."""
    return (
        select(
            ProjectTeam.project_id.label("project_id"),
            func.count(func.distinct(ProjectTeam.user_id)).label("team_size"),
        )
        .group_by(ProjectTeam.project_id)
        .subquery()
    )


def team_size(db: Session, project_id) -> int:
    stmt = select(func.count(func.distinct(ProjectTeam.user_id))).where(ProjectTeam.project_id == project_id)
    return int(db.execute(stmt).scalar() or 0)


def apply_spend(db: Session, project_id, category_id, amount) -> None:
    """Add ``amount`` (negative to reverse) to the project and category spent counters.

    Runs inside the caller's transaction; the caller commits.
    """
    delta = _dec(amount)
    if delta == 0:
        return
    db.execute(
        update(Project)
        .where(Project.id == project_id)
        .values(spent_budget=Project.spent_budget + delta)
        .execution_options(synchronize_session=False)
    )
    if category_id is not None:
        db.execute(
            update(BudgetCategory)
            .where(BudgetCategory.id == category_id)
            .values(spent_amount=BudgetCategory.spent_amount + delta)
            .execution_options(synchronize_session=False)
        )


def _budget_risk(project: Project) -> Optional[Dict]:
    total = _dec(project.total_budget)
    if total <= 0:
        return None
    utilization = budget_utilization(project.spent_budget, total)
    if utilization <= BUDGET_RISK_THRESHOLD:
        return None
    overrun = _dec(project.spent_budget) - total
    return {
        "type": "budget",
        "severity": classify_budget_risk(utilization),
        "project_id": str(project.id),
        "project_name": project.name,
        "message": f'Project "{project.name}" budget utilization at {utilization.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)}%',
        "impact": f"Potential budget overrun of ${overrun.quantize(Decimal('1'), rounding=ROUND_HALF_UP)}",
        "recommendation": "Review spending patterns and adjust scope if necessary",
        "probability": int(utilization.quantize(Decimal("1"), rounding=ROUND_HALF_UP)),
    }


def _timeline_risk(project: Project, today: date) -> Optional[Dict]:
    if project.status != "active" or project.end_date is None:
        return None
    if project.end_date >= today + timedelta(days=TIMELINE_RISK_WINDOW_DAYS):
        return None
    severity, probability = classify_timeline_risk(project.end_date, today)
    if project.end_date < today:
        impact = f"Project is overdue by {(today - project.end_date).days} days"
    else:
        impact = f"Deadline in {(project.end_date - today).days} days"
    return {
        "type": "timeline",
        "severity": severity,
        "project_id": str(project.id),
        "project_name": project.name,
        "message": f'Project "{project.name}" deadline approaching or overdue',
        "impact": impact,
        "recommendation": "Accelerate development or negotiate deadline extension",
        "probability": probability,
    }


def project_risks(project: Project, today: Optional[date] = None) -> List[Dict]:
    today = today or date.today()
    risks = [_budget_risk(project), _timeline_risk(project, today)]
    return [r for r in risks if r is not None]


def collect_project_risks(db: Session, user: User, today: Optional[date] = None, limit: int = 10) -> List[Dict]:
    """Budget and timeline risks over the user's visible projects, worst first."""
    today = today or date.today()
    projects = db.query(Project).filter(project_visibility_clause(user)).all()
    risks: List[Dict] = []
    for project in projects:
        risks.extend(project_risks(project, today))
    risks.sort(key=lambda r: (SEVERITY_ORDER[r["severity"]], -r["probability"]))
    risks = risks[:limit]
    for index, risk in enumerate(risks, start=1):
        risk["id"] = f"risk_{index}"
    return risks
