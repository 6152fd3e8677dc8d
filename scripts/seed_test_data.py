"""
Seed the local database with sample users, a business unit, projects,
team memberships, budget categories, expenses and notifications.

Usage:
  python scripts/seed_test_data.py

This script is idempotent: running it multiple times will upsert the same
records based on unique fields (email for users, name for business units
and projects, project + name for categories).
"""
import sys
import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
load_dotenv()

from pbms.db import SessionLocal, Base, engine
from pbms.models.models import (
    User,
    BusinessUnit,
    Project,
    ProjectTeam,
    BudgetCategory,
    Expense,
    Notification,
)
from pbms.auth.security import get_password_hash
from pbms.services.budget import apply_spend


def ensure_user(session, email: str, password: str, full_name: str, role: str, department: str = None) -> User:
    user = session.query(User).filter(User.email == email).first()
    if user:
        user.full_name = full_name
        user.role = role
        user.department = department
        # Only set a password when the row has none; keep existing otherwise
        if not getattr(user, "password_hash", None):
            user.password_hash = get_password_hash(password)
        session.add(user)
        session.flush()
        return user
    user = User(
        email=email,
        password_hash=get_password_hash(password),
        full_name=full_name,
        role=role,
        department=department,
        is_active=True,
        created_at=datetime.now(timezone.utc),
    )
    session.add(user)
    session.flush()
    return user


def ensure_business_unit(session, name: str, manager: User, description: str = "") -> BusinessUnit:
    bu = session.query(BusinessUnit).filter(BusinessUnit.name == name).first()
    if bu:
        bu.manager_id = manager.id
        bu.description = description or bu.description
        session.add(bu)
        session.flush()
        return bu
    bu = BusinessUnit(name=name, description=description, manager_id=manager.id)
    session.add(bu)
    session.flush()
    return bu


def ensure_project(session, name: str, manager: User, unit: BusinessUnit, **kwargs) -> Project:
    project = session.query(Project).filter(Project.name == name).first()
    if project:
        project.project_manager_id = manager.id
        project.business_unit_id = unit.id
        for k, v in kwargs.items():
            setattr(project, k, v)
        session.add(project)
        session.flush()
        return project
    project = Project(name=name, project_manager_id=manager.id, business_unit_id=unit.id, **kwargs)
    session.add(project)
    session.flush()
    return project


def ensure_member(session, project: Project, user: User, role: str = "member") -> ProjectTeam:
    row = (
        session.query(ProjectTeam)
        .filter(ProjectTeam.project_id == project.id, ProjectTeam.user_id == user.id)
        .first()
    )
    if row:
        row.role = role
        session.flush()
        return row
    row = ProjectTeam(project_id=project.id, user_id=user.id, role=role)
    session.add(row)
    session.flush()
    return row


def ensure_category(session, project: Project, name: str, allocated: str, description: str = "") -> BudgetCategory:
    cat = (
        session.query(BudgetCategory)
        .filter(BudgetCategory.project_id == project.id, BudgetCategory.name == name)
        .first()
    )
    if cat:
        cat.allocated_amount = Decimal(allocated)
        session.flush()
        return cat
    cat = BudgetCategory(project_id=project.id, name=name, description=description, allocated_amount=Decimal(allocated))
    session.add(cat)
    session.flush()
    return cat


def ensure_expense(session, category: BudgetCategory, submitter: User, description: str, amount: str,
                   status: str = "pending", approver: User = None) -> Expense:
    row = (
        session.query(Expense)
        .filter(Expense.category_id == category.id, Expense.description == description)
        .first()
    )
    if row:
        return row
    row = Expense(
        project_id=category.project_id,
        category_id=category.id,
        description=description,
        amount=Decimal(amount),
        expense_date=date.today() - timedelta(days=7),
        status=status,
        submitted_by=submitter.id,
        approved_by=approver.id if approver and status != "pending" else None,
    )
    session.add(row)
    session.flush()
    if status == "approved":
        apply_spend(session, row.project_id, row.category_id, row.amount)
    return row


def ensure_notification(session, user: User, title: str, message: str, type_: str = "info", action_url: str = None):
    exists = (
        session.query(Notification.id)
        .filter(Notification.user_id == user.id, Notification.title == title)
        .first()
    )
    if exists:
        return
    session.add(Notification(user_id=user.id, title=title, message=message, type=type_, action_url=action_url))
    session.flush()


def main() -> None:
    # Ensure tables exist (safe for SQLite dev)
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        # Users, one per role
        admin = ensure_user(session, "admin@example.com", "TestAdmin123!", "Ada Admin", "admin", "Finance")
        manager = ensure_user(session, "manager@example.com", "TestUser123!", "Morgan Manager", "manager", "Engineering")
        analyst = ensure_user(session, "analyst@example.com", "TestUser123!", "Alex Analyst", "analyst", "Finance")
        member = ensure_user(session, "user@example.com", "TestUser123!", "Uma User", "user", "Engineering")

        unit = ensure_business_unit(session, "Digital Products", manager, "Customer facing software")

        today = date.today()
        website = ensure_project(
            session,
            "Website Redesign",
            manager,
            unit,
            description="Refresh of the public website",
            total_budget=Decimal("10000"),
            allocated_budget=Decimal("10000"),
            start_date=today - timedelta(days=60),
            end_date=today + timedelta(days=20),
            status="active",
        )
        mobile = ensure_project(
            session,
            "Mobile App",
            manager,
            unit,
            description="First release of the mobile client",
            total_budget=Decimal("25000"),
            allocated_budget=Decimal("20000"),
            start_date=today,
            end_date=today + timedelta(days=120),
            status="planning",
        )

        ensure_member(session, website, member, "member")
        ensure_member(session, website, analyst, "lead")
        ensure_member(session, mobile, member, "member")

        design = ensure_category(session, website, "Design", "4000", "Agency and design tooling")
        hosting = ensure_category(session, website, "Hosting", "1500", "Infrastructure")
        dev = ensure_category(session, mobile, "Development", "15000")

        ensure_expense(session, design, member, "Wireframe workshop", "2450.00", "approved", approver=manager)
        ensure_expense(session, design, member, "Stock photography", "320.00")
        ensure_expense(session, hosting, analyst, "CDN setup", "180.00", "rejected", approver=manager)
        ensure_expense(session, dev, member, "Device lab rental", "900.00")

        ensure_notification(session, member, "Expense Approved",
                            "Your expense 'Wireframe workshop' for $2450.00 has been approved.", "success")
        ensure_notification(session, manager, "New Expense Submitted",
                            "Uma User submitted an expense of $320.00 for Website Redesign.", "info")
        ensure_notification(session, admin, "System Maintenance Scheduled",
                            "Scheduled system maintenance will occur on Sunday, 2:00 AM - 4:00 AM EST.", "info")

        session.commit()
        print("✅ Seed data created/updated")
        print("   admin@example.com / TestAdmin123!")
        print("   manager@example.com, analyst@example.com, user@example.com / TestUser123!")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


if __name__ == "__main__":
    main()
