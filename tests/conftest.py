"""
Shared test fixtures.

One in-memory SQLite database per test, shared between the test and the app
through StaticPool. Seed helpers open a short session, commit and close it
again, so a test never holds a transaction open while a request runs on the
same connection.
"""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "10000/minute"
os.environ["JWT_SECRET"] = "test-secret"

from contextlib import contextmanager
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pbms.auth.security import create_access_token, get_password_hash
from pbms.db import Base, build_engine, get_db
from pbms.main import app
from pbms.models.models import BudgetCategory, Expense, Project, ProjectTeam, User


@pytest.fixture
def engine():
    eng = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def session_scope(engine):
    """Context manager yielding a session that commits and closes on exit."""
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    @contextmanager
    def _scope():
        db = factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return _scope


@pytest.fixture
def client(engine):
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

    def _get_db():
        db = factory()
        try:
            yield db
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_scope):
    def _make(role="user", email=None, full_name=None, password="secret123", is_active=True, department=None):
        with session_scope() as db:
            n = db.query(User).count() + 1
            u = User(
                email=email or f"{role}{n}@example.com",
                password_hash=get_password_hash(password),
                full_name=full_name or f"{role.title()} {n}",
                role=role,
                department=department,
                is_active=is_active,
            )
            db.add(u)
        return u

    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin", email="admin@example.com", full_name="Ada Admin")


@pytest.fixture
def manager(make_user):
    return make_user("manager", email="manager@example.com", full_name="Morgan Manager")


@pytest.fixture
def analyst(make_user):
    return make_user("analyst", email="analyst@example.com", full_name="Alex Analyst")


@pytest.fixture
def member(make_user):
    return make_user("user", email="user@example.com", full_name="Uma User")


@pytest.fixture
def outsider(make_user):
    return make_user("user", email="outsider@example.com", full_name="Otto Outsider")


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user)}"}


@pytest.fixture
def headers():
    return auth_headers


@pytest.fixture
def make_project(session_scope):
    def _make(manager, name="Website Redesign", total="10000", spent="0", status="active",
              end_date=None, start_date=None, **kwargs):
        with session_scope() as db:
            p = Project(
                name=name,
                total_budget=Decimal(total),
                spent_budget=Decimal(spent),
                allocated_budget=Decimal(total),
                project_manager_id=manager.id if manager is not None else None,
                status=status,
                start_date=start_date,
                end_date=end_date,
                **kwargs,
            )
            db.add(p)
        return p

    return _make


@pytest.fixture
def add_member(session_scope):
    def _add(project, user, role="member"):
        with session_scope() as db:
            pt = ProjectTeam(project_id=project.id, user_id=user.id, role=role)
            db.add(pt)
        return pt

    return _add


@pytest.fixture
def make_category(session_scope):
    def _make(project, name="Design", allocated="4000"):
        with session_scope() as db:
            c = BudgetCategory(project_id=project.id, name=name, allocated_amount=Decimal(allocated), spent_amount=0)
            db.add(c)
        return c

    return _make


@pytest.fixture
def make_expense(session_scope):
    def _make(category, submitter, amount="100.00", status="pending", description="Workshop"):
        with session_scope() as db:
            e = Expense(
                project_id=category.project_id,
                category_id=category.id,
                description=description,
                amount=Decimal(amount),
                expense_date=date.today(),
                status=status,
                submitted_by=submitter.id,
            )
            db.add(e)
        return e

    return _make


@pytest.fixture
def fetch(session_scope):
    """Load a fresh, detached copy of a row."""
    def _fetch(model, pk):
        with session_scope() as db:
            return db.get(model, pk)

    return _fetch
