"""Shared test fixtures — async DB, client, auth helpers, factories.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Set test JWT_SECRET before any other import touches pydantic-settings
os.environ.setdefault("JWT_SECRET", "test-secret-for-ci-do-not-use-in-production")

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from hrleave.auth.actor import Actor
from hrleave.common.constants import UserRole
from hrleave.config import settings
from hrleave.database import Base, get_db, get_session_factory
from hrleave.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import hrleave.common.audit  # noqa: F401
import hrleave.common.models  # noqa: F401
import hrleave.core_hr.models  # noqa: F401
import hrleave.leave.models  # noqa: F401
import hrleave.ledger.models  # noqa: F401
import hrleave.notifications.models  # noqa: F401
import hrleave.policies.models  # noqa: F401

# ── SQLite compat: compile PG-specific types to TEXT/CHAR ───────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# Register PG-compatible functions for SQLite
@event.listens_for(engine.sync_engine, "connect")
def _register_sqlite_functions(dbapi_conn, connection_record):
    """Register NOW() and uuid_generate_v4() as SQLite custom functions."""
    dbapi_conn.create_function(
        "NOW", 0, lambda: datetime.now(timezone.utc).isoformat(),
    )
    dbapi_conn.create_function(
        "uuid_generate_v4", 0, lambda: str(uuid.uuid4()),
    )


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)

COMPANY = "acme"
OTHER_COMPANY = "globex"


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset rate limiter storage between tests to prevent cross-test interference."""
    from hrleave.common.rate_limit import limiter

    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def _override_get_session_factory() -> async_sessionmaker:
    return TestSessionFactory


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependencies overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    application.dependency_overrides[get_session_factory] = _override_get_session_factory
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


@pytest.fixture
def session_factory() -> async_sessionmaker:
    """Factory for the batch engines; commit ``db`` before handing it over."""
    return TestSessionFactory


# ── Model factories ─────────────────────────────────────────────────

def _make_employee(
    *,
    first_name: str = "Test",
    last_name: str = "User",
    role: UserRole = UserRole.employee,
    company_id: str = COMPANY,
    reporting_manager_id: Optional[uuid.UUID] = None,
    date_of_joining: date = date(2022, 1, 15),
    basic_salary: Decimal = Decimal("30000"),
    is_active: bool = True,
) -> dict:
    code = f"EMP-{uuid.uuid4().hex[:6].upper()}"
    return dict(
        id=uuid.uuid4(),
        company_id=company_id,
        employee_code=code,
        external_user_id=f"user-{code.lower()}",
        first_name=first_name,
        last_name=last_name,
        email=f"{first_name.lower()}.{code.lower()}@acme.test",
        role=role,
        reporting_manager_id=reporting_manager_id,
        date_of_joining=date_of_joining,
        basic_salary=basic_salary,
        is_active=is_active,
    )


def _make_leave_type(
    *,
    code: str,
    default_quota: Decimal,
    company_id: str = COMPANY,
    is_carry_forward_allowed: bool = False,
    is_encashable: bool = False,
) -> dict:
    return dict(
        id=uuid.uuid4(),
        company_id=company_id,
        code=code,
        name=f"{code.title()} Leave",
        default_quota=default_quota,
        is_paid=code != "unpaid",
        is_carry_forward_allowed=is_carry_forward_allowed,
        is_encashable=is_encashable,
    )


async def add_employee(db: AsyncSession, **overrides):
    """Insert an employee and return the ORM instance."""
    from hrleave.core_hr.models import Employee

    employee = Employee(**_make_employee(**overrides))
    db.add(employee)
    await db.flush()
    return employee


async def add_leave_type(db: AsyncSession, **overrides):
    from hrleave.leave.models import LeaveType

    leave_type = LeaveType(**_make_leave_type(**overrides))
    db.add(leave_type)
    await db.flush()
    return leave_type


async def set_projection(
    db: AsyncSession,
    employee,
    leave_type: str,
    *,
    total: Decimal,
    used: Decimal = Decimal("0"),
    balance: Optional[Decimal] = None,
):
    """Seed the balance projection the way an import would."""
    from hrleave.core_hr.models import EmployeeLeaveBalance

    row = EmployeeLeaveBalance(
        company_id=employee.company_id,
        employee_id=employee.id,
        leave_type=leave_type,
        total=total,
        used=used,
        balance=total - used if balance is None else balance,
    )
    db.add(row)
    await db.flush()
    return row


@pytest.fixture
async def leave_types(db) -> dict:
    """casual (12), sick (12), earned (15, carry + encash) for the test tenant."""
    types = {
        "casual": await add_leave_type(
            db, code="casual", default_quota=Decimal("12"), is_carry_forward_allowed=True,
        ),
        "sick": await add_leave_type(
            db, code="sick", default_quota=Decimal("12"), is_carry_forward_allowed=True,
        ),
        "earned": await add_leave_type(
            db, code="earned", default_quota=Decimal("15"),
            is_carry_forward_allowed=True, is_encashable=True,
        ),
    }
    return types


@pytest.fixture
async def hr_user(db):
    return await add_employee(db, first_name="Hana", last_name="Reyes", role=UserRole.hr)


@pytest.fixture
async def second_hr_user(db):
    return await add_employee(db, first_name="Omar", last_name="Haddad", role=UserRole.hr)


@pytest.fixture
async def manager(db):
    return await add_employee(db, first_name="Mira", last_name="Okafor", role=UserRole.manager)


@pytest.fixture
async def other_manager(db):
    return await add_employee(db, first_name="Theo", last_name="Brandt", role=UserRole.manager)


@pytest.fixture
async def employee(db, manager):
    """An employee reporting to ``manager``."""
    return await add_employee(
        db, first_name="Eli", last_name="Navarro", reporting_manager_id=manager.id,
    )


@pytest.fixture
async def orphan(db):
    """An employee with no reporting manager; requests go to the HR pool."""
    return await add_employee(db, first_name="Ada", last_name="Kim")


@pytest.fixture
async def admin_user(db):
    return await add_employee(db, first_name="Ari", last_name="Stone", role=UserRole.admin)


# ── Auth helpers ────────────────────────────────────────────────────

def actor_for(employee, role: Optional[UserRole] = None) -> Actor:
    """Actor as ``get_current_actor`` would resolve it for *employee*."""
    return Actor.build(
        user_id=employee.external_user_id,
        role=role or employee.role,
        company_id=employee.company_id,
        employee=employee,
    )


def system_actor(role: UserRole = UserRole.admin, company_id: str = COMPANY) -> Actor:
    """An actor with no employee record (service account)."""
    return Actor.build(user_id=f"svc-{role.value}", role=role, company_id=company_id)


def create_access_token(
    sub: str,
    role: UserRole = UserRole.employee,
    company_id: str = COMPANY,
    employee_id: Optional[uuid.UUID] = None,
    expired: bool = False,
    token_type: str = "access",
) -> str:
    """Generate a JWT access token for testing."""
    if expired:
        exp = datetime.now(timezone.utc) - timedelta(hours=1)
    else:
        exp = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRY_HOURS)
    payload = {
        "sub": sub,
        "role": role.value,
        "company_id": company_id,
        "type": token_type,
        "exp": exp,
    }
    if employee_id is not None:
        payload["employee_id"] = str(employee_id)
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def auth_headers_for(employee, role: Optional[UserRole] = None) -> dict[str, str]:
    """Bearer headers for *employee*, identified by its external user id."""
    token = create_access_token(
        employee.external_user_id,
        role=role or employee.role,
        company_id=employee.company_id,
    )
    return {"Authorization": f"Bearer {token}"}
