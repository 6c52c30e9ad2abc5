"""Shared pytest fixtures for the OA workflow service test suite.

Provides:
- In-memory async SQLite database (no PostgreSQL needed for tests)
- AsyncSession factory
- FastAPI test client (httpx.AsyncClient)
- Pre-seeded organization (departments, users, roles, permissions)
- Sample workflow definitions
- An in-memory Directory for resolver unit tests
- Auth helpers (JWT tokens)
"""

import os
from functools import lru_cache
from types import SimpleNamespace
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")

from db.base import Base  # noqa: E402
from core.security import create_access_token, hash_password  # noqa: E402
from workflow.directory import DirectoryDepartment, DirectoryUser  # noqa: E402

TEST_PASSWORD = "TestPassword123!"

LEAVE_TWO_STEP = {
    "nodes": [
        {"id": "start", "type": "start", "name": "Start"},
        {"id": "supervisor", "type": "approval", "name": "Supervisor approval"},
        {"id": "admin", "type": "approval", "name": "Administrator approval"},
        {"id": "end", "type": "end", "name": "End"},
    ]
}

LEAVE_FORM = {
    "fields": [
        {"name": "leaveType", "type": "enum", "required": True,
         "options": ["annual", "sick", "personal"]},
        {"name": "startDate", "type": "date", "required": True},
        {"name": "endDate", "type": "date", "required": True, "notBefore": "startDate"},
        {"name": "reason", "type": "string", "maxLength": 200},
    ]
}

LEAVE_DATA = {"leaveType": "annual", "startDate": "2024-05-01", "endDate": "2024-05-03"}


@lru_cache()
def _password_hash() -> str:
    return hash_password(TEST_PASSWORD)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database per test; every connection shares it."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    # Import all models so Base.metadata knows about them
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a DB session bound to the test engine."""
    factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(db_engine):
    """Create a FastAPI app instance wired to the test database."""
    import db.database as db_mod
    original_engine = db_mod.engine
    original_session = db_mod.AsyncSessionLocal

    db_mod.engine = db_engine
    db_mod.AsyncSessionLocal = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    from app.main import create_app
    test_app = create_app()

    yield test_app

    # Restore originals
    db_mod.engine = original_engine
    db_mod.AsyncSessionLocal = original_session


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def org(db_session):
    """Seed a small organization and commit it.

    HQ (manager: ceo)
    └── ENG (manager: m1) with members u1, u2, m1
    admin holds the ``admin`` role (permission ``*``) and no department.
    """
    from db.models.department import Department
    from db.models.permission import Permission
    from db.models.role import Role
    from db.models.user import User

    everything = Permission(id=str(uuid4()), code="*", description="Everything")
    manage = Permission(id=str(uuid4()), code="workflows.manage", description="Manage definitions")
    admin_role = Role(
        id=str(uuid4()), code="admin", name="Administrator", is_system_role=True,
        permissions=[everything],
    )
    employee_role = Role(id=str(uuid4()), code="employee", name="Employee", permissions=[])
    designer_role = Role(id=str(uuid4()), code="designer", name="Process designer", permissions=[manage])

    hq = Department(id=str(uuid4()), name="Headquarters", code="HQ")
    eng = Department(id=str(uuid4()), name="Engineering", code="ENG", parent_id=hq.id)

    def user(name: str, department: Optional[Department], roles: list) -> User:
        return User(
            id=str(uuid4()),
            email=f"{name}-{uuid4().hex[:6]}@acme.com",
            password_hash=_password_hash(),
            name=name.upper(),
            department_id=department.id if department else None,
            is_active=True,
            roles=roles,
        )

    ceo = user("ceo", hq, [employee_role])
    m1 = user("m1", eng, [employee_role])
    u1 = user("u1", eng, [employee_role])
    u2 = user("u2", eng, [employee_role])
    admin = user("admin", None, [admin_role])
    designer = user("designer", eng, [employee_role, designer_role])

    hq.manager_id = ceo.id
    eng.manager_id = m1.id

    db_session.add_all([
        everything, manage, admin_role, employee_role, designer_role,
        hq, eng, ceo, m1, u1, u2, admin, designer,
    ])
    await db_session.commit()

    return SimpleNamespace(
        hq=hq, eng=eng,
        ceo=ceo, m1=m1, u1=u1, u2=u2, admin=admin, designer=designer,
        admin_role=admin_role, employee_role=employee_role,
    )


@pytest.fixture
def make_definition(db_session, org):
    """Factory creating (and by default activating) a definition."""
    from services.definition_service import DefinitionService

    async def _make(
        code: str,
        node_config: dict,
        category: str = "generic",
        form_schema: Optional[dict] = None,
        activate: bool = True,
    ):
        svc = DefinitionService(db_session)
        definition = await svc.create_definition(
            name=code.replace("-", " ").title(),
            code=code,
            node_config=node_config,
            form_schema=form_schema,
            category=category,
            created_by_id=org.admin.id,
        )
        if activate:
            definition = await svc.activate(definition.id, updated_by_id=org.admin.id)
        await db_session.commit()
        return definition

    return _make


@pytest_asyncio.fixture
async def leave_definition(make_definition):
    """Active ``leave-2step``: supervisor, then administrator."""
    return await make_definition("leave-2step", LEAVE_TWO_STEP, category="leave", form_schema=LEAVE_FORM)


@pytest.fixture
def password() -> str:
    """Plain-text password of every seeded user."""
    return TEST_PASSWORD


@pytest.fixture
def leave_data() -> dict:
    return dict(LEAVE_DATA)


@pytest.fixture
def leave_graph() -> dict:
    return LEAVE_TWO_STEP


def token_headers(user) -> dict:
    """Authorization headers with a valid access token for ``user``."""
    token = create_access_token(user_id=user.id, email=user.email)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return token_headers


# ---------------------------------------------------------------------------
# In-memory directory
# ---------------------------------------------------------------------------

class FakeDirectory:
    """Dict-backed ``workflow.directory.Directory``."""

    def __init__(self):
        self.users: dict[str, DirectoryUser] = {}
        self.departments: dict[str, DirectoryDepartment] = {}

    def add_department(self, id: str, parent_id: Optional[str] = None, manager_id: Optional[str] = None):
        self.departments[id] = DirectoryDepartment(id=id, parent_id=parent_id, manager_id=manager_id)
        return self

    def add_user(self, id: str, department_id: Optional[str] = None, roles=(), is_active: bool = True):
        self.users[id] = DirectoryUser(id=id, department_id=department_id, roles=tuple(roles), is_active=is_active)
        return self

    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_department(self, department_id):
        return self.departments.get(department_id)

    async def find_users_by_role(self, role_code):
        return [u.id for u in self.users.values() if role_code in u.roles and u.is_active]

    async def find_users_in_department(self, department_id):
        return [u.id for u in self.users.values() if u.department_id == department_id and u.is_active]


@pytest.fixture
def directory() -> FakeDirectory:
    """HQ(ceo) > ENG(m1) with u1, u2; admin holds the admin role."""
    return (
        FakeDirectory()
        .add_department("hq", manager_id="ceo")
        .add_department("eng", parent_id="hq", manager_id="m1")
        .add_user("ceo", "hq")
        .add_user("m1", "eng")
        .add_user("u1", "eng")
        .add_user("u2", "eng")
        .add_user("admin", None, roles=["admin"])
    )
