"""
Pytest configuration and fixtures.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from commissionly.auth.context import RequestContext
from commissionly.auth.jwt import create_access_token
from commissionly.db import get_db
from commissionly.models import (
    Base,
    Client,
    CommissionBasis,
    CommissionPlan,
    CommissionRule,
    CustomerTier,
    Organization,
    ProductCategory,
    Project,
    RuleType,
    Territory,
    User,
    UserRole,
)
from commissionly.services.rule_precedence import RuleScope, assign_priority_from_scope


# Test database URL (use SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

SALE_DATE = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    # One shared connection, so per-item commits of bulk runs see the same database
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session


def make_rule(rule_type: RuleType = RuleType.PERCENTAGE, **values) -> CommissionRule:
    """Build a rule row with the priority its scope implies."""
    rule = CommissionRule(rule_type=rule_type, is_active=values.pop("is_active", True), **values)
    rule.priority = assign_priority_from_scope(RuleScope.from_object(rule))
    return rule


@pytest_asyncio.fixture
async def seed(db_session):
    """
    One organization with staff, a small catalog and an org-wide plan.

    The plan's only rule is a 10% organization-wide default.
    """
    org = Organization(name="Acme", slug="acme")
    other_org = Organization(name="Globex", slug="globex")
    db_session.add_all([org, other_org])
    await db_session.flush()

    admin = User(organization_id=org.id, email="admin@acme.test", first_name="Ada", role=UserRole.ADMIN)
    manager = User(organization_id=org.id, email="manager@acme.test", first_name="Max", role=UserRole.MANAGER)
    seller = User(
        organization_id=org.id,
        email="sam@acme.test",
        first_name="Sam",
        last_name="Seller",
        role=UserRole.SALESPERSON,
    )
    other_seller = User(organization_id=org.id, email="olga@acme.test", role=UserRole.SALESPERSON)
    outsider = User(organization_id=other_org.id, email="eve@globex.test", role=UserRole.ADMIN)
    db_session.add_all([admin, manager, seller, other_seller, outsider])

    territory = Territory(organization_id=org.id, name="North")
    foreign_territory = Territory(organization_id=other_org.id, name="South")
    db_session.add_all([territory, foreign_territory])
    await db_session.flush()

    client = Client(organization_id=org.id, name="Initech", tier=CustomerTier.VIP, territory_id=territory.id)
    plain_client = Client(organization_id=org.id, name="Hooli", tier=CustomerTier.STANDARD)
    db_session.add_all([client, plain_client])
    await db_session.flush()

    project = Project(organization_id=org.id, name="Initech rollout", client_id=client.id)
    category = ProductCategory(organization_id=org.id, name="Hardware")
    db_session.add_all([project, category])
    await db_session.flush()

    plan = CommissionPlan(
        organization_id=org.id,
        name="Standard",
        commission_basis=CommissionBasis.GROSS_REVENUE,
        base_rate=Decimal("5"),
    )
    default_rule = make_rule(RuleType.PERCENTAGE, percentage=Decimal("10"), description="Default")
    plan.rules.append(default_rule)
    db_session.add(plan)
    await db_session.commit()

    return SimpleNamespace(
        org=org,
        other_org=other_org,
        admin=admin,
        manager=manager,
        seller=seller,
        other_seller=other_seller,
        outsider=outsider,
        territory=territory,
        foreign_territory=foreign_territory,
        client=client,
        plain_client=plain_client,
        project=project,
        category=category,
        plan=plan,
        default_rule=default_rule,
    )


def context_for(user: User) -> RequestContext:
    return RequestContext(organization_id=user.organization_id, user_id=user.id, role=user.role)


@pytest_asyncio.fixture
async def admin_ctx(seed):
    return context_for(seed.admin)


@pytest_asyncio.fixture
async def manager_ctx(seed):
    return context_for(seed.manager)


@pytest_asyncio.fixture
async def seller_ctx(seed):
    return context_for(seed.seller)


def auth_headers(user: User) -> dict:
    token = create_access_token(user.id, user.organization_id, user.role.value)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def api_client(db_session):
    """HTTP client bound to the test session."""
    from commissionly.main import app

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()
