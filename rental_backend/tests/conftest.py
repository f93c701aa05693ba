"""
Centralized Test Configuration.
"""

import pytest
from datetime import date
from decimal import Decimal
from httpx import AsyncClient, ASGITransport

from rental_backend.app.main import app
from rental_backend.app.db.session import get_db, Base, build_engine, build_session_factory
from rental_backend.app.models.contract import Contract
from rental_backend.app.models.adjustment_index import AdjustmentIndex
from rental_backend.app.models.service_concept_type import ServiceConceptType
from rental_backend.app.models.property_charge import PropertyCharge
from rental_backend.app.models.billing_enums import ContractType, ConceptCategory

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

GROUP_ID = 1

engine = build_engine(TEST_DATABASE_URL)
TestingSessionLocal = build_session_factory(engine)


@pytest.fixture(scope="session", autouse=True)
def apply_overrides():
    """Apply overrides once for the session."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    # Restore and clear
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    """Extra sessions for tests that need more than one unit of work."""
    return TestingSessionLocal


@pytest.fixture
def make_index(db_session):
    async def _make(frequency_months=3, current_value="10", name=None):
        index = AdjustmentIndex(
            group_id=GROUP_ID,
            name=name or f"IPC {frequency_months}m",
            frequency_months=frequency_months,
            current_value=Decimal(current_value),
        )
        db_session.add(index)
        await db_session.commit()
        return index
    return _make


@pytest.fixture
def make_contract(db_session):
    async def _make(**overrides):
        rent = Decimal(str(overrides.pop("rent", "100000")))
        values = dict(
            group_id=GROUP_ID,
            property_id=None,
            contract_type=ContractType.TENANT,
            start_date=date(2024, 1, 1),
            duration_months=24,
            current_month=1,
            initial_rent=rent,
            base_rent=rent,
            punitory_start_day=10,
            punitory_percent=Decimal("0.6"),
            pays_iva=False,
        )
        values.update(overrides)
        contract = Contract(**values)
        db_session.add(contract)
        await db_session.commit()
        return contract
    return _make


@pytest.fixture
def make_concept_type(db_session):
    async def _make(name="EXPENSAS", category=ConceptCategory.EXPENSA, label=None):
        concept_type = ServiceConceptType(
            group_id=GROUP_ID, name=name, label=label or name.title(), category=category
        )
        db_session.add(concept_type)
        await db_session.commit()
        return concept_type
    return _make


@pytest.fixture
def make_property_charge(db_session):
    async def _make(property_id, concept_type, amount, applies_to=ContractType.TENANT):
        charge = PropertyCharge(
            group_id=GROUP_ID,
            property_id=property_id,
            service_concept_type_id=concept_type.id,
            applies_to=applies_to,
            amount=Decimal(str(amount)),
        )
        db_session.add(charge)
        await db_session.commit()
        return charge
    return _make


@pytest.fixture
def group_id():
    return GROUP_ID
