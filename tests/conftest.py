"""Pytest fixtures for payroll core tests."""

from __future__ import annotations

from datetime import date
from typing import AsyncGenerator, Awaitable, Callable
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from payroll_core.database import create_schema, make_session_factory
from payroll_core.models import Employee
from payroll_core.money import Money
from payroll_core.schemas import PayrollBatchCreate, PayrollRecordCreate
from payroll_core.services import (
    BatchPaymentOrchestrator,
    PayrollBatchService,
    PayrollRecordService,
    PayrollSummaryService,
)

# In-memory SQLite shared through a single connection
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

PERIOD_START = date(2024, 1, 1)
PERIOD_END = date(2024, 1, 31)


@pytest_asyncio.fixture
async def engine():
    """Create a fresh test database per test."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)

    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with make_session_factory(engine)() as session:
        yield session


@pytest.fixture
def tenant_id() -> UUID:
    return uuid4()


@pytest.fixture
def business_account_id() -> UUID:
    return uuid4()


@pytest.fixture
def creator_id() -> UUID:
    return uuid4()


@pytest.fixture
def approver_id() -> UUID:
    return uuid4()


@pytest.fixture
def record_service(session: AsyncSession) -> PayrollRecordService:
    return PayrollRecordService(session)


@pytest.fixture
def batch_service(session: AsyncSession) -> PayrollBatchService:
    return PayrollBatchService(session)


@pytest.fixture
def orchestrator(session: AsyncSession) -> BatchPaymentOrchestrator:
    return BatchPaymentOrchestrator(session)


@pytest.fixture
def summary_service(session: AsyncSession) -> PayrollSummaryService:
    return PayrollSummaryService(session)


@pytest.fixture
def make_employee(
    session: AsyncSession, tenant_id: UUID, business_account_id: UUID
) -> Callable[..., Awaitable[UUID]]:
    """Factory that commits an employee and returns its id."""
    counter = {"n": 0}

    async def _make(
        first_name: str = "Alice",
        last_name: str | None = None,
        salary: str | None = "1000.00",
        has_wallet: bool = True,
        external_account: str | None = None,
        department: str | None = None,
        is_active: bool = True,
        end_date: date | None = None,
        business_account: UUID | None = None,
    ) -> UUID:
        counter["n"] += 1
        n = counter["n"]
        employee = Employee(
            employee_id=uuid4(),
            tenant_id=tenant_id,
            business_account_id=business_account or business_account_id,
            first_name=first_name,
            last_name=last_name or f"Tester{n:03d}",
            employee_number=f"EMP{n:03d}",
            title="Engineer",
            department=department,
            is_active=is_active,
            end_date=end_date,
            salary_amount=Money(salary) if salary is not None else None,
            wallet_id=f"wallet-{n:03d}" if has_wallet else None,
            external_account=external_account,
        )
        session.add(employee)
        await session.commit()
        return employee.employee_id

    return _make


@pytest.fixture
def record_input(tenant_id: UUID, creator_id: UUID) -> Callable[..., PayrollRecordCreate]:
    """Build a PayrollRecordCreate with sensible defaults."""

    def _build(employee_id: UUID, **overrides) -> PayrollRecordCreate:
        values = {
            "tenant_id": tenant_id,
            "employee_id": employee_id,
            "period_start": PERIOD_START,
            "period_end": PERIOD_END,
            "gross_amount": "1000.00",
            "created_by_id": creator_id,
        }
        values.update(overrides)
        return PayrollRecordCreate(**values)

    return _build


@pytest.fixture
def batch_input(
    tenant_id: UUID, business_account_id: UUID, creator_id: UUID
) -> Callable[..., PayrollBatchCreate]:
    def _build(**overrides) -> PayrollBatchCreate:
        values = {
            "tenant_id": tenant_id,
            "business_account_id": business_account_id,
            "name": "January 2024",
            "period_start": PERIOD_START,
            "period_end": PERIOD_END,
            "created_by_id": creator_id,
        }
        values.update(overrides)
        return PayrollBatchCreate(**values)

    return _build


@pytest.fixture
def approved_batch(
    make_employee, batch_service: PayrollBatchService, batch_input, tenant_id, approver_id
) -> Callable[..., Awaitable[tuple[UUID, list[UUID]]]]:
    """Factory: create, submit and approve a batch; returns (batch id, record ids)."""

    async def _make(employee_ids: list[UUID]) -> tuple[UUID, list[UUID]]:
        batch = await batch_service.create_batch(batch_input(employee_ids=employee_ids))
        batch_id = batch.payroll_batch_id
        await batch_service.submit_batch(tenant_id, batch_id)
        batch = await batch_service.approve_batch(tenant_id, batch_id, approver_id)
        by_employee = {r.employee_id: r.payroll_record_id for r in batch.records}
        return batch_id, [by_employee[e] for e in employee_ids]

    return _make
