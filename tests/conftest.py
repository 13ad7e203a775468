"""
Shared fixtures: a fresh SQLite database per test and helpers to seed it.
"""
import os

# Configure before any application module reads settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["EMAIL_FUNCTION_URL"] = ""
os.environ["STRICT_ORDER_TRANSITIONS"] = "false"

import uuid
from datetime import datetime, timezone
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from database import (
    Base, Customer, CustomerMembership, MembershipTransaction, Order, OrderItem, Outlet,
    Payment, PaymentProof, User
)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


class Seeder:
    """Creates rows in their own committed sessions and returns detached objects."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _save(self, *objects):
        async with self.session_factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0]

    async def user(self, role="customer", name="Test User", with_customer=None) -> User:
        if with_customer is None:
            with_customer = role in ("customer", "business_client")
        user = User(email=f"{role}-{uuid.uuid4().hex[:8]}@example.com", name=name, role=role, organization_id="org-1")
        if with_customer:
            user.customer = Customer(organization_id="org-1")
        return await self._save(user)

    async def outlet(self, name="Koramangala", is_active=True) -> Outlet:
        return await self._save(Outlet(name=name, city="Bengaluru", is_active=is_active))

    async def order(self, customer_id: str, status="pending", history=None, total_amount=450.0) -> Order:
        outlet = Outlet(name="Indiranagar", city="Bengaluru")
        await self._save(outlet)
        if history is None:
            history = [{"status": status, "timestamp": "2026-01-01T09:00:00+00:00"}]
        order = Order(
            order_number=f"CL-{uuid.uuid4().hex[:6].upper()}",
            customer_id=customer_id,
            outlet_id=outlet.id,
            status=status,
            status_history=history,
            total_amount=total_amount,
        )
        order.items = [OrderItem(service_name="Wash & Fold", quantity=3, unit_price=150.0, subtotal=450.0)]
        return await self._save(order)

    async def membership(self, customer_id: str, plan_id="premium", billing_cycle="yearly",
                         status="pending", start_date=None, expiry_date=None) -> CustomerMembership:
        return await self._save(CustomerMembership(
            customer_id=customer_id,
            plan_id=plan_id,
            billing_cycle=billing_cycle,
            status=status,
            start_date=start_date,
            expiry_date=expiry_date,
        ))

    async def transaction(self, membership_id: str, status="pending", amount=2999.0) -> MembershipTransaction:
        return await self._save(MembershipTransaction(
            membership_id=membership_id, type="purchase", amount=amount, status=status,
            description="Purchase Premium membership (yearly)"
        ))

    async def payment(self, customer_id: str, order_id=None, membership_id=None, status="pending",
                      amount=450.0, method="upi", proof_url=None) -> Payment:
        payment = Payment(
            organization_id="org-1",
            customer_id=customer_id,
            order_id=order_id,
            membership_id=membership_id,
            amount=amount,
            payment_method=method,
            status=status,
        )
        if proof_url:
            payment.proofs = [PaymentProof(file_url=proof_url, file_name="upi.png", file_type="image/png")]
        return await self._save(payment)

    async def get(self, model, id):
        async with self.session_factory() as session:
            return await session.get(model, id)


@pytest.fixture
def seed(session_factory):
    return Seeder(session_factory)


@pytest_asyncio.fixture
async def admin(seed):
    return await seed.user(role="admin", name="Asha Admin")


@pytest_asyncio.fixture
async def staff(seed):
    return await seed.user(role="staff", name="Sam Staff")


@pytest_asyncio.fixture
async def customer(seed):
    return await seed.user(role="customer", name="Priya")


@pytest.fixture
def now():
    return datetime(2026, 1, 31, 10, 30, tzinfo=timezone.utc)
