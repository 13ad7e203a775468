"""
Tests for manual payment verification and entitlement activation.
"""
from datetime import datetime, timedelta, timezone
import pytest
from sqlalchemy import select
from sqlalchemy.orm.attributes import set_committed_value

import business_functions
from business_functions import PAYMENT_VERIFIED_NOTE, list_pending_payments, verify_payment
from database import CustomerMembership, MembershipTransaction, Order, Payment
from errors import AlreadyProcessed, Forbidden, InvalidTransition, NotFound, Unauthorized
from memberships import add_months, as_utc
from schemas import StatusHistoryEntry


async def _membership_payment(seed, customer, billing_cycle="yearly", pending_transactions=2):
    membership = await seed.membership(customer.customer.id, billing_cycle=billing_cycle)
    for _ in range(pending_transactions):
        await seed.transaction(membership.id)
    payment = await seed.payment(customer.customer.id, membership_id=membership.id, amount=2999.0)
    return membership, payment


@pytest.mark.asyncio
async def test_verify_yearly_membership_payment(session, seed, admin, customer, now):
    """Scenario: verifying a yearly membership payment activates it for one year."""
    membership, payment = await _membership_payment(seed, customer)

    result = await verify_payment(session, payment.id, "verified", admin, notes="UPI ref ok", now=now)

    assert result.payment.status == "completed"
    assert result.payment.verified_by == admin.id
    assert result.payment.metadata_json["verificationNotes"] == "UPI ref ok"

    stored = await seed.get(CustomerMembership, membership.id)
    assert stored.status == "active"
    assert as_utc(stored.start_date) == now
    assert as_utc(stored.expiry_date) == add_months(now, 12)
    assert as_utc(stored.expiry_date) == datetime(2027, 1, 31, 10, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_verify_membership_expiry_is_about_a_year_from_now(session, seed, admin, customer):
    membership, payment = await _membership_payment(seed, customer)

    await verify_payment(session, payment.id, "verified", admin)

    stored = await seed.get(CustomerMembership, membership.id)
    start = as_utc(stored.start_date)
    assert abs(as_utc(stored.expiry_date) - (start + timedelta(days=365))) <= timedelta(days=1)
    assert abs(datetime.now(timezone.utc) - start) < timedelta(minutes=1)


@pytest.mark.asyncio
async def test_verify_monthly_membership_clamps_to_month_end(session, seed, admin, customer, now):
    membership, payment = await _membership_payment(seed, customer, billing_cycle="monthly")

    await verify_payment(session, payment.id, "verified", admin, now=now)

    stored = await seed.get(CustomerMembership, membership.id)
    # Jan 31 + 1 month
    assert as_utc(stored.expiry_date) == datetime(2026, 2, 28, 10, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_verify_completes_every_pending_membership_transaction(session, session_factory, seed, admin, customer, now):
    membership, payment = await _membership_payment(seed, customer, pending_transactions=3)
    failed = await seed.transaction(membership.id, status="failed")

    await verify_payment(session, payment.id, "verified", admin, now=now)

    async with session_factory() as check:
        rows = (await check.execute(
            select(MembershipTransaction).where(MembershipTransaction.membership_id == membership.id)
        )).scalars().all()
    statuses = {t.id: t.status for t in rows}
    assert statuses.pop(failed.id) == "failed"
    assert set(statuses.values()) == {"completed"}
    assert len(statuses) == 3


@pytest.mark.asyncio
async def test_verify_membership_supersedes_other_active_membership(session, seed, admin, customer, now):
    old = await seed.membership(
        customer.customer.id, plan_id="basic", billing_cycle="monthly", status="active",
        start_date=now - timedelta(days=10), expiry_date=now + timedelta(days=20)
    )
    membership, payment = await _membership_payment(seed, customer)

    await verify_payment(session, payment.id, "verified", admin, now=now)

    assert (await seed.get(CustomerMembership, old.id)).status == "cancelled"
    assert (await seed.get(CustomerMembership, membership.id)).status == "active"


@pytest.mark.asyncio
async def test_verify_order_payment_appends_one_history_entry(session, seed, admin, customer, now):
    history = [
        {"status": "pending", "timestamp": "2026-01-30T08:00:00+00:00", "updatedBy": customer.id},
    ]
    order = await seed.order(customer.customer.id, history=history)
    payment = await seed.payment(customer.customer.id, order_id=order.id)

    result = await verify_payment(session, payment.id, "verified", admin, now=now)

    stored = await seed.get(Order, order.id)
    assert stored.status == "confirmed"
    assert len(stored.status_history) == 2
    assert stored.status_history[0] == history[0]
    last = stored.status_history[-1]
    assert last["status"] == "confirmed"
    assert last["note"] == PAYMENT_VERIFIED_NOTE
    assert last["updatedBy"] == admin.id
    assert StatusHistoryEntry.model_validate(last).timestamp == now

    assert result.notification.kind == "payment_verified"
    assert result.notification.to == customer.email
    assert result.notification.data["orderNumber"] == order.order_number


@pytest.mark.asyncio
async def test_membership_verification_notifies_activation(session, seed, admin, customer, now):
    _, payment = await _membership_payment(seed, customer)

    result = await verify_payment(session, payment.id, "verified", admin, now=now)

    assert result.notification.kind == "membership_activated"
    assert result.notification.data["planName"] == "Premium"


@pytest.mark.asyncio
async def test_reject_leaves_order_and_membership_untouched(session, seed, admin, customer, now):
    order = await seed.order(customer.customer.id)
    membership, membership_payment = await _membership_payment(seed, customer)
    order_payment = await seed.payment(customer.customer.id, order_id=order.id)

    first = await verify_payment(session, order_payment.id, "rejected", admin, now=now)
    second = await verify_payment(session, membership_payment.id, "rejected", admin, now=now)

    assert first.payment.status == "failed"
    assert second.payment.status == "failed"
    assert as_utc(first.payment.verified_at) == now
    assert first.notification is None

    stored_order = await seed.get(Order, order.id)
    assert stored_order.status == "pending"
    assert len(stored_order.status_history) == 1

    stored_membership = await seed.get(CustomerMembership, membership.id)
    assert stored_membership.status == "pending"
    assert stored_membership.expiry_date is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["completed", "verified", "failed", "refunded"])
async def test_processed_payment_is_rejected_without_mutation(session, seed, admin, customer, status):
    order = await seed.order(customer.customer.id)
    payment = await seed.payment(customer.customer.id, order_id=order.id, status=status)

    with pytest.raises(AlreadyProcessed):
        await verify_payment(session, payment.id, "verified", admin)

    stored = await seed.get(Payment, payment.id)
    assert stored.status == status
    assert stored.verified_at is None
    assert (await seed.get(Order, order.id)).status == "pending"


@pytest.mark.asyncio
async def test_second_verification_fails_fast(session, session_factory, seed, admin, customer):
    membership, payment = await _membership_payment(seed, customer)
    await verify_payment(session, payment.id, "verified", admin)
    expiry = (await seed.get(CustomerMembership, membership.id)).expiry_date

    async with session_factory() as other:
        with pytest.raises(AlreadyProcessed):
            await verify_payment(other, payment.id, "verified", admin)

    assert (await seed.get(CustomerMembership, membership.id)).expiry_date == expiry


@pytest.mark.asyncio
async def test_concurrent_verification_loses_on_stale_read(session_factory, seed, admin, customer, monkeypatch):
    """The loser read the payment as pending before the winner committed."""
    order = await seed.order(customer.customer.id)
    payment = await seed.payment(customer.customer.id, order_id=order.id)

    async with session_factory() as winner:
        await verify_payment(winner, payment.id, "verified", admin)

    real_get_payment = business_functions._get_payment
    calls = []

    async def stale_get_payment(session, payment_id, for_update=False):
        loaded = await real_get_payment(session, payment_id, for_update=for_update)
        if not calls:
            set_committed_value(loaded, "status", "pending")
        calls.append(payment_id)
        return loaded

    monkeypatch.setattr(business_functions, "_get_payment", stale_get_payment)

    async with session_factory() as loser:
        with pytest.raises(AlreadyProcessed):
            await verify_payment(loser, payment.id, "rejected", admin)

    stored = await seed.get(Payment, payment.id)
    assert stored.status == "completed"
    stored_order = await seed.get(Order, order.id)
    assert stored_order.status == "confirmed"
    assert len(stored_order.status_history) == 2


@pytest.mark.asyncio
async def test_failure_inside_transaction_rolls_everything_back(session, seed, admin, customer):
    membership = await seed.membership(customer.customer.id)
    await seed.transaction(membership.id)
    # membership activation succeeds, then the order lookup fails
    payment = await seed.payment(customer.customer.id, membership_id=membership.id, order_id="missing-order")

    with pytest.raises(NotFound):
        await verify_payment(session, payment.id, "verified", admin)

    assert (await seed.get(Payment, payment.id)).status == "pending"
    assert (await seed.get(CustomerMembership, membership.id)).status == "pending"


@pytest.mark.asyncio
async def test_missing_payment(session, admin):
    with pytest.raises(NotFound):
        await verify_payment(session, "does-not-exist", "verified", admin)


@pytest.mark.asyncio
@pytest.mark.parametrize("role", ["customer", "business_client", "staff"])
async def test_non_admin_roles_cannot_verify(session, seed, customer, role):
    actor = await seed.user(role=role)
    payment = await seed.payment(customer.customer.id, order_id=None)

    with pytest.raises(Forbidden):
        await verify_payment(session, payment.id, "verified", actor)

    assert (await seed.get(Payment, payment.id)).status == "pending"


@pytest.mark.asyncio
async def test_unauthenticated_verification(session):
    with pytest.raises(Unauthorized):
        await verify_payment(session, "p1", "verified", None)


@pytest.mark.asyncio
async def test_list_pending_payments_joins_review_data(session, seed, admin, customer):
    order = await seed.order(customer.customer.id)
    with_proof = await seed.payment(customer.customer.id, order_id=order.id, proof_url="https://files.example/upi.png")
    await seed.payment(customer.customer.id, order_id=order.id, status="completed")

    payments = await list_pending_payments(session, admin)

    assert [p.id for p in payments] == [with_proof.id]
    pending = payments[0]
    assert pending.customer.user.email == customer.email
    assert pending.order.order_number == order.order_number
    assert pending.proofs[0].file_url == "https://files.example/upi.png"


@pytest.mark.asyncio
async def test_list_pending_payments_requires_admin(session, staff):
    with pytest.raises(Forbidden):
        await list_pending_payments(session, staff)


@pytest.mark.asyncio
async def test_payment_for_cancelled_order_cannot_be_verified(session, seed, admin, customer):
    history = [
        {"status": "pending", "timestamp": "2026-01-30T08:00:00+00:00"},
        {"status": "cancelled", "timestamp": "2026-01-30T09:00:00+00:00", "updatedBy": customer.id},
    ]
    order = await seed.order(customer.customer.id, status="cancelled", history=history)
    payment = await seed.payment(customer.customer.id, order_id=order.id)

    with pytest.raises(InvalidTransition):
        await verify_payment(session, payment.id, "verified", admin)

    assert (await seed.get(Payment, payment.id)).status == "pending"
    stored_order = await seed.get(Order, order.id)
    assert stored_order.status == "cancelled"
    assert stored_order.status_history == history

    # the admin can still reject it
    result = await verify_payment(session, payment.id, "rejected", admin)
    assert result.payment.status == "failed"
