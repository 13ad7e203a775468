"""
Business functions for payment verification, the order lifecycle and membership purchases.
Every state-changing function runs as a single transaction on the session it is given:
it either commits all of its writes or rolls all of them back.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config import settings
from database import (
    Customer, CustomerMembership, MembershipTransaction, Order, OrderItem, Outlet, Payment, PaymentProof, utcnow
)
from errors import AlreadyProcessed, Forbidden, InvalidTransition, NotFound, Unauthorized, ValidationError
from memberships import compute_expiry, get_active_membership, get_plan, is_active
from notifications import (
    Notification, membership_activated_notification, membership_purchase_notification,
    payment_verified_notification
)
from roles import Capability, has_capability, require_capability
from schemas import (
    BillingCycle, CreateOrderRequest, MembershipStatus, OrderStatus, PaymentMetadata, PaymentMethod, PaymentStatus,
    StatusHistoryEntry, TransactionStatus, TransactionType, VerificationDecision
)

PAYMENT_VERIFIED_NOTE = "Payment verified by admin"
# GST
TAX_RATE = 0.18

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.CONFIRMED})

# Forward path of an order; only enforced when strict transitions are enabled
ORDER_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PICKED_UP,
    OrderStatus.IN_PROGRESS,
    OrderStatus.QUALITY_CHECK,
    OrderStatus.READY,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
]
ALLOWED_TRANSITIONS = {
    status: ({ORDER_FLOW[i + 1]} if i + 1 < len(ORDER_FLOW) else set())
    for i, status in enumerate(ORDER_FLOW)
}
for _status in CANCELLABLE_STATUSES:
    ALLOWED_TRANSITIONS[_status] = ALLOWED_TRANSITIONS[_status] | {OrderStatus.CANCELLED}
ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] = set()


@dataclass
class VerificationResult:
    payment: Payment
    notification: Optional[Notification] = None


@dataclass
class PurchaseResult:
    membership: CustomerMembership
    payment: Payment
    notification: Notification


# Loaders

def _payment_query():
    return select(Payment).options(
        selectinload(Payment.customer).selectinload(Customer.user),
        selectinload(Payment.order),
        selectinload(Payment.membership),
        selectinload(Payment.proofs),
    )

def _order_query():
    return select(Order).options(
        selectinload(Order.customer).selectinload(Customer.user),
        selectinload(Order.outlet),
        selectinload(Order.items),
        selectinload(Order.payments),
    )

async def _get_payment(session: AsyncSession, payment_id: str, for_update: bool = False) -> Optional[Payment]:
    query = _payment_query().where(Payment.id == payment_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()

async def _get_order(session: AsyncSession, order_id: str, for_update: bool = False) -> Optional[Order]:
    query = _order_query().where(Order.id == order_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return result.scalar_one_or_none()

async def _customer_id_for(session: AsyncSession, user_id: str) -> Optional[str]:
    result = await session.execute(select(Customer.id).where(Customer.user_id == user_id))
    return result.scalar_one_or_none()


def _append_history(order: Order, entry: StatusHistoryEntry) -> None:
    # assign a new list so the JSON column is flagged as modified
    order.status_history = list(order.status_history or []) + [entry.to_column()]


def _apply_status(order: Order, new_status: OrderStatus, now: datetime,
                  updated_by: Optional[str] = None, note: Optional[str] = None) -> None:
    order.status = new_status.value
    _append_history(order, StatusHistoryEntry(status=new_status, timestamp=now, updated_by=updated_by, note=note))
    if new_status == OrderStatus.PICKED_UP and order.pickup_completed_at is None:
        order.pickup_completed_at = now
    elif new_status == OrderStatus.DELIVERED and order.delivery_completed_at is None:
        order.delivery_completed_at = now


# Payment verification

async def list_pending_payments(session: AsyncSession, acting_user) -> List[Payment]:
    """Pending payments, newest first, with customer, order, membership and proofs loaded."""
    require_capability(acting_user, Capability.VERIFY_PAYMENTS)
    result = await session.execute(
        _payment_query()
        .where(Payment.status == PaymentStatus.PENDING.value)
        .order_by(Payment.created_at.desc())
    )
    return list(result.scalars().all())


async def _activate_membership(session: AsyncSession, membership_id: str, now: datetime) -> CustomerMembership:
    result = await session.execute(
        select(CustomerMembership)
        .where(CustomerMembership.id == membership_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    membership = result.scalar_one_or_none()
    if membership is None:
        raise NotFound("Membership not found")

    membership.status = MembershipStatus.ACTIVE.value
    membership.start_date = now
    membership.expiry_date = compute_expiry(now, membership.billing_cycle)

    # every pending transaction of this membership is settled by the payment
    await session.execute(
        update(MembershipTransaction)
        .where(
            MembershipTransaction.membership_id == membership_id,
            MembershipTransaction.status == TransactionStatus.PENDING.value
        )
        .values({MembershipTransaction.status: TransactionStatus.COMPLETED.value})
        .execution_options(synchronize_session=False)
    )
    # one active membership per customer
    await session.execute(
        update(CustomerMembership)
        .where(
            CustomerMembership.customer_id == membership.customer_id,
            CustomerMembership.id != membership_id,
            CustomerMembership.status == MembershipStatus.ACTIVE.value
        )
        .values({CustomerMembership.status: MembershipStatus.CANCELLED.value})
        .execution_options(synchronize_session=False)
    )
    return membership


async def _confirm_order(session: AsyncSession, order_id: str, acting_user_id: str, now: datetime) -> Order:
    order = await _get_order(session, order_id, for_update=True)
    if order is None:
        raise NotFound("Order not found")
    if order.status == OrderStatus.CANCELLED.value:
        logging.warning(f"Payment verification for cancelled order {order.order_number}")
        raise InvalidTransition("Cannot confirm a cancelled order")
    _apply_status(order, OrderStatus.CONFIRMED, now, updated_by=acting_user_id, note=PAYMENT_VERIFIED_NOTE)
    return order


async def verify_payment(session: AsyncSession, payment_id: str, decision, acting_user,
                         notes: Optional[str] = None, now: Optional[datetime] = None) -> VerificationResult:
    """Apply an admin decision to a pending payment.

    A verified payment activates the membership or confirms the order it pays for; a
    rejected payment is only marked failed. The pending check and the status write are a
    single compare-and-set inside the transaction, so a payment is processed at most once.
    """
    require_capability(acting_user, Capability.VERIFY_PAYMENTS)
    decision = VerificationDecision(decision)
    start_time = time.time()
    now = now or utcnow()
    new_status = PaymentStatus.COMPLETED if decision == VerificationDecision.VERIFIED else PaymentStatus.FAILED

    try:
        payment = await _get_payment(session, payment_id, for_update=True)
        if payment is None:
            raise NotFound("Payment not found")
        if payment.status != PaymentStatus.PENDING.value:
            logging.warning(f"Payment {payment_id} already processed ({payment.status})")
            raise AlreadyProcessed("Payment already processed")

        metadata = PaymentMetadata(verification_notes=notes, verified_by=acting_user.email, verified_at=now)
        claimed = await session.execute(
            update(Payment)
            .where(Payment.id == payment_id, Payment.status == PaymentStatus.PENDING.value)
            .values({
                Payment.status: new_status.value,
                Payment.verified_at: now,
                Payment.verified_by: acting_user.id,
                Payment.metadata_json: metadata.to_column(),
            })
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            logging.warning(f"Payment {payment_id} was processed by a concurrent request")
            raise AlreadyProcessed("Payment already processed")

        if decision == VerificationDecision.VERIFIED:
            if payment.membership_id:
                await _activate_membership(session, payment.membership_id, now)
            if payment.order_id:
                await _confirm_order(session, payment.order_id, acting_user.id, now)

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    payment = await _get_payment(session, payment_id)
    notification = None
    if decision == VerificationDecision.VERIFIED:
        if payment.order_id:
            notification = payment_verified_notification(payment)
        elif payment.membership_id:
            plan = get_plan(payment.membership.plan_id)
            plan_name = plan.name if plan else payment.membership.plan_id
            notification = membership_activated_notification(payment, payment.membership, plan_name)

    elapsed = time.time() - start_time
    logging.info(f"Payment {payment_id} {decision.value} by {acting_user.id} -> {new_status.value} (took {elapsed:.3f}s)")
    return VerificationResult(payment=payment, notification=notification)


# Order lifecycle

def _order_number(now: datetime) -> str:
    return f"ORD-{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9].upper()}"


async def create_order(session: AsyncSession, acting_user, request: CreateOrderRequest,
                       now: Optional[datetime] = None) -> Order:
    """Place a pending order at the first active outlet and bump the customer's totals."""
    require_capability(acting_user, Capability.PLACE_ORDER)
    start_time = time.time()
    now = now or utcnow()

    subtotal = round(sum(item.unit_price * item.quantity for item in request.items), 2)
    tax_amount = round(subtotal * TAX_RATE, 2)
    total_amount = round(subtotal + tax_amount, 2)

    try:
        result = await session.execute(
            select(Customer).where(Customer.user_id == acting_user.id).with_for_update()
        )
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFound("Customer profile not found")

        # TODO: pick the outlet nearest to the pickup address
        result = await session.execute(
            select(Outlet).where(Outlet.is_active.is_(True)).order_by(Outlet.created_at, Outlet.id).limit(1)
        )
        outlet = result.scalar_one_or_none()
        if outlet is None:
            raise ValidationError("No active outlet available")

        order = Order(
            order_number=_order_number(now),
            organization_id=customer.organization_id,
            customer_id=customer.id,
            outlet_id=outlet.id,
            priority=request.priority.value,
            subtotal=subtotal,
            tax_amount=tax_amount,
            total_amount=total_amount,
            pickup_address=request.pickup_address.model_dump(mode="json", by_alias=True),
            delivery_address=request.delivery_address.model_dump(mode="json", by_alias=True),
            pickup_scheduled_at=request.pickup_scheduled_at,
            special_instructions=request.special_instructions,
            status_history=[],
            created_at=now,
        )
        order.items = [
            OrderItem(
                service_name=item.service_name,
                quantity=item.quantity,
                unit_price=item.unit_price,
                subtotal=round(item.unit_price * item.quantity, 2),
            )
            for item in request.items
        ]
        _apply_status(order, OrderStatus.PENDING, now, updated_by=acting_user.id)
        session.add(order)

        customer.total_orders = (customer.total_orders or 0) + 1
        customer.lifetime_value = round((customer.lifetime_value or 0.0) + total_amount, 2)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    elapsed = time.time() - start_time
    logging.info(f"Order {order.order_number} placed by customer {customer.id}, total {total_amount} (took {elapsed:.3f}s)")
    return await _get_order(session, order.id)


async def list_my_orders(session: AsyncSession, acting_user) -> List[Order]:
    """The acting customer's orders, newest first."""
    if acting_user is None:
        raise Unauthorized()
    customer_id = await _customer_id_for(session, acting_user.id)
    if customer_id is None:
        raise NotFound("Customer not found")
    result = await session.execute(
        _order_query().where(Order.customer_id == customer_id).order_by(Order.created_at.desc())
    )
    return list(result.scalars().all())


async def track_order(session: AsyncSession, order_number: str) -> Order:
    """Public lookup by order number."""
    result = await session.execute(
        select(Order)
        .options(selectinload(Order.outlet), selectinload(Order.items))
        .where(Order.order_number == order_number)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")
    return order


async def get_order(session: AsyncSession, order_id: str, acting_user) -> Order:
    if acting_user is None:
        raise Unauthorized()
    order = await _get_order(session, order_id)
    if order is None:
        raise NotFound("Order not found")
    if not has_capability(acting_user.role, Capability.VIEW_ALL_ORDERS):
        if await _customer_id_for(session, acting_user.id) != order.customer_id:
            raise Forbidden()
    return order


async def update_order(session: AsyncSession, order_id: str, acting_user,
                       status: Optional[OrderStatus] = None, internal_notes: Optional[str] = None,
                       now: Optional[datetime] = None, strict: Optional[bool] = None) -> Order:
    """Staff update of an order's status and/or internal notes.

    Setting the current status again is a no-op. Unless ``strict`` (default from settings)
    is on, any status may follow any other.
    """
    require_capability(acting_user, Capability.UPDATE_ORDERS)
    strict = settings.strict_order_transitions if strict is None else strict
    start_time = time.time()
    now = now or utcnow()

    try:
        order = await _get_order(session, order_id, for_update=True)
        if order is None:
            raise NotFound("Order not found")

        if status is not None:
            new_status = OrderStatus(status)
            current = OrderStatus(order.status)
            if new_status != current:
                if strict and new_status not in ALLOWED_TRANSITIONS[current]:
                    raise InvalidTransition(f"Cannot move order from {current.value} to {new_status.value}")
                _apply_status(order, new_status, now, updated_by=acting_user.id)
                logging.info(f"Order {order.order_number} {current.value} -> {new_status.value} by {acting_user.id}")

        if internal_notes is not None:
            order.internal_notes = internal_notes

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    elapsed = time.time() - start_time
    logging.info(f"Order {order_id} updated (took {elapsed:.3f}s)")
    return await _get_order(session, order_id)


async def cancel_order(session: AsyncSession, order_id: str, acting_user, now: Optional[datetime] = None) -> Order:
    """Customer self-cancellation, allowed only while the order is pending or confirmed."""
    require_capability(acting_user, Capability.CANCEL_OWN_ORDER)
    now = now or utcnow()

    try:
        order = await _get_order(session, order_id, for_update=True)
        if order is None:
            raise NotFound("Order not found")
        if await _customer_id_for(session, acting_user.id) != order.customer_id:
            raise Forbidden()

        current = OrderStatus(order.status)
        if current not in CANCELLABLE_STATUSES:
            logging.warning(f"Order {order.order_number} cannot be cancelled from {current.value}")
            raise InvalidTransition("Order cannot be cancelled at this stage")

        _apply_status(order, OrderStatus.CANCELLED, now, updated_by=acting_user.id)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logging.info(f"Order {order_id} cancelled by customer {acting_user.id}")
    return await _get_order(session, order_id)


# Memberships

async def purchase_membership(session: AsyncSession, acting_user, plan_id: str, billing_cycle,
                              payment_method, upi_transaction_id: Optional[str] = None,
                              proof_url: Optional[str] = None,
                              now: Optional[datetime] = None) -> PurchaseResult:
    """Start a membership purchase: a pending membership, payment and transaction awaiting verification."""
    require_capability(acting_user, Capability.PURCHASE_MEMBERSHIP)
    billing_cycle = BillingCycle(billing_cycle)
    payment_method = PaymentMethod(payment_method)
    now = now or utcnow()

    plan = get_plan(plan_id)
    if plan is None or not plan.is_active:
        raise ValidationError("Invalid membership plan", details=[{"field": "planId", "message": f"Unknown plan '{plan_id}'"}])
    amount = plan.price_for(billing_cycle)

    try:
        result = await session.execute(select(Customer).where(Customer.user_id == acting_user.id))
        customer = result.scalar_one_or_none()
        if customer is None:
            raise NotFound("Customer profile not found")

        result = await session.execute(
            select(CustomerMembership)
            .where(CustomerMembership.customer_id == customer.id, CustomerMembership.plan_id == plan.id)
            .with_for_update()
        )
        membership = result.scalar_one_or_none()
        if membership is not None and is_active(membership, now):
            raise AlreadyProcessed("You already have an active membership for this plan")

        # re-purchasing a plan reuses its (customer, plan) row
        if membership is None:
            membership = CustomerMembership(customer_id=customer.id, plan_id=plan.id)
            session.add(membership)
        membership.status = MembershipStatus.PENDING.value
        membership.billing_cycle = billing_cycle.value
        await session.flush()

        payment = Payment(
            organization_id=customer.organization_id,
            customer_id=customer.id,
            membership_id=membership.id,
            amount=amount,
            payment_method=payment_method.value,
            payment_gateway="manual",
            upi_transaction_id=upi_transaction_id,
            status=PaymentStatus.PENDING.value,
        )
        session.add(payment)
        await session.flush()

        if proof_url and payment_method == PaymentMethod.UPI:
            session.add(PaymentProof(payment_id=payment.id, file_url=proof_url))

        session.add(MembershipTransaction(
            membership_id=membership.id,
            type=TransactionType.PURCHASE.value,
            amount=amount,
            status=TransactionStatus.PENDING.value,
            description=f"Purchase {plan.name} membership ({billing_cycle.value})",
        ))
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logging.info(f"Membership purchase {plan.id}/{billing_cycle.value} started for customer {customer.id}, payment {payment.id}")
    return PurchaseResult(
        membership=membership,
        payment=payment,
        notification=membership_purchase_notification(acting_user, plan, billing_cycle.value, amount),
    )


async def get_my_membership(session: AsyncSession, acting_user,
                            now: Optional[datetime] = None) -> Tuple[Optional[CustomerMembership], List[CustomerMembership]]:
    """Return (active membership or None, all memberships newest first with transactions loaded)."""
    if acting_user is None:
        raise Unauthorized()
    customer_id = await _customer_id_for(session, acting_user.id)
    if customer_id is None:
        raise NotFound("Customer profile not found")

    result = await session.execute(
        select(CustomerMembership)
        .where(CustomerMembership.customer_id == customer_id)
        .options(selectinload(CustomerMembership.transactions))
        .order_by(CustomerMembership.created_at.desc())
    )
    memberships = list(result.scalars().all())
    return get_active_membership(memberships, now), memberships
