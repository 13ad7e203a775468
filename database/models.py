import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, JSON, Text, Boolean, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_id)
    email = Column(String, nullable=False, unique=True)
    name = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=False, default="customer")
    organization_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    customer = relationship("Customer", back_populates="user", uselist=False)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, unique=True)
    organization_id = Column(String, nullable=True)
    total_orders = Column(Integer, nullable=False, default=0)
    lifetime_value = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    user = relationship("User", back_populates="customer")
    memberships = relationship("CustomerMembership", back_populates="customer")


class Outlet(Base):
    __tablename__ = "outlets"

    id = Column(String, primary_key=True, default=new_id)
    organization_id = Column(String, nullable=True)
    name = Column(String, nullable=False)
    city = Column(String, nullable=True)
    address = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Order(Base):
    __tablename__ = "orders"

    id = Column(String, primary_key=True, default=new_id)
    order_number = Column(String, nullable=False, unique=True)
    organization_id = Column(String, nullable=True)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=False)
    outlet_id = Column(String, ForeignKey("outlets.id"), nullable=True)
    status = Column(String, nullable=False, default="pending")
    # list of StatusHistoryEntry dicts, append-only
    status_history = Column(JSON, nullable=False, default=list)
    priority = Column(String, nullable=False, default="normal")
    subtotal = Column(Float, nullable=False, default=0.0)
    tax_amount = Column(Float, nullable=False, default=0.0)
    total_amount = Column(Float, nullable=False, default=0.0)
    internal_notes = Column(Text, nullable=True)
    special_instructions = Column(Text, nullable=True)
    pickup_address = Column(JSON, nullable=True)
    delivery_address = Column(JSON, nullable=True)
    pickup_scheduled_at = Column(DateTime(timezone=True), nullable=True)
    pickup_completed_at = Column(DateTime(timezone=True), nullable=True)
    delivery_completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    customer = relationship("Customer")
    outlet = relationship("Outlet")
    items = relationship("OrderItem", back_populates="order", order_by="OrderItem.id")
    payments = relationship("Payment", back_populates="order")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False)
    service_name = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Float, nullable=False)
    subtotal = Column(Float, nullable=False)

    order = relationship("Order", back_populates="items")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=new_id)
    organization_id = Column(String, nullable=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=True)
    membership_id = Column(String, ForeignKey("customer_memberships.id"), nullable=True)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=False)
    amount = Column(Float, nullable=False)
    payment_method = Column(String, nullable=False)
    payment_gateway = Column(String, nullable=False, default="manual")
    upi_transaction_id = Column(String, nullable=True)
    status = Column(String, nullable=False, default="pending")
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by = Column(String, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    customer = relationship("Customer")
    order = relationship("Order", back_populates="payments")
    membership = relationship("CustomerMembership")
    proofs = relationship("PaymentProof", back_populates="payment", order_by="PaymentProof.created_at")


class PaymentProof(Base):
    __tablename__ = "payment_proofs"

    id = Column(String, primary_key=True, default=new_id)
    payment_id = Column(String, ForeignKey("payments.id"), nullable=False)
    file_url = Column(String, nullable=False)
    file_id = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    file_type = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    payment = relationship("Payment", back_populates="proofs")


class CustomerMembership(Base):
    __tablename__ = "customer_memberships"
    __table_args__ = (UniqueConstraint("customer_id", "plan_id", name="uq_membership_customer_plan"),)

    id = Column(String, primary_key=True, default=new_id)
    customer_id = Column(String, ForeignKey("customers.id"), nullable=False)
    plan_id = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    billing_cycle = Column(String, nullable=False, default="monthly")
    start_date = Column(DateTime(timezone=True), nullable=True)
    expiry_date = Column(DateTime(timezone=True), nullable=True)
    auto_renew = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    customer = relationship("Customer", back_populates="memberships")
    transactions = relationship(
        "MembershipTransaction",
        back_populates="membership",
        order_by="MembershipTransaction.created_at.desc()"
    )


class MembershipTransaction(Base):
    __tablename__ = "membership_transactions"

    id = Column(String, primary_key=True, default=new_id)
    membership_id = Column(String, ForeignKey("customer_memberships.id"), nullable=False)
    type = Column(String, nullable=False)
    amount = Column(Float, nullable=False)
    status = Column(String, nullable=False, default="pending")
    description = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    membership = relationship("CustomerMembership", back_populates="transactions")
