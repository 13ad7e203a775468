from .connection import get_db, init_db, close_db, DATABASE_URL
from .models import (
    Base, User, Customer, Outlet, Order, OrderItem, Payment, PaymentProof,
    CustomerMembership, MembershipTransaction, new_id, utcnow
)

__all__ = [
    "get_db", "init_db", "close_db", "DATABASE_URL", "Base",
    "User", "Customer", "Outlet", "Order", "OrderItem", "Payment", "PaymentProof",
    "CustomerMembership", "MembershipTransaction", "new_id", "utcnow",
]
