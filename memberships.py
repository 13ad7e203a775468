"""
Membership plan catalog and date helpers.
Plans are reference data defined in code, not stored in the database.
"""
import calendar
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from schemas import BillingCycle, MembershipPlan, MembershipStatus

# Prices in Rupees
MEMBERSHIP_PLANS: List[MembershipPlan] = [
    MembershipPlan(
        id="basic",
        name="Basic",
        description="Perfect for occasional users",
        price_monthly=0,
        price_yearly=0,
        features=["Standard pricing", "Email notifications", "Order tracking", "Regular customer support"],
        discount_percentage=0,
        free_pickup_delivery=False,
        priority_support=False,
        display_order=1,
    ),
    MembershipPlan(
        id="premium",
        name="Premium",
        description="Best for regular customers",
        price_monthly=299,
        price_yearly=2999,
        features=[
            "10% off on all services",
            "Free pickup & delivery",
            "Priority support",
            "SMS + Email alerts",
            "Extended order history",
            "No minimum order",
        ],
        discount_percentage=10,
        free_pickup_delivery=True,
        priority_support=True,
        display_order=2,
    ),
    MembershipPlan(
        id="elite",
        name="Elite",
        description="For power users and families",
        price_monthly=499,
        price_yearly=4999,
        features=[
            "15% off on all services",
            "Free pickup & delivery",
            "Priority support",
            "SMS + Email alerts",
            "Dedicated account manager",
            "Same-day service",
            "Fabric care consultation",
            "Stain removal guarantee",
        ],
        discount_percentage=15,
        free_pickup_delivery=True,
        priority_support=True,
        display_order=3,
    ),
    MembershipPlan(
        id="business",
        name="Business",
        description="Tailored for businesses",
        price_monthly=999,
        price_yearly=9999,
        features=[
            "20% off on all services",
            "Free pickup & delivery",
            "Dedicated account manager",
            "Bulk order processing",
            "Custom billing & invoicing",
            "Team account access",
            "Priority scheduling",
            "Monthly usage reports",
        ],
        discount_percentage=20,
        free_pickup_delivery=True,
        priority_support=True,
        display_order=4,
    ),
]

_PLANS_BY_ID = {plan.id: plan for plan in MEMBERSHIP_PLANS}

EXPIRING_SOON_WINDOW = timedelta(days=7)


def get_plan(plan_id: str) -> Optional[MembershipPlan]:
    return _PLANS_BY_ID.get(plan_id)


def active_plans() -> List[MembershipPlan]:
    return sorted((p for p in MEMBERSHIP_PLANS if p.is_active), key=lambda p: p.display_order)


def calculate_membership_savings(plan_id: str, order_amount: float) -> float:
    plan = get_plan(plan_id)
    if not plan:
        return 0.0
    return order_amount * plan.discount_percentage / 100


def add_months(start: datetime, months: int) -> datetime:
    """
    Add calendar months, clamping the day to the target month (Jan 31 + 1 month => Feb 28/29).
    """
    y = start.year + (start.month - 1 + months) // 12
    m = (start.month - 1 + months) % 12 + 1
    day = min(start.day, calendar.monthrange(y, m)[1])
    return start.replace(year=y, month=m, day=day)


def compute_expiry(start: datetime, billing_cycle: BillingCycle) -> datetime:
    months = 12 if BillingCycle(billing_cycle) == BillingCycle.YEARLY else 1
    return add_months(start, months)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (as some drivers return them) as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_active(membership, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    expiry = as_utc(membership.expiry_date)
    return membership.status == MembershipStatus.ACTIVE.value and expiry is not None and expiry > now


def get_active_membership(memberships: Iterable, now: Optional[datetime] = None):
    for membership in memberships:
        if is_active(membership, now):
            return membership
    return None


def is_expiring_soon(membership, now: Optional[datetime] = None) -> bool:
    now = now or datetime.now(timezone.utc)
    if not is_active(membership, now):
        return False
    return as_utc(membership.expiry_date) <= now + EXPIRING_SOON_WINDOW
