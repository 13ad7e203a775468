"""
Request, response and JSON-column models.
Wire format is camelCase; Python attributes stay snake_case.
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel
from forecasting import ForecastResult


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PICKED_UP = "picked_up"
    IN_PROGRESS = "in_progress"
    QUALITY_CHECK = "quality_check"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    VERIFIED = "verified"  # legacy spelling of completed
    FAILED = "failed"
    REFUNDED = "refunded"


class OrderPriority(str, Enum):
    NORMAL = "normal"
    EXPRESS = "express"
    URGENT = "urgent"


class VerificationDecision(str, Enum):
    VERIFIED = "verified"
    REJECTED = "rejected"


class PaymentMethod(str, Enum):
    UPI = "upi"
    COD = "cod"


class MembershipStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionType(str, Enum):
    PURCHASE = "purchase"
    RENEWAL = "renewal"
    UPGRADE = "upgrade"
    DOWNGRADE = "downgrade"
    CANCELLATION = "cancellation"


# JSON column payloads

class StatusHistoryEntry(CamelModel):
    status: OrderStatus
    timestamp: datetime
    updated_by: Optional[str] = None
    note: Optional[str] = None

    def to_column(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PaymentMetadata(CamelModel):
    verification_notes: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None

    def to_column(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# Requests

class VerifyPaymentRequest(CamelModel):
    payment_id: str = Field(min_length=1)
    status: VerificationDecision
    notes: Optional[str] = None


class Address(CamelModel):
    street: str
    city: str
    state: str
    zip_code: str


class OrderItemIn(CamelModel):
    service_name: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)


class CreateOrderRequest(CamelModel):
    items: List[OrderItemIn] = Field(min_length=1)
    pickup_address: Address
    delivery_address: Address
    pickup_scheduled_at: datetime
    priority: OrderPriority = OrderPriority.NORMAL
    special_instructions: Optional[str] = None


class UpdateOrderRequest(CamelModel):
    status: Optional[OrderStatus] = None
    internal_notes: Optional[str] = None


class PurchaseMembershipRequest(CamelModel):
    plan_id: str = Field(min_length=1)
    billing_cycle: BillingCycle
    payment_method: PaymentMethod
    upi_transaction_id: Optional[str] = None
    proof_url: Optional[str] = None


# Reference data

class MembershipPlan(CamelModel):
    id: str
    name: str
    description: str
    price_monthly: float
    price_yearly: float
    features: List[str]
    discount_percentage: float
    free_pickup_delivery: bool
    priority_support: bool
    max_orders: Optional[int] = None
    is_active: bool = True
    display_order: int

    def price_for(self, billing_cycle: BillingCycle) -> float:
        return self.price_yearly if billing_cycle == BillingCycle.YEARLY else self.price_monthly


# Responses

class UserOut(CamelModel):
    id: str
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    role: str


class CustomerOut(CamelModel):
    id: str
    user: Optional[UserOut] = None


class OutletOut(CamelModel):
    id: str
    name: str
    city: Optional[str] = None
    address: Optional[str] = None


class OrderItemOut(CamelModel):
    id: int
    service_name: str
    quantity: int
    unit_price: float
    subtotal: float


class PaymentProofOut(CamelModel):
    id: str
    file_url: str
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None


class PaymentOut(CamelModel):
    id: str
    organization_id: Optional[str] = None
    order_id: Optional[str] = None
    membership_id: Optional[str] = None
    customer_id: str
    amount: float
    payment_method: str
    payment_gateway: str
    upi_transaction_id: Optional[str] = None
    status: PaymentStatus
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    metadata: Optional[PaymentMetadata] = Field(
        default=None, validation_alias=AliasChoices("metadata_json", "metadata")
    )
    created_at: Optional[datetime] = None


class MembershipOut(CamelModel):
    id: str
    customer_id: str
    plan_id: str
    status: MembershipStatus
    billing_cycle: BillingCycle
    start_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    auto_renew: bool = False

    @computed_field
    @property
    def plan(self) -> Optional[MembershipPlan]:
        from memberships import get_plan
        return get_plan(self.plan_id)


class MembershipTransactionOut(CamelModel):
    id: str
    type: TransactionType
    amount: float
    status: TransactionStatus
    description: Optional[str] = None
    created_at: Optional[datetime] = None


class MembershipWithTransactionsOut(MembershipOut):
    transactions: List[MembershipTransactionOut] = []


class ActiveMembershipOut(MembershipOut):
    expiring_soon: bool = False


class OrderSummaryOut(CamelModel):
    id: str
    order_number: str
    status: OrderStatus
    total_amount: float


class OrderOut(CamelModel):
    id: str
    order_number: str
    customer_id: str
    outlet_id: Optional[str] = None
    status: OrderStatus
    status_history: List[StatusHistoryEntry] = []
    priority: OrderPriority = OrderPriority.NORMAL
    subtotal: float = 0.0
    tax_amount: float = 0.0
    total_amount: float
    internal_notes: Optional[str] = None
    special_instructions: Optional[str] = None
    pickup_address: Optional[Address] = None
    delivery_address: Optional[Address] = None
    pickup_scheduled_at: Optional[datetime] = None
    pickup_completed_at: Optional[datetime] = None
    delivery_completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    customer: Optional[CustomerOut] = None
    outlet: Optional[OutletOut] = None
    items: List[OrderItemOut] = []
    payments: List[PaymentOut] = []


class PendingPaymentOut(PaymentOut):
    customer: CustomerOut
    order: Optional[OrderSummaryOut] = None
    membership: Optional[MembershipOut] = None
    proofs: List[PaymentProofOut] = []


class PendingPaymentsResponse(CamelModel):
    success: bool = True
    payments: List[PendingPaymentOut]
    count: int


class VerifyPaymentResponse(CamelModel):
    success: bool = True
    message: str
    payment: PaymentOut


class OrderResponse(CamelModel):
    order: OrderOut


class OrdersResponse(CamelModel):
    orders: List[OrderOut]


class TrackingOutletOut(CamelModel):
    name: str
    city: Optional[str] = None


class TrackingItemOut(CamelModel):
    service_name: str
    quantity: int


class TrackingOut(CamelModel):
    """Public view of an order: no customer, payment or internal fields."""
    order_number: str
    status: OrderStatus
    created_at: Optional[datetime] = None
    pickup_scheduled_at: Optional[datetime] = None
    pickup_completed_at: Optional[datetime] = None
    delivery_completed_at: Optional[datetime] = None
    status_history: List[StatusHistoryEntry] = []
    outlet: Optional[TrackingOutletOut] = None
    items: List[TrackingItemOut] = []


class TrackingResponse(CamelModel):
    tracking: TrackingOut


class PlansResponse(CamelModel):
    success: bool = True
    plans: List[MembershipPlan]


class PurchaseMembershipResponse(CamelModel):
    success: bool = True
    message: str
    membership: MembershipOut
    payment: PaymentOut


class MyMembershipResponse(CamelModel):
    success: bool = True
    membership: Optional[ActiveMembershipOut] = None
    memberships: List[MembershipWithTransactionsOut] = []


class PredictionsResponse(CamelModel):
    forecasts: Dict[str, ForecastResult]
    yearly_forecasts: Dict[str, ForecastResult]
    generated_at: datetime
    models_used: Dict[str, str]

