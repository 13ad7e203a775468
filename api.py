"""
FastAPI-based API for the laundry operations service.
Provides payment verification, order lifecycle, membership and analytics endpoints.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

import analytics
import business_functions
from auth import get_current_user, get_session
from cache import TTLCache
from config import configure_logging, settings
from database import User, close_db, init_db
from errors import ServiceError
from memberships import active_plans, is_expiring_soon
from notifications import dispatch_notification
from schemas import (
    ActiveMembershipOut, CreateOrderRequest, MembershipOut, MembershipWithTransactionsOut, MyMembershipResponse,
    OrderOut, OrderResponse, OrdersResponse, PaymentOut, PendingPaymentOut, PendingPaymentsResponse, PlansResponse,
    PredictionsResponse, PurchaseMembershipRequest, PurchaseMembershipResponse, TrackingOut, TrackingResponse,
    UpdateOrderRequest, VerificationDecision, VerifyPaymentRequest, VerifyPaymentResponse
)

RECENT_TRANSACTIONS = 5


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title="CleanLoop Operations API",
    description="Orders, manual payment verification, memberships and forecasts",
    version="1.0.0",
    lifespan=lifespan
)
app.state.prediction_cache = TTLCache(settings.prediction_cache_ttl)


def get_prediction_cache(request: Request) -> TTLCache:
    return request.app.state.prediction_cache


# Error translation

@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Invalid input data", "details": jsonable_encoder(exc.errors())}
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logging.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


# Payments

@app.get("/payments/pending", response_model=PendingPaymentsResponse)
async def list_pending_payments(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Pending payments with customer, order, membership and proof details for admin review."""
    payments = await business_functions.list_pending_payments(session, user)
    return PendingPaymentsResponse(
        payments=[PendingPaymentOut.model_validate(p) for p in payments],
        count=len(payments)
    )


@app.post("/payments/verify", response_model=VerifyPaymentResponse)
async def verify_payment(
    request: VerifyPaymentRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Verify or reject a pending payment. The customer is notified after the response is sent."""
    result = await business_functions.verify_payment(
        session, request.payment_id, request.status, user, notes=request.notes
    )
    if result.notification is not None:
        background_tasks.add_task(dispatch_notification, result.notification)

    verified = request.status == VerificationDecision.VERIFIED
    return VerifyPaymentResponse(
        message="Payment verified successfully" if verified else "Payment rejected",
        payment=PaymentOut.model_validate(result.payment)
    )


# Orders

@app.post("/orders", response_model=OrderResponse, status_code=201)
async def create_order(
    request: CreateOrderRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Place a new order; it starts pending with one history entry."""
    order = await business_functions.create_order(session, user, request)
    return OrderResponse(order=OrderOut.model_validate(order))


@app.get("/orders", response_model=OrdersResponse)
async def list_my_orders(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    orders = await business_functions.list_my_orders(session, user)
    return OrdersResponse(orders=[OrderOut.model_validate(o) for o in orders])


@app.get("/tracking/{order_number}", response_model=TrackingResponse)
async def track_order(order_number: str, session: AsyncSession = Depends(get_session)):
    """Public order tracking by order number."""
    order = await business_functions.track_order(session, order_number)
    return TrackingResponse(tracking=TrackingOut.model_validate(order))


@app.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    order = await business_functions.get_order(session, order_id, user)
    return OrderResponse(order=OrderOut.model_validate(order))


@app.patch("/orders/{order_id}", response_model=OrderResponse)
async def update_order(
    order_id: str,
    request: UpdateOrderRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Staff update of order status and internal notes."""
    order = await business_functions.update_order(
        session, order_id, user, status=request.status, internal_notes=request.internal_notes
    )
    return OrderResponse(order=OrderOut.model_validate(order))


@app.delete("/orders/{order_id}", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    """Customer cancellation; only pending or confirmed orders can be cancelled."""
    order = await business_functions.cancel_order(session, order_id, user)
    return OrderResponse(order=OrderOut.model_validate(order))


# Memberships

@app.get("/memberships/plans", response_model=PlansResponse)
async def list_plans():
    return PlansResponse(plans=active_plans())


@app.post("/memberships/purchase", response_model=PurchaseMembershipResponse)
async def purchase_membership(
    request: PurchaseMembershipRequest,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    result = await business_functions.purchase_membership(
        session, user, request.plan_id, request.billing_cycle, request.payment_method,
        upi_transaction_id=request.upi_transaction_id, proof_url=request.proof_url
    )
    background_tasks.add_task(dispatch_notification, result.notification)
    return PurchaseMembershipResponse(
        message="Membership purchase initiated. Payment verification pending.",
        membership=MembershipOut.model_validate(result.membership),
        payment=PaymentOut.model_validate(result.payment)
    )


@app.get("/memberships/my-membership", response_model=MyMembershipResponse)
async def my_membership(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    active, memberships = await business_functions.get_my_membership(session, user)
    active_out = None
    if active is not None:
        active_out = ActiveMembershipOut.model_validate(active).model_copy(
            update={"expiring_soon": is_expiring_soon(active)}
        )
    history = []
    for membership in memberships:
        out = MembershipWithTransactionsOut.model_validate(membership)
        history.append(out.model_copy(update={"transactions": out.transactions[:RECENT_TRANSACTIONS]}))
    return MyMembershipResponse(membership=active_out, memberships=history)


# Analytics

@app.get("/analytics/predictions", response_model=PredictionsResponse)
async def predictions(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    cache: TTLCache = Depends(get_prediction_cache),
):
    """Statistical forecasts of revenue, orders and new customers."""
    return await analytics.get_predictions(session, cache, user)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
