"""
Customer notifications.
Dispatch is best-effort: it starts a Temporal workflow and never raises into the caller.
"""
import logging
import uuid
from typing import Any, Dict, Optional
import httpx
from pydantic import BaseModel
from temporalio.client import Client
from config import settings

NOTIFICATION_WORKFLOW = "NotificationWorkflow"


class Notification(BaseModel):
    kind: str
    to: str
    subject: str
    data: Dict[str, Any] = {}


# Cached Temporal client
_temporal_client: Optional[Client] = None

async def get_temporal_client() -> Client:
    """Get or create Temporal client."""
    global _temporal_client
    if _temporal_client is None:
        _temporal_client = await Client.connect(settings.temporal_address, namespace=settings.temporal_namespace)
    return _temporal_client


async def dispatch_notification(notification: Notification) -> Optional[str]:
    """Start the notification workflow. Failures are logged, never raised."""
    workflow_id = f"notification-{notification.kind}-{uuid.uuid4().hex[:8]}"
    try:
        client = await get_temporal_client()
        await client.start_workflow(
            NOTIFICATION_WORKFLOW,
            notification.model_dump(),
            id=workflow_id,
            task_queue=settings.notification_task_queue
        )
    except Exception:
        logging.exception(f"Failed to dispatch {notification.kind} notification to {notification.to}")
        return None
    logging.info(f"Dispatched {notification.kind} notification ({workflow_id})")
    return workflow_id


async def send_email(message: Dict[str, Any]) -> Dict[str, Any]:
    """Deliver one e-mail through the configured e-mail function endpoint."""
    if not settings.email_function_url:
        logging.info(f"E-mail delivery disabled, skipping {message.get('kind')} to {message.get('to')}")
        return {"status": "skipped"}

    async with httpx.AsyncClient(timeout=10.0) as client:
        response = await client.post(
            settings.email_function_url,
            json={"type": message["kind"], "to": message["to"], "subject": message["subject"], "data": message.get("data", {})},
            headers={"X-Api-Key": settings.email_api_key}
        )
        response.raise_for_status()
    logging.info(f"Sent {message['kind']} e-mail to {message['to']}")
    return {"status": "sent"}


def _customer_contact(payment):
    user = payment.customer.user
    return user.email, user.name or "Customer"


def payment_verified_notification(payment) -> Notification:
    email, name = _customer_contact(payment)
    return Notification(
        kind="payment_verified",
        to=email,
        subject="Payment verified",
        data={
            "customerName": name,
            "orderNumber": payment.order.order_number if payment.order else "N/A",
            "amount": float(payment.amount),
            "paymentMethod": payment.payment_method,
        }
    )


def membership_activated_notification(payment, membership, plan_name: str) -> Notification:
    email, name = _customer_contact(payment)
    return Notification(
        kind="membership_activated",
        to=email,
        subject=f"Your {plan_name} membership is active",
        data={
            "customerName": name,
            "planName": plan_name,
            "billingCycle": membership.billing_cycle,
            "amount": float(payment.amount),
            "startDate": membership.start_date.isoformat(),
            "expiryDate": membership.expiry_date.isoformat(),
        }
    )


def membership_purchase_notification(user, plan, billing_cycle: str, amount: float) -> Notification:
    return Notification(
        kind="membership_purchase",
        to=user.email,
        subject=f"{plan.name} membership purchase received",
        data={
            "customerName": user.name or "Customer",
            "planName": plan.name,
            "billingCycle": billing_cycle,
            "amount": float(amount),
            "startDate": "Pending verification",
            "expiryDate": "To be confirmed",
            "features": list(plan.features),
        }
    )
