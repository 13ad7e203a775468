"""
Temporal workflow for customer notifications.
Runs after the originating database transaction has committed; it only delivers messages.
"""
from datetime import timedelta
from temporalio import workflow
from temporalio.common import RetryPolicy
from typing import Dict, Any

# Import activities, passing them through the sandbox without reloading the module
with workflow.unsafe.imports_passed_through():
    from activities import send_email_activity

@workflow.defn(name="NotificationWorkflow")
class NotificationWorkflow:
    """Delivers one notification with bounded retries."""

    def __init__(self):
        self._kind: str = ""
        self._current_step: str = "initialized"

    @workflow.query
    def get_status(self) -> Dict[str, Any]:
        """Query to get current workflow status."""
        return {"kind": self._kind, "current_step": self._current_step}

    @workflow.run
    async def run(self, message: Dict[str, Any]) -> Dict[str, Any]:
        self._kind = message.get("kind", "unknown")
        self._current_step = "sending"
        workflow.logger.info(f"[WORKFLOW] Sending {self._kind} notification to {message.get('to')}")

        retry_policy = RetryPolicy(
            initial_interval=timedelta(seconds=1),
            maximum_interval=timedelta(seconds=30),
            backoff_coefficient=2.0,
            maximum_attempts=5,
        )

        try:
            result = await workflow.execute_activity(
                send_email_activity,
                args=[message],
                start_to_close_timeout=timedelta(seconds=15),
                retry_policy=retry_policy
            )
        except Exception as e:
            self._current_step = "failed"
            workflow.logger.error(f"Notification {self._kind} failed: {str(e)}")
            raise

        self._current_step = "completed"
        return {"kind": self._kind, "status": result.get("status", "sent")}
