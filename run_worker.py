"""
Temporal worker for customer notifications.
Delivers the e-mails dispatched by the API after payment verification and membership purchases.
"""
import asyncio
import sys
import os
import logging

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from temporalio.client import Client
from temporalio.worker import Worker

from activities import send_email_activity
from config import configure_logging, settings
from workflows import NotificationWorkflow

async def run_notification_worker():
    """Run the notification worker."""
    client = await Client.connect(settings.temporal_address, namespace=settings.temporal_namespace)

    worker = Worker(
        client,
        task_queue=settings.notification_task_queue,
        workflows=[NotificationWorkflow],
        activities=[send_email_activity]
    )

    logging.info(f"Starting Notification Worker on task queue: {settings.notification_task_queue}")
    await worker.run()

if __name__ == "__main__":
    configure_logging()
    try:
        asyncio.run(run_notification_worker())
    except KeyboardInterrupt:
        print("\nWorker stopped by user")
    except Exception as e:
        print(f"Worker error: {e}")
        sys.exit(1)
