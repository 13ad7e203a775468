"""
Temporal activities that call notification functions.
Keep activities small: parameter unpacking, await the function, return its result.
"""
import logging
from typing import Dict, Any
from temporalio import activity
import httpx
from notifications import send_email

@activity.defn
async def send_email_activity(message: Dict[str, Any]) -> Dict[str, Any]:
    """Deliver a notification e-mail; HTTP failures are raised so Temporal retries."""
    try:
        return await send_email(message)
    except httpx.HTTPError as e:
        logging.info(f"E-mail delivery failed (will retry): {e}")
        raise
