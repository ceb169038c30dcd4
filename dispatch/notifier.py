"""
Outbound SMS. Sent only after a state transition has committed, so a slow
or failing provider never holds the store lock.
"""

import httpx
import structlog

from dispatch.config import settings

logger = structlog.get_logger(__name__)


async def send_sms(phone: str, message: str) -> None:
    if not phone:
        return
    if not settings.sms_webhook_url:
        logger.info("sms_skipped_no_webhook", phone=phone, message=message)
        return

    try:
        async with httpx.AsyncClient(timeout=settings.sms_timeout_seconds) as client:
            response = await client.post(
                settings.sms_webhook_url, json={"to": phone, "body": message}
            )
            response.raise_for_status()
    except httpx.HTTPError:
        logger.exception("sms_failed", phone=phone)
        return
    logger.info("sms_sent", phone=phone)
