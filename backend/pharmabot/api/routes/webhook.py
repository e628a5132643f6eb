"""
WhatsApp webhook: verification handshake and message delivery.

Delivery always answers 200. Anything else makes the provider redeliver,
and a failing turn would then be retried into a storm.
"""
import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError

from pharmabot.api.deps import get_container
from pharmabot.core.container import ServiceContainer
from pharmabot.schemas.webhook import WebhookPayload

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/webhook")
def verify_webhook(
    mode: str = Query(None, alias="hub.mode"),
    token: str = Query(None, alias="hub.verify_token"),
    challenge: str = Query("", alias="hub.challenge"),
    container: ServiceContainer = Depends(get_container),
):
    """Echo the challenge when the verify token matches, else 403."""
    if mode == "subscribe" and token == container.settings.WEBHOOK_VERIFY_TOKEN:
        logger.info("[Webhook] Verification succeeded")
        return PlainTextResponse(challenge)

    logger.warning(f"[Webhook] Verification failed (mode={mode!r})")
    return PlainTextResponse("Forbidden", status_code=403)


@router.post("/webhook")
async def receive_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    container: ServiceContainer = Depends(get_container),
):
    ok = JSONResponse({"status": "ok"})
    try:
        payload = WebhookPayload.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"[Webhook] Ignoring malformed payload: {type(e).__name__}")
        return ok

    scheduled = 0
    for message in payload.iter_messages():
        sender = message.get("from")
        if not sender:
            logger.warning(f"[Webhook] Skipping message without sender (type={message.get('type')!r})")
            continue
        background_tasks.add_task(container.handler.handle, str(sender), message)
        scheduled += 1
    if scheduled:
        logger.info(f"[Webhook] Scheduled {scheduled} message(s)")
    return ok
