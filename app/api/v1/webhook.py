"""Meta WhatsApp webhook endpoints."""

import json

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from app.api.deps import get_task_queue, get_webhook_processor
from app.core.config import settings
from app.core.exceptions import InvalidSignatureError
from app.core.security import verify_webhook_signature
from app.schemas.webhook import WebhookAck
from app.services.queue import TaskQueue
from app.services.webhook import WebhookProcessor, extract_events

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhook"])

SIGNATURE_HEADER = "X-Hub-Signature-256"


@router.get("", response_class=PlainTextResponse)
async def verify_subscription(
    mode: str = Query("", alias="hub.mode"),
    verify_token: str = Query("", alias="hub.verify_token"),
    challenge: str = Query("", alias="hub.challenge"),
) -> str:
    """Meta subscription handshake: echo the challenge for a matching token."""
    if mode == "subscribe" and settings.meta_verify_token and verify_token == settings.meta_verify_token:
        logger.info("webhook_subscription_verified")
        return challenge
    logger.warning("webhook_subscription_rejected", mode=mode)
    raise InvalidSignatureError("Webhook verification failed")


def _check_signature(raw_body: bytes, signature: str | None) -> None:
    if not settings.meta_app_secret:
        if settings.is_production:
            raise InvalidSignatureError("Webhook secret is not configured")
        logger.warning("webhook_signature_check_skipped")
        return
    if not verify_webhook_signature(raw_body, signature, settings.meta_app_secret):
        logger.warning("webhook_signature_invalid")
        raise InvalidSignatureError()


@router.post("", response_model=WebhookAck)
async def receive_webhook(
    request: Request,
    queue: TaskQueue = Depends(get_task_queue),
    processor: WebhookProcessor = Depends(get_webhook_processor),
) -> WebhookAck:
    """Accept a webhook delivery; queue or process each message and status."""
    raw_body = await request.body()
    _check_signature(raw_body, request.headers.get(SIGNATURE_HEADER))

    try:
        payload = json.loads(raw_body)
        events = extract_events(payload)
    except (ValueError, ValidationError) as e:
        # Acknowledge anyway; Meta retries non-2xx deliveries indefinitely.
        logger.warning("webhook_payload_invalid", error=str(e))
        return WebhookAck(status="ignored")

    if settings.webhook_async_processing:
        for job_type, event in events:
            await queue.enqueue(job_type, event)
        return WebhookAck(status="queued", queued=len(events))

    processed = await processor.process_payload(payload)
    return WebhookAck(status="processed", processed=processed)
