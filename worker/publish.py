from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.config import settings
from ticketshare.core.crypto import decrypt_text
from ticketshare.core.db import utcnow
from ticketshare.models.delivery import Delivery, DeliveryAttempt
from ticketshare.models.notification import Notification
from ticketshare.models.user_webhook import UserWebhook
from ticketshare.services.http_client import HttpResult, WebhookHttpClient
from ticketshare.services.retry import next_retry_at

log = logging.getLogger(__name__)

EMBED_COLOR = 0x5865F2


def build_discord_payload(n: Notification) -> dict:
    embed = {
        "title": n.title,
        "description": n.message,
        "color": EMBED_COLOR,
        "footer": {"text": n.type},
    }
    if n.created_at:
        embed["timestamp"] = n.created_at.isoformat()
    link = settings.public_base_url.rstrip("/")
    conversation_id = (n.data or {}).get("conversation_id")
    if conversation_id:
        embed["url"] = f"{link}/chat/{conversation_id}"
    return {"username": "Ticketshare", "embeds": [embed]}


def _dead_letter(d: Delivery, detail: str) -> None:
    d.status = "dead_lettered"
    d.dead_lettered_at = utcnow()
    d.status_detail = detail
    d.next_retry_at = None


async def publish_delivery(db: AsyncSession, delivery_id: str, client: WebhookHttpClient | None = None) -> None:
    d = (await db.execute(select(Delivery).where(Delivery.id == delivery_id))).scalar_one_or_none()
    if not d or d.dead_lettered_at is not None or d.status == "success":
        return

    if d.attempts >= settings.max_delivery_attempts:
        _dead_letter(d, "max attempts exceeded")
        return

    webhook = (await db.execute(select(UserWebhook).where(UserWebhook.id == d.webhook_id))).scalar_one_or_none()
    if not webhook or not webhook.is_active:
        await _record_attempt_failure(
            db, d,
            error_code="NO_WEBHOOK",
            error_message="No active webhook for user",
            retryable=False,
        )
        return

    notification = (await db.execute(select(Notification).where(Notification.id == d.notification_id))).scalar_one()

    own_client = client is None
    client = client or WebhookHttpClient(timeout_seconds=settings.webhook_timeout_seconds)
    try:
        result: HttpResult = await client.post_json(
            url=decrypt_text(webhook.url_ciphertext),
            json_body=build_discord_payload(notification),
            request_id=d.id,
        )
    finally:
        if own_client:
            await client.aclose()

    now = utcnow()
    d.attempts += 1
    d.last_attempt_at = now

    db.add(DeliveryAttempt(
        delivery_id=d.id,
        status="success" if result.ok else "failed",
        request={"notification_id": notification.id, "type": notification.type},
        response=result.detail or {},
        error_code=result.error_code,
        error_message=result.error_message,
    ))

    if result.ok:
        d.status = "success"
        d.last_success_at = now
        d.last_error = None
        d.status_detail = None
        d.next_retry_at = None
        return

    d.status = "failed"
    d.last_error = result.error_message
    d.status_detail = result.error_code
    d.retryable = result.retryable

    if (not result.retryable) or (d.attempts >= settings.max_delivery_attempts):
        _dead_letter(d, result.error_code or "failed")
        log.warning("delivery %s dead-lettered after %d attempts: %s", d.id, d.attempts, result.error_code)
        return

    d.next_retry_at = next_retry_at(now, d.attempts, result.retry_after)


async def _record_attempt_failure(db: AsyncSession, d: Delivery, *, error_code: str, error_message: str, retryable: bool) -> None:
    d.attempts += 1
    d.last_attempt_at = utcnow()
    d.last_error = error_message
    d.status_detail = error_code
    d.retryable = retryable

    db.add(DeliveryAttempt(
        delivery_id=d.id,
        status="failed",
        request={"delivery_id": d.id, "notification_id": d.notification_id},
        response={},
        error_code=error_code,
        error_message=error_message,
    ))

    if retryable:
        d.status = "failed"
    else:
        d.status = "dead_lettered"
        d.dead_lettered_at = utcnow()
        d.next_retry_at = None
