from __future__ import annotations

import logging
from urllib.parse import urlparse

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.crypto import decrypt_text, encrypt_text, mask_url
from ticketshare.core.db import utcnow
from ticketshare.models.user_webhook import UserWebhook
from ticketshare.schemas.webhook import WebhookOut
from ticketshare.services.audit import audit
from ticketshare.services.auth import Actor
from ticketshare.services.http_client import WebhookHttpClient

log = logging.getLogger(__name__)

ALLOWED_WEBHOOK_HOSTS = ("discord.com", "discordapp.com")
TEST_EMBED_COLOR = 0x9146FF


def validate_webhook_url(url: str) -> str:
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme != "https" or parsed.hostname not in ALLOWED_WEBHOOK_HOSTS:
        raise HTTPException(status_code=400, detail="Invalid Discord webhook URL")
    if not parsed.path.startswith("/api/webhooks/"):
        raise HTTPException(status_code=400, detail="Invalid Discord webhook URL")
    return url


def webhook_out(row: UserWebhook) -> WebhookOut:
    return WebhookOut(
        id=row.id,
        name=row.name,
        url_preview=mask_url(decrypt_text(row.url_ciphertext)),
        is_active=row.is_active,
    )


async def get_webhook(db: AsyncSession, user_id: str) -> UserWebhook | None:
    return (await db.execute(select(UserWebhook).where(UserWebhook.user_id == user_id))).scalar_one_or_none()


async def upsert_webhook(db: AsyncSession, *, actor: Actor, url: str, name: str | None) -> UserWebhook:
    url = validate_webhook_url(url)

    row = await get_webhook(db, actor.user_id)
    if row is None:
        row = UserWebhook(
            user_id=actor.user_id,
            name=name,
            url_ciphertext=encrypt_text(url),
            is_active=True,
            created_by=actor.user_id,
            updated_by=actor.user_id,
        )
        db.add(row)
    else:
        row.name = name
        row.url_ciphertext = encrypt_text(url)
        row.is_active = True
        row.updated_by = actor.user_id

    await db.flush()
    await audit(db, actor_user_id=actor.user_id, action="webhook.upserted", target_type="user_webhook", target_id=row.id)
    return row


async def remove_webhook(db: AsyncSession, *, actor: Actor) -> bool:
    row = await get_webhook(db, actor.user_id)
    if row is None or not row.is_active:
        return False
    # deliveries keep pointing at the row, so it is deactivated rather than deleted
    row.is_active = False
    row.updated_by = actor.user_id
    await db.flush()
    await audit(db, actor_user_id=actor.user_id, action="webhook.deleted", target_type="user_webhook", target_id=row.id)
    return True


def build_test_payload(row: UserWebhook) -> dict:
    return {
        "embeds": [
            {
                "title": "Test Notification",
                "description": "This is a test notification from Ticketshare.",
                "color": TEST_EMBED_COLOR,
                "fields": [
                    {"name": "Status", "value": "Your webhook is working correctly!", "inline": False},
                    {"name": "Webhook Name", "value": row.name or "Default", "inline": True},
                ],
                "timestamp": utcnow().isoformat(),
                "footer": {"text": "Ticketshare notifications"},
            }
        ]
    }


async def send_test_message(db: AsyncSession, *, actor: Actor, client: WebhookHttpClient) -> None:
    """Post a sample embed straight to the caller's webhook, bypassing the outbox."""
    row = await get_webhook(db, actor.user_id)
    if row is None or not row.is_active:
        raise HTTPException(status_code=400, detail="No webhook configured")

    result = await client.post_json(url=decrypt_text(row.url_ciphertext), json_body=build_test_payload(row))
    if not result.ok:
        log.warning("webhook test for user %s failed: %s", actor.user_id, result.error_code)
        raise HTTPException(
            status_code=400,
            detail={"error": "Webhook test failed", "statusCode": result.status_code, "details": result.error_message},
        )
