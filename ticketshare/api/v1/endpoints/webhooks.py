from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import get_db
from ticketshare.schemas.common import SuccessOut
from ticketshare.schemas.webhook import WebhookOut, WebhookTestOut, WebhookUpsert
from ticketshare.services import webhooks as webhook_service
from ticketshare.services.auth import Actor, get_actor
from ticketshare.services.http_client import WebhookHttpClient, get_webhook_client

router = APIRouter()


@router.get("/webhooks", response_model=WebhookOut | None)
async def get_webhook(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> WebhookOut | None:
    row = await webhook_service.get_webhook(db, actor.user_id)
    if row is None or not row.is_active:
        return None
    return webhook_service.webhook_out(row)


@router.put("/webhooks", response_model=WebhookOut)
async def upsert_webhook(
    payload: WebhookUpsert,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> WebhookOut:
    row = await webhook_service.upsert_webhook(db, actor=actor, url=payload.webhookUrl, name=payload.webhookName)
    resp = webhook_service.webhook_out(row)
    await db.commit()
    return resp


@router.delete("/webhooks", response_model=SuccessOut)
async def delete_webhook(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> SuccessOut:
    if not await webhook_service.remove_webhook(db, actor=actor):
        raise HTTPException(status_code=404, detail="Webhook not found")
    await db.commit()
    return SuccessOut()


@router.post("/webhooks/test", response_model=WebhookTestOut)
async def send_test_webhook(
    actor: Actor = Depends(get_actor),
    client: WebhookHttpClient = Depends(get_webhook_client),
    db: AsyncSession = Depends(get_db),
) -> WebhookTestOut:
    await webhook_service.send_test_message(db, actor=actor, client=client)
    return WebhookTestOut(message="Test webhook sent successfully!")
