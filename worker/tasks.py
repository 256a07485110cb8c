import asyncio
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import ticketshare.models  # noqa: F401  # ensures Models are registered
from ticketshare.core.config import settings
from ticketshare.core.db import utcnow
from ticketshare.models.delivery import Delivery
from ticketshare.models.outbox import OutboxEvent
from ticketshare.models.user_webhook import UserWebhook
from ticketshare.services.reviews import run_auto_review_sweep
from worker.celery_app import celery

log = logging.getLogger(__name__)


async def _fan_out_notification(db: AsyncSession, ev: OutboxEvent) -> None:
    notification_id = ev.payload["notification_id"]
    user_id = ev.payload["user_id"]

    webhook = (await db.execute(
        select(UserWebhook).where(UserWebhook.user_id == user_id, UserWebhook.is_active.is_(True))
    )).scalar_one_or_none()
    if not webhook:
        return

    existing = (await db.execute(
        select(Delivery.id).where(Delivery.notification_id == notification_id)
    )).scalar_one_or_none()
    if existing:
        return

    db.add(Delivery(
        notification_id=notification_id,
        user_id=user_id,
        webhook_id=webhook.id,
        status="pending",
        attempts=0,
    ))
    await db.flush()


async def handle_outbox_event(db: AsyncSession, outbox_id: str, lease_id: str) -> bool:
    """
    Process one leased outbox event. Returns False when the lease is not ours
    (reclaimed by another dispatcher, or already done).
    """
    ev = (await db.execute(select(OutboxEvent).where(OutboxEvent.id == outbox_id))).scalar_one_or_none()
    if not ev or ev.lease_id != lease_id or ev.status != "processing":
        return False

    try:
        if ev.event_type == "notification.created":
            await _fan_out_notification(db, ev)
        else:
            log.warning("outbox %s: no handler for %s", ev.id, ev.event_type)

        # Mark done only if lease still matches
        result = await db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
            .values(status="done", processed_at=utcnow(), lease_id=None, lease_expires_at=None)
        )
        if result.rowcount == 0:
            # lease lost; do not overwrite
            await db.rollback()
            return False

        await db.commit()
        return True

    except Exception as e:
        log.exception("outbox %s: processing failed", outbox_id)
        await db.rollback()
        # Return to pending if lease matches; store error
        await db.execute(
            update(OutboxEvent)
            .where(OutboxEvent.id == outbox_id, OutboxEvent.lease_id == lease_id)
            .values(
                status="pending",
                lease_id=None,
                lease_expires_at=None,
                processing_started_at=None,
                last_error=f"{type(e).__name__}: {e}",
            )
        )
        await db.commit()
        return False


async def _process_outbox_event(outbox_id: str, lease_id: str) -> None:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with Session() as db:
            await handle_outbox_event(db, outbox_id, lease_id)
    finally:
        await engine.dispose()


async def _auto_review_sweep() -> dict:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with Session() as db:
            result = await run_auto_review_sweep(db)
            await db.commit()
            return result.model_dump()
    finally:
        await engine.dispose()


@celery.task(name="worker.tasks.process_outbox_event", bind=True, max_retries=5)
def process_outbox_event(self, outbox_id: str, lease_id: str) -> None:
    asyncio.run(_process_outbox_event(outbox_id, lease_id))


@celery.task(name="worker.tasks.auto_review_sweep")
def auto_review_sweep() -> dict:
    return asyncio.run(_auto_review_sweep())
