import asyncio
import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ticketshare.core.config import settings
from ticketshare.core.db import utcnow
from ticketshare.models.delivery import Delivery
from ticketshare.services.outbox_dispatcher import dispatch_outbox
from worker.celery_app import celery

log = logging.getLogger(__name__)

POLL_SECONDS = 2
BATCH_SIZE = 100


async def claim_due_deliveries(db: AsyncSession, batch_size: int = BATCH_SIZE) -> list[str]:
    now = utcnow()
    stmt = (
        select(Delivery.id)
        .where(
            Delivery.dead_lettered_at.is_(None),
            Delivery.status.in_(["pending", "failed"]),
            (Delivery.next_retry_at.is_(None)) | (Delivery.next_retry_at <= now),
        )
        .order_by(Delivery.created_at.asc())
        .with_for_update(skip_locked=True)
        .limit(batch_size)
    )
    ids = list((await db.execute(stmt)).scalars().all())
    if not ids:
        return []

    # Mark as publishing to prevent double enqueue
    await db.execute(
        update(Delivery)
        .where(Delivery.id.in_(ids))
        .values(status="publishing", last_attempt_at=now)
    )
    return ids


async def _tick() -> int:
    engine = create_async_engine(settings.database_url, pool_pre_ping=True)
    Session = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with Session() as db:
            outbox = await dispatch_outbox(db, batch_size=BATCH_SIZE)
            ids = await claim_due_deliveries(db)
            await db.commit()
    finally:
        await engine.dispose()

    for delivery_id in ids:
        celery.send_task("worker.tasks.publish_delivery", args=[delivery_id], queue="publish")
    if outbox or ids:
        log.info("tick: %d outbox events, %d deliveries enqueued", outbox, len(ids))
    return len(ids)


async def main():
    logging.basicConfig(level=logging.INFO)
    celery.connection().ensure_connection(max_retries=3)

    log.info("dispatcher: started")
    while True:
        try:
            await _tick()
        except Exception:
            log.exception("dispatcher: tick crashed")
        await asyncio.sleep(POLL_SECONDS)


if __name__ == "__main__":
    asyncio.run(main())
