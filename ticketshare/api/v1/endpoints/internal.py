from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import get_db
from ticketshare.services.internal_admin import require_internal_admin
from ticketshare.services.outbox_dispatcher import dispatch_outbox

router = APIRouter()

@router.post("/internal/outbox/dispatch", dependencies=[Depends(require_internal_admin)])
async def internal_dispatch_outbox(db: AsyncSession = Depends(get_db)) -> dict:
    count = await dispatch_outbox(db, batch_size=100)
    return {"dispatched": count}
