from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import get_db
from ticketshare.schemas.application import ApplicationOut, ApplicationStatusUpdate
from ticketshare.services import applications as application_service
from ticketshare.services.auth import Actor, get_actor

router = APIRouter()


@router.get("/applications", response_model=list[ApplicationOut])
async def list_my_applications(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[ApplicationOut]:
    rows = await application_service.list_my_applications(db, actor=actor)
    return [application_service.application_out(r) for r in rows]


@router.patch("/applications/{application_id}", response_model=ApplicationOut)
async def update_application_status(
    application_id: str,
    payload: ApplicationStatusUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ApplicationOut:
    row = await application_service.update_status(
        db, actor=actor, application_id=application_id, status=payload.status
    )
    resp = application_service.application_out(row)
    await db.commit()
    return resp


@router.delete("/applications/{application_id}", response_model=ApplicationOut)
async def withdraw_application(
    application_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ApplicationOut:
    row = await application_service.withdraw(db, actor=actor, application_id=application_id)
    resp = application_service.application_out(row)
    await db.commit()
    return resp
