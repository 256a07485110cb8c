from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import get_db
from ticketshare.schemas.user import BlockCreate, BlockListOut, BlockResultOut, PublicProfileOut
from ticketshare.services import users as user_service
from ticketshare.services.auth import Actor, get_actor

router = APIRouter()


# registered before /users/{user_id} so "block" is not read as an id
@router.get("/users/block", response_model=BlockListOut)
async def list_blocks(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> BlockListOut:
    return await user_service.list_blocks(db, actor=actor)


@router.post("/users/block", response_model=BlockResultOut)
async def block_user(
    payload: BlockCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> BlockResultOut:
    await user_service.block_user(db, actor=actor, blocked_id=payload.blocked_id)
    await db.commit()
    return BlockResultOut(message="User blocked")


@router.delete("/users/block", response_model=BlockResultOut)
async def unblock_user(
    blocked_id: str | None = Query(default=None),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> BlockResultOut:
    await user_service.unblock_user(db, actor=actor, blocked_id=blocked_id)
    await db.commit()
    return BlockResultOut(message="User unblocked")


@router.get("/users/{user_id}", response_model=PublicProfileOut)
async def public_profile(user_id: str, db: AsyncSession = Depends(get_db)) -> PublicProfileOut:
    return await user_service.public_profile(db, user_id)
