from fastapi import APIRouter, Depends

from ticketshare.schemas.me import MeOut
from ticketshare.services.auth import Actor, get_actor

router = APIRouter()

@router.get("/me", response_model=MeOut)
async def me(actor: Actor = Depends(get_actor)) -> MeOut:
    return MeOut(
        user_id=actor.user_id,
        session_id=actor.session_id,
        role=actor.role,
        verification_level=actor.verification_level,
    )
