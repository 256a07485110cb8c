from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import get_db
from ticketshare.schemas.conversation import (
    CancellationOut,
    CancellationReply,
    CancellationRequest,
    ConfirmOut,
    ConfirmRequest,
    ConversationDetailOut,
    ConversationOut,
    InquiryCreate,
    InquiryOut,
    MessageCreate,
    MessageOut,
    TransitionOut,
)
from ticketshare.services import cancellation, engagement
from ticketshare.services.auth import Actor, get_actor
from ticketshare.services.confirmations import confirm
from ticketshare.services.idempotency import claim_key, optional_idempotency_key
from ticketshare.services.notifications import NotificationEmitter, get_notifier

router = APIRouter()


@router.post("/inquiries", response_model=InquiryOut)
async def create_inquiry(
    payload: InquiryCreate,
    actor: Actor = Depends(get_actor),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> InquiryOut:
    resp = await engagement.inquire(db, notifier, actor=actor, listing_id=payload.listingId, message=payload.message)
    await db.commit()
    return resp


@router.get("/inquiries")
async def get_inquiry_count(
    listing_id: str | None = Query(default=None, alias="listingId"),
    db: AsyncSession = Depends(get_db),
) -> dict:
    return {"count": await engagement.inquiry_count(db, listing_id)}


@router.get("/conversations", response_model=list[ConversationOut])
async def list_conversations(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[ConversationOut]:
    return await engagement.list_conversations(db, actor=actor)


@router.get("/conversations/{conversation_id}", response_model=ConversationDetailOut)
async def get_conversation(
    conversation_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ConversationDetailOut:
    resp = await engagement.conversation_detail(db, actor=actor, conversation_id=conversation_id)
    # persists the read receipts
    await db.commit()
    return resp


@router.post("/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201)
async def post_message(
    conversation_id: str,
    payload: MessageCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> MessageOut:
    resp = await engagement.post_message(db, actor=actor, conversation_id=conversation_id, content=payload.content)
    await db.commit()
    return resp


@router.post("/conversations/{conversation_id}/apply", response_model=TransitionOut)
async def apply(
    conversation_id: str,
    actor: Actor = Depends(get_actor),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> TransitionOut:
    resp = await engagement.apply(db, notifier, actor=actor, conversation_id=conversation_id)
    await db.commit()
    return resp


@router.post("/conversations/{conversation_id}/accept", response_model=TransitionOut)
async def accept(
    conversation_id: str,
    request: Request,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(optional_idempotency_key),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> TransitionOut:
    claimed = None
    if idempotency_key:
        claimed, replay = await claim_key(db, user_id=actor.user_id, key=idempotency_key, path=request.url.path, body={})
        if replay:
            return TransitionOut(**claimed.response)

    resp = await engagement.accept(db, notifier, actor=actor, conversation_id=conversation_id)

    if claimed is not None:
        claimed.response = resp.model_dump()

    await db.commit()
    return resp


@router.post("/conversations/{conversation_id}/confirm", response_model=ConfirmOut)
async def confirm_transaction(
    conversation_id: str,
    payload: ConfirmRequest,
    actor: Actor = Depends(get_actor),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> ConfirmOut:
    resp = await confirm(db, notifier, actor=actor, conversation_id=conversation_id, action=payload.action)
    await db.commit()
    return resp


@router.post("/conversations/{conversation_id}/cancel", response_model=CancellationOut)
async def request_cancellation(
    conversation_id: str,
    payload: CancellationRequest,
    actor: Actor = Depends(get_actor),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> CancellationOut:
    resp = await cancellation.request_cancellation(
        db, notifier, actor=actor, conversation_id=conversation_id, reason=payload.reason
    )
    await db.commit()
    return resp


@router.put("/conversations/{conversation_id}/cancel", response_model=CancellationOut)
async def respond_to_cancellation(
    conversation_id: str,
    payload: CancellationReply,
    actor: Actor = Depends(get_actor),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> CancellationOut:
    resp = await cancellation.respond_to_cancellation(
        db, notifier, actor=actor, conversation_id=conversation_id, action=payload.action
    )
    await db.commit()
    return resp
