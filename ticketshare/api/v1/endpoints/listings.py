from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import get_db
from ticketshare.schemas.application import ApplicationCreate, ApplicationOut, SelectOut, SelectRequest
from ticketshare.schemas.common import SuccessOut
from ticketshare.schemas.listing import ApplicantsOut, ListingCreate, ListingOut, ListingUpdate
from ticketshare.services import applications as application_service
from ticketshare.services import listings as listing_service
from ticketshare.services.auth import Actor, get_actor
from ticketshare.services.idempotency import claim_key, optional_idempotency_key
from ticketshare.services.notifications import NotificationEmitter, get_notifier
from ticketshare.services.selection import select_applicant

router = APIRouter()


@router.get("/listings", response_model=list[ListingOut])
async def list_listings(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> list[ListingOut]:
    rows = await listing_service.list_open_listings(db, limit=limit, offset=offset)
    return [listing_service.listing_out(r) for r in rows]


@router.post("/listings", response_model=ListingOut, status_code=201)
async def create_listing(
    payload: ListingCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await listing_service.create_listing(db, actor=actor, data=payload)
    resp = listing_service.listing_out(listing)
    await db.commit()
    return resp


@router.get("/listings/{listing_id}", response_model=ListingOut)
async def get_listing(listing_id: str, db: AsyncSession = Depends(get_db)) -> ListingOut:
    return listing_service.listing_out(await listing_service.get_listing_or_404(db, listing_id))


@router.patch("/listings/{listing_id}", response_model=ListingOut)
async def edit_listing(
    listing_id: str,
    payload: ListingUpdate,
    actor: Actor = Depends(get_actor),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await listing_service.edit_listing(
        db,
        notifier,
        actor=actor,
        listing_id=listing_id,
        updates=payload.model_dump(exclude_unset=True, exclude={"remove_applicants"}),
        remove_applicants=payload.remove_applicants,
    )
    resp = listing_service.listing_out(listing)
    await db.commit()
    return resp


@router.delete("/listings/{listing_id}", response_model=SuccessOut)
async def delete_listing(
    listing_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> SuccessOut:
    await listing_service.delete_listing(db, actor=actor, listing_id=listing_id)
    await db.commit()
    return SuccessOut()


@router.post("/listings/{listing_id}/close", response_model=ListingOut)
async def close_listing(
    listing_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ListingOut:
    listing = await listing_service.close_listing(db, actor=actor, listing_id=listing_id)
    resp = listing_service.listing_out(listing)
    await db.commit()
    return resp


@router.get("/listings/{listing_id}/applicants", response_model=ApplicantsOut)
async def list_applicants(
    listing_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ApplicantsOut:
    return await listing_service.list_applicants(db, actor=actor, listing_id=listing_id)


@router.post("/listings/{listing_id}/applications", response_model=ApplicationOut, status_code=201)
async def apply_to_listing(
    listing_id: str,
    payload: ApplicationCreate,
    actor: Actor = Depends(get_actor),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> ApplicationOut:
    row = await application_service.create_application(
        db, notifier, actor=actor, listing_id=listing_id, message=payload.message
    )
    resp = application_service.application_out(row)
    await db.commit()
    return resp


@router.post("/listings/{listing_id}/select", response_model=SelectOut)
async def select(
    listing_id: str,
    payload: SelectRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
    idempotency_key: str | None = Depends(optional_idempotency_key),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> SelectOut:
    claimed = None
    if idempotency_key:
        claimed, replay = await claim_key(
            db, user_id=actor.user_id, key=idempotency_key, path=request.url.path, body=payload.model_dump()
        )
        if replay:
            return SelectOut(**claimed.response)

    resp = await select_applicant(
        db, notifier, actor=actor, listing_id=listing_id, application_id=payload.applicationId
    )

    if claimed is not None:
        claimed.response = resp.model_dump()

    await db.commit()
    return resp
