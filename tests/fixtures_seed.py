from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select

from ticketshare.core.security import generate_session_token
from ticketshare.models.base import gen_id
from ticketshare.models.listing import Listing
from ticketshare.models.user import SessionToken, User


async def make_user(db_session, *, username: str, level: str = "applicant", role: str = "user") -> dict:
    user = User(
        username=username,
        email=f"{username}-{gen_id('e')}@test.local",
        role=role,
        verification_level=level,
        created_by="test",
        updated_by="test",
    )
    db_session.add(user)
    await db_session.flush()

    token = generate_session_token()
    db_session.add(SessionToken(
        user_id=user.id,
        token_prefix=token.prefix,
        token_hash=token.hashed,
        is_active=True,
        expires_at=datetime.now(timezone.utc) + timedelta(days=1),
    ))
    await db_session.commit()

    return {
        "id": user.id,
        "token": token.plain,
        "headers": {"Authorization": f"Bearer {token.plain}"},
    }


async def make_listing(db_session, host_id: str, *, event_name: str = "Summer Sonic 2025", total_slots: int = 1) -> str:
    listing = Listing(
        host_id=host_id,
        event_name=event_name,
        event_date="2025-08-16",
        venue="Makuhari Messe",
        ticket_type="find_companion",
        description="one spare seat",
        total_slots=total_slots,
        available_slots=total_slots,
        status="open",
        created_by=host_id,
        updated_by=host_id,
    )
    db_session.add(listing)
    await db_session.commit()
    return listing.id


async def reload(db_session, model, row_id: str):
    """Fresh copy of a row; other objects held by the shared session stay loaded."""
    stmt = select(model).where(model.id == row_id).execution_options(populate_existing=True)
    return (await db_session.execute(stmt)).scalar_one_or_none()


@pytest_asyncio.fixture
async def host(db_session):
    return await make_user(db_session, username="host", level="host")


@pytest_asyncio.fixture
async def guest_a(db_session):
    return await make_user(db_session, username="guest_a", level="applicant")


@pytest_asyncio.fixture
async def guest_b(db_session):
    return await make_user(db_session, username="guest_b", level="applicant")


@pytest_asyncio.fixture
async def unverified_user(db_session):
    return await make_user(db_session, username="newbie", level="unverified")


@pytest_asyncio.fixture
async def open_listing(db_session, host):
    return await make_listing(db_session, host["id"])
