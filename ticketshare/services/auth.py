from dataclasses import dataclass

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import as_utc, get_db, utcnow
from ticketshare.core.security import hash_session_token
from ticketshare.models.user import SessionToken, User

bearer_scheme = HTTPBearer(auto_error=False)

VERIFICATION_RANK = {"unverified": 0, "applicant": 1, "host": 2}


@dataclass(frozen=True)
class Actor:
    user_id: str
    session_id: str
    role: str  # "user" | "sub_admin" | "super_admin"
    verification_level: str  # "unverified" | "applicant" | "host"

    def has_verification(self, required: str) -> bool:
        return VERIFICATION_RANK.get(self.verification_level, 0) >= VERIFICATION_RANK[required]


async def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized")

    hashed = hash_session_token(credentials.credentials)
    stmt = (
        select(SessionToken, User)
        .join(User, User.id == SessionToken.user_id)
        .where(SessionToken.token_hash == hashed, SessionToken.is_active.is_(True))
    )
    row = (await db.execute(stmt)).one_or_none()
    if not row:
        raise HTTPException(status_code=401, detail="Invalid session")

    token, user = row
    expires_at = as_utc(token.expires_at)
    if expires_at is not None and expires_at <= utcnow():
        raise HTTPException(status_code=401, detail="Session expired")

    return Actor(
        user_id=user.id,
        session_id=token.id,
        role=user.role,
        verification_level=user.verification_level,
    )
