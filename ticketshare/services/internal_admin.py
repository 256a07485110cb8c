from fastapi import Header, HTTPException

from ticketshare.core.config import settings
from ticketshare.core.security import bearer_matches


async def require_internal_admin(x_internal_admin_key: str | None = Header(default=None)) -> None:
    if not bearer_matches(x_internal_admin_key, settings.internal_admin_key):
        raise HTTPException(status_code=403, detail="Internal admin key required")
