from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials

from ticketshare.core.config import settings
from ticketshare.core.security import bearer_matches
from ticketshare.services.auth import bearer_scheme


async def require_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> None:
    # an unset secret locks the endpoint rather than opening it
    presented = credentials.credentials if credentials else None
    if not bearer_matches(presented, settings.cron_secret.get_secret_value()):
        raise HTTPException(status_code=401, detail="Unauthorized")
