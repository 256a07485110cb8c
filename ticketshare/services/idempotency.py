"""
Replay for retried select / accept calls.

The first call under an ``Idempotency-Key`` stores its response; a later call
by the same user with the same key and body gets that response back without
touching listings or applications again.
"""
import hashlib
import json

from fastapi import Header, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.models.idempotency import IdempotencyKey

MAX_KEY_LENGTH = 200


def request_fingerprint(path: str, body: dict) -> str:
    canonical = json.dumps([path, body], sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


async def optional_idempotency_key(idempotency_key: str | None = Header(default=None)) -> str | None:
    if not idempotency_key:
        return None
    if len(idempotency_key) > MAX_KEY_LENGTH:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long")
    return idempotency_key


async def claim_key(
    db: AsyncSession,
    *,
    user_id: str,
    key: str,
    path: str,
    body: dict,
) -> tuple[IdempotencyKey, bool]:
    """
    Returns (row, replay). When replay is True, row.response is the earlier answer;
    otherwise the caller fills row.response before committing.
    """
    fingerprint = request_fingerprint(path, body)

    row = (
        await db.execute(select(IdempotencyKey).where(IdempotencyKey.user_id == user_id, IdempotencyKey.key == key))
    ).scalar_one_or_none()
    if row is not None:
        if row.request_hash != fingerprint:
            raise HTTPException(status_code=409, detail="Idempotency-Key already used for a different request")
        return row, True

    row = IdempotencyKey(user_id=user_id, key=key, request_hash=fingerprint, response={})
    db.add(row)
    # two first uses racing: the loser trips uq_idempotency_user_key here
    await db.flush()
    return row, False
