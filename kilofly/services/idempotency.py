"""
Idempotency-Key handling for money-moving endpoints.

The key row is inserted (empty response) in the same transaction as the
operation and filled with the response before commit, so a request that
fails leaves no trace and can be retried with the same key.
"""
import hashlib
import json

from fastapi import Header, HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.models.idempotency import IdempotencyKey

MAX_KEY_LENGTH = 200


def request_fingerprint(path: str, body: dict) -> str:
    raw = json.dumps({"path": path, "body": body}, sort_keys=True, separators=(",", ":"), default=str)
    return "sha256:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()


async def require_idempotency_key(idempotency_key: str | None = Header(default=None)) -> str:
    if not idempotency_key:
        raise HTTPException(status_code=400, detail="Missing Idempotency-Key header")
    if len(idempotency_key) > MAX_KEY_LENGTH:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long")
    return idempotency_key


async def _find(db: AsyncSession, user_id: str, key: str) -> IdempotencyKey | None:
    stmt = select(IdempotencyKey).where(IdempotencyKey.user_id == user_id, IdempotencyKey.key == key)
    return (await db.execute(stmt)).scalar_one_or_none()


async def reserve_idempotency(
    db: AsyncSession,
    *,
    user_id: str,
    key: str,
    path: str,
    body: dict,
) -> dict | None:
    """Stored response of a finished request with this key, or None once the key is reserved."""
    fingerprint = request_fingerprint(path, body)

    existing = await _find(db, user_id, key)
    if existing is not None:
        if existing.request_hash != fingerprint:
            raise HTTPException(status_code=409, detail="Idempotency-Key reuse with different request")
        if not existing.response:
            raise HTTPException(status_code=409, detail="Request with this Idempotency-Key is in progress")
        return existing.response

    db.add(IdempotencyKey(user_id=user_id, key=key, request_hash=fingerprint, response={}))
    try:
        await db.flush()
    except IntegrityError as e:
        # a concurrent request inserted the same key first
        raise HTTPException(status_code=409, detail="Request with this Idempotency-Key is in progress") from e
    return None


async def store_idempotency_response(db: AsyncSession, *, user_id: str, key: str, response: dict) -> None:
    row = await _find(db, user_id, key)
    if row is None:
        raise RuntimeError(f"idempotency key {key!r} was not reserved")
    row.response = response
    await db.flush()
