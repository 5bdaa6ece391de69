from fastapi import Header, HTTPException

from kilofly.core.config import settings


async def require_internal_key(x_internal_key: str | None = Header(default=None)) -> None:
    if not x_internal_key or x_internal_key != settings.internal_key:
        raise HTTPException(status_code=403, detail="Internal key required")
