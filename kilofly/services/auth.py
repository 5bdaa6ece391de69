from dataclasses import dataclass
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.core.security import token_prefix, verify_access_token
from kilofly.models.user import AccessToken, User

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str  # "user" | "admin"
    token_id: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def get_actor(
    credentials: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Missing bearer token")

    plain = credentials.credentials
    prefix = token_prefix(plain)
    if prefix is None:
        raise HTTPException(status_code=401, detail="Invalid access token")

    stmt = (
        select(AccessToken, User)
        .join(User, User.id == AccessToken.user_id)
        .where(AccessToken.token_prefix == prefix, AccessToken.is_active.is_(True))
    )
    match = None
    for token, user in (await db.execute(stmt)).all():
        if verify_access_token(plain, token.token_hash):
            match = (token, user)
            break
    if match is None:
        raise HTTPException(status_code=401, detail="Invalid access token")

    token, user = match
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User disabled")

    return Actor(user_id=user.id, role=user.role, token_id=token.id)


def require_admin(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != "admin":
        raise HTTPException(status_code=403, detail="Admin role required")
    return actor
