from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.core.security import generate_access_token
from kilofly.models.user import AccessToken, User
from kilofly.schemas.user import MeOut, UserCreate, UserCreatedOut
from kilofly.services.auth import Actor, get_actor
from kilofly.services.currency import SUPPORTED_CURRENCIES, currency_for_country
from kilofly.services.emails import queue_welcome_email
from kilofly.services.internal_admin import require_internal_key
from kilofly.services.wallet import get_or_create_wallet

router = APIRouter()


@router.post("/users", response_model=UserCreatedOut, dependencies=[Depends(require_internal_key)])
async def create_user(payload: UserCreate, db: AsyncSession = Depends(get_db)) -> UserCreatedOut:
    if payload.email:
        taken = (await db.execute(select(User.id).where(User.email == payload.email))).scalar_one_or_none()
        if taken:
            raise HTTPException(status_code=409, detail="Email already registered")

    currency = (payload.preferred_currency or currency_for_country(payload.country)).upper()
    if currency not in SUPPORTED_CURRENCIES:
        raise HTTPException(status_code=400, detail=f"Unsupported currency: {currency}")

    user = User(
        full_name=payload.full_name,
        email=payload.email,
        phone=payload.phone,
        country=payload.country.upper() if payload.country else None,
        preferred_currency=currency,
        role=payload.role,
    )
    db.add(user)
    await db.flush()

    parts = generate_access_token()
    db.add(AccessToken(user_id=user.id, token_prefix=parts.prefix, token_hash=parts.hashed, is_active=True))
    await get_or_create_wallet(db, user.id)
    queue_welcome_email(db, user)
    await db.commit()

    # plain token is returned once
    return UserCreatedOut(user_id=user.id, access_token=parts.plain)


@router.get("/me", response_model=MeOut)
async def me(actor: Actor = Depends(get_actor), db: AsyncSession = Depends(get_db)) -> MeOut:
    user = (await db.execute(select(User).where(User.id == actor.user_id))).scalar_one()
    return MeOut(
        user_id=user.id,
        full_name=user.full_name,
        email=user.email,
        phone=user.phone,
        country=user.country,
        preferred_currency=user.preferred_currency,
        role=user.role,
    )
