from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.models.listing import TransportRequest
from kilofly.schemas.listing import TransportRequestCreate, TransportRequestOut
from kilofly.services.auth import Actor, get_actor
from kilofly.services.listings import create_transport_request, list_transport_requests

router = APIRouter()


def _request_out(r: TransportRequest) -> TransportRequestOut:
    return TransportRequestOut(
        id=r.id,
        user_id=r.user_id,
        departure=r.departure,
        arrival=r.arrival,
        departure_date_start=r.departure_date_start,
        departure_date_end=r.departure_date_end,
        requested_kg=r.requested_kg,
        budget_max=r.budget_max,
        currency=r.currency,
        description=r.description,
        status=r.status,
    )


@router.post("/transport-requests", response_model=TransportRequestOut, status_code=201)
async def post_transport_request(
    payload: TransportRequestCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> TransportRequestOut:
    req = await create_transport_request(db, actor=actor, data=payload.model_dump())
    await db.commit()
    return _request_out(req)


@router.get("/transport-requests", response_model=list[TransportRequestOut])
async def get_transport_requests(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
) -> list[TransportRequestOut]:
    return [_request_out(r) for r in await list_transport_requests(db, limit=limit)]
