from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.models.listing import Listing, TransportRequest
from kilofly.services.internal_admin import require_internal_key
from kilofly.services.notifications import fan_out_new_listing, fan_out_new_transport_request
from kilofly.services.outbox_dispatcher import dispatch_outbox

router = APIRouter()


def _record_id(payload: dict, key: str) -> str:
    # Accepts {"<key>": id} or a database-trigger style {"record": {"id": ...}}
    rid = payload.get(key) or (payload.get("record") or {}).get("id")
    if not rid:
        raise HTTPException(status_code=400, detail=f"{key} required")
    return str(rid)


@router.post("/internal/outbox/dispatch", dependencies=[Depends(require_internal_key)])
async def internal_dispatch_outbox(db: AsyncSession = Depends(get_db)) -> dict:
    count = await dispatch_outbox(db, batch_size=100)
    return {"dispatched": count}


@router.post("/internal/notify/new-listing", dependencies=[Depends(require_internal_key)])
async def notify_new_listing(payload: dict = Body(...), db: AsyncSession = Depends(get_db)) -> dict:
    listing_id = _record_id(payload, "listing_id")
    listing = (await db.execute(select(Listing).where(Listing.id == listing_id))).scalar_one_or_none()
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    sent = await fan_out_new_listing(db, listing)
    await db.commit()
    return {"success": True, "sent": sent}


@router.post("/internal/notify/new-transport-request", dependencies=[Depends(require_internal_key)])
async def notify_new_transport_request(payload: dict = Body(...), db: AsyncSession = Depends(get_db)) -> dict:
    request_id = _record_id(payload, "transport_request_id")
    req = (await db.execute(select(TransportRequest).where(TransportRequest.id == request_id))).scalar_one_or_none()
    if not req:
        raise HTTPException(status_code=404, detail="Transport request not found")
    sent = await fan_out_new_transport_request(db, req)
    await db.commit()
    return {"success": True, "sent": sent}
