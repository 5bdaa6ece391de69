from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.schemas.signature import SignatureEmailIn
from kilofly.services.auth import Actor, get_actor
from kilofly.services.emails import queue_signature_email

router = APIRouter()


@router.post("/signatures/email", status_code=202)
async def send_signature_email(
    payload: SignatureEmailIn,
    request: Request,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    email_id = await queue_signature_email(
        db,
        actor=actor,
        signature_type=payload.signature_type,
        signed_at=payload.signed_at,
        conditions=payload.conditions_accepted,
        reservation_id=payload.reservation_id,
        ip_address=request.client.host if request.client else None,
        pdf_base64=payload.pdf_base64,
    )
    await db.commit()
    return {"success": True, "id": email_id}
