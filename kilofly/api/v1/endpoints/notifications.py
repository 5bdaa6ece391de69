from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.schemas.notification import (
    DirectPushIn,
    NotificationOut,
    NotificationPreferencesIn,
    NotificationPreferencesOut,
    PushTokenDelete,
    PushTokenIn,
)
from kilofly.services import notifications as notification_service
from kilofly.services.auth import Actor, get_actor
from kilofly.services.internal_admin import require_internal_key
from kilofly.services.push import queue_push_for_user

router = APIRouter()


def _prefs_out(prefs) -> NotificationPreferencesOut:
    if prefs is None:
        return NotificationPreferencesOut(
            push_enabled=True,
            alerts_enabled=True,
            messages_enabled=True,
            responses_enabled=True,
            promotions_enabled=False,
        )
    return NotificationPreferencesOut(
        push_enabled=prefs.push_enabled,
        alerts_enabled=prefs.alerts_enabled,
        messages_enabled=prefs.messages_enabled,
        responses_enabled=prefs.responses_enabled,
        promotions_enabled=prefs.promotions_enabled,
    )


@router.get("/notifications", response_model=list[NotificationOut])
async def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[NotificationOut]:
    rows = await notification_service.list_notifications(
        db, actor.user_id, unread_only=unread_only, limit=max(1, min(limit, 200))
    )
    return [
        NotificationOut(
            id=n.id,
            title=n.title,
            message=n.message,
            type=n.type,
            read=n.read,
            created_at=str(n.created_at),
        )
        for n in rows
    ]


@router.post("/notifications/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    n = await notification_service.mark_read(db, user_id=actor.user_id, notification_id=notification_id)
    if not n:
        raise HTTPException(status_code=404, detail="Notification not found")
    await db.commit()
    return {"success": True, "id": notification_id}


@router.get("/notifications/preferences", response_model=NotificationPreferencesOut)
async def get_preferences(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> NotificationPreferencesOut:
    return _prefs_out(await notification_service.get_preferences(db, actor.user_id))


@router.put("/notifications/preferences", response_model=NotificationPreferencesOut)
async def update_preferences(
    payload: NotificationPreferencesIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> NotificationPreferencesOut:
    prefs = await notification_service.upsert_preferences(
        db, user_id=actor.user_id, changes=payload.model_dump(exclude_none=True)
    )
    resp = _prefs_out(prefs)
    await db.commit()
    return resp


@router.post("/notifications/push", dependencies=[Depends(require_internal_key)])
async def direct_push(payload: DirectPushIn, db: AsyncSession = Depends(get_db)) -> dict:
    deliveries = await queue_push_for_user(
        db, user_id=payload.user_id, title=payload.title, body=payload.body, data=payload.data
    )
    if not deliveries:
        return {"success": True, "sent": 0, "message": "No push tokens for user"}
    await db.commit()
    return {"success": True, "sent": len(deliveries)}


@router.post("/push-tokens", status_code=201)
async def register_push_token(
    payload: PushTokenIn,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    row = await notification_service.register_push_token(
        db, user_id=actor.user_id, token=payload.token, platform=payload.platform
    )
    token_id = row.id
    await db.commit()
    return {"success": True, "id": token_id}


@router.delete("/push-tokens")
async def delete_push_token(
    payload: PushTokenDelete,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> dict:
    deleted = await notification_service.delete_push_token(db, user_id=actor.user_id, token=payload.token)
    await db.commit()
    return {"success": True, "deleted": deleted}
