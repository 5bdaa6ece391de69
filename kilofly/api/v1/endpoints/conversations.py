from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.models.chat import Message
from kilofly.schemas.chat import ConversationOut, MessageCreate, MessageOut
from kilofly.services import chat as chat_service
from kilofly.services.auth import Actor, get_actor

router = APIRouter()


def _message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=m.id,
        conversation_id=m.conversation_id,
        sender_id=m.sender_id,
        content=m.content,
        masked=m.masked,
        read=m.read,
        created_at=str(m.created_at),
    )


@router.post("/listings/{listing_id}/conversations", response_model=ConversationOut)
async def start_conversation(
    listing_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> ConversationOut:
    conv = await chat_service.start_conversation(db, actor=actor, listing_id=listing_id)
    resp = ConversationOut(id=conv.id, listing_id=conv.listing_id, buyer_id=conv.buyer_id, seller_id=conv.seller_id)
    await db.commit()
    return resp


@router.post("/conversations/{conversation_id}/messages", response_model=MessageOut, status_code=201)
async def post_message(
    conversation_id: str,
    payload: MessageCreate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> MessageOut:
    msg = await chat_service.post_message(db, actor=actor, conversation_id=conversation_id, content=payload.content)
    await db.commit()
    # created_at is server-side
    await db.refresh(msg)
    return _message_out(msg)


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageOut])
async def list_messages(
    conversation_id: str,
    limit: int = 100,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[MessageOut]:
    rows = await chat_service.list_messages(
        db, actor=actor, conversation_id=conversation_id, limit=max(1, min(limit, 500))
    )
    return [_message_out(m) for m in rows]
