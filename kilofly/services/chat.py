from __future__ import annotations

import logging

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.models.chat import Conversation, Message
from kilofly.models.transaction import Transaction
from kilofly.services.auth import Actor
from kilofly.services.content_filter import mask_sensitive_content
from kilofly.services.notifications import get_preferences, notify_safely
from kilofly.services.payment_status import PAID_PAYMENT_STATUSES
from kilofly.services.reservations import get_listing_or_404

log = logging.getLogger(__name__)

PREVIEW_CHARS = 80


async def start_conversation(db: AsyncSession, *, actor: Actor, listing_id: str) -> Conversation:
    listing = await get_listing_or_404(db, listing_id)
    if listing.user_id == actor.user_id:
        raise HTTPException(status_code=400, detail="Cannot start a conversation on your own listing")

    existing = (await db.execute(
        select(Conversation).where(Conversation.listing_id == listing.id, Conversation.buyer_id == actor.user_id)
    )).scalar_one_or_none()
    if existing:
        return existing

    conv = Conversation(listing_id=listing.id, buyer_id=actor.user_id, seller_id=listing.user_id)
    db.add(conv)
    await db.flush()
    return conv


async def get_conversation_for(db: AsyncSession, *, actor: Actor, conversation_id: str) -> Conversation:
    conv = (await db.execute(select(Conversation).where(Conversation.id == conversation_id))).scalar_one_or_none()
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if actor.user_id not in (conv.buyer_id, conv.seller_id) and not actor.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return conv


async def has_paid_transaction(db: AsyncSession, conv: Conversation) -> bool:
    stmt = select(Transaction.id).where(
        Transaction.listing_id == conv.listing_id,
        Transaction.buyer_id == conv.buyer_id,
        Transaction.seller_id == conv.seller_id,
        Transaction.payment_status.in_(PAID_PAYMENT_STATUSES),
    ).limit(1)
    return (await db.execute(stmt)).scalar_one_or_none() is not None


async def post_message(db: AsyncSession, *, actor: Actor, conversation_id: str, content: str) -> Message:
    conv = await get_conversation_for(db, actor=actor, conversation_id=conversation_id)
    text = content.strip()
    if not text:
        raise HTTPException(status_code=400, detail="Message is empty")

    # Contact details stay hidden until the trade is paid
    unlocked = await has_paid_transaction(db, conv)
    stored = text if unlocked else mask_sensitive_content(text)
    msg = Message(
        conversation_id=conv.id,
        sender_id=actor.user_id,
        content=stored,
        masked=stored != text,
    )
    db.add(msg)
    await db.flush()
    if msg.masked:
        log.info("message %s masked in conversation %s", msg.id, conv.id)

    recipient = conv.seller_id if actor.user_id == conv.buyer_id else conv.buyer_id
    prefs = await get_preferences(db, recipient)
    if prefs is None or prefs.messages_enabled:
        preview = stored if len(stored) <= PREVIEW_CHARS else stored[:PREVIEW_CHARS] + "…"
        await notify_safely(
            db,
            user_id=recipient,
            title="💬 Nouveau message",
            message=preview,
            type="message",
            data={"conversation_id": conv.id, "url": f"/messages/{conv.id}"},
        )
    return msg


async def list_messages(db: AsyncSession, *, actor: Actor, conversation_id: str, limit: int = 100) -> list[Message]:
    conv = await get_conversation_for(db, actor=actor, conversation_id=conversation_id)
    stmt = (
        select(Message)
        .where(Message.conversation_id == conv.id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())
