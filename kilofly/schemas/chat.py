from pydantic import BaseModel, Field


class ConversationOut(BaseModel):
    id: str
    listing_id: str
    buyer_id: str
    seller_id: str


class MessageCreate(BaseModel):
    content: str = Field(min_length=1, max_length=5000)


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    masked: bool
    read: bool
    created_at: str
