from pydantic import BaseModel, Field


class NotificationOut(BaseModel):
    id: str
    title: str
    message: str
    type: str
    read: bool
    created_at: str


class NotificationPreferencesIn(BaseModel):
    push_enabled: bool | None = None
    alerts_enabled: bool | None = None
    messages_enabled: bool | None = None
    responses_enabled: bool | None = None
    promotions_enabled: bool | None = None


class NotificationPreferencesOut(BaseModel):
    push_enabled: bool
    alerts_enabled: bool
    messages_enabled: bool
    responses_enabled: bool
    promotions_enabled: bool


class PushTokenIn(BaseModel):
    token: str = Field(min_length=1, max_length=4096)
    platform: str = Field(default="android", pattern="^(android|ios|web)$")


class PushTokenDelete(BaseModel):
    token: str = Field(min_length=1, max_length=4096)


class DirectPushIn(BaseModel):
    user_id: str
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1)
    data: dict[str, str] = Field(default_factory=dict)
