from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from kilofly.core.ids import gen_id
from kilofly.models.base import Base, TimestampMixin


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("ntf"))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False, default="info")  # info/success/warning/new_listing/...
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NotificationPreference(TimestampMixin, Base):
    __tablename__ = "notification_preferences"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("npf"))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, unique=True)

    push_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    alerts_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    messages_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    responses_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    promotions_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)


class PushToken(Base):
    __tablename__ = "push_tokens"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("ptk"))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    token: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    platform: Mapped[str] = mapped_column(String(20), nullable=False, default="android")  # android/ios/web

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
