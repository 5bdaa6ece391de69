from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    full_name: str = Field(min_length=1, max_length=200)
    email: str | None = Field(default=None, max_length=320)
    phone: str | None = Field(default=None, max_length=40)
    country: str | None = Field(default=None, min_length=2, max_length=2)
    preferred_currency: str | None = Field(default=None, min_length=3, max_length=3)
    role: str = Field(default="user", pattern="^(user|admin)$")


class UserCreatedOut(BaseModel):
    user_id: str
    access_token: str


class MeOut(BaseModel):
    user_id: str
    full_name: str
    email: str | None
    phone: str | None
    country: str | None
    preferred_currency: str
    role: str
