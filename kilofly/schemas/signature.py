from datetime import datetime

from pydantic import BaseModel, Field


class SignatureEmailIn(BaseModel):
    signature_type: str = Field(pattern="^(sender|transporter)$")
    signed_at: datetime
    conditions_accepted: list[str] = Field(min_length=1)
    reservation_id: str | None = None
    # base64 PDF summary, attached as-is
    pdf_base64: str | None = Field(default=None, max_length=10_000_000)
