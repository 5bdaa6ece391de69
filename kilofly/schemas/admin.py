from pydantic import BaseModel, Field


class AdminEmailIn(BaseModel):
    to: str = Field(min_length=3, max_length=320)
    subject: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1)


class ConversionOut(BaseModel):
    amount: str
    from_currency: str
    to_currency: str
    rate: str
    converted: str
    formatted: str
