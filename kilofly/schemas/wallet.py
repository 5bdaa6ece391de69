from decimal import Decimal

from pydantic import BaseModel, Field


class WithdrawalCreate(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=14, decimal_places=2)
    payout_method: str = Field(max_length=30)
    phone_number: str = Field(max_length=40)


class WalletTransactionOut(BaseModel):
    id: str
    type: str
    amount: Decimal
    status: str
    provider: str | None
    payout_method: str | None
    phone_number: str | None
    reference: str | None
    description: str | None
    created_at: str


class WalletOut(BaseModel):
    id: str
    user_id: str
    balance: Decimal
    currency: str
    transactions: list[WalletTransactionOut]


class WithdrawalOut(BaseModel):
    success: bool
    transaction_id: str
    reference: str
    message: str
    new_balance: str


class SettleWithdrawal(BaseModel):
    note: str | None = Field(default=None, max_length=500)
