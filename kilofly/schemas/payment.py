from pydantic import BaseModel, Field


class PaymentIntentCreate(BaseModel):
    reservation_id: str


class CheckoutSessionCreate(BaseModel):
    reservation_id: str
    success_url: str | None = None
    cancel_url: str | None = None


class CinetPayPaymentCreate(BaseModel):
    reservation_id: str
    customer_phone: str | None = Field(default=None, max_length=40)
    return_url: str | None = None
    cancel_url: str | None = None


class PaymentIntentOut(BaseModel):
    transaction_id: str
    payment_intent_id: str
    client_secret: str | None
    currency: str
    base_amount: str
    buyer_fee: str
    buyer_total: str
    seller_amount: str
    platform_commission: str


class CheckoutSessionOut(BaseModel):
    transaction_id: str
    session_id: str
    url: str | None


class PaymentsConfigOut(BaseModel):
    stripe_publishable_key: str
    cinetpay_site_id: str
    cinetpay_api_key: str
    buyer_commission_rate: str
    seller_commission_rate: str
