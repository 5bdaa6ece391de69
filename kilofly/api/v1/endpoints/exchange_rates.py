from decimal import Decimal, InvalidOperation

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from kilofly.core.db import get_db
from kilofly.schemas.admin import ConversionOut
from kilofly.services import currency as currency_service

router = APIRouter()


@router.get("/exchange-rates/convert", response_model=ConversionOut)
async def convert_amount(
    amount: str = Query(...),
    from_currency: str = Query(..., alias="from", min_length=3, max_length=3),
    to_currency: str = Query(..., alias="to", min_length=3, max_length=3),
    db: AsyncSession = Depends(get_db),
) -> ConversionOut:
    try:
        value = Decimal(amount)
    except InvalidOperation as e:
        raise HTTPException(status_code=400, detail="amount must be a number") from e

    src, dst = from_currency.upper(), to_currency.upper()
    for code in (src, dst):
        if code not in currency_service.SUPPORTED_CURRENCIES:
            raise HTTPException(status_code=400, detail=f"Unsupported currency: {code}")

    rate = await currency_service.get_exchange_rate(db, src, dst)
    converted = value * rate
    return ConversionOut(
        amount=str(value),
        from_currency=src,
        to_currency=dst,
        rate=str(rate),
        converted=str(converted),
        formatted=currency_service.format_price(converted, dst),
    )
