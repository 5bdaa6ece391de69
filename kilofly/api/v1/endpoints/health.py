from fastapi import APIRouter

from kilofly.core.config import settings

router = APIRouter()


@router.get("/health")
async def health() -> dict:
    return {"status": "ok", "service": settings.service_name, "env": settings.env}
