from fastapi import APIRouter

from kilofly.api.v1.endpoints.health import router as health_router
from kilofly.api.v1.endpoints.users import router as users_router
from kilofly.api.v1.endpoints.listings import router as listings_router
from kilofly.api.v1.endpoints.transport_requests import router as transport_requests_router
from kilofly.api.v1.endpoints.reservations import router as reservations_router
from kilofly.api.v1.endpoints.payments import router as payments_router
from kilofly.api.v1.endpoints.webhooks import router as webhooks_router
from kilofly.api.v1.endpoints.wallet import router as wallet_router
from kilofly.api.v1.endpoints.notifications import router as notifications_router
from kilofly.api.v1.endpoints.conversations import router as conversations_router
from kilofly.api.v1.endpoints.exchange_rates import router as exchange_rates_router
from kilofly.api.v1.endpoints.signatures import router as signatures_router
from kilofly.api.v1.endpoints.admin import router as admin_router
from kilofly.api.v1.endpoints.internal import router as internal_router


router = APIRouter(prefix="/v1")
router.include_router(health_router, tags=["health"])
router.include_router(users_router, tags=["users"])
router.include_router(listings_router, tags=["listings"])
router.include_router(transport_requests_router, tags=["transport-requests"])
router.include_router(reservations_router, tags=["reservations"])
router.include_router(payments_router, tags=["payments"])
router.include_router(webhooks_router, tags=["webhooks"])
router.include_router(wallet_router, tags=["wallet"])
router.include_router(notifications_router, tags=["notifications"])
router.include_router(conversations_router, tags=["conversations"])
router.include_router(exchange_rates_router, tags=["exchange-rates"])
router.include_router(signatures_router, tags=["signatures"])
router.include_router(admin_router, tags=["admin"])
router.include_router(internal_router, tags=["internal"])
