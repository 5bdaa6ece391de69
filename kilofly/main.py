import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kilofly.api.v1.router import router as v1_router
from kilofly.core.config import settings
from kilofly.core.errors import OperationRefused, ProviderError
from kilofly.core.telemetry import setup_telemetry
from kilofly.providers.registry import close_clients

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_clients()


app = FastAPI(title="KiloFly API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError) -> JSONResponse:
    log.warning("provider error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": exc.message, "provider": exc.provider})


@app.exception_handler(OperationRefused)
async def operation_refused_handler(request: Request, exc: OperationRefused) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "error": exc.message})


setup_telemetry(app)
app.include_router(v1_router)
