import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from synthgate.api.v1.router import api_v1_router
from synthgate.core.config import settings, validate_settings_for_production
from synthgate.core.logging import setup_logging
from synthgate.core.metrics import PrometheusMiddleware, metrics_response
from synthgate.core.security import redact_secrets
from synthgate.core.sentry import init_sentry
from synthgate.gateway.gateway import GenerationGateway

# Configure logging before anything else
setup_logging()
init_sentry(settings)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    logger.info("Starting synthgate...")

    gateway = GenerationGateway(settings)
    await gateway.start()
    app.state.gateway = gateway

    yield

    # Shutdown
    await gateway.shutdown()
    logger.info("synthgate shut down")


app = FastAPI(
    title="synthgate",
    description="Multi-credential gateway for rate-limited text and speech generation",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


# Log unhandled exceptions; provider errors can carry keys, so redact
@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"detail": redact_secrets(f"{type(exc).__name__}: {exc}")})


# Prometheus request metrics
app.add_middleware(PrometheusMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health(request: Request):
    gateway = getattr(request.app.state, "gateway", None)
    status = gateway.status() if gateway is not None else None
    return {
        "status": "ok",
        "credentials": status.total if status else 0,
        "available": status.available if status else 0,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
