"""
Pasarela de Pagos
FastAPI application entry point.
"""

import uuid
from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pasarela.config import Settings, settings
from pasarela.db import build_engine, build_session_factory, close_db, init_db
from pasarela.db.repositories import SqlIdempotencyStore, SqlTransactionStore
from pasarela.routes import payments_router, subscriptions_router, webhooks_router
from pasarela.schemas import ErrorResponse
from pasarela.services.gateway import PaymentGateway
from pasarela.utils.idempotency import (
    IdempotencyStore,
    InMemoryIdempotencyStore,
    RedisIdempotencyStore,
    close_redis,
    get_redis_client,
)


# Configurar logging estructurado
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.ENVIRONMENT == "production"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


def build_idempotency_store(config: Settings, session_factory) -> IdempotencyStore:
    """Selecciona el almacenamiento de idempotencia configurado."""
    if config.IDEMPOTENCY_BACKEND == "redis":
        return RedisIdempotencyStore(
            get_redis_client(config.REDIS_URL),
            ttl_hours=config.IDEMPOTENCY_TTL_HOURS,
        )
    if config.IDEMPOTENCY_BACKEND == "database":
        return SqlIdempotencyStore(session_factory, ttl_hours=config.IDEMPOTENCY_TTL_HOURS)
    
    logger.warning("Using in-memory idempotency store, not suitable for production")
    return InMemoryIdempotencyStore(ttl_hours=config.IDEMPOTENCY_TTL_HOURS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestión del ciclo de vida de la aplicación."""
    # Startup
    gateway_config = settings.to_gateway_config()
    logger.info(
        "Starting Payment Gateway",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        payment_provider=gateway_config.provider.value,
        configured_providers=[p.value for p in gateway_config.configured_providers()],
    )
    
    # Inicializar base de datos
    engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    await init_db(engine)
    session_factory = build_session_factory(engine)
    
    http_client = httpx.AsyncClient()
    app.state.gateway = PaymentGateway.from_config(
        gateway_config,
        transactions=SqlTransactionStore(session_factory),
        idempotency=build_idempotency_store(settings, session_factory),
        http_client=http_client,
    )
    
    yield
    
    # Shutdown
    logger.info("Shutting down Payment Gateway")
    await http_client.aclose()
    await close_db(engine)
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Pasarela de pagos con soporte para Flow, Global66, PayPal y Mercado Pago",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Añade request_id a cada petición para trazabilidad."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    
    # Bind request_id al logger
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id)
    request.state.request_id = request_id
    
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    """Errores no previstos: 500 sin exponer detalles internos."""
    logger.exception("Unhandled error", path=request.url.path, error=str(exc))
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            message="Internal server error",
            code="INTERNAL_ERROR",
            request_id=getattr(request.state, "request_id", None),
        ).model_dump(),
    )


@app.get("/", tags=["Health"])
async def root():
    """Root endpoint."""
    return {
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """Health check endpoint."""
    gateway: PaymentGateway | None = getattr(request.app.state, "gateway", None)
    return {
        "status": "healthy",
        "environment": settings.ENVIRONMENT,
        "payment_provider": gateway.active_provider.value if gateway else None,
    }


# Incluir routers
app.include_router(payments_router, prefix="/api/payments", tags=["Payments"])
app.include_router(subscriptions_router, prefix="/api/subscriptions", tags=["Subscriptions"])
app.include_router(webhooks_router, prefix="/api/webhooks", tags=["Webhooks"])


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pasarela.main:app", host="0.0.0.0", port=8001, reload=True)
