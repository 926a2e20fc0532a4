from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
import structlog

from shared.config.database import engine, Base
from shared.config.settings import get_settings
from shared.errors import register_exception_handlers
from shared.health import router as health_router
from shared.observability import setup_observability
from shared.security import limiter

# IMPORTANT: import models so they register with Base
from services.order_service import models as order_models
from services.notification_service import models as notification_models

from services.order_service.router import router as order_router
from services.payment_service.router import router as payment_router
from services.payment_service.gateway import MpesaGateway
from services.notification_service.router import router as notification_router
from services.notification_service.sinks import EmailSink

logger = structlog.get_logger(__name__)

settings = get_settings()

app = FastAPI(title="Orders & Payments", version="1.0.0")

# --- OBSERVABILITY BOOTSTRAP ---
setup_observability(app, settings)

# --- ERRORS & RATE LIMITING ---
register_exception_handlers(app)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(health_router)
app.include_router(order_router)
app.include_router(payment_router)
app.include_router(notification_router)


def check_gateway_configuration() -> None:
    """Warn loudly about settings the gateway will reject at request time."""
    if not settings.gateway_configured:
        logger.error("mpesa_credentials_missing", required=["MPESA_CONSUMER_KEY", "MPESA_CONSUMER_SECRET"])
    if not settings.mpesa_short_code or not settings.mpesa_pass_key:
        logger.error("mpesa_short_code_or_pass_key_missing")

    callback_url = settings.mpesa_callback_url
    if not callback_url:
        logger.error("mpesa_callback_url_missing")
    else:
        if "localhost" in callback_url or "127.0.0.1" in callback_url:
            logger.error("mpesa_callback_url_not_public", callback_url=callback_url)
        if not callback_url.startswith("https://"):
            logger.warning("mpesa_callback_url_not_https", callback_url=callback_url)

    logger.info(
        "mpesa_configuration",
        environment=settings.gateway_environment,
        base_url=settings.gateway_base_url,
        short_code=settings.mpesa_short_code,
        consumer_key="SET" if settings.mpesa_consumer_key else "MISSING",
        consumer_secret="SET" if settings.mpesa_consumer_secret else "MISSING",
        pass_key="SET" if settings.mpesa_pass_key else "MISSING",
    )


@app.on_event("startup")
async def startup_event():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.gateway = MpesaGateway(settings)
    app.state.email_sink = EmailSink(settings)
    check_gateway_configuration()


@app.on_event("shutdown")
async def shutdown_event():
    await app.state.gateway.aclose()
    await app.state.email_sink.aclose()
    await engine.dispose()
