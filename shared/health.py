"""
Service health summary: database connectivity and payment gateway status.

The gateway probe performs a real token exchange, so it can be disabled
with `?probe=false` for high-frequency liveness checks.
"""
import time
from datetime import datetime, timezone
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import Settings, get_settings
from shared.errors import UpstreamError
from services.payment_service.dependencies import get_gateway
from services.payment_service.gateway import MpesaGateway

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["Health"])


async def _check_database(db: AsyncSession) -> Dict[str, Any]:
    start_time = time.time()
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return {"status": "fail", "output": str(e)}
    return {"status": "pass", "observedValue": f"{(time.time() - start_time) * 1000:.2f}ms"}


async def _check_gateway(gateway: MpesaGateway, probe: bool) -> Dict[str, Any]:
    summary = gateway.describe()
    if not summary["configured"]:
        summary["connectivity"] = "not_configured"
    elif not probe:
        summary["connectivity"] = "skipped"
    else:
        try:
            token = await gateway.get_token()
            summary["connectivity"] = "connected"
            summary["tokenValid"] = bool(token)
        except UpstreamError as e:
            summary["connectivity"] = "error"
            summary["error"] = e.message
    return summary


@router.get("/health")
async def health_check(
    probe: bool = Query(default=True),
    db: AsyncSession = Depends(get_db),
    gateway: MpesaGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
):
    database = await _check_database(db)
    mpesa = await _check_gateway(gateway, probe)
    healthy = database["status"] == "pass" and mpesa["connectivity"] != "error"
    return {
        "status": "OK" if healthy else "DEGRADED",
        "service": settings.app_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": {
            "appEnv": settings.app_env,
            "callbackUrl": "SET" if settings.mpesa_callback_url else "NOT SET",
            "email": "SET" if settings.email_configured else "NOT SET",
        },
        "database": database,
        "mpesa": {**mpesa, "callbackEndpoint": "/payments/callback"},
    }
