from fastapi import APIRouter, Depends, Request

from shared.config.settings import Settings, get_settings
from shared.security import limiter, push_rate_limit

from .dependencies import get_payment_service
from .schemas import ACCEPTED, PushRequest, PushResponse
from .service import PaymentService

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/push", response_model=PushResponse)
@limiter.limit(push_rate_limit)  # per client IP
async def initiate_push(
    request: Request,                          # REQUIRED: slowapi needs this to key the limit
    payload: PushRequest,
    service: PaymentService = Depends(get_payment_service),
):
    return await service.initiate_push(payload)


@router.post("/callback")
async def payment_callback(request: Request, service: PaymentService = Depends(get_payment_service)):
    """
    Gateway webhook. Always answers 200: resultCode 0 acknowledges receipt,
    1 asks the gateway to deliver again.
    """
    try:
        payload = await request.json()
    except ValueError:
        payload = None

    outcome = await service.apply_callback(payload)
    return outcome.ack.model_dump(by_alias=True)


@router.get("/callback", include_in_schema=False)
async def callback_info(request: Request, settings: Settings = Depends(get_settings)):
    return {
        "success": True,
        "message": "Callback endpoint is accessible",
        "url": str(request.url_for("payment_callback")),
        "configuredCallbackUrl": settings.mpesa_callback_url,
        "method": "POST",
        "requiredResponse": ACCEPTED.model_dump(by_alias=True),
    }
