from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import Settings, get_settings
from services.notification_service.dependencies import get_side_effects
from services.notification_service.dispatcher import SideEffects

from .gateway import MpesaGateway
from .service import PaymentService


def get_gateway(request: Request) -> MpesaGateway:
    return request.app.state.gateway


def get_payment_service(
    db: AsyncSession = Depends(get_db),
    gateway: MpesaGateway = Depends(get_gateway),
    settings: Settings = Depends(get_settings),
    effects: SideEffects = Depends(get_side_effects),
) -> PaymentService:
    return PaymentService(db, gateway, settings, effects)
