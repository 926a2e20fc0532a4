from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config.database import get_db
from shared.config.settings import Settings, get_settings
from services.notification_service.dependencies import get_side_effects
from services.notification_service.dispatcher import SideEffects

from .schemas import OrderCreate, OrderEnvelope, OrderListEnvelope, OrderResponse
from .service import OrderService

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", response_model=OrderEnvelope, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: OrderCreate,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    effects: SideEffects = Depends(get_side_effects),
):
    order = await OrderService.create_order(db, payload, settings, effects)
    return OrderEnvelope(
        order=OrderResponse.model_validate(order),
        message="Order created successfully",
    )


@router.get("", response_model=OrderListEnvelope)
async def list_orders(
    limit: int = Query(default=50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    orders = await OrderService.list_orders(db, limit)
    return OrderListEnvelope(
        orders=[OrderResponse.model_validate(o) for o in orders],
        count=len(orders),
    )


@router.get("/{order_id}", response_model=OrderEnvelope)
async def get_order(order_id: str, db: AsyncSession = Depends(get_db)):
    order = await OrderService.get_order(db, order_id)
    return OrderEnvelope(order=OrderResponse.model_validate(order))
