from datetime import datetime
from typing import Annotated, Any, List, Optional

from pydantic import AliasChoices, BaseModel, EmailStr, Field, FiniteFloat, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class OrderItem(BaseModel):
    name: NonEmptyStr
    price: FiniteFloat = Field(ge=0)
    quantity: int = Field(gt=0)
    image: Optional[str] = None
    brand: Optional[str] = None


class CustomerInfo(BaseModel):
    name: NonEmptyStr
    phone: NonEmptyStr
    address: NonEmptyStr = Field(validation_alias=AliasChoices("address", "deliveryAddress"))
    email: Optional[EmailStr] = None

    @field_validator("email", mode="before")
    @classmethod
    def blank_email_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v


class OrderCreate(BaseModel):
    items: List[OrderItem] = Field(min_length=1)
    total: FiniteFloat = Field(gt=0)
    customer_info: CustomerInfo
    payment_method: NonEmptyStr

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class OrderResponse(BaseModel):
    id: str
    items: List[dict]
    total: float
    customer_info: dict
    payment_method: str
    status: str
    payment_reference: Optional[str] = None
    merchant_request_id: Optional[str] = None
    payment_details: Optional[dict] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True


class OrderEnvelope(BaseModel):
    success: bool = True
    order: OrderResponse
    message: Optional[str] = None


class OrderListEnvelope(BaseModel):
    success: bool = True
    orders: List[OrderResponse]
    count: int


def dump(model: BaseModel) -> Any:
    """JSON-ready camelCase payload."""
    return model.model_dump(mode="json", by_alias=True)
