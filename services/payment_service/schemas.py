from typing import Annotated, Any, Optional

from pydantic import BaseModel, Field, FiniteFloat, StringConstraints
from pydantic.alias_generators import to_camel

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class PushRequest(BaseModel):
    phone_number: NonEmptyStr
    amount: FiniteFloat = Field(gt=0)
    order_id: NonEmptyStr
    account_reference: Optional[str] = Field(default=None, max_length=12)
    transaction_desc: Optional[str] = Field(default=None, max_length=100)

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class PushResponse(BaseModel):
    success: bool = True
    data: Any
    message: str
    order_id: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class CallbackAck(BaseModel):
    """Acknowledgement body returned to the gateway (always HTTP 200)."""

    result_code: int
    result_desc: str

    class Config:
        alias_generator = to_camel
        populate_by_name = True


ACCEPTED = CallbackAck(result_code=0, result_desc="Accepted")
